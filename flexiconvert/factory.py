"""Flask app factory."""

from __future__ import annotations

from typing import Optional

from flask import Flask

from flexiconvert import bootstrap
from flexiconvert.config import RuntimeConfig, get_runtime_config
from flexiconvert.routes.api_routes import api_bp
from flexiconvert.routes.web_routes import web_bp
from flexiconvert.services import conversion_service


def create_app(runtime_config: Optional[RuntimeConfig] = None) -> Flask:
    """Create and configure the Flask application."""
    app = Flask(__name__)

    conversion_service.configure_app(app, runtime_config or get_runtime_config())

    app.register_blueprint(web_bp)
    app.register_blueprint(api_bp)
    conversion_service.register_error_handlers(app)

    bootstrap.bootstrap_runtime()
    return app
