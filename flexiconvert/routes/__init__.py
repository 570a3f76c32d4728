"""Route blueprints."""

from flexiconvert.routes.api_routes import api_bp
from flexiconvert.routes.web_routes import web_bp

__all__ = ["api_bp", "web_bp"]
