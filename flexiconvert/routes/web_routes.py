"""Web and health routes."""

from flask import Blueprint

from flexiconvert.services import conversion_service

web_bp = Blueprint("web", __name__)


@web_bp.get("/")
def index():
    return conversion_service.index()


@web_bp.get("/health")
def health():
    return conversion_service.health()


@web_bp.get("/favicon.ico")
def favicon():
    return conversion_service.favicon()
