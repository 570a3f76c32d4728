"""FlexiConvert file conversion service."""

__all__ = ["create_app"]

__version__ = "0.1.0"


def create_app(runtime_config=None):
    """Lazily import app factory to avoid import-time side effects."""
    from flexiconvert.factory import create_app as _create_app

    return _create_app(runtime_config)
