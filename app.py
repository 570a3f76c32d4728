"""Gunicorn entrypoint: ``gunicorn app:app``."""

from flexiconvert import create_app

app = create_app()
