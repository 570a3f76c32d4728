"""Service layer behind the Flask routes."""
