"""Conversion tools and external engine wrappers."""
