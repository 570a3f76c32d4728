"""Shared exceptions and helpers."""
