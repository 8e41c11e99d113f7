"""Observability helpers: structured logging and metric instruments."""

from .logging import configure_logging

__all__ = ["configure_logging"]
