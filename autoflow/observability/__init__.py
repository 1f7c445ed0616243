"""Observability: logging configuration."""

from autoflow.observability.logging import setup_logging

__all__ = ["setup_logging"]
