"""Logging setup for the document-assembly engine."""

from docassembly.observability.logging_config import configure_logging

__all__ = ["configure_logging"]
