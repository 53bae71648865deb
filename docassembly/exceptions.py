"""
Custom exception hierarchy for the document-assembly engine.

Structured error handling with clear categories:
- Configuration errors (schema failed to load or merge)
- Answer validation errors (recovered conversationally, never fatal)
- Template errors (selected template cannot be loaded)
- Rule execution errors (converted to inline markers during rendering)
- Session errors (unknown or expired session keys)

Usage:
    from docassembly.exceptions import ConfigError, SessionNotFoundError

    try:
        schema = load_schema(raw)
    except ConfigError as e:
        logger.warning("schema_load_failed", extra={"source": e.source})
"""

from __future__ import annotations

from typing import Optional


class DocAssemblyError(Exception):
    """
    Base exception for all document-assembly errors.

    All custom exceptions inherit from this, so you can catch
    `DocAssemblyError` to handle any engine-specific error.
    """

    def __init__(self, message: str, *, details: Optional[dict] = None):
        super().__init__(message)
        self.details = details or {}


# ── Configuration Errors ──────────────────────────────────────────


class ConfigError(DocAssemblyError):
    """
    Raised when a schema or settings file fails to load, parse or merge.

    Examples:
    - Malformed JSON in a template's placeholder overrides
    - A generation rule that uses an unknown key
    - A cycle between generation rules
    """

    def __init__(
        self,
        message: str,
        *,
        source: Optional[str] = None,
        details: Optional[dict] = None,
    ):
        super().__init__(message, details=details)
        self.source = source


# ── Answer Validation ─────────────────────────────────────────────


class ValidationError(DocAssemblyError):
    """
    Raised when a user's answer fails a type, format or regex check.

    Never fatal: the same question is re-asked with `reason` prefixed.
    """

    def __init__(
        self,
        reason: str,
        *,
        key: Optional[str] = None,
        details: Optional[dict] = None,
    ):
        super().__init__(reason, details=details)
        self.reason = reason
        self.key = key


# ── Template Errors ───────────────────────────────────────────────


class MissingTemplateError(DocAssemblyError):
    """
    Raised when a selected template path does not resolve to loadable text.
    """

    def __init__(
        self,
        message: str,
        *,
        template_path: Optional[str] = None,
        details: Optional[dict] = None,
    ):
        super().__init__(message, details=details)
        self.template_path = template_path


# ── Rule Errors ───────────────────────────────────────────────────


class RuleExecutionError(DocAssemblyError):
    """
    Raised inside the rule interpreter when an operation cannot produce
    a value. Never crosses the render boundary; rendering converts it to
    an inline marker.
    """

    def __init__(
        self,
        message: str,
        *,
        operation: Optional[str] = None,
        marker: Optional[str] = None,
        details: Optional[dict] = None,
    ):
        super().__init__(message, details=details)
        self.operation = operation
        self.marker = marker


# ── Session Errors ────────────────────────────────────────────────


class SessionNotFoundError(DocAssemblyError):
    """
    Raised for operations on an unknown (or expired) session key.

    The turn handler re-initializes a fresh session and tells the user
    their previous session expired.
    """

    def __init__(
        self,
        message: str,
        *,
        session_key: Optional[str] = None,
        details: Optional[dict] = None,
    ):
        super().__init__(message, details=details)
        self.session_key = session_key
