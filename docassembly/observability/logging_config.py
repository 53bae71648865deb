"""
Structured logging configuration for the document-assembly engine.

Modules log through plain logging.getLogger(__name__) with an event-style
message and structured fields in `extra`; this module decides how those
records are written out.

Environments:
- production: one JSON object per line on stdout
- anything else: colored single-line text on stderr

The engine runs many interviews concurrently on one event loop, so the
active session key lives in a ContextVar (each asyncio task sees its own
value) and ContextFilter copies it onto every record.

Usage:
    from docassembly.observability.logging_config import configure_logging

    configure_logging()  # DOCASSEMBLY_ENV picks the output mode

    logger = logging.getLogger(__name__)
    logger.info("answer_accepted", extra={
        "session_key": "chat-42",
        "question_key": "user.dob",
    })
"""

from __future__ import annotations

import json
import logging
import os
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Optional

# ─── Session Context ──────────────────────────────────────────────────

_current_session: ContextVar[Optional[str]] = ContextVar("docassembly_session", default=None)


def set_session_context(session_key: str) -> None:
    """Mark `session_key` as the session the current task is serving."""
    _current_session.set(session_key)


def get_session_context() -> Optional[str]:
    """The session key of the current task, or None outside a turn."""
    return _current_session.get()


def clear_session_context() -> None:
    _current_session.set(None)


class ContextFilter(logging.Filter):
    """Stamps the current session key on records that do not carry one."""

    def filter(self, record: logging.LogRecord) -> bool:
        session_key = get_session_context()
        if session_key and not hasattr(record, "session_key"):
            record.session_key = session_key  # type: ignore[attr-defined]
        return True


# ─── Formatters ───────────────────────────────────────────────────────

# Attributes set by LogRecord itself; everything else arrived via `extra`
_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None))
) | {"message", "asctime", "taskName"}

# Shown first, in this order, by the dev formatter
_LEADING_FIELDS = ("session_key", "template_path", "question_key")


def extra_fields(record: logging.LogRecord) -> dict[str, Any]:
    """The structured fields a caller attached to `record`."""
    return {
        key: value for key, value in record.__dict__.items()
        if key not in _RECORD_ATTRS and not key.startswith("_")
    }


class JSONFormatter(logging.Formatter):
    """
    One JSON object per record:

        {"timestamp": "...", "level": "INFO", "logger": "docassembly.engine.engine",
         "message": "session_started", "session_key": "chat-42", ...}

    Extra values that JSON cannot encode are written as their str().
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in extra_fields(record).items():
            try:
                json.dumps(value)
            except (TypeError, ValueError):
                value = str(value)
            entry[key] = value

        if record.exc_info and record.exc_info[1]:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry)


class DevFormatter(logging.Formatter):
    """
    Colored text for a terminal:

        [HH:MM:SS] LEVEL    logger: message [session_key=... question_key=...]
    """

    COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[41m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        fields = extra_fields(record)
        ordered = [k for k in _LEADING_FIELDS if k in fields]
        ordered += sorted(k for k in fields if k not in _LEADING_FIELDS)
        pairs = " ".join(f"{k}={fields[k]}" for k in ordered if fields[k] is not None)

        color = self.COLORS.get(record.levelno, self.RESET)
        line = (
            f"[{self.formatTime(record, '%H:%M:%S')}] "
            f"{color}{record.levelname:<8}{self.RESET} "
            f"{record.name}: {record.getMessage()}"
        )
        if pairs:
            line += f" [{pairs}]"
        if record.exc_info and record.exc_info[1]:
            line += "\n" + self.formatException(record.exc_info)
        return line


# ─── Configuration ────────────────────────────────────────────────────


def configure_logging(
    env: Optional[str] = None,
    level: int = logging.INFO,
) -> None:
    """
    Replace the root logger's handlers with one suited to `env`.

    Args:
        env: "production" for JSON output; defaults to DOCASSEMBLY_ENV,
             then "development".
        level: Root log level.
    """
    env = (env or os.environ.get("DOCASSEMBLY_ENV") or "development").lower().strip()

    if env == "production":
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(JSONFormatter())
    else:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(DevFormatter())
    handler.addFilter(ContextFilter())

    root = logging.getLogger()
    for existing in root.handlers[:]:
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)
