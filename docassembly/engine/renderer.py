"""
Document Renderer — substitutes `{{placeholder}}` markers in a template.

Each distinct marker is resolved once: through its generation rule when
one targets it, otherwise by a literal lookup in the collected data.
Missing values become `[<key>_MISSING]` so the output is always a complete
document with problems flagged inline.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Optional

from docassembly.engine.paths import get_path, normalize_indices
from docassembly.engine.rules import apply_rule
from docassembly.engine.schema import Schema
from docassembly.engine.state import CollectionState

logger = logging.getLogger(__name__)

PLACEHOLDER_PATTERN = re.compile(r"\{\{([\w.\[\]]+)\}\}")
_FIRST_INDEX = re.compile(r"\[(\d+)\]")


def scan_placeholders(template_text: str) -> list[str]:
    """Distinct marker keys in order of first appearance."""
    seen: dict[str, None] = {}
    for match in PLACEHOLDER_PATTERN.finditer(template_text):
        seen.setdefault(match.group(1), None)
    return list(seen)


def required_keys_from_template(template_text: str) -> list[str]:
    """Marker keys with concrete indices normalised to `[]` templates."""
    seen: dict[str, None] = {}
    for key in scan_placeholders(template_text):
        seen.setdefault(normalize_indices(key), None)
    return list(seen)


def _format_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return str(value)


def resolve_placeholder(
    key: str,
    collected_data: dict[str, Any],
    schema: Optional[Schema],
) -> Optional[str]:
    """The rendered value for one marker, or None when it has no value."""
    rule = schema.rule_for(key) if schema is not None else None
    if rule is not None:
        index_match = _FIRST_INDEX.search(key)
        index = int(index_match.group(1)) if index_match else None
        return apply_rule(rule, collected_data, schema, index=index)

    try:
        value = get_path(collected_data, key)
    except ValueError:
        logger.warning("placeholder_unreadable", extra={"placeholder": key})
        return None
    return None if value is None else _format_value(value)


def render_text(
    template_text: str,
    collected_data: dict[str, Any],
    schema: Optional[Schema] = None,
) -> str:
    """Substitute every marker in `template_text`; never raises on data problems."""
    placeholders = scan_placeholders(template_text)
    logger.info("render_started", extra={"placeholders": len(placeholders)})

    rendered = template_text
    missing = 0
    for key in placeholders:
        value = resolve_placeholder(key, collected_data, schema)
        if value is None:
            value = f"[{key}_MISSING]"
            missing += 1
            logger.warning("placeholder_missing", extra={"placeholder": key})
        marker = re.compile(r"\{\{" + re.escape(key) + r"\}\}")
        rendered = marker.sub(lambda _m, v=value: v, rendered)

    logger.info(
        "render_finished",
        extra={"placeholders": len(placeholders), "missing": missing},
    )
    return rendered


def render(template_text: str, state: CollectionState) -> str:
    """Render `template_text` with the session's collected data and schema."""
    return render_text(template_text, state.collected_data, state.schema)
