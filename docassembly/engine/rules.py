"""
Rule Interpreter — computes a placeholder value from collected inputs.

Operations are a closed set (RuleOperation); each has one branch in
`_execute`. Extending the interpreter means adding an enum member and a
branch, never evaluating user-supplied code.

Failures never escape: missing inputs, malformed dates and unknown
operations come back as inline markers (`[UNKNOWN_RULE_OP:x]`,
`[DATE_FORMAT_ERROR: ...]`) so a document always renders completely and
a human reviewer can spot the gaps.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import Any, Optional

from docassembly.engine.paths import concretize, get_path, is_array_template
from docassembly.engine.resolver import is_optional_subfield
from docassembly.engine.schema import GenerationRule, RuleOperation, Schema
from docassembly.exceptions import RuleExecutionError

logger = logging.getLogger(__name__)

MONTH_NAMES = (
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
)

NAME_FORMATS = ("first_middle_last", "last_first_middle", "first_last")
DATE_FORMATS = ("DD MMMM YYYY", "YYYY-MM-DD", "MM/DD/YYYY")

_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$", re.ASCII)

# Operations that treat an absent input as meaningful rather than missing
_ABSENCE_TOLERANT = frozenset({RuleOperation.CONDITIONAL_TEXT})


def missing_input_marker(rule: GenerationRule) -> str:
    return f"[RULE_INPUT_MISSING: Required input for {', '.join(rule.uses)}]"


def _as_text(value: Any) -> str:
    return "" if value is None else str(value)


# ── Operations ──────────────────────────────────────────────────


def combine_names(
    first: str,
    middle: str,
    last: str,
    fmt: str = "first_middle_last",
    separator: str = " ",
) -> str:
    """Join the non-empty name parts in one of the fixed orders."""
    if fmt == "last_first_middle":
        parts = [last, first, middle]
    elif fmt == "first_last":
        parts = [first, last]
    else:
        parts = [first, middle, last]
    return separator.join(p.strip() for p in parts if p and p.strip())


def format_date(value: str, output_format: str = "DD MMMM YYYY") -> str:
    """
    Re-emit a strict YYYY-MM-DD date in one of the fixed output patterns.

    Raises:
        RuleExecutionError: For missing, malformed or impossible dates,
            carrying the inline marker to render.
    """
    if not value:
        raise RuleExecutionError(
            "date input is empty",
            operation=RuleOperation.FORMAT_DATE.value,
            marker="[DATE_MISSING]",
        )
    if not _ISO_DATE.match(value):
        raise RuleExecutionError(
            f"date input '{value}' is not YYYY-MM-DD",
            operation=RuleOperation.FORMAT_DATE.value,
            marker=f"[INVALID_DATE_INPUT: {value}]",
        )
    try:
        parsed = datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError as e:
        raise RuleExecutionError(
            f"date input '{value}' is not a calendar date",
            operation=RuleOperation.FORMAT_DATE.value,
            marker=f"[DATE_FORMAT_ERROR: {value}]",
        ) from e

    if output_format == "DD MMMM YYYY":
        return f"{parsed.day:02d} {MONTH_NAMES[parsed.month - 1]} {parsed.year}"
    if output_format == "YYYY-MM-DD":
        return f"{parsed.year:04d}-{parsed.month:02d}-{parsed.day:02d}"
    if output_format == "MM/DD/YYYY":
        return f"{parsed.month:02d}/{parsed.day:02d}/{parsed.year:04d}"
    logger.warning("format_date_unknown_output", extra={"output_format": output_format})
    return value


def conditional_text(value: Any, params: dict[str, Any]) -> str:
    """Pick one of three configured strings from a boolean (or its absence)."""
    if value is True:
        return str(params.get("ifTrue", "True"))
    if value is False:
        return str(params.get("ifFalse", "False"))
    return str(params.get("ifNullOrUndefined", "[CONDITION_VALUE_MISSING]"))


# ── Dispatch ────────────────────────────────────────────────────


def _execute(op: RuleOperation, rule: GenerationRule, values: list[Any]) -> str:
    params = rule.params

    if op == RuleOperation.COMBINE_NAMES:
        texts = [_as_text(v) for v in values]
        if len(texts) == 2:
            first, middle, last = texts[0], "", texts[1]
        elif len(texts) == 3:
            first, middle, last = texts
        else:
            raise RuleExecutionError(
                f"combine_names needs 2 or 3 inputs, got {len(texts)}",
                operation=op.value,
            )
        return combine_names(
            first, middle, last,
            fmt=params.get("format", "first_middle_last"),
            separator=params.get("separator", " "),
        )

    if op == RuleOperation.FORMAT_DATE:
        return format_date(
            _as_text(values[0]).strip(),
            output_format=params.get("outputFormat", "DD MMMM YYYY"),
        )

    if op == RuleOperation.CONDITIONAL_TEXT:
        return conditional_text(values[0], params)

    raise RuleExecutionError(f"operation '{op.value}' has no implementation", operation=op.value)


def apply_rule(
    rule: GenerationRule,
    collected_data: dict[str, Any],
    schema: Optional[Schema] = None,
    index: Optional[int] = None,
) -> str:
    """
    Run `rule` against `collected_data` and return the rendered value.

    Args:
        rule: The generation rule to execute.
        collected_data: The session's answer tree.
        schema: Used to recognise optional inputs (a blank middle name).
        index: Binds `[]` slots in the rule's inputs, for rules on array entities.

    Never raises; problems come back as inline markers.
    """
    op = rule.op
    if op is None:
        logger.warning("rule_unknown_operation", extra={"operation": rule.operation})
        return f"[UNKNOWN_RULE_OP:{rule.operation}]"

    values: list[Any] = []
    for input_key in rule.uses:
        if is_array_template(input_key):
            input_key = concretize(input_key, index or 0)
        value = get_path(collected_data, input_key)
        if value is None and op not in _ABSENCE_TOLERANT and not is_optional_subfield(input_key, schema):
            logger.warning(
                "rule_input_missing",
                extra={"operation": op.value, "input": input_key},
            )
            return missing_input_marker(rule)
        values.append(value)

    try:
        return _execute(op, rule, values)
    except RuleExecutionError as e:
        logger.warning(
            "rule_execution_failed",
            extra={"operation": op.value, "error": str(e)},
        )
        return e.marker or f"[RULE_EXECUTION_ERROR:{op.value}]"
    except (TypeError, ValueError, IndexError) as e:
        logger.error(
            "rule_execution_crashed",
            extra={"operation": op.value, "error": str(e)},
        )
        return f"[RULE_EXECUTION_ERROR:{op.value}]"
