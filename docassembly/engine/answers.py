"""
Answer Processor — validates a raw answer and stores it in the data tree.

Flag questions (`user.is_married?`, `property.add_another?`) accept only a
recognized yes/no token. Data questions are validated against the resolved
field definition; a rejected answer never mutates the session, so the
caller can simply re-ask the same question with the reason prefixed.
"""

from __future__ import annotations

import copy
import logging
import math
import re
from dataclasses import dataclass
from typing import Any, Iterable, Optional

from docassembly.engine.paths import (
    entity_of,
    instance_path,
    is_add_another_key,
    is_flag_key,
    set_path,
    strip_flag,
)
from docassembly.engine.resolver import is_optional_subfield, resolve_field
from docassembly.engine.schema import FieldDef, FieldType, Schema
from docassembly.engine.state import CollectionState
from docassembly.exceptions import ValidationError

logger = logging.getLogger(__name__)

DEFAULT_AFFIRMATIVE = ("yes", "y", "true")
DEFAULT_NEGATIVE = ("no", "n", "false")

_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$", re.ASCII)
_YEAR = re.compile(r"^\d{4}$", re.ASCII)
_DIGITS = re.compile(r"^\d+$", re.ASCII)


@dataclass(frozen=True)
class AnswerOutcome:
    """Result of applying one answer: accepted, or rejected with a reason."""
    accepted: bool
    key: Optional[str] = None
    reason: Optional[str] = None

    @classmethod
    def accept(cls, key: str) -> "AnswerOutcome":
        return cls(accepted=True, key=key)

    @classmethod
    def reject(cls, key: Optional[str], reason: str) -> "AnswerOutcome":
        return cls(accepted=False, key=key, reason=reason)


def parse_boolean(
    raw: str,
    affirmative: Iterable[str] = DEFAULT_AFFIRMATIVE,
    negative: Iterable[str] = DEFAULT_NEGATIVE,
    key: Optional[str] = None,
) -> bool:
    """Map a yes/no token (case-insensitive) to a bool."""
    token = raw.strip().lower()
    if token in affirmative:
        return True
    if token in negative:
        return False
    raise ValidationError("Please answer yes or no.", key=key)


def validate_answer(
    raw: str,
    field: Optional[FieldDef],
    key: str,
    schema: Optional[Schema] = None,
    affirmative: Iterable[str] = DEFAULT_AFFIRMATIVE,
    negative: Iterable[str] = DEFAULT_NEGATIVE,
) -> Any:
    """
    Check `raw` against the field's type and regex rules.

    Returns:
        The value to store: the trimmed text, or a bool for boolean fields.

    Raises:
        ValidationError: With a user-facing reason.
    """
    trimmed = raw.strip()

    if not trimmed:
        if is_optional_subfield(key, schema):
            return ""
        raise ValidationError("Input cannot be empty.", key=key)

    if field is None:
        return trimmed

    if field.type == FieldType.DATE:
        if not _DATE.match(trimmed):
            raise ValidationError("Invalid date format. Please use YYYY-MM-DD.", key=key)
    elif field.type == FieldType.YEAR:
        if not _YEAR.match(trimmed):
            raise ValidationError("Invalid year format. Please use YYYY.", key=key)
    elif field.type == FieldType.DAY_OF_MONTH:
        if not _DIGITS.match(trimmed) or not 1 <= int(trimmed) <= 31:
            raise ValidationError(
                "Invalid day. Please enter a number between 1 and 31.", key=key
            )
    elif field.type == FieldType.NUMBER:
        # float() also accepts non-ASCII digits such as "١٢"
        try:
            number = float(trimmed) if trimmed.isascii() else math.nan
        except ValueError:
            number = math.nan
        if not math.isfinite(number):
            raise ValidationError("Invalid number. Please enter a valid number.", key=key)
    elif field.type == FieldType.CHOICE:
        if field.options and trimmed not in field.options:
            raise ValidationError(
                f"Invalid choice. Please select one of: {', '.join(field.options)}",
                key=key,
            )
    elif field.type == FieldType.BOOLEAN:
        return parse_boolean(trimmed, affirmative, negative, key=key)

    if field.validation_rule:
        try:
            pattern = re.compile(field.validation_rule)
        except re.error as e:
            logger.error(
                "validation_rule_invalid",
                extra={"question_key": key, "pattern": field.validation_rule, "error": str(e)},
            )
        else:
            if not pattern.search(trimmed):
                reason = (
                    f"Invalid format for {field.description}."
                    if field.description else "Input format is invalid."
                )
                raise ValidationError(reason, key=key)

    return trimmed


def _apply_flag(
    raw: str,
    key: str,
    state: CollectionState,
    affirmative: Iterable[str],
    negative: Iterable[str],
) -> None:
    value = parse_boolean(raw, affirmative, negative, key=key)

    if is_add_another_key(key):
        entity = entity_of(key)
        index = state.cursor
        if value:
            state.asked_add_another.add(instance_path(entity, index))
            state.current_entity_index = index + 1
            logger.info(
                "array_instance_added",
                extra={"session_key": state.session_key, "entity": entity, "index": index + 1},
            )
        else:
            state.current_entity_index = None
            prefix = f"{entity}["
            state.asked_add_another = {
                p for p in state.asked_add_another if not p.startswith(prefix)
            }
            state.finished_entities.add(entity)
            logger.info(
                "array_collection_finished",
                extra={"session_key": state.session_key, "entity": entity, "count": index + 1},
            )
    else:
        updated = copy.deepcopy(state.collected_data)
        set_path(updated, strip_flag(key), value)
        state.collected_data = updated


def apply_answer(
    raw: str,
    state: CollectionState,
    affirmative: Iterable[str] = DEFAULT_AFFIRMATIVE,
    negative: Iterable[str] = DEFAULT_NEGATIVE,
) -> AnswerOutcome:
    """
    Validate `raw` for the pending question and store it.

    On acceptance the value is written at the exact question key and
    `current_question_key` is cleared. On rejection the state is untouched.
    """
    key = state.current_question_key
    if not key:
        logger.warning("answer_without_question", extra={"session_key": state.session_key})
        return AnswerOutcome.reject(None, "There is no pending question.")

    try:
        if is_flag_key(key):
            _apply_flag(raw, key, state, affirmative, negative)
        else:
            field = resolve_field(key, state.schema)
            value = validate_answer(raw, field, key, state.schema, affirmative, negative)
            updated = copy.deepcopy(state.collected_data)
            set_path(updated, key, value)
            state.collected_data = updated
    except ValidationError as e:
        logger.info(
            "answer_rejected",
            extra={"session_key": state.session_key, "question_key": key, "reason": e.reason},
        )
        return AnswerOutcome.reject(key, e.reason)
    except ValueError as e:
        logger.error(
            "answer_store_failed",
            extra={"session_key": state.session_key, "question_key": key, "error": str(e)},
        )
        return AnswerOutcome.reject(key, "That answer could not be stored. Please try again.")

    state.current_question_key = None
    logger.info(
        "answer_accepted",
        extra={"session_key": state.session_key, "question_key": key},
    )
    return AnswerOutcome.accept(key)
