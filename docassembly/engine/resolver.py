"""
Field Resolver — maps a concrete question key to its field definition.

Handles four shapes of key:
- flag questions (`user.is_married?`, `property.add_another?`): a boolean
  definition is synthesized;
- global placeholders, matched on the full key;
- entity fields (`user.dob`, `property[0].value`);
- composite sub-fields (`user.base_name.first`), which copy the parent's
  type and validation but carry a sub-field specific prompt.

A key with no definition resolves to None; callers ask it with a generic
fallback prompt instead of failing.
"""

from __future__ import annotations

import logging
from typing import Optional

from docassembly.engine.paths import (
    ADD_ANOTHER,
    KeyPath,
    entity_of,
    is_flag_key,
    strip_flag,
)
from docassembly.engine.schema import OPTIONAL_SUBFIELDS, FieldDef, FieldType, Schema

logger = logging.getLogger(__name__)


def _field_names(key: str) -> Optional[list[str]]:
    """Name tokens of a key with indices dropped, or None if malformed."""
    try:
        path = KeyPath.parse(key)
    except ValueError:
        return None
    return [t for t in path.tokens if isinstance(t, str)]


def _flag_field(key: str, schema: Schema) -> FieldDef:
    base_key = strip_flag(key)
    if base_key.endswith(f".{ADD_ANOTHER}"):
        entity = entity_of(base_key)
        return FieldDef(type=FieldType.BOOLEAN, description=f"Add another {entity}?")
    question = schema.gate_question(base_key)
    if question:
        return FieldDef(type=FieldType.BOOLEAN, description=question, ask=question)
    return FieldDef(type=FieldType.BOOLEAN, description=f"Confirmation for {base_key}")


def resolve_field(key: Optional[str], schema: Optional[Schema]) -> Optional[FieldDef]:
    """
    Return the field definition that applies to `key`.

    Returns None (and logs) when no definition exists.
    """
    if not key or schema is None:
        return None

    if is_flag_key(key):
        return _flag_field(key, schema)

    if key in schema.global_placeholders:
        return schema.global_placeholders[key]

    if schema.is_gate(key):
        return _flag_field(key + "?", schema)

    names = _field_names(key)
    if not names:
        logger.warning("field_key_malformed", extra={"question_key": key})
        return None

    entity = schema.entities.get(names[0])
    if entity is None:
        logger.warning("field_not_found", extra={"question_key": key})
        return None

    if len(names) < 2:
        logger.warning(
            "field_key_is_entity",
            extra={"question_key": key, "entity": names[0]},
        )
        return None

    field_name = names[1]
    field = entity.fields.get(field_name)
    if field is None:
        logger.warning(
            "field_not_found",
            extra={"question_key": key, "entity": names[0], "field": field_name},
        )
        return None

    sub_path = ".".join(names[2:])
    if not sub_path:
        return field

    if not field.is_composite:
        logger.warning(
            "field_subpath_on_simple_type",
            extra={"question_key": key, "field": field_name, "field_type": field.type.value},
        )
        return field

    sub_ask = field.ask.get(sub_path) if isinstance(field.ask, dict) else None
    return field.model_copy(update={
        "description": f"{field.description} ({sub_path})",
        "ask": sub_ask or (
            f"Please provide the {sub_path.replace('_', ' ')} "
            f"for {field_name.replace('_', ' ')}."
        ),
    })


def is_optional_subfield(key: str, schema: Optional[Schema]) -> bool:
    """True for composite sub-fields that may stay blank (a middle name)."""
    if schema is None or is_flag_key(key):
        return False
    names = _field_names(key)
    if not names or len(names) < 3:
        return False
    entity = schema.entities.get(names[0])
    if entity is None:
        return False
    field = entity.fields.get(names[1])
    if field is None:
        return False
    return names[-1] in OPTIONAL_SUBFIELDS.get(field.type, frozenset())
