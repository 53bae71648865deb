"""
Question Planner — decides the single next question of an interview.

Strategy, given the template's ordered required keys:
1. Gate flags first. Any required key under a conditional entity implies
   that entity's gate (`spouse.*` -> `user.is_married?`). Unanswered gates
   are asked before anything else, in entity declaration order.
2. Linear scan of required keys, in order:
   - keys of a conditional entity are skipped unless its gate is true;
   - array templates (`property[].address`) are bound to the array cursor;
   - a key targeted by a generation rule is never asked itself: its first
     missing input is asked instead (back-chaining through other rules),
     and the key is skipped once every input is present;
   - any other key is asked when its value is absent or blank, except an
     optional composite sub-field (a middle name).
3. "Add another?" When the scan leaves an array entity (or reaches the end
   while one is open) and the current instance has not had its
   "add another?" answered, `<entity>.add_another?` is asked.
4. Otherwise the interview is complete: the cursor is reset and None is
   returned.

Known edge case: a single cursor is shared by every array entity, and an
entity closed with "no" is skipped for the rest of the interview. Keys of
one array entity interleaved after another array entity's keys are therefore
order-dependent.

"Add another?" is asked as soon as the scan steps from an open array entity
onto a key of a different entity, not only at the end of the scan. With
`property[].address, user.name, property[].value` the user is asked whether
to add another property right after the first address; answering "no"
closes `property`, so `property[].value` is never asked. This is intended:
templates keep each array entity's keys contiguous, and a closed entity
stays closed so an interview cannot loop back into it.
"""

from __future__ import annotations

import logging
from typing import Optional

from docassembly.engine.paths import (
    add_another_key,
    concretize,
    entity_of,
    flag_key,
    get_path,
    has_value,
    instance_path,
    is_array_template,
)
from docassembly.engine.resolver import is_optional_subfield, resolve_field
from docassembly.engine.schema import FieldType, GenerationRule, Schema
from docassembly.engine.state import CollectionState
from docassembly.exceptions import ConfigError

logger = logging.getLogger(__name__)


def required_gates(required_keys: list[str], schema: Schema) -> list[str]:
    """Gate flag paths implied by `required_keys`, in entity declaration order."""
    required_entities = {entity_of(key) for key in required_keys}
    gates: list[str] = []
    for name, entity in schema.conditional_entities():
        if name in required_entities and entity.gate not in gates:
            gates.append(entity.gate)
    return gates


def _bind(key: str, index: int) -> str:
    return concretize(key, index) if is_array_template(key) else key


def missing_rule_input(
    rule: GenerationRule,
    state: CollectionState,
    schema: Schema,
    _seen: Optional[set[int]] = None,
) -> Optional[str]:
    """
    First input of `rule` that still needs an answer, or None.

    Inputs that are themselves rule targets are resolved recursively.
    Boolean inputs are returned in flag form (`user.is_married?`).
    """
    seen = _seen if _seen is not None else set()
    if id(rule) in seen:
        return None
    seen.add(id(rule))

    for input_template in rule.uses:
        input_key = _bind(input_template, state.cursor)

        nested = schema.rule_for(input_key)
        # A rule may reformat its own raw input (`user.dob` -> `user.dob`)
        if nested is not None and nested is not rule:
            missing = missing_rule_input(nested, state, schema, seen)
            if missing:
                return missing
            continue

        if has_value(get_path(state.collected_data, input_key)):
            continue
        if is_optional_subfield(input_key, schema):
            logger.debug(
                "rule_optional_input_absent",
                extra={"question_key": input_key},
            )
            continue

        field = resolve_field(input_key, schema)
        if field is not None and field.type == FieldType.BOOLEAN:
            # Booleans are always collected as yes/no flag questions
            if get_path(state.collected_data, input_key) is None:
                return flag_key(input_key)
            continue
        return input_key
    return None


def _pending_add_another(state: CollectionState, entity: str) -> Optional[str]:
    if instance_path(entity, state.cursor) in state.asked_add_another:
        return None
    logger.info(
        "planner_add_another",
        extra={"session_key": state.session_key, "entity": entity, "index": state.cursor},
    )
    return add_another_key(entity)


def find_next_question(state: CollectionState) -> Optional[str]:
    """
    Compute the next question key for `state`, or None when complete.

    Side effects: binds the array cursor to 0 when an array question is
    chosen with no cursor set, and clears it on completion.

    Raises:
        ConfigError: If the state carries no schema.
    """
    schema = state.schema
    if schema is None:
        raise ConfigError(
            "Session has no schema loaded",
            details={"session_key": state.session_key},
        )

    required = state.required_keys
    if not required:
        logger.warning(
            "planner_no_required_keys",
            extra={"session_key": state.session_key},
        )
        return None

    data = state.collected_data

    # ── 1. Gates ─────────────────────────────────────────────────
    for gate in required_gates(required, schema):
        if get_path(data, gate) is None:
            logger.info(
                "planner_gate_needed",
                extra={"session_key": state.session_key, "question_key": gate},
            )
            return flag_key(gate)

    # ── 2. Linear scan ───────────────────────────────────────────
    open_entity: Optional[str] = None

    for template in required:
        entity_name = entity_of(template)
        entity = schema.entities.get(entity_name)

        if entity is not None and entity.is_conditional:
            if get_path(data, entity.gate) is not True:
                continue

        is_array = entity is not None and entity.allow_multiple
        if is_array and entity_name in state.finished_entities:
            continue

        if open_entity is not None and open_entity != entity_name:
            pending = _pending_add_another(state, open_entity)
            if pending:
                return pending
            open_entity = None

        if is_array:
            open_entity = entity_name
            key = _bind(template, state.cursor)
        else:
            key = template

        rule = schema.rule_for(template)
        if rule is not None:
            missing = missing_rule_input(rule, state, schema)
            if missing:
                logger.info(
                    "planner_rule_input_needed",
                    extra={
                        "session_key": state.session_key,
                        "question_key": missing,
                        "rule": template,
                    },
                )
                return missing
            continue

        if has_value(get_path(data, key)):
            continue
        if is_optional_subfield(key, schema):
            continue

        if is_array:
            state.current_entity_index = state.cursor
        logger.info(
            "planner_next_question",
            extra={"session_key": state.session_key, "question_key": key},
        )
        return key

    # ── 3. End of an open array entity ───────────────────────────
    if open_entity is not None:
        pending = _pending_add_another(state, open_entity)
        if pending:
            return pending

    # ── 4. Complete ──────────────────────────────────────────────
    state.current_entity_index = None
    logger.info("planner_complete", extra={"session_key": state.session_key})
    return None
