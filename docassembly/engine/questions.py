"""
Presentation of questions to the turn handler.

The engine never talks to a transport. It hands back a Question with the
prompt text and an input hint (free text, yes/no, or a choice list); the
turn handler decides how to show it (buttons, a console prompt, a form).
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from docassembly.engine.paths import entity_of, is_add_another_key, is_flag_key, strip_flag
from docassembly.engine.resolver import resolve_field
from docassembly.engine.schema import FieldType, Schema


class InputHint(str, Enum):
    """How the answer should be collected."""
    TEXT = "text"
    BOOLEAN = "boolean"
    CHOICE = "choice"


@dataclass(frozen=True)
class Question:
    """One question ready to be shown to the user."""
    key: str
    prompt: str
    hint: InputHint = InputHint.TEXT
    options: tuple[str, ...] = ()
    description: str = ""

    def with_prefix(self, prefix: Optional[str]) -> "Question":
        """Copy with `prefix` (e.g. a rejection reason) on its own line first."""
        if not prefix:
            return self
        return dataclasses.replace(self, prompt=f"{prefix}\n{self.prompt}")


def describe_question(key: str, schema: Optional[Schema]) -> Question:
    """Build the Question for `key` from its resolved field definition."""
    if is_flag_key(key):
        base_key = strip_flag(key)
        if is_add_another_key(key):
            prompt = f"Do you need to add another {entity_of(key)}?"
        else:
            prompt = schema.gate_question(base_key) if schema else None
            if prompt is None:
                # Boolean rule inputs (`user.has_children?`) keep their field prompt
                field = resolve_field(base_key, schema)
                ask = field.ask if field is not None else None
                prompt = ask if isinstance(ask, str) and ask else f"Please confirm: {base_key}?"
        return Question(
            key=key,
            prompt=prompt,
            hint=InputHint.BOOLEAN,
            options=("Yes", "No"),
        )

    field = resolve_field(key, schema)
    if field is None:
        return Question(key=key, prompt=f"Please provide: {key}")

    prompt = field.ask if isinstance(field.ask, str) and field.ask else f"Please provide: {key}"
    if field.type == FieldType.CHOICE and field.options:
        return Question(
            key=key,
            prompt=prompt,
            hint=InputHint.CHOICE,
            options=tuple(field.options),
            description=field.description,
        )
    if field.type == FieldType.BOOLEAN:
        return Question(
            key=key,
            prompt=prompt,
            hint=InputHint.BOOLEAN,
            options=("Yes", "No"),
            description=field.description,
        )
    return Question(key=key, prompt=prompt, description=field.description)
