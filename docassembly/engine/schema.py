"""
Schema Model — entities, fields, generation rules and global placeholders.

A schema is the parsed form of the central placeholder map: it tells the
engine what each placeholder means, how to ask for it, how to validate the
answer, and which placeholders are computed from others. Templates may
ship an override fragment that is deep-merged onto the shared base schema
before an interview starts.

On-disk attribute names use a leading underscore for engine metadata
(`_type`, `_allow_multiple`, `_conditional_hint`, `_gate`, ...); the
models accept them by alias.

Usage:
    schema = load_schema(json.loads(text), source="central_placeholder_map.json")
    merged = merge_override(schema, readme.overrides)   # base is untouched
"""

from __future__ import annotations

import copy
import logging
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic import ValidationError as PydanticValidationError

from docassembly.engine.paths import KeyPath, normalize_indices
from docassembly.exceptions import ConfigError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class FieldType(str, Enum):
    """Answer types a placeholder can declare."""
    TEXT = "text"
    DATE = "date"                  # YYYY-MM-DD
    YEAR = "year"                  # YYYY
    DAY_OF_MONTH = "day_of_month"  # 1-31
    NUMBER = "number"
    CHOICE = "choice"              # one of `options`
    NAME = "name"                  # composite: first / middle / last
    ADDRESS = "address"            # composite: line1 / city / ...
    BOOLEAN = "boolean"


class RuleOperation(str, Enum):
    """The closed set of generation-rule operations."""
    COMBINE_NAMES = "combine_names"
    FORMAT_DATE = "format_date"
    CONDITIONAL_TEXT = "conditional_text"


COMPOSITE_TYPES = frozenset({FieldType.NAME, FieldType.ADDRESS})

# Composite sub-fields that may be left blank
OPTIONAL_SUBFIELDS: dict[FieldType, frozenset[str]] = {
    FieldType.NAME: frozenset({"middle"}),
}


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------

class FieldDef(BaseModel):
    """
    Definition of one placeholder field.

    Attributes:
        type: Answer type, drives validation and the input hint.
        description: Human description, also used in validation messages.
        ask: Prompt text, or a mapping of sub-field -> prompt for composites.
        options: Allowed answers for `choice` fields (case-sensitive).
        validation_rule: Optional regex applied after the type check.
    """
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    type: FieldType = Field(FieldType.TEXT, alias="_type")
    description: str = ""
    ask: Optional[Union[str, dict[str, str]]] = None
    options: Optional[list[str]] = None
    validation_rule: Optional[str] = Field(None, alias="validationRule")
    example: Optional[str] = None
    conditional_hint: Optional[str] = Field(None, alias="_conditional_hint")
    internal_flag: bool = Field(False, alias="_internal_flag")

    @model_validator(mode="after")
    def choice_needs_options(self) -> "FieldDef":
        if self.type == FieldType.CHOICE and not self.options:
            raise ValueError("choice fields must declare at least one option")
        return self

    @property
    def is_composite(self) -> bool:
        return self.type in COMPOSITE_TYPES


class Entity(BaseModel):
    """
    A named group of fields ("user", "spouse", "property", ...).

    Array entities (`_allow_multiple`) are filled one instance at a time.
    Conditional entities are only collected when their boolean `_gate`
    flag (e.g. `user.is_married`) has been answered `true`.
    """
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    description: str = ""
    fields: dict[str, FieldDef] = Field(default_factory=dict)
    allow_multiple: bool = Field(False, alias="_allow_multiple")
    conditional_hint: Optional[str] = Field(None, alias="_conditional_hint")
    gate: Optional[str] = Field(None, alias="_gate")
    gate_question: Optional[str] = Field(None, alias="_gate_question")

    @model_validator(mode="after")
    def conditional_needs_gate(self) -> "Entity":
        if self.conditional_hint and not self.gate:
            raise ValueError(
                "conditional entities must name their governing `_gate` flag"
            )
        if self.gate:
            if self.gate.endswith("?") or not KeyPath.parse(self.gate).is_concrete:
                raise ValueError(f"invalid gate key '{self.gate}'")
        return self

    @property
    def is_conditional(self) -> bool:
        return self.gate is not None


class GenerationRule(BaseModel):
    """A recipe producing a placeholder value from already-collected inputs."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    uses: list[str] = Field(..., min_length=1)
    operation: str
    params: dict[str, Any] = Field(default_factory=dict)
    logic: Optional[str] = None
    conditional_hint: Optional[str] = Field(None, alias="_conditional_hint")

    @property
    def op(self) -> Optional[RuleOperation]:
        """The operation as an enum member, or None when it is not supported."""
        try:
            return RuleOperation(self.operation)
        except ValueError:
            return None


class Schema(BaseModel):
    """The merged configuration an interview runs against."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    entities: dict[str, Entity] = Field(default_factory=dict)
    generation_rules: dict[str, GenerationRule] = Field(default_factory=dict)
    global_placeholders: dict[str, FieldDef] = Field(default_factory=dict)

    # ── Lookups ──────────────────────────────────────────────────

    def conditional_entities(self) -> list[tuple[str, Entity]]:
        """Conditional entities in declaration order."""
        return [
            (name, entity) for name, entity in self.entities.items()
            if entity.is_conditional
        ]

    def gate_question(self, gate: str) -> Optional[str]:
        """Prompt for a gate flag, or None if `gate` governs no entity."""
        for _, entity in self.conditional_entities():
            if entity.gate == gate:
                return entity.gate_question or f"Please confirm: {gate}?"
        return None

    def is_gate(self, key: str) -> bool:
        return any(entity.gate == key for _, entity in self.conditional_entities())

    def rule_for(self, key: str) -> Optional[GenerationRule]:
        """Rule targeting `key`, matching concrete indices against `[]` templates."""
        rule = self.generation_rules.get(key)
        if rule is None:
            rule = self.generation_rules.get(normalize_indices(key))
        return rule

    def to_raw(self) -> dict[str, Any]:
        """Plain JSON-ready mapping using the on-disk attribute names."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")

    # ── Invariants ───────────────────────────────────────────────

    def validate_rules(self) -> None:
        """
        Check that every rule input resolves and the rule graph is acyclic.

        Raises:
            ConfigError: On an unresolvable input or a cycle between rules.
        """
        from docassembly.engine.resolver import resolve_field

        for target, rule in self.generation_rules.items():
            for input_key in rule.uses:
                # A self-reference reads the raw answer stored at the target
                if normalize_indices(input_key) != target and self.rule_for(input_key) is not None:
                    continue
                if resolve_field(input_key, self) is None:
                    raise ConfigError(
                        f"Generation rule '{target}' uses unknown key '{input_key}'",
                        details={"rule": target, "input": input_key},
                    )

        # Depth-first search for cycles between rules
        visiting: set[str] = set()
        done: set[str] = set()

        def visit(target: str, trail: list[str]) -> None:
            if target in done:
                return
            if target in visiting:
                cycle = " -> ".join(trail + [target])
                raise ConfigError(
                    f"Generation rules form a cycle: {cycle}",
                    details={"cycle": trail + [target]},
                )
            visiting.add(target)
            for input_key in self.generation_rules[target].uses:
                dependency = input_key if input_key in self.generation_rules else normalize_indices(input_key)
                if dependency in self.generation_rules and dependency != target:
                    visit(dependency, trail + [target])
            visiting.discard(target)
            done.add(target)

        for target in self.generation_rules:
            visit(target, [])


# ---------------------------------------------------------------------------
# Loading and merging
# ---------------------------------------------------------------------------

def load_schema(raw: Any, source: Optional[str] = None) -> Schema:
    """
    Parse and validate a raw schema mapping.

    Raises:
        ConfigError: If the mapping is malformed or breaks a rule invariant.
    """
    if not isinstance(raw, dict):
        raise ConfigError(
            f"Schema must be a JSON object, got {type(raw).__name__}",
            source=source,
        )
    try:
        schema = Schema.model_validate(raw)
    except PydanticValidationError as e:
        raise ConfigError(f"Invalid schema:\n{e}", source=source) from e

    try:
        schema.validate_rules()
    except ConfigError as e:
        e.source = e.source or source
        raise

    logger.debug(
        "schema_loaded",
        extra={
            "source": source,
            "entities": len(schema.entities),
            "rules": len(schema.generation_rules),
        },
    )
    return schema


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Merge `override` into `base` in place; mappings recurse, other values replace."""
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            deep_merge(base[key], value)
        else:
            base[key] = copy.deepcopy(value)
    return base


def merge_override(base: Schema, override: Any) -> Schema:
    """
    Deep-merge a template override fragment onto `base`.

    Entities, fields, rules and global placeholders merge by key; override
    attributes take precedence. `base` is never mutated.

    Raises:
        ConfigError: If the fragment is not a mapping or the merged schema
            is invalid. Callers keep using `base` in that case.
    """
    if not isinstance(override, dict):
        raise ConfigError(
            f"Schema override must be a JSON object, got {type(override).__name__}",
            source="override",
        )
    merged = deep_merge(base.to_raw(), override)
    return load_schema(merged, source="override")
