"""
Per-session interview state.

A CollectionState lives for one document-assembly conversation: it is
created when a session starts (optionally hydrated from a saved profile),
mutated only by the Answer Processor and the Question Planner, and deleted
once the document is rendered or the session is cancelled or expires.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from docassembly.engine.schema import Schema, load_schema


class CollectionStatus(str, Enum):
    """Lifecycle of an interview session."""
    IDLE = "idle"
    SELECTING_TEMPLATE = "selecting_template"
    COLLECTING_DATA = "collecting_data"
    GENERATING_DOCUMENT = "generating_document"
    AWAITING_EXTERNAL_INPUT = "awaiting_external_input"
    ERROR = "error"


@dataclass
class Provenance:
    """Presentation metadata carried alongside the merged schema."""
    system_prompt: Optional[str] = None
    directory_description: Optional[str] = None
    file_description: Optional[str] = None
    additional_instructions: Optional[str] = None
    warnings: list[str] = field(default_factory=list)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class CollectionState:
    """
    Mutable state of one interview.

    Attributes:
        session_key: Key under which the session store holds this state.
        required_keys: Ordered key templates the template needs (may hold `[]`).
        collected_data: The answer tree, addressed by dotted/indexed paths.
        current_question_key: The question awaiting an answer, if any.
        current_entity_index: Array cursor; None means "not inside an array".
        asked_add_another: Instance paths (`property[0]`) whose
            "add another?" question has been answered yes.
        finished_entities: Array entities the user has closed with "no".
    """
    session_key: str
    status: CollectionStatus = CollectionStatus.IDLE
    user_id: Optional[str] = None
    chat_id: Optional[str] = None
    selected_template_path: Optional[str] = None
    required_keys: list[str] = field(default_factory=list)
    collected_data: dict[str, Any] = field(default_factory=dict)
    current_question_key: Optional[str] = None
    current_entity_index: Optional[int] = None
    asked_add_another: set[str] = field(default_factory=set)
    finished_entities: set[str] = field(default_factory=set)
    schema: Optional[Schema] = None
    provenance: Provenance = field(default_factory=Provenance)
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    @property
    def cursor(self) -> int:
        """The array index currently being filled (0 when no cursor is set)."""
        return self.current_entity_index or 0

    def touch(self) -> None:
        self.updated_at = _utcnow()

    def idle_seconds(self, now: Optional[datetime] = None) -> float:
        return ((now or _utcnow()) - self.updated_at).total_seconds()

    # ── Serialization ────────────────────────────────────────────

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready snapshot; round-trips through from_dict()."""
        return {
            "session_key": self.session_key,
            "status": self.status.value,
            "user_id": self.user_id,
            "chat_id": self.chat_id,
            "selected_template_path": self.selected_template_path,
            "required_keys": list(self.required_keys),
            "collected_data": copy.deepcopy(self.collected_data),
            "current_question_key": self.current_question_key,
            "current_entity_index": self.current_entity_index,
            "asked_add_another": sorted(self.asked_add_another),
            "finished_entities": sorted(self.finished_entities),
            "schema": self.schema.to_raw() if self.schema else None,
            "provenance": {
                "system_prompt": self.provenance.system_prompt,
                "directory_description": self.provenance.directory_description,
                "file_description": self.provenance.file_description,
                "additional_instructions": self.provenance.additional_instructions,
                "warnings": list(self.provenance.warnings),
            },
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "CollectionState":
        schema_raw = raw.get("schema")
        return cls(
            session_key=raw["session_key"],
            status=CollectionStatus(raw.get("status", CollectionStatus.IDLE.value)),
            user_id=raw.get("user_id"),
            chat_id=raw.get("chat_id"),
            selected_template_path=raw.get("selected_template_path"),
            required_keys=list(raw.get("required_keys") or []),
            collected_data=raw.get("collected_data") or {},
            current_question_key=raw.get("current_question_key"),
            current_entity_index=raw.get("current_entity_index"),
            asked_add_another=set(raw.get("asked_add_another") or []),
            finished_entities=set(raw.get("finished_entities") or []),
            schema=load_schema(schema_raw, source="session") if schema_raw else None,
            provenance=Provenance(**(raw.get("provenance") or {})),
            created_at=datetime.fromisoformat(raw["created_at"]) if raw.get("created_at") else _utcnow(),
            updated_at=datetime.fromisoformat(raw["updated_at"]) if raw.get("updated_at") else _utcnow(),
        )
