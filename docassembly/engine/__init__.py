"""
Conversational document-assembly engine.

Pure components (planner, answer processor, rule interpreter, renderer)
plus the async DocumentAssemblyEngine that drives them per session.
"""

from docassembly.engine.engine import (
    DocumentAssemblyEngine,
    TurnKind,
    TurnResult,
    wrap_document,
)
from docassembly.engine.questions import InputHint, Question
from docassembly.engine.schema import Schema, load_schema, merge_override
from docassembly.engine.session_store import (
    InMemorySessionStore,
    JsonFileSessionStore,
    SessionStore,
)
from docassembly.engine.state import CollectionState, CollectionStatus

__all__ = [
    "CollectionState",
    "CollectionStatus",
    "DocumentAssemblyEngine",
    "InMemorySessionStore",
    "InputHint",
    "JsonFileSessionStore",
    "Question",
    "Schema",
    "SessionStore",
    "TurnKind",
    "TurnResult",
    "load_schema",
    "merge_override",
    "wrap_document",
]
