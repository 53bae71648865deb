"""
Document Assembly Engine — the async surface a turn handler talks to.

Wires the pure components (planner, answer processor, renderer) to the
collaborator stores. Every operation on a session runs inside that
session's lock, so two messages arriving together for the same chat are
handled one after the other.

Flow:
    start_session ──> question ──> submit_answer ──> question ... ──> document
                  └─> template_unavailable (state back to selecting_template)

    begin_external_collection ──> (form filled elsewhere) ──> submit_external_data ──> document

Usage:
    engine = DocumentAssemblyEngine(settings, FileSystemTemplateStore("templates"))
    await engine.load_base_schema()
    result = await engine.start_session("chat-42", "reconveyance/full_reconveyance.md")
    while result.kind == TurnKind.QUESTION:
        result = await engine.submit_answer("chat-42", input(result.text))
"""

from __future__ import annotations

import copy
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional

from docassembly.config.schema import EngineSettings
from docassembly.engine.answers import apply_answer
from docassembly.engine.planner import find_next_question
from docassembly.engine.questions import Question, describe_question
from docassembly.engine.renderer import render, required_keys_from_template
from docassembly.engine.schema import Schema, deep_merge, merge_override
from docassembly.engine.session_store import InMemorySessionStore, SessionStore
from docassembly.engine.state import CollectionState, CollectionStatus, Provenance
from docassembly.exceptions import ConfigError, MissingTemplateError, SessionNotFoundError
from docassembly.observability.logging_config import clear_session_context, set_session_context
from docassembly.stores.profile_store import InMemoryProfileStore, ProfileStore

if TYPE_CHECKING:
    from docassembly.stores.template_store import TemplateEntry, TemplateReadme, TemplateStore

logger = logging.getLogger(__name__)


class TurnKind(str, Enum):
    """What a turn produced."""
    QUESTION = "question"
    REJECTED = "rejected"
    DOCUMENT = "document"
    TEMPLATE_UNAVAILABLE = "template_unavailable"


@dataclass
class TurnResult:
    """The engine's reply to one turn."""
    kind: TurnKind
    session_key: str
    question: Optional[Question] = None
    document: Optional[str] = None
    message: Optional[str] = None

    @property
    def text(self) -> str:
        """What the turn handler should show the user."""
        if self.question is not None:
            return self.question.prompt
        if self.document is not None:
            return self.document
        return self.message or ""


def wrap_document(template_path: str, body: str) -> str:
    """Frame a rendered document with its template path."""
    return f"--- Document: {template_path} ---\n\n{body}\n\n--- End Document ---"


class DocumentAssemblyEngine:
    """
    Runs template interviews over pluggable template, profile and session stores.

    The base schema is loaded once via load_base_schema(); when a reload
    fails the last good schema stays in use and the failure is kept in
    `schema_error`.
    """

    def __init__(
        self,
        settings: EngineSettings,
        template_store: TemplateStore,
        profile_store: Optional[ProfileStore] = None,
        session_store: Optional[SessionStore] = None,
    ):
        self.settings = settings
        self.template_store = template_store
        self.profile_store = profile_store or InMemoryProfileStore()
        self.session_store = session_store or InMemorySessionStore()
        self._base_schema: Optional[Schema] = None
        self.schema_error: Optional[str] = None

    @property
    def base_schema(self) -> Optional[Schema]:
        return self._base_schema

    # ── Schema and templates ─────────────────────────────────────

    async def load_base_schema(self) -> Optional[Schema]:
        """(Re)load the base schema, keeping the previous one on failure."""
        try:
            schema = await self.template_store.load_base_schema()
        except ConfigError as e:
            self.schema_error = str(e)
            logger.error(
                "base_schema_load_failed",
                extra={"error": str(e), "kept_previous": self._base_schema is not None},
            )
            return self._base_schema

        self._base_schema = schema
        self.schema_error = None
        return schema

    async def list_templates(self, folder: str = "") -> list[TemplateEntry]:
        return await self.template_store.list_templates(folder)

    def _template_schema(
        self, template_path: str, readme: TemplateReadme
    ) -> tuple[Schema, list[str]]:
        """Base schema merged with the template's override, plus any warnings."""
        base = self._base_schema
        try:
            override = readme.overrides()
            if override is None:
                return base, []
            return merge_override(base, override), []
        except ConfigError as e:
            logger.warning(
                "schema_override_ignored",
                extra={"template_path": template_path, "error": str(e)},
            )
            return base, [f"Template overrides were ignored: {e}"]

    def _require_base_schema(self) -> None:
        if self._base_schema is None:
            raise ConfigError(
                "Template selection is unavailable: the base schema is not loaded",
                details={"error": self.schema_error},
            )

    # ── Interview ────────────────────────────────────────────────

    async def start_session(
        self,
        session_key: str,
        template_path: str,
        user_id: Optional[str] = None,
        seed_data: Optional[dict[str, Any]] = None,
    ) -> TurnResult:
        """
        Begin an interview for `template_path` and return its first turn.

        Raises:
            ConfigError: If no base schema has ever loaded.
        """
        if self._base_schema is None:
            await self.load_base_schema()
        self._require_base_schema()

        async with self.session_store.session(session_key):
            set_session_context(session_key)
            try:
                state = CollectionState(
                    session_key=session_key,
                    status=CollectionStatus.SELECTING_TEMPLATE,
                    user_id=user_id,
                    selected_template_path=template_path,
                )
                data = await self.profile_store.load(user_id) if user_id else {}
                if seed_data:
                    data = deep_merge(data, copy.deepcopy(seed_data))
                state.collected_data = data

                try:
                    template_text = await self.template_store.load_template_text(template_path)
                except MissingTemplateError as e:
                    return await self._template_unavailable(state, e)

                readme = await self.template_store.load_template_readme(template_path)
                state.schema, warnings = self._template_schema(template_path, readme)
                state.provenance = Provenance(
                    system_prompt=readme.system_prompt,
                    directory_description=readme.directory_description,
                    file_description=readme.file_description,
                    additional_instructions=readme.additional_instructions,
                    warnings=warnings,
                )
                state.required_keys = (
                    readme.required_keys or required_keys_from_template(template_text)
                )
                state.status = CollectionStatus.COLLECTING_DATA

                logger.info(
                    "session_started",
                    extra={
                        "template_path": template_path,
                        "user_id": user_id,
                        "required": len(state.required_keys),
                    },
                )
                return await self._advance(state, template_text)
            finally:
                clear_session_context()

    async def submit_answer(self, session_key: str, raw_input: str) -> TurnResult:
        """
        Apply one answer and return the next turn.

        Raises:
            SessionNotFoundError: If `session_key` has no active session.
        """
        async with self.session_store.session(session_key):
            set_session_context(session_key)
            try:
                state = await self.session_store.require(session_key)

                if state.status != CollectionStatus.COLLECTING_DATA:
                    logger.info("answer_out_of_turn", extra={"status": state.status.value})
                    return TurnResult(
                        kind=TurnKind.REJECTED,
                        session_key=session_key,
                        message=_OUT_OF_TURN.get(state.status, "This session is not collecting answers."),
                    )

                outcome = apply_answer(
                    raw_input,
                    state,
                    self.settings.affirmative_tokens,
                    self.settings.negative_tokens,
                )
                if not outcome.accepted:
                    await self.session_store.put(state)
                    question = None
                    if outcome.key:
                        question = describe_question(outcome.key, state.schema).with_prefix(outcome.reason)
                    return TurnResult(
                        kind=TurnKind.REJECTED,
                        session_key=session_key,
                        question=question,
                        message=outcome.reason,
                    )

                if state.user_id:
                    await self.profile_store.save(state.user_id, state.collected_data)
                return await self._advance(state)
            finally:
                clear_session_context()

    async def get_state(self, session_key: str) -> Optional[CollectionState]:
        return await self.session_store.get(session_key)

    async def delete_state(self, session_key: str) -> bool:
        """Cancel a session. Returns True if one existed."""
        async with self.session_store.session(session_key):
            return await self.session_store.delete(session_key)

    async def _advance(
        self, state: CollectionState, template_text: Optional[str] = None
    ) -> TurnResult:
        next_key = find_next_question(state)
        if next_key is not None:
            state.current_question_key = next_key
            await self.session_store.put(state)
            return TurnResult(
                kind=TurnKind.QUESTION,
                session_key=state.session_key,
                question=describe_question(next_key, state.schema),
            )

        if template_text is None:
            try:
                template_text = await self.template_store.load_template_text(
                    state.selected_template_path or ""
                )
            except MissingTemplateError as e:
                return await self._template_unavailable(state, e)
        return await self._finish(state, template_text)

    async def _finish(self, state: CollectionState, template_text: str) -> TurnResult:
        state.status = CollectionStatus.GENERATING_DOCUMENT
        template_path = state.selected_template_path or ""
        body = render(template_text, state)
        document = wrap_document(template_path, body) if self.settings.document_header else body

        await self.session_store.delete(state.session_key)
        logger.info(
            "document_generated",
            extra={"template_path": template_path, "session_key": state.session_key},
        )
        return TurnResult(kind=TurnKind.DOCUMENT, session_key=state.session_key, document=document)

    async def _template_unavailable(
        self, state: CollectionState, error: MissingTemplateError
    ) -> TurnResult:
        logger.error(
            "template_unavailable",
            extra={"template_path": error.template_path, "error": str(error)},
        )
        state.status = CollectionStatus.SELECTING_TEMPLATE
        state.selected_template_path = None
        state.current_question_key = None
        await self.session_store.put(state)
        return TurnResult(
            kind=TurnKind.TEMPLATE_UNAVAILABLE,
            session_key=state.session_key,
            message="That template is not available. Please choose another one.",
        )

    # ── Form-based collection ────────────────────────────────────

    async def begin_external_collection(
        self, template_path: str, chat_id: Optional[str] = None
    ) -> str:
        """Open a session waiting for form data; returns its external id."""
        external_id = str(uuid.uuid4())
        state = CollectionState(
            session_key=external_id,
            status=CollectionStatus.AWAITING_EXTERNAL_INPUT,
            chat_id=chat_id,
            selected_template_path=template_path,
        )
        async with self.session_store.session(external_id):
            await self.session_store.put(state)
        logger.info(
            "external_collection_started",
            extra={"session_key": external_id, "template_path": template_path},
        )
        return external_id

    async def submit_external_data(
        self, external_id: str, form_data: dict[str, Any]
    ) -> TurnResult:
        """
        Render the session's template with a submitted form tree.

        The session is deleted whatever the outcome.

        Raises:
            SessionNotFoundError: If the id is unknown or not awaiting data.
            ConfigError: If no base schema has ever loaded.
        """
        async with self.session_store.session(external_id):
            set_session_context(external_id)
            try:
                state = await self.session_store.get(external_id)
                if state is None or state.status != CollectionStatus.AWAITING_EXTERNAL_INPUT:
                    if state is not None:
                        await self.session_store.delete(external_id)
                    raise SessionNotFoundError(
                        f"No session awaiting form data for '{external_id}'",
                        session_key=external_id,
                    )

                template_path = state.selected_template_path or ""
                try:
                    template_text = await self.template_store.load_template_text(template_path)
                except MissingTemplateError as e:
                    await self.session_store.delete(external_id)
                    logger.error(
                        "template_unavailable",
                        extra={"template_path": template_path, "error": str(e)},
                    )
                    return TurnResult(
                        kind=TurnKind.TEMPLATE_UNAVAILABLE,
                        session_key=external_id,
                        message="That template is not available.",
                    )

                if self._base_schema is None:
                    await self.load_base_schema()
                self._require_base_schema()
                readme = await self.template_store.load_template_readme(template_path)
                state.schema, state.provenance.warnings = self._template_schema(
                    template_path, readme
                )
                state.collected_data = copy.deepcopy(form_data)
                return await self._finish(state, template_text)
            finally:
                clear_session_context()

    # ── Housekeeping ─────────────────────────────────────────────

    async def expire_idle_sessions(self, now: Optional[datetime] = None) -> list[str]:
        """Delete sessions idle longer than the configured TTL."""
        ttl_seconds = self.settings.session_ttl_minutes * 60
        expired: list[str] = []
        for session_key in await self.session_store.keys():
            async with self.session_store.session(session_key):
                state = await self.session_store.get(session_key)
                if state is None or state.idle_seconds(now) <= ttl_seconds:
                    continue
                await self.session_store.delete(session_key)
                expired.append(session_key)

        if expired:
            logger.info("sessions_expired", extra={"count": len(expired)})
        return expired


_OUT_OF_TURN = {
    CollectionStatus.SELECTING_TEMPLATE: "Please choose a template first.",
    CollectionStatus.AWAITING_EXTERNAL_INPUT: "This session is waiting for form data.",
}
