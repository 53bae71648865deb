"""
Tests for session state and the session stores.

Covers:
- CollectionState serialization round-trip (sets, schema, timestamps)
- InMemorySessionStore and JsonFileSessionStore CRUD
- require() raising SessionNotFoundError
- Per-key locks serialize turns for one session only and are dropped when idle
- Percent-encoded file names and unreadable session files
"""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timedelta, timezone

import pytest

from docassembly.engine.schema import load_schema
from docassembly.engine.session_store import InMemorySessionStore, JsonFileSessionStore
from docassembly.engine.state import CollectionState, CollectionStatus, Provenance
from docassembly.exceptions import SessionNotFoundError


@pytest.fixture
def state():
    schema = load_schema({
        "entities": {"property": {"_allow_multiple": True, "fields": {"address": {}}}},
    })
    return CollectionState(
        session_key="chat-42",
        status=CollectionStatus.COLLECTING_DATA,
        user_id="u1",
        selected_template_path="deeds/grant.md",
        required_keys=["property[].address"],
        collected_data={"property": [{"address": "1 Main St"}]},
        current_question_key="property.add_another?",
        current_entity_index=0,
        asked_add_another={"property[0]"},
        finished_entities={"vehicle"},
        schema=schema,
        provenance=Provenance(system_prompt="Be brief.", warnings=["override ignored"]),
    )


@pytest.fixture(params=["memory", "json"])
def store(request, tmp_path):
    if request.param == "memory":
        return InMemorySessionStore()
    return JsonFileSessionStore(tmp_path / "sessions")


class TestCollectionState:

    def test_round_trip(self, state):
        restored = CollectionState.from_dict(state.to_dict())
        assert restored.to_dict() == state.to_dict()
        assert restored.asked_add_another == {"property[0]"}
        assert restored.schema == state.schema
        assert restored.status == CollectionStatus.COLLECTING_DATA

    def test_cursor_defaults_to_zero(self):
        state = CollectionState(session_key="k")
        assert state.current_entity_index is None
        assert state.cursor == 0

    def test_idle_seconds(self):
        state = CollectionState(session_key="k")
        later = state.updated_at + timedelta(minutes=5)
        assert state.idle_seconds(later) == pytest.approx(300)

    def test_touch_updates_timestamp(self):
        state = CollectionState(session_key="k")
        state.updated_at = datetime(2020, 1, 1, tzinfo=timezone.utc)
        state.touch()
        assert state.updated_at.year > 2020


class TestSessionStores:

    @pytest.mark.asyncio
    async def test_get_missing(self, store):
        assert await store.get("nobody") is None

    @pytest.mark.asyncio
    async def test_put_and_get(self, store, state):
        await store.put(state)
        loaded = await store.get("chat-42")
        assert loaded.collected_data == {"property": [{"address": "1 Main St"}]}
        assert loaded.current_question_key == "property.add_another?"
        assert loaded.asked_add_another == {"property[0]"}

    @pytest.mark.asyncio
    async def test_keys(self, store, state):
        await store.put(state)
        await store.put(CollectionState(session_key="chat-7"))
        assert sorted(await store.keys()) == ["chat-42", "chat-7"]

    @pytest.mark.asyncio
    async def test_delete(self, store, state):
        await store.put(state)
        assert await store.delete("chat-42") is True
        assert await store.get("chat-42") is None
        assert await store.delete("chat-42") is False

    @pytest.mark.asyncio
    async def test_require_raises(self, store):
        with pytest.raises(SessionNotFoundError) as exc_info:
            await store.require("nobody")
        assert exc_info.value.session_key == "nobody"

    @pytest.mark.asyncio
    async def test_put_touches(self, store, state):
        state.updated_at = datetime(2020, 1, 1, tzinfo=timezone.utc)
        await store.put(state)
        assert (await store.get("chat-42")).updated_at.year > 2020


class TestJsonFileSessionStore:

    @pytest.mark.asyncio
    async def test_survives_new_instance(self, tmp_path, state):
        await JsonFileSessionStore(tmp_path).put(state)
        loaded = await JsonFileSessionStore(tmp_path).get("chat-42")
        assert loaded.provenance.warnings == ["override ignored"]
        assert loaded.schema.entities["property"].allow_multiple is True

    @pytest.mark.asyncio
    async def test_unsafe_key_encoded(self, tmp_path):
        store = JsonFileSessionStore(tmp_path)
        await store.put(CollectionState(session_key="team/chat:42"))
        assert (tmp_path / "team%2Fchat%3A42.json").exists()
        assert await store.keys() == ["team/chat:42"]

    @pytest.mark.asyncio
    async def test_similar_keys_kept_apart(self, tmp_path):
        store = JsonFileSessionStore(tmp_path)
        await store.put(CollectionState(session_key="chat/42", user_id="alice"))
        assert await store.get("chat_42") is None

        await store.put(CollectionState(session_key="chat_42", user_id="bob"))
        assert (await store.get("chat/42")).user_id == "alice"
        assert (await store.get("chat_42")).user_id == "bob"
        assert sorted(await store.keys()) == ["chat/42", "chat_42"]

        await store.delete("chat_42")
        assert (await store.get("chat/42")).user_id == "alice"

    @pytest.mark.asyncio
    async def test_dot_keys_stay_inside_directory(self, tmp_path):
        store = JsonFileSessionStore(tmp_path / "sessions")
        await store.put(CollectionState(session_key=".."))
        assert [p.name for p in (tmp_path / "sessions").iterdir()] == ["%2E..json"]
        assert (await store.get("..")).session_key == ".."

    @pytest.mark.asyncio
    async def test_file_for_other_key_ignored(self, tmp_path):
        store = JsonFileSessionStore(tmp_path)
        (tmp_path / "chat-1.json").write_text(
            json.dumps(CollectionState(session_key="chat-2").to_dict()), encoding="utf-8"
        )
        assert await store.get("chat-1") is None

    @pytest.mark.asyncio
    async def test_corrupt_file_skipped(self, tmp_path, state):
        store = JsonFileSessionStore(tmp_path)
        await store.put(state)
        (tmp_path / "broken.json").write_text("{not json", encoding="utf-8")
        (tmp_path / "list.json").write_text("[1, 2]", encoding="utf-8")

        assert await store.keys() == ["chat-42"]
        assert await store.get("broken") is None
        assert await store.get("list") is None

    @pytest.mark.asyncio
    async def test_malformed_state_returns_none(self, tmp_path):
        store = JsonFileSessionStore(tmp_path)
        (tmp_path / "chat-1.json").write_text(
            json.dumps({"session_key": "chat-1", "status": "no-such-status"}),
            encoding="utf-8",
        )
        assert await store.get("chat-1") is None

    @pytest.mark.asyncio
    async def test_no_temp_files_left(self, tmp_path, state):
        store = JsonFileSessionStore(tmp_path)
        await store.put(state)
        assert list(tmp_path.glob("*.tmp")) == []


class TestLocks:

    @pytest.mark.asyncio
    async def test_same_key_serialized(self):
        store = InMemorySessionStore()
        events = []

        async def turn(name):
            async with store.session("chat-42"):
                events.append(f"{name}-start")
                await asyncio.sleep(0.01)
                events.append(f"{name}-end")

        await asyncio.gather(turn("a"), turn("b"))
        assert events == ["a-start", "a-end", "b-start", "b-end"]

    @pytest.mark.asyncio
    async def test_distinct_keys_interleave(self):
        store = InMemorySessionStore()
        events = []

        async def turn(key):
            async with store.session(key):
                events.append(f"{key}-start")
                await asyncio.sleep(0.01)
                events.append(f"{key}-end")

        await asyncio.gather(turn("a"), turn("b"))
        assert events[:2] == ["a-start", "b-start"]

    @pytest.mark.asyncio
    async def test_lock_dropped_after_use(self):
        store = InMemorySessionStore()
        for i in range(100):
            async with store.session(f"chat-{i}"):
                assert f"chat-{i}" in store._locks
        assert store._locks == {}

    @pytest.mark.asyncio
    async def test_lock_kept_while_waiters_remain(self):
        store = InMemorySessionStore()
        seen = []

        async def turn():
            async with store.session("chat-42"):
                seen.append(len(store._locks))
                await asyncio.sleep(0.01)

        await asyncio.gather(*(turn() for _ in range(5)))
        assert seen == [1, 1, 1, 1, 1]
        assert store._locks == {}

    @pytest.mark.asyncio
    async def test_lock_released_on_error(self):
        store = InMemorySessionStore()
        with pytest.raises(RuntimeError):
            async with store.session("chat-42"):
                raise RuntimeError("turn failed")
        assert store._locks == {}
        async with store.session("chat-42"):
            pass

    @pytest.mark.asyncio
    async def test_delete_inside_session_drops_lock(self, state):
        store = InMemorySessionStore()
        await store.put(state)
        async with store.session("chat-42"):
            await store.delete("chat-42")
        assert store._locks == {}
