"""
Session State Store — session key -> CollectionState, one writer per key.

The engine wraps every turn in `async with store.session(session_key)`, so two
concurrent turns for the same session are serialized while distinct
sessions proceed independently. The in-memory store keeps everything in a
process-wide mapping; the JSON-file store persists each state to disk so a
restarted process can resume interviews. Both satisfy the same interface,
and planner/processor code never sees which one is in use.

Usage:
    store = InMemorySessionStore()
    async with store.session("chat-42"):
        state = await store.require("chat-42")
        ...
        await store.put(state)
"""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, AsyncIterator, Optional

from docassembly.engine.state import CollectionState
from docassembly.exceptions import SessionNotFoundError
from docassembly.json_files import key_filename, write_json_atomic

logger = logging.getLogger(__name__)


@dataclass
class _KeyLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class SessionStore(ABC):
    """Abstract session store with a per-key mutex."""

    def __init__(self):
        self._locks: dict[str, _KeyLock] = {}

    @asynccontextmanager
    async def session(self, session_key: str) -> AsyncIterator[None]:
        """
        Hold the mutex for `session_key` for the duration of the block.

        The mutex is dropped once no task holds or awaits it, so the lock
        table only ever contains keys that are in use.
        """
        entry = self._locks.get(session_key)
        if entry is None:
            entry = self._locks[session_key] = _KeyLock()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0 and self._locks.get(session_key) is entry:
                del self._locks[session_key]

    @abstractmethod
    async def get(self, session_key: str) -> Optional[CollectionState]:
        """Return the state for `session_key`, or None."""
        ...

    @abstractmethod
    async def put(self, state: CollectionState) -> None:
        """Create or replace the state stored under `state.session_key`."""
        ...

    @abstractmethod
    async def delete(self, session_key: str) -> bool:
        """Remove a session. Returns True if it existed."""
        ...

    @abstractmethod
    async def keys(self) -> list[str]:
        """All stored session keys."""
        ...

    async def require(self, session_key: str) -> CollectionState:
        """Like get(), but raises SessionNotFoundError for unknown keys."""
        state = await self.get(session_key)
        if state is None:
            raise SessionNotFoundError(
                f"No active session for '{session_key}'",
                session_key=session_key,
            )
        return state


class InMemorySessionStore(SessionStore):
    """Process-local store. States are held by reference."""

    def __init__(self):
        super().__init__()
        self._states: dict[str, CollectionState] = {}

    async def get(self, session_key: str) -> Optional[CollectionState]:
        return self._states.get(session_key)

    async def put(self, state: CollectionState) -> None:
        state.touch()
        self._states[state.session_key] = state

    async def delete(self, session_key: str) -> bool:
        existed = self._states.pop(session_key, None) is not None
        if existed:
            logger.info("session_deleted", extra={"session_key": session_key})
        return existed

    async def keys(self) -> list[str]:
        return list(self._states)

    def __len__(self) -> int:
        return len(self._states)


class JsonFileSessionStore(SessionStore):
    """
    Persists each session as `<directory>/<encoded session_key>.json`.

    Writes go through a temp file and an atomic rename, so a crash never
    leaves a half-written state behind. File work runs in a worker thread
    to keep the event loop free. Unreadable files are logged and treated
    as absent.
    """

    def __init__(self, directory: str | Path):
        super().__init__()
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path_for(self, session_key: str) -> Path:
        return self.directory / key_filename(session_key)

    def _read(self, path: Path) -> Optional[dict[str, Any]]:
        try:
            with open(path, "r", encoding="utf-8") as f:
                raw = json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError) as e:
            logger.error(
                "session_file_unreadable",
                extra={"path": str(path), "error": str(e)},
            )
            return None
        if not isinstance(raw, dict) or not isinstance(raw.get("session_key"), str):
            logger.error("session_file_malformed", extra={"path": str(path)})
            return None
        return raw

    def _load(self, session_key: str) -> Optional[CollectionState]:
        raw = self._read(self._path_for(session_key))
        if raw is None:
            return None
        if raw["session_key"] != session_key:
            logger.error(
                "session_key_mismatch",
                extra={"session_key": session_key, "stored_key": raw["session_key"]},
            )
            return None
        try:
            return CollectionState.from_dict(raw)
        except (KeyError, TypeError, ValueError) as e:
            logger.error(
                "session_file_malformed",
                extra={"session_key": session_key, "error": str(e)},
            )
            return None

    def _remove(self, session_key: str) -> bool:
        try:
            self._path_for(session_key).unlink()
        except FileNotFoundError:
            return False
        return True

    def _scan_keys(self) -> list[str]:
        result = []
        for path in sorted(self.directory.glob("*.json")):
            raw = self._read(path)
            if raw is not None:
                result.append(raw["session_key"])
        return result

    async def get(self, session_key: str) -> Optional[CollectionState]:
        return await asyncio.to_thread(self._load, session_key)

    async def put(self, state: CollectionState) -> None:
        state.touch()
        await asyncio.to_thread(
            write_json_atomic,
            self.directory,
            self._path_for(state.session_key),
            state.to_dict(),
        )

    async def delete(self, session_key: str) -> bool:
        existed = await asyncio.to_thread(self._remove, session_key)
        if existed:
            logger.info("session_deleted", extra={"session_key": session_key})
        return existed

    async def keys(self) -> list[str]:
        return await asyncio.to_thread(self._scan_keys)
