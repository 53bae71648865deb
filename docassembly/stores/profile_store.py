"""
Profile store — per-user snapshot of previously collected answers.

Interviews are seeded from the snapshot so returning users are not asked
again for data they already gave, and the snapshot is saved after every
accepted answer.
"""

from __future__ import annotations

import asyncio
import copy
import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from docassembly.json_files import key_filename, write_json_atomic

logger = logging.getLogger(__name__)


class ProfileStore(ABC):
    """Abstract profile persistence interface."""

    @abstractmethod
    async def load(self, user_id: str) -> dict[str, Any]:
        """Return the saved data tree for `user_id` ({} when none)."""
        ...

    @abstractmethod
    async def save(self, user_id: str, data: dict[str, Any]) -> None:
        """Replace the saved data tree for `user_id`."""
        ...


class InMemoryProfileStore(ProfileStore):
    """Profiles held in a dict. For development and testing."""

    def __init__(self, profiles: dict[str, dict[str, Any]] | None = None):
        self._profiles: dict[str, dict[str, Any]] = copy.deepcopy(profiles or {})

    async def load(self, user_id: str) -> dict[str, Any]:
        return copy.deepcopy(self._profiles.get(user_id, {}))

    async def save(self, user_id: str, data: dict[str, Any]) -> None:
        self._profiles[user_id] = copy.deepcopy(data)


class JsonFileProfileStore(ProfileStore):
    """
    One `<encoded user_id>.json` file per user under `directory`.

    File work runs in a worker thread. An unreadable or corrupt profile is
    logged and treated as empty, so the interview starts from scratch.
    """

    def __init__(self, directory: str | Path):
        self.directory = Path(directory)

    def _path_for(self, user_id: str) -> Path:
        return self.directory / key_filename(user_id)

    def _read(self, user_id: str) -> dict[str, Any]:
        path = self._path_for(user_id)
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return {}
        except (OSError, json.JSONDecodeError) as e:
            logger.error(
                "profile_corrupt",
                extra={"user_id": user_id, "path": str(path), "error": str(e)},
            )
            return {}
        if not isinstance(data, dict):
            logger.error("profile_not_a_mapping", extra={"user_id": user_id})
            return {}
        return data

    async def load(self, user_id: str) -> dict[str, Any]:
        return await asyncio.to_thread(self._read, user_id)

    async def save(self, user_id: str, data: dict[str, Any]) -> None:
        await asyncio.to_thread(
            write_json_atomic, self.directory, self._path_for(user_id), data
        )
        logger.debug("profile_saved", extra={"user_id": user_id})
