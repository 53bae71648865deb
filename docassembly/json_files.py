"""
JSON file helpers shared by the file-backed session and profile stores.

Usage:
    path = directory / key_filename("team/chat:42")   # team%2Fchat%3A42.json
    write_json_atomic(directory, path, {"a": 1})
"""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any
from urllib.parse import quote


def key_filename(key: str) -> str:
    """
    Reversible, collision-free file name for an arbitrary key.

    Every character outside `[A-Za-z0-9_.~-]` is percent-encoded, and a
    leading dot is encoded too so no key becomes a hidden file.
    """
    name = quote(key, safe="")
    if name.startswith("."):
        name = "%2E" + name[1:]
    return f"{name}.json"


def write_json_atomic(directory: Path, path: Path, payload: Any) -> None:
    """Write `payload` to `path` through a temp file and an atomic rename."""
    directory.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=directory, suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
