"""
Settings loader for the document-assembly engine.

Loads docassembly.yaml (when present), applies environment overrides,
validates the result against EngineSettings and caches it.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import ValidationError

from docassembly.config.schema import EngineSettings
from docassembly.exceptions import ConfigError

DEFAULT_CONFIG_FILE = "docassembly.yaml"

# Environment variable -> settings field
ENV_OVERRIDES = {
    "DOCASSEMBLY_TEMPLATES_DIR": "templates_dir",
    "DOCASSEMBLY_PROFILES_DIR": "profiles_dir",
    "DOCASSEMBLY_SESSION_TTL_MINUTES": "session_ttl_minutes",
}

# Module-level cache: resolved config path (or "") -> EngineSettings
_loaded_settings: dict[str, EngineSettings] = {}


def _read_yaml(config_path: Path) -> dict[str, Any]:
    with open(config_path, "r") as f:
        try:
            raw = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(
                f"Settings file is not valid YAML: {config_path}",
                source=str(config_path),
            ) from e

    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigError(
            f"Settings file must contain a mapping: {config_path}",
            source=str(config_path),
        )
    return raw


def load_settings(config_path: Optional[str | Path] = None) -> EngineSettings:
    """
    Load and validate engine settings.

    Args:
        config_path: Optional explicit path to a YAML settings file.
                     If not provided, docassembly.yaml in the working
                     directory is used when it exists.

    Returns:
        Validated EngineSettings instance.

    Raises:
        ConfigError: If an explicit file is missing or any file is invalid.
    """
    cache_key = str(config_path or "")
    if cache_key in _loaded_settings:
        return _loaded_settings[cache_key]

    raw: dict[str, Any] = {}
    if config_path is not None:
        path = Path(config_path)
        if not path.exists():
            raise ConfigError(f"Settings not found: {path}", source=str(path))
        raw = _read_yaml(path)
    elif Path(DEFAULT_CONFIG_FILE).exists():
        raw = _read_yaml(Path(DEFAULT_CONFIG_FILE))

    for env_var, field_name in ENV_OVERRIDES.items():
        value = os.environ.get(env_var)
        if value:
            raw[field_name] = value

    try:
        settings = EngineSettings(**raw)
    except ValidationError as e:
        raise ConfigError(
            f"Invalid engine settings:\n{e}",
            source=cache_key or DEFAULT_CONFIG_FILE,
        ) from e

    _loaded_settings[cache_key] = settings
    return settings


def clear_cache() -> None:
    """Clear the settings cache. Useful for testing."""
    _loaded_settings.clear()
