"""
Template store — template files, their READMEs and the base schema.

Layout under the templates directory:

    templates/
        central_placeholder_map.json     # base schema shared by all templates
        reconveyance/
            README.md                    # optional per-folder overrides
            full_reconveyance.md         # a template ({{placeholder}} markers)

A README.md next to a template may carry these sections:

    ## Directory Description / ## File Description     plain text
    ## Required Placeholders                          newline/comma list
    ## Placeholder Overrides                          ```json fragment```
    ## LLM System Prompt                              ```text block```
    ## Additional LLM Instructions                    ```text block```
"""

from __future__ import annotations

import json
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from docassembly.engine.schema import Schema, load_schema
from docassembly.exceptions import ConfigError, MissingTemplateError

logger = logging.getLogger(__name__)

README_NAME = "README.md"
TEMPLATE_SUFFIX = ".md"
_SKIPPED_NAMES = frozenset({"node_modules", README_NAME, "placeholder_reference.md"})
_SKIPPED_SUFFIXES = (".docx", ".js")

_OVERRIDES = re.compile(r"## Placeholder Overrides\s*```json\s*([\s\S]*?)\s*```", re.IGNORECASE)
_SYSTEM_PROMPT = re.compile(r"## LLM System Prompt\s*```(?:text)?\s*([\s\S]*?)\s*```", re.IGNORECASE)
_REQUIRED = re.compile(r"## Required Placeholders\s*([\s\S]*?)(?:\n##|$)", re.IGNORECASE)
_DIR_DESCRIPTION = re.compile(r"## Directory Description\s*([\s\S]*?)(?:\n##|$)", re.IGNORECASE)
_FILE_DESCRIPTION = re.compile(r"## File Description\s*([\s\S]*?)(?:\n##|$)", re.IGNORECASE)
_INSTRUCTIONS = re.compile(
    r"## Additional LLM Instructions\s*```(?:text)?\s*([\s\S]*?)\s*```", re.IGNORECASE
)
_LIST_SPLIT = re.compile(r"[\n,]+")
_BULLET = re.compile(r"^\s*(?:[-*]|\d+[.)])\s*")


@dataclass
class TemplateEntry:
    """A node of the template tree."""
    name: str
    type: str  # "file" or "folder"
    path: str
    children: list["TemplateEntry"] = field(default_factory=list)

    @property
    def is_folder(self) -> bool:
        return self.type == "folder"


@dataclass
class TemplateReadme:
    """Sections parsed from a template folder's README.md."""
    overrides_text: Optional[str] = None
    required_keys: Optional[list[str]] = None
    system_prompt: Optional[str] = None
    directory_description: Optional[str] = None
    file_description: Optional[str] = None
    additional_instructions: Optional[str] = None

    def overrides(self) -> Optional[dict[str, Any]]:
        """
        The override fragment, or None when the README has none.

        Raises:
            ConfigError: If the fenced block is not a JSON object.
        """
        if not self.overrides_text:
            return None
        try:
            fragment = json.loads(self.overrides_text)
        except json.JSONDecodeError as e:
            raise ConfigError(
                f"Placeholder overrides are not valid JSON: {e}",
                source=README_NAME,
            ) from e
        if not isinstance(fragment, dict):
            raise ConfigError("Placeholder overrides must be a JSON object", source=README_NAME)
        return fragment


def _section(pattern: re.Pattern, text: str) -> Optional[str]:
    match = pattern.search(text)
    if match and match.group(1).strip():
        return match.group(1).strip()
    return None


def parse_readme(text: str) -> TemplateReadme:
    """Extract the known sections from README text."""
    required: Optional[list[str]] = None
    required_block = _section(_REQUIRED, text)
    if required_block:
        keys = [_BULLET.sub("", k).strip() for k in _LIST_SPLIT.split(required_block)]
        required = [k for k in keys if k] or None

    return TemplateReadme(
        overrides_text=_section(_OVERRIDES, text),
        required_keys=required,
        system_prompt=_section(_SYSTEM_PROMPT, text),
        directory_description=_section(_DIR_DESCRIPTION, text),
        file_description=_section(_FILE_DESCRIPTION, text),
        additional_instructions=_section(_INSTRUCTIONS, text),
    )


class TemplateStore(ABC):
    """Abstract template storage interface."""

    @abstractmethod
    async def list_templates(self, folder: str = "") -> list[TemplateEntry]:
        """Template tree under `folder` (folders first, then files, by name)."""
        ...

    @abstractmethod
    async def load_template_text(self, path: str) -> str:
        """Template text; raises MissingTemplateError when unreadable."""
        ...

    @abstractmethod
    async def load_base_schema(self) -> Schema:
        """The shared base schema; raises ConfigError when invalid."""
        ...

    @abstractmethod
    async def load_template_readme(self, path: str) -> TemplateReadme:
        """README sections for the template at `path` (empty when none)."""
        ...

    async def load_schema_override(self, path: str) -> Optional[dict[str, Any]]:
        """Override fragment for `path`, None when absent, ConfigError when malformed."""
        readme = await self.load_template_readme(path)
        return readme.overrides()

    async def load_required_keys(self, path: str) -> Optional[list[str]]:
        """Explicit required-key list for `path`, or None when absent."""
        readme = await self.load_template_readme(path)
        return readme.required_keys


class FileSystemTemplateStore(TemplateStore):
    """Templates read from a directory tree."""

    def __init__(self, base_dir: str | Path, base_schema_file: str = "central_placeholder_map.json"):
        self.base_dir = Path(base_dir)
        self.base_schema_file = base_schema_file

    def _resolve(self, relative: str) -> Path:
        base = self.base_dir.resolve()
        candidate = (base / relative).resolve()
        if candidate != base and base not in candidate.parents:
            raise MissingTemplateError(
                f"Template path escapes the templates directory: {relative}",
                template_path=relative,
            )
        return candidate

    def _scan(self, folder: Path, relative: str) -> list[TemplateEntry]:
        try:
            entries = list(folder.iterdir())
        except OSError as e:
            logger.error(
                "template_dir_unreadable",
                extra={"template_path": relative, "error": str(e)},
            )
            return []

        items: list[TemplateEntry] = []
        for entry in entries:
            name = entry.name
            if name.startswith(".") or name in _SKIPPED_NAMES or name.endswith(_SKIPPED_SUFFIXES):
                continue
            entry_relative = f"{relative}/{name}" if relative else name
            if entry.is_dir():
                children = self._scan(entry, entry_relative)
                if children:
                    items.append(TemplateEntry(name, "folder", entry_relative, children))
            elif entry.is_file() and name.endswith(TEMPLATE_SUFFIX):
                items.append(TemplateEntry(name[: -len(TEMPLATE_SUFFIX)], "file", entry_relative))

        items.sort(key=lambda item: (not item.is_folder, item.name.lower()))
        return items

    async def list_templates(self, folder: str = "") -> list[TemplateEntry]:
        try:
            root = self._resolve(folder)
        except MissingTemplateError:
            return []
        return self._scan(root, folder.strip("/"))

    async def load_template_text(self, path: str) -> str:
        full_path = self._resolve(path)
        try:
            return full_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise MissingTemplateError(
                f"Template could not be read: {path}",
                template_path=path,
            ) from e

    async def load_base_schema(self) -> Schema:
        schema_path = self.base_dir / self.base_schema_file
        try:
            raw = json.loads(schema_path.read_text(encoding="utf-8"))
        except FileNotFoundError as e:
            raise ConfigError(f"Base schema not found: {schema_path}", source=str(schema_path)) from e
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigError(
                f"Base schema could not be parsed: {schema_path}: {e}",
                source=str(schema_path),
            ) from e
        schema = load_schema(raw, source=str(schema_path))
        logger.info(
            "base_schema_loaded",
            extra={"source": str(schema_path), "entities": len(schema.entities)},
        )
        return schema

    async def load_template_readme(self, path: str) -> TemplateReadme:
        readme_path = self._resolve(path).parent / README_NAME
        try:
            text = readme_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.debug("template_readme_absent", extra={"template_path": path})
            return TemplateReadme()
        except OSError as e:
            logger.error(
                "template_readme_unreadable",
                extra={"template_path": path, "error": str(e)},
            )
            return TemplateReadme()
        return parse_readme(text)
