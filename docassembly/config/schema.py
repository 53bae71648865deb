"""
Pydantic configuration schema for the document-assembly engine.

Settings come from an optional docassembly.yaml file plus environment
overrides. They describe where templates and saved profiles live and how
long an idle interview session survives, so deployments can be adjusted
without code changes.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, Field, field_validator


class EngineSettings(BaseModel):
    """Runtime settings for the engine and its file-backed collaborators."""
    templates_dir: Path = Field(
        Path("templates"),
        description="Root folder holding templates, READMEs and the base schema",
    )
    profiles_dir: Path = Field(
        Path(".profiles"),
        description="Folder for saved per-user profile snapshots",
    )
    base_schema_file: str = Field(
        "central_placeholder_map.json",
        description="Base schema file, relative to templates_dir",
    )
    session_ttl_minutes: int = Field(
        30, ge=1, description="Idle minutes before a session is expired"
    )
    affirmative_tokens: list[str] = Field(
        default_factory=lambda: ["yes", "y", "true"],
    )
    negative_tokens: list[str] = Field(
        default_factory=lambda: ["no", "n", "false"],
    )
    document_header: bool = Field(
        True, description="Wrap rendered documents in a header/footer banner"
    )

    @field_validator("affirmative_tokens", "negative_tokens")
    @classmethod
    def normalize_tokens(cls, v: list[str]) -> list[str]:
        tokens = [t.strip().lower() for t in v if t.strip()]
        if not tokens:
            raise ValueError("at least one token is required")
        return tokens

    @field_validator("negative_tokens")
    @classmethod
    def tokens_disjoint(cls, v: list[str], info) -> list[str]:
        affirmative = set(info.data.get("affirmative_tokens") or [])
        overlap = affirmative & set(v)
        if overlap:
            raise ValueError(
                f"tokens cannot be both affirmative and negative: {sorted(overlap)}"
            )
        return v

    @property
    def base_schema_path(self) -> Path:
        return self.templates_dir / self.base_schema_file
