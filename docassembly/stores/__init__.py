"""Collaborator stores: saved profiles and template files."""

from docassembly.stores.profile_store import (
    InMemoryProfileStore,
    JsonFileProfileStore,
    ProfileStore,
)
from docassembly.stores.template_store import (
    FileSystemTemplateStore,
    TemplateEntry,
    TemplateReadme,
    TemplateStore,
)

__all__ = [
    "FileSystemTemplateStore",
    "InMemoryProfileStore",
    "JsonFileProfileStore",
    "ProfileStore",
    "TemplateEntry",
    "TemplateReadme",
    "TemplateStore",
]
