"""
Interviews against the templates shipped in templates/.

Covers:
- The base schema and every README override load cleanly
- Reconveyance: gate, README override, array entity with add-another,
  regex rejection, rendered document
- Simple will: gated spouse, boolean rule input, formatted date
"""

from pathlib import Path

import pytest

from docassembly.config.schema import EngineSettings
from docassembly.engine.engine import DocumentAssemblyEngine, TurnKind
from docassembly.engine.schema import merge_override
from docassembly.stores.template_store import FileSystemTemplateStore

TEMPLATES_DIR = Path(__file__).resolve().parent.parent / "templates"


@pytest.fixture
def engine():
    return DocumentAssemblyEngine(
        EngineSettings(templates_dir=TEMPLATES_DIR),
        FileSystemTemplateStore(TEMPLATES_DIR),
    )


async def interview(engine, template_path, script):
    """Answer each expected question in turn; return the final result."""
    result = await engine.start_session("bundled", template_path)
    for expected_key, answer in script:
        assert result.question is not None, f"expected {expected_key}, got {result.kind}"
        assert result.question.key == expected_key
        result = await engine.submit_answer("bundled", answer)
    return result


class TestBundledSchema:

    @pytest.mark.asyncio
    async def test_base_schema_loads(self, engine):
        schema = await engine.load_base_schema()
        assert schema is not None
        assert {"user", "spouse", "property"} <= set(schema.entities)

    @pytest.mark.asyncio
    async def test_every_override_merges(self, engine):
        store = engine.template_store
        schema = await engine.load_base_schema()
        pending = await store.list_templates()
        paths = []
        while pending:
            entry = pending.pop()
            if entry.is_folder:
                pending.extend(entry.children)
            else:
                paths.append(entry.path)

        assert sorted(paths) == ["reconveyance/full_reconveyance.md", "wills/simple_will.md"]
        for path in paths:
            override = await store.load_schema_override(path)
            if override is not None:
                assert merge_override(schema, override) is not schema
        assert schema.global_placeholders["county"].options == ["Alameda", "Marin", "San Mateo"]


class TestReconveyance:

    @pytest.mark.asyncio
    async def test_full_interview(self, engine):
        result = await interview(engine, "reconveyance/full_reconveyance.md", [
            ("user.has_property_to_record?", "yes"),
            ("county", "Sonoma"),
            ("recording_day", "15"),
            ("user.base_name.first", "Ada"),
            ("user.base_name.last", "Lovelace"),
            ("user.dob", "1990-05-12"),
            ("property[0].address", "1 Main St"),
            ("property[0].parcel_number", "123-45"),
            ("property[0].parcel_number", "123-456-789"),
            ("property.add_another?", "no"),
            ("document_date", "2024-03-01"),
        ])

        assert result.kind == TurnKind.DOCUMENT
        document = result.document
        assert document.startswith("--- Document: reconveyance/full_reconveyance.md ---")
        assert "County of Sonoma on day 15" in document
        assert "to Ada Lovelace,\nborn 12 May 1990" in document
        assert "- Address: 1 Main St" in document
        assert "- Parcel number: 123-456-789" in document
        assert "Dated 2024-03-01." in document
        assert "_MISSING]" not in document

    @pytest.mark.asyncio
    async def test_parcel_number_rejection_reason(self, engine):
        await interview(engine, "reconveyance/full_reconveyance.md", [
            ("user.has_property_to_record?", "yes"),
            ("county", "Marin"),
            ("recording_day", "1"),
            ("user.base_name.first", "Ada"),
            ("user.base_name.last", "Lovelace"),
            ("user.dob", "1990-05-12"),
            ("property[0].address", "1 Main St"),
        ])
        result = await engine.submit_answer("bundled", "12-34")
        assert result.kind == TurnKind.REJECTED
        assert result.message == "Invalid format for Assessor parcel number."

    @pytest.mark.asyncio
    async def test_second_property(self, engine):
        result = await interview(engine, "reconveyance/full_reconveyance.md", [
            ("user.has_property_to_record?", "yes"),
            ("county", "Marin"),
            ("recording_day", "1"),
            ("user.base_name.first", "Ada"),
            ("user.base_name.last", "Lovelace"),
            ("user.dob", "1990-05-12"),
            ("property[0].address", "1 Main St"),
            ("property[0].parcel_number", "123-456-789"),
            ("property.add_another?", "yes"),
            ("property[1].address", "2 High St"),
            ("property[1].parcel_number", "987-654-321"),
            ("property.add_another?", "no"),
        ])
        assert result.question.key == "document_date"
        state = await engine.get_state("bundled")
        assert [p["address"] for p in state.collected_data["property"]] == ["1 Main St", "2 High St"]


class TestSimpleWill:

    @pytest.mark.asyncio
    async def test_married_without_children(self, engine):
        result = await interview(engine, "wills/simple_will.md", [
            ("user.is_married?", "yes"),
            ("user.base_name.first", "Ada"),
            ("user.base_name.last", "Lovelace"),
            ("user.dob", "1990-05-12"),
            ("spouse.base_name.first", "William"),
            ("spouse.base_name.last", "King"),
            ("user.has_children?", "no"),
            ("document_date", "2024-03-01"),
        ])

        assert result.kind == TurnKind.DOCUMENT
        assert "# Last Will and Testament of Ada Lovelace" in result.document
        assert "born 12 May 1990" in result.document
        assert "I am married to William King." in result.document
        assert "I have no children." in result.document
        assert "Signed on 2024-03-01." in result.document

    @pytest.mark.asyncio
    async def test_children_prompt(self, engine):
        result = await interview(engine, "wills/simple_will.md", [
            ("user.is_married?", "no"),
            ("user.base_name.first", "Ada"),
            ("user.base_name.last", "Lovelace"),
            ("user.dob", "1990-05-12"),
        ])
        assert result.question.key == "user.has_children?"
        assert result.question.prompt == "Do you have children?"
