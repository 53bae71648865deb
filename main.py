"""
Document Assembly - Main Entry Point

CLI for browsing templates, running a template interview in the console,
rendering a template from a JSON data file and checking the schema files.
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Optional

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table
from rich.tree import Tree

from docassembly.config.loader import load_settings
from docassembly.config.schema import EngineSettings
from docassembly.engine import (
    DocumentAssemblyEngine,
    InputHint,
    TurnKind,
    TurnResult,
    merge_override,
)
from docassembly.exceptions import ConfigError
from docassembly.observability import configure_logging
from docassembly.stores import (
    FileSystemTemplateStore,
    InMemoryProfileStore,
    JsonFileProfileStore,
    TemplateEntry,
)

load_dotenv()

app = typer.Typer(
    name="docassembly",
    help="Document Assembly - template-driven interviews",
)
console = Console()

logger = logging.getLogger("docassembly")

CANCEL_WORDS = ("cancel", "/cancel")


def _get_settings(config: Optional[Path]) -> EngineSettings:
    """Load settings, with a friendly error on failure."""
    try:
        return load_settings(config)
    except ConfigError as e:
        console.print(Panel(
            f"[red]Settings could not be loaded:[/]\n\n{e}",
            title="⚠ Configuration Error",
            border_style="red",
        ))
        raise typer.Exit(code=1)


def _build_engine(settings: EngineSettings, user: Optional[str] = None) -> DocumentAssemblyEngine:
    template_store = FileSystemTemplateStore(settings.templates_dir, settings.base_schema_file)
    profile_store = JsonFileProfileStore(settings.profiles_dir) if user else InMemoryProfileStore()
    return DocumentAssemblyEngine(settings, template_store, profile_store)


async def _load_schema_or_exit(engine: DocumentAssemblyEngine) -> None:
    if await engine.load_base_schema() is None:
        console.print(Panel(
            f"[red]Base schema could not be loaded:[/]\n\n{engine.schema_error}",
            title="⚠ Configuration Error",
            border_style="red",
        ))
        raise typer.Exit(code=1)


def _add_entries(node: Tree, entries: list[TemplateEntry]) -> None:
    for entry in entries:
        if entry.is_folder:
            branch = node.add(f"[bold cyan]{entry.name}/[/]")
            _add_entries(branch, entry.children)
        else:
            node.add(f"{entry.name}  [dim]{entry.path}[/]")


def _show_turn(result: TurnResult) -> None:
    if result.kind == TurnKind.DOCUMENT:
        console.print(Panel(result.document or "", title="Document", border_style="green"))
    elif result.kind == TurnKind.TEMPLATE_UNAVAILABLE:
        console.print(f"[red]{result.text}[/]")
    elif result.kind == TurnKind.REJECTED and result.question is None:
        console.print(f"[yellow]{result.text}[/]")


# =========================================================================
# Commands
# =========================================================================


@app.command()
def templates(
    folder: str = typer.Argument("", help="Folder under the templates directory"),
    config: Optional[Path] = typer.Option(None, help="Path to docassembly.yaml"),
):
    """List available templates."""
    configure_logging()
    settings = _get_settings(config)
    engine = _build_engine(settings)

    entries = asyncio.run(engine.list_templates(folder))
    if not entries:
        console.print(f"[yellow]No templates found under {settings.templates_dir / folder}[/]")
        raise typer.Exit(code=1)

    tree = Tree(f"[bold]{settings.templates_dir / folder}[/]")
    _add_entries(tree, entries)
    console.print(tree)


@app.command()
def interview(
    template: str = typer.Argument(..., help="Template path, e.g. wills/simple_will.md"),
    user: Optional[str] = typer.Option(None, help="User id; answers are saved to a profile"),
    config: Optional[Path] = typer.Option(None, help="Path to docassembly.yaml"),
):
    """Run a template interview in the console. Type 'cancel' to stop."""
    configure_logging()
    settings = _get_settings(config)
    engine = _build_engine(settings, user)
    session_key = f"cli-{user or 'anonymous'}"

    async def _run():
        await _load_schema_or_exit(engine)
        result = await engine.start_session(session_key, template, user_id=user)

        while result.question is not None:
            question = result.question
            if question.hint == InputHint.CHOICE:
                console.print(f"[dim]Options: {', '.join(question.options)}[/]")
            elif question.hint == InputHint.BOOLEAN:
                console.print("[dim]Answer yes or no[/]")

            answer = Prompt.ask(f"[bold cyan]{question.prompt}[/]", default="", show_default=False)
            if answer.strip().lower() in CANCEL_WORDS:
                await engine.delete_state(session_key)
                logger.info("interview_cancelled", extra={"session_key": session_key})
                console.print("[yellow]Interview cancelled.[/]")
                return None
            result = await engine.submit_answer(session_key, answer)

        _show_turn(result)
        return result

    result = asyncio.run(_run())
    if result is not None and result.kind != TurnKind.DOCUMENT:
        raise typer.Exit(code=1)


@app.command()
def render(
    template: str = typer.Argument(..., help="Template path, e.g. wills/simple_will.md"),
    data_json: Path = typer.Argument(..., help="JSON file holding the data tree"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write the document here"),
    config: Optional[Path] = typer.Option(None, help="Path to docassembly.yaml"),
):
    """Render a template directly from a JSON data file."""
    configure_logging()
    settings = _get_settings(config)
    engine = _build_engine(settings)

    try:
        form_data = json.loads(data_json.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        console.print(f"[red]Could not read {data_json}: {e}[/]")
        raise typer.Exit(code=1)
    if not isinstance(form_data, dict):
        console.print(f"[red]{data_json} must contain a JSON object[/]")
        raise typer.Exit(code=1)

    async def _run() -> TurnResult:
        await _load_schema_or_exit(engine)
        external_id = await engine.begin_external_collection(template)
        return await engine.submit_external_data(external_id, form_data)

    result = asyncio.run(_run())
    if result.kind != TurnKind.DOCUMENT:
        _show_turn(result)
        raise typer.Exit(code=1)

    if output:
        output.write_text(result.document or "", encoding="utf-8")
        logger.info("document_written", extra={"template_path": template, "output": str(output)})
        console.print(f"[green]✓[/] Document written to {output}")
    else:
        console.print(result.document or "", markup=False)


@app.command(name="check-schema")
def check_schema(
    config: Optional[Path] = typer.Option(None, help="Path to docassembly.yaml"),
):
    """Validate the base schema and every template's overrides."""
    configure_logging()
    settings = _get_settings(config)
    engine = _build_engine(settings)

    async def _run() -> list[tuple[str, str, str]]:
        await _load_schema_or_exit(engine)
        schema = engine.base_schema
        rows: list[tuple[str, str, str]] = [(
            settings.base_schema_file,
            "[green]ok[/]",
            f"{len(schema.entities)} entities, {len(schema.generation_rules)} rules",
        )]

        pending = await engine.list_templates()
        while pending:
            entry = pending.pop(0)
            if entry.is_folder:
                pending.extend(entry.children)
                continue
            try:
                override = await engine.template_store.load_schema_override(entry.path)
                if override is not None:
                    merge_override(schema, override)
                required = await engine.template_store.load_required_keys(entry.path)
            except ConfigError as e:
                rows.append((entry.path, "[red]invalid[/]", str(e)))
                continue
            source = f"{len(required)} required keys" if required else "keys scanned from template"
            rows.append((entry.path, "[green]ok[/]", source))
        return rows

    rows = asyncio.run(_run())

    table = Table(title="Schema Check")
    table.add_column("File", style="cyan")
    table.add_column("Status")
    table.add_column("Details")
    for row in rows:
        table.add_row(*row)
    console.print(table)

    if any("invalid" in status for _, status, _ in rows):
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
