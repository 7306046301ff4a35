"""
INDIGO CLI: The Interface

  indigo run "<goal>" --fixture tracker.yaml     (drive the loop against a sandbox tracker)
  indigo batch goals.txt --fixture tracker.yaml  (independent goals, concurrently)

Plus utilities:
  - indigo parse <file>               (show what the parser extracts from model text)
  - indigo resolve <kind> <query>     (run the entity resolver against a fixture)
  - indigo status                     (check config + API keys)
"""

from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path
from typing import Optional

import typer
from dotenv import load_dotenv
from loguru import logger
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from indigo.audit_logger import AuditLogger
from indigo.cache import CatalogCache
from indigo.config_loader import load_config, validate_api_keys
from indigo.controller import RunResult, RunStatus, build_orchestrator
from indigo.event_bus import EventBus
from indigo.identity import BANNER, __codename__, __tagline__, __version__
from indigo.parallel import run_goals
from indigo.parser import CommandParser
from indigo.resolver import EntityKind, EntityResolver
from indigo.router import Router
from indigo.sandbox import SandboxTracker

# Load .env from current directory or home
load_dotenv()
load_dotenv(Path.home() / ".indigo" / ".env")

app = typer.Typer(
    name="indigo",
    help=f"{__codename__}: {__tagline__}\nNatural-language commands for your issue tracker.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

console = Console()

_OK_STATUSES = (RunStatus.COMPLETED, RunStatus.AWAITING_USER, RunStatus.NEEDS_CLARIFICATION)


def version_callback(value: bool):
    if value:
        console.print(f"{__codename__} v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        callback=version_callback,
        is_eager=True,
        help="Show the version and exit.",
    ),
):
    pass


def _print_banner():
    console.print(f"[blue]{BANNER}[/]")
    console.print(f"  [dim]v{__version__} - {__tagline__}[/]\n")


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

@app.command()
def run(
    goal: str = typer.Argument(..., help="What you want done, in plain language"),
    fixture: Path = typer.Option(..., "--fixture", "-f", help="Sandbox tracker fixture (YAML)"),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Config override file"),
    max_iterations: Optional[int] = typer.Option(None, "--max-iterations", "-n", help="Iteration cap"),
    audit: bool = typer.Option(False, "--audit", help="Append loop events to the audit log"),
    as_json: bool = typer.Option(False, "--json", help="Print the run result as JSON"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Run one goal through the orchestration loop."""
    if not as_json:
        _print_banner()
    _configure_logging(verbose)

    config = load_config(config_path)
    tracker = _load_fixture(fixture)
    bus = EventBus()
    audit_logger = AuditLogger(config.audit.log_path, bus) if audit else None

    on_chunk = None if as_json else (lambda chunk: console.print(chunk, end="", highlight=False, markup=False))
    orchestrator = build_orchestrator(config, tracker, tracker, tracker, bus=bus, on_chunk=on_chunk)

    try:
        result = asyncio.run(orchestrator.run(goal, max_iterations=max_iterations))
    finally:
        if audit_logger:
            audit_logger.close()

    if as_json:
        typer.echo(json.dumps(result.to_dict(), indent=2, default=str))
    else:
        console.print()
        _print_result(result)

    if result.status not in _OK_STATUSES:
        raise typer.Exit(1)


@app.command()
def batch(
    goals_file: Path = typer.Argument(..., help="Text file with one goal per line"),
    fixture: Path = typer.Option(..., "--fixture", "-f", help="Sandbox tracker fixture (YAML)"),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Config override file"),
    workers: int = typer.Option(3, "--workers", "-w", help="Max concurrent goals"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """Run several independent goals concurrently."""
    _print_banner()
    _configure_logging(verbose)

    if not goals_file.exists():
        console.print(f"[red]Goals file not found: {goals_file}[/]")
        raise typer.Exit(1)

    goals = [
        line.strip() for line in goals_file.read_text().splitlines()
        if line.strip() and not line.strip().startswith("#")
    ]
    if not goals:
        console.print(f"[red]No goals found in {goals_file}[/]")
        raise typer.Exit(1)

    config = load_config(config_path)
    tracker = _load_fixture(fixture)

    def factory():
        # One router and catalog cache per goal
        return build_orchestrator(config, tracker, tracker, tracker, router=Router(config), cache=CatalogCache())

    results = asyncio.run(run_goals(goals, factory, max_concurrency=workers))

    ok = {s.value for s in _OK_STATUSES}
    failures = sum(1 for r in results if r.get("status") not in ok)
    if failures:
        raise typer.Exit(1)


@app.command()
def parse(
    source: Path = typer.Argument(..., help="File with model output ('-' for stdin)"),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Config override file"),
):
    """Show the commands the parser extracts from a block of model text."""
    text = sys.stdin.read() if str(source) == "-" else source.read_text()
    config = load_config(config_path)
    parsed = CommandParser(config.parser.action_marker, config.parser.completion_phrases).parse(text)

    table = Table(title="Parsed Commands", border_style="blue")
    table.add_column("#")
    table.add_column("Dialect")
    table.add_column("Tool")
    table.add_column("Arguments")

    dialect = "structured" if parsed.uses_structured_dialect else "legacy"
    for i, action in enumerate(parsed.commands, start=1):
        table.add_row(str(i), dialect, action.tool, json.dumps(action.arguments, default=str, ensure_ascii=False))

    console.print(table)
    if parsed.actions and parsed.intents:
        console.print(f"[yellow]{len(parsed.intents)} legacy line(s) ignored: structured actions present[/]")
    if parsed.decode_failures:
        console.print(f"[red]{parsed.decode_failures} malformed action line(s) skipped[/]")
    if parsed.skipped_lines:
        console.print(f"[dim]{parsed.skipped_lines} legacy line(s) with wrong arguments skipped[/]")
    console.print(f"Completion signal: {'[green]yes[/]' if parsed.is_complete else 'no'}")
    if parsed.narration:
        console.print(Panel(parsed.narration, title="Narration", border_style="dim"))


@app.command()
def resolve(
    kind: EntityKind = typer.Argument(..., help="transition | sprint | epic | component"),
    query: str = typer.Argument(..., help="Free-text reference to resolve"),
    fixture: Path = typer.Option(..., "--fixture", "-f", help="Sandbox tracker fixture (YAML)"),
    project: Optional[str] = typer.Option(None, "--project", "-p", help="Project scope"),
    issue: Optional[str] = typer.Option(None, "--issue", "-i", help="Issue key (transitions only)"),
):
    """Run the entity resolver against a fixture."""
    tracker = _load_fixture(fixture)
    resolver = EntityResolver(tracker, CatalogCache())
    projects = [project] if project else list(tracker.fixture.projects)

    async def _resolve():
        if kind is EntityKind.TRANSITION:
            if not issue:
                console.print("[red]--issue is required for transitions[/]")
                raise typer.Exit(1)
            return resolver.resolve_transition(query, await tracker.fetch_transitions(issue))
        if kind is EntityKind.SPRINT:
            return await resolver.resolve_sprint(query, projects)
        if kind is EntityKind.EPIC:
            return await resolver.resolve_epic(query, projects)
        if not projects:
            console.print("[red]--project is required for components[/]")
            raise typer.Exit(1)
        return await resolver.resolve_component(query, projects[0])

    result = asyncio.run(_resolve())
    if not result.matched:
        console.print(f"[red]No {kind.value} matches '{query}'[/]")
        raise typer.Exit(1)
    score = f", score {result.score}" if result.score else ""
    console.print(f"[green]{result.name}[/] (id {result.id}) via {result.strategy.value}{score}")


@app.command()
def status(
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Config override file"),
):
    """Check INDIGO configuration and readiness."""
    _print_banner()

    keys = validate_api_keys()
    key_table = Table(title="API Keys", border_style="cyan")
    key_table.add_column("Key")
    key_table.add_column("Status")
    for key, available in keys.items():
        status_str = "[green]Available[/]" if available else "[red]Missing[/]"
        key_table.add_row(key, status_str)
    console.print(key_table)

    config = load_config(config_path)
    console.print("\n[bold]Routing:[/]")
    console.print(f"  Assistant:    {config.routing.assistant or '[red]not configured[/]'}")
    console.print(f"  Field mapper: {config.routing.field_mapper or '[red]not configured[/]'}")

    console.print("\n[bold]Limits:[/]")
    console.print(f"  Max iterations:   {config.limits.max_iterations}")
    console.print(f"  History window:   {config.limits.history_window} messages")
    console.print(f"  Visible issues:   {config.limits.max_visible_issues}")
    console.print(f"  Max tokens/run:   {config.limits.max_tokens_per_run:,}")
    console.print(f"  Max $/run:        ${config.limits.max_dollars_per_run}")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _load_fixture(path: Path) -> SandboxTracker:
    if not path.exists():
        console.print(f"[red]Fixture not found: {path}[/]")
        raise typer.Exit(1)
    return SandboxTracker.from_yaml(path)


def _print_result(result: RunResult) -> None:
    color = {
        RunStatus.COMPLETED: "green",
        RunStatus.AWAITING_USER: "yellow",
        RunStatus.NEEDS_CLARIFICATION: "yellow",
    }.get(result.status, "red")

    table = Table(title="Actions", border_style="blue")
    table.add_column("#")
    table.add_column("Action")
    table.add_column("Result")
    for i, entry in enumerate(result.history, start=1):
        mark = "[green]OK[/]" if entry.result.success else "[red]FAILED[/]"
        table.add_row(str(i), entry.action.describe()[:80], f"{mark} {entry.result.message or ''}"[:120])
    if result.history:
        console.print(table)

    if result.skipped_actions:
        console.print(f"[yellow]Skipped {len(result.skipped_actions)} action(s):[/]")
        for action in result.skipped_actions:
            console.print(f"  [dim]{action.describe()}[/]")
    if result.clarification:
        console.print(f"\n[bold yellow]? {result.clarification}[/]")
    if result.error:
        console.print(f"\n[red]{result.error}[/]")

    console.print(f"\n[bold {color}]Status: {result.status.value}[/] after {result.iterations} turn(s)")
    if result.budget:
        console.print(Panel(
            f"Tokens: {result.budget['total_tokens']:,} / "
            f"Cost: ${result.budget['estimated_cost']:.4f} / "
            f"Calls: {result.budget['call_count']}",
            title="Budget",
            border_style="green",
        ))


def _configure_logging(verbose: bool) -> None:
    logger.remove()
    if verbose:
        logger.add(
            lambda msg: console.print(str(msg).rstrip(), style="dim", highlight=False, markup=False),
            level="DEBUG",
            format="{time:HH:mm:ss} | {level:<7} | {message}",
        )
    else:
        logger.add(
            lambda msg: console.print(str(msg).rstrip(), style="dim", highlight=False, markup=False),
            level="WARNING",
            format="{message}",
        )


# ---------------------------------------------------------------------------
# Entry
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    app()
