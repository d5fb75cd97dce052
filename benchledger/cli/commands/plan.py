"""``benchledger plan`` — show outstanding work without running anything."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from benchledger.cli.common import CONFIG_FILE_OPTION, load_or_exit
from benchledger.cli.render import Renderer
from benchledger.core.errors import BenchLedgerError
from benchledger.core.orchestrator import Orchestrator

console = Console()


def plan_cmd(
    config_file: Path = CONFIG_FILE_OPTION,
    limit: int = typer.Option(
        None, "--limit", "-n", min=0, help="Show at most this many work items."
    ),
) -> None:
    """Resolve the test matrix and list the work still outstanding."""
    settings = load_or_exit(config_file, console)
    try:
        resolution = Orchestrator(settings).resolve()
    except BenchLedgerError as exc:
        console.print(f"[bold red]Error:[/bold red] {exc}")
        raise typer.Exit(code=1)
    Renderer(console=console).print_resolution(resolution, limit)
