"""``benchledger push`` — publish new records to the shared records repository."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from benchledger.cli.common import CONFIG_FILE_OPTION, load_or_exit
from benchledger.core.errors import BenchLedgerError
from benchledger.core.orchestrator import Orchestrator

console = Console()


def push_cmd(config_file: Path = CONFIG_FILE_OPTION) -> None:
    """Commit any new records and push them to the records remote."""
    settings = load_or_exit(config_file, console)
    try:
        committed = Orchestrator(settings).push_records()
    except BenchLedgerError as exc:
        console.print(f"[bold red]Push failed:[/bold red] {exc}")
        raise typer.Exit(code=1)
    if committed:
        console.print("[bold green]New records committed and pushed.[/bold green]")
    else:
        console.print("[dim]No new records; branch pushed as is.[/dim]")
