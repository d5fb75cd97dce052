"""``benchledger status`` — show the current builds and record counts."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from benchledger.cli.common import CONFIG_FILE_OPTION, load_or_exit
from benchledger.cli.render import Renderer
from benchledger.core.errors import BenchLedgerError
from benchledger.core.ledger import Ledger
from benchledger.core.pointer_store import PointerStore

console = Console()


def status_cmd(config_file: Path = CONFIG_FILE_OPTION) -> None:
    """Print the pointer state and how many records of each kind exist."""
    settings = load_or_exit(config_file, console, require_complete=False)
    try:
        pointers = PointerStore(settings.state_path).read_or_default()
        counts = Ledger(settings.db_home).counts()
    except BenchLedgerError as exc:
        console.print(f"[bold red]Error:[/bold red] {exc}")
        raise typer.Exit(code=1)
    Renderer(console=console).print_status(pointers, counts)
