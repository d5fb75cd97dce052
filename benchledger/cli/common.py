"""Helpers shared by the CLI commands: settings loading and logging setup."""

from __future__ import annotations

import logging
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.syntax import Syntax

from benchledger.config import (
    BenchSettings,
    ConfigFileMissingError,
    example_config,
    load_settings,
)

logger = logging.getLogger(__name__)

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    "-c",
    help="Configuration file (default: ~/.benchledger/config.toml).",
)


def configure_logging(level: str, console: Console | None = None) -> None:
    """Send all log records through a RichHandler at *level*."""
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
        force=True,
    )


def _print_example(console: Console) -> None:
    console.print("[dim]Here is an example configuration file to start from:[/dim]")
    console.print(Syntax(example_config(), "toml"))


def load_or_exit(
    config_file: Path | None,
    console: Console,
    *,
    require_complete: bool = True,
) -> BenchSettings:
    """Load settings, or explain what is missing and exit with code 1."""
    try:
        settings = load_settings(config_file)
    except ConfigFileMissingError as exc:
        console.print(f"[bold red]{exc}[/bold red]")
        _print_example(console)
        raise typer.Exit(code=1)

    configure_logging(settings.log_level, console)

    if require_complete:
        missing = settings.missing_required()
        if missing:
            for name in missing:
                console.print(
                    f'[bold red]Please provide a value for "{name}" '
                    "in your configuration file.[/bold red]"
                )
            _print_example(console)
            raise typer.Exit(code=1)
        logger.info("Instance id: %s", settings.instance_id)
    return settings
