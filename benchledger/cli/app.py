"""Main Typer application — imports and registers all CLI commands.

Entry point: ``benchledger`` (configured via pyproject.toml console_scripts).
"""

from __future__ import annotations

import typer

from benchledger.cli.commands.plan import plan_cmd
from benchledger.cli.commands.push import push_cmd
from benchledger.cli.commands.run import run_cmd
from benchledger.cli.commands.status import status_cmd

app = typer.Typer(
    name="benchledger",
    help="benchledger: incremental framework benchmarking with an append-only record ledger.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)

# Register subcommands
app.command(name="run", help="Fetch, resolve and run outstanding benchmarks.")(run_cmd)
app.command(name="plan", help="Show outstanding work without running it.")(plan_cmd)
app.command(name="status", help="Show current builds and record counts.")(status_cmd)
app.command(name="push", help="Commit and push new records.")(push_cmd)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
