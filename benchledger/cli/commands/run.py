"""``benchledger run`` — fetch, resolve and run outstanding benchmarks.

Syncs the records, framework and applications repositories (each step can
be skipped), works out which benchmark runs this instance still owes and
runs them in order, reusing framework and application builds wherever
their inputs are unchanged.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from benchledger.cli.common import CONFIG_FILE_OPTION, load_or_exit
from benchledger.cli.render import Renderer
from benchledger.core.errors import BenchLedgerError
from benchledger.core.orchestrator import Orchestrator, RunAbortedError

console = Console()


def run_cmd(
    config_file: Path = CONFIG_FILE_OPTION,
    skip_fetches: bool = typer.Option(
        False, "--skip-fetches", help="Don't fetch any repository."
    ),
    skip_db_fetch: bool = typer.Option(
        False, "--skip-db-fetch", help="Don't fetch the records repository."
    ),
    skip_framework_fetch: bool = typer.Option(
        False, "--skip-framework-fetch", help="Don't fetch the framework repository."
    ),
    skip_apps_fetch: bool = typer.Option(
        False, "--skip-apps-fetch", help="Don't fetch the applications repository."
    ),
    max_test_runs: int = typer.Option(
        None,
        "--max-test-runs",
        min=0,
        help="Run at most this many benchmarks; the rest wait for the next run.",
    ),
    quick_tests: bool = typer.Option(
        False, "--quick-tests", help="Use each benchmark's short duration."
    ),
    keep_going: bool = typer.Option(
        False,
        "--keep-going",
        help="Record a failed work item and continue with the next one.",
    ),
) -> None:
    """Run every outstanding benchmark for this instance."""
    settings = load_or_exit(config_file, console)
    renderer = Renderer(console=console)
    cap = max_test_runs if max_test_runs is not None else settings.max_test_runs

    try:
        orchestrator = Orchestrator(settings, quick_tests=quick_tests)
        orchestrator.sync(
            fetch_db=not (skip_fetches or skip_db_fetch),
            fetch_framework=not (skip_fetches or skip_framework_fetch),
            fetch_apps=not (skip_fetches or skip_apps_fetch),
        )
        resolution = orchestrator.resolve()
        report = orchestrator.run(resolution.outstanding, cap, keep_going=keep_going)
    except RunAbortedError as exc:
        console.print()
        renderer.print_report(exc.report)
        console.print(f"[bold red]Run aborted:[/bold red] {exc}")
        raise typer.Exit(code=1)
    except BenchLedgerError as exc:
        console.print(f"[bold red]Error:[/bold red] {exc}")
        raise typer.Exit(code=1)

    console.print()
    renderer.print_report(report)
    if report.failed:
        raise typer.Exit(code=1)
