"""Rich terminal rendering for plans, run reports and local state.

Color scheme
------------
- green  : DONE, reused builds
- red    : FAILED
- yellow : rebuilt
- dim    : deferred / not applicable
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from rich.console import Console, Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from benchledger.models.stages import WorkItemState

if TYPE_CHECKING:
    from benchledger.core.orchestrator import RunReport
    from benchledger.core.resolver import Resolution
    from benchledger.models.pointers import PointerSet
    from benchledger.models.tasks import WorkItem


_STATE_ICONS: dict[WorkItemState, str] = {
    WorkItemState.DONE: "[green]DONE[/green]",
    WorkItemState.FAILED: "[bold red]FAILED[/bold red]",
}


def _short(value: object | None, width: int = 8) -> str:
    return str(value)[:width] if value else "[dim]-[/dim]"


def _reuse(reused: bool, record_id: object | None) -> str:
    if record_id is None:
        return "[dim]-[/dim]"
    tag = "[green]reused[/green]" if reused else "[yellow]built[/yellow]"
    return f"{_short(record_id)} {tag}"


class Renderer:
    """Prints benchledger structures to a Rich console.

    Parameters
    ----------
    console:
        Rich Console instance.  A new one is created if not provided.
    """

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    # ------------------------------------------------------------------
    # Work items
    # ------------------------------------------------------------------

    def work_item_table(self, items: list[WorkItem], *, title: str) -> Table:
        table = Table(title=title, header_style="bold cyan", expand=True)
        table.add_column("#", style="dim", width=5, justify="right")
        table.add_column("Test", style="cyan")
        table.add_column("Framework commit")
        table.add_column("Branch", style="dim")
        table.add_column("Application")
        for i, item in enumerate(items, start=1):
            table.add_row(
                str(i),
                item.test_name,
                item.framework_commit[:7],
                item.framework_branch,
                f"{item.application_name} {item.application_commit[:7]}",
            )
        return table

    def print_resolution(self, resolution: Resolution, limit: int | None = None) -> None:
        outstanding = resolution.outstanding
        shown = outstanding if limit is None else outstanding[:limit]
        summary = Text("\n".join(resolution.summary_lines()))
        if shown:
            body = Group(self.work_item_table(shown, title="Outstanding work"), Text(""), summary)
        else:
            body = Group(Text.from_markup("[green]Nothing to do.[/green]"), summary)
        self.console.print(
            Panel(body, title="[bold]benchledger plan[/bold]", border_style="blue", padding=(1, 2))
        )
        if limit is not None and len(outstanding) > limit:
            self.console.print(f"[dim]... and {len(outstanding) - limit} more[/dim]")

    # ------------------------------------------------------------------
    # Run report
    # ------------------------------------------------------------------

    def report_table(self, report: RunReport) -> Table:
        table = Table(header_style="bold cyan", expand=True)
        table.add_column("Work item", min_width=30)
        table.add_column("State", justify="center")
        table.add_column("Framework build")
        table.add_column("Application build")
        table.add_column("Benchmark run")
        for outcome in report.outcomes:
            state = _STATE_ICONS.get(outcome.state, outcome.state.value)
            table.add_row(
                outcome.item.describe(),
                state,
                _reuse(outcome.framework_build_reused, outcome.framework_build_id),
                _reuse(outcome.application_build_reused, outcome.application_build_id),
                _short(outcome.benchmark_run_id),
            )
        return table

    def print_report(self, report: RunReport) -> None:
        self.console.print(self.report_table(report))
        for outcome in report.failed:
            self.console.print(f"[red]- {outcome.item.describe()}: {outcome.error}[/red]")
        parts = [
            f"[bold]Completed:[/bold] {len(report.completed)}",
            f"[bold]Failed:[/bold] {len(report.failed)}",
            f"[bold]Deferred:[/bold] {len(report.deferred)}",
        ]
        self.console.print("  |  ".join(parts))

    # ------------------------------------------------------------------
    # Local state
    # ------------------------------------------------------------------

    def print_status(self, pointers: PointerSet, counts: dict[str, int]) -> None:
        table = Table(title="Current builds", header_style="bold cyan")
        table.add_column("Lineage")
        table.add_column("Record id")
        table.add_row("framework", str(pointers.last_framework_build or "[dim]none[/dim]"))
        for project, build_id in sorted(pointers.last_application_builds.items()):
            table.add_row(f"application: {project}", str(build_id))

        records = Table(title="Records", header_style="bold cyan")
        records.add_column("Kind")
        records.add_column("Count", justify="right")
        for kind, count in counts.items():
            records.add_row(kind, str(count))

        self.console.print(table)
        self.console.print(records)
        self.console.print(f"[dim]Pointer state revision {pointers.revision}[/dim]")
