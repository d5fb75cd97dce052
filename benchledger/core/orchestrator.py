"""Run orchestrator — the central coordinator for a benchledger invocation.

The Orchestrator wires together the Ledger, PointerStore, source control,
process runner, the three stages, the TaskResolver and the WorkMachine.

One invocation:
1. sync the records, framework and applications repositories;
2. resolve outstanding work items;
3. run them one at a time through framework build -> application build ->
   benchmark run. A failure aborts the whole run unless ``keep_going``.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence
from pathlib import Path

from pydantic import BaseModel, ConfigDict

from benchledger.config import BenchSettings, ConfigurationError
from benchledger.core.errors import BenchLedgerError
from benchledger.core.ledger import Ledger
from benchledger.core.pointer_store import PointerStore
from benchledger.core.process import ProcessRunner
from benchledger.core.resolver import Resolution, TaskResolver
from benchledger.core.source_control import GitSourceControl, SourceControl
from benchledger.core.work_machine import WorkMachine
from benchledger.models.stages import WorkItemState
from benchledger.models.tasks import WorkItem
from benchledger.stages.application_build import ApplicationBuildStage
from benchledger.stages.base import StageContext
from benchledger.stages.benchmark_run import BenchmarkRunStage
from benchledger.stages.framework_build import FrameworkBuildStage

logger = logging.getLogger(__name__)


class ItemOutcome(BaseModel):
    """What happened to one work item."""

    model_config = ConfigDict(frozen=True)

    item: WorkItem
    state: WorkItemState
    framework_build_id: uuid.UUID | None = None
    framework_build_reused: bool = False
    application_build_id: uuid.UUID | None = None
    application_build_reused: bool = False
    benchmark_run_id: uuid.UUID | None = None
    error: str | None = None


class RunReport(BaseModel):
    """Processed and deferred work for one call to ``Orchestrator.run``."""

    model_config = ConfigDict(frozen=True)

    outcomes: list[ItemOutcome] = []
    deferred: list[WorkItem] = []

    @property
    def processed(self) -> list[WorkItem]:
        return [o.item for o in self.outcomes]

    @property
    def failed(self) -> list[ItemOutcome]:
        return [o for o in self.outcomes if o.state == WorkItemState.FAILED]

    @property
    def completed(self) -> list[ItemOutcome]:
        return [o for o in self.outcomes if o.state == WorkItemState.DONE]


class RunAbortedError(BenchLedgerError):
    """Raised when a work item fails and the run does not keep going."""

    def __init__(self, outcome: ItemOutcome, report: RunReport) -> None:
        self.outcome = outcome
        self.report = report
        super().__init__(f"{outcome.item.describe()} failed: {outcome.error}")


class Orchestrator:
    """Central run coordinator.

    Parameters
    ----------
    settings:
        Instance settings; ``instance_id`` and ``toolchain_home`` must be set.
    source_control:
        Git access. Defaults to ``GitSourceControl``.
    runner:
        Process runner. Defaults to one using the settings' placeholders.
    quick_tests:
        Use each benchmark's short measurement duration.
    """

    def __init__(
        self,
        settings: BenchSettings,
        *,
        source_control: SourceControl | None = None,
        runner: ProcessRunner | None = None,
        quick_tests: bool = False,
    ) -> None:
        missing = settings.missing_required()
        if missing:
            raise ConfigurationError(
                f"Missing required settings: {', '.join(missing)}"
            )
        self.settings = settings
        self.instance_id: uuid.UUID = settings.instance_id

        # Core subsystems
        self.ledger = Ledger(settings.db_home)
        self.pointers = PointerStore(settings.state_path)
        self.source_control = source_control or GitSourceControl()
        self.runner = runner or ProcessRunner(settings.placeholders())

        # Stages
        self.context = StageContext(
            settings=settings,
            ledger=self.ledger,
            pointers=self.pointers,
            runner=self.runner,
            source_control=self.source_control,
        )
        self.framework_stage = FrameworkBuildStage(self.context)
        self.application_stage = ApplicationBuildStage(self.context)
        self.benchmark_stage = BenchmarkRunStage(self.context, quick=quick_tests)

        self.resolver = TaskResolver(
            self.source_control,
            self.ledger,
            self.instance_id,
            framework_home=settings.framework_home,
            apps_home=settings.apps_home,
        )
        self.machine = WorkMachine()

    # ------------------------------------------------------------------
    # Repository sync
    # ------------------------------------------------------------------

    def sync(
        self,
        *,
        fetch_db: bool = True,
        fetch_framework: bool = True,
        fetch_apps: bool = True,
    ) -> None:
        """Fetch (or clone) the three repositories, each individually skippable."""
        matrix = self.settings.matrix
        framework_branches = list(dict.fromkeys(s.framework_branch for s in matrix))
        apps_branches = list(dict.fromkeys(s.application_branch for s in matrix))

        self._fetch("benchmark records", fetch_db, "db_remote",
                    [self.settings.db_branch], self.settings.db_home)
        self._fetch("framework source code", fetch_framework, "framework_remote",
                    framework_branches, self.settings.framework_home)
        self._fetch("applications source code", fetch_apps, "apps_remote",
                    apps_branches, self.settings.apps_home)

    def _fetch(
        self,
        desc: str,
        switch: bool,
        remote_setting: str,
        branches: list[str],
        local_dir: Path,
    ) -> None:
        if not switch:
            logger.info("Skipping fetch of %s from remote", desc)
            return
        if not branches:
            logger.info("No branches of %s are needed; skipping fetch", desc)
            return
        logger.info("Fetching %s from remote", desc)
        remote = self.settings.require_remote(remote_setting)
        self.source_control.fetch_or_clone(remote, local_dir, branches)

    def push_records(self) -> bool:
        """Commit and push new records in the records repository."""
        remote = self.settings.require_remote("db_remote")
        return self.source_control.push_changes(
            remote, self.settings.db_home, self.settings.db_branch
        )

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def resolve(self) -> Resolution:
        return self.resolver.resolve(self.settings.matrix)

    # ------------------------------------------------------------------
    # Run loop
    # ------------------------------------------------------------------

    def run(
        self,
        items: Sequence[WorkItem],
        cap: int | None = None,
        *,
        keep_going: bool = False,
    ) -> RunReport:
        """Process *items* in order, at most *cap* of them.

        Raises ``RunAbortedError`` on the first failed item unless
        *keep_going* is set.
        """
        selected = list(items)
        deferred: list[WorkItem] = []
        if cap is not None and len(selected) > cap:
            logger.info(
                "Overriding number of test runs down to %d (%d deferred)",
                cap,
                len(selected) - cap,
            )
            selected, deferred = selected[:cap], selected[cap:]

        outcomes: list[ItemOutcome] = []
        for index, item in enumerate(selected, start=1):
            logger.info("Work item %d/%d: %s", index, len(selected), item.describe())
            outcome = self.process(item)
            outcomes.append(outcome)
            if outcome.state == WorkItemState.FAILED and not keep_going:
                report = RunReport(
                    outcomes=outcomes,
                    deferred=selected[index:] + deferred,
                )
                raise RunAbortedError(outcome, report)

        return RunReport(outcomes=outcomes, deferred=deferred)

    def process(self, item: WorkItem) -> ItemOutcome:
        """Walk one work item through the three stages."""
        self.machine.initialize(item)
        ids: dict[str, object] = {}
        try:
            self.machine.advance(item)
            framework = self.framework_stage.ensure(item)
            ids.update(framework_build_id=framework.record_id,
                       framework_build_reused=framework.reused)

            self.machine.advance(item, artifact_id=str(framework.record_id))
            application = self.application_stage.ensure(item, framework.record_id)
            ids.update(application_build_id=application.record_id,
                       application_build_reused=application.reused)

            self.machine.advance(item, artifact_id=str(application.record_id))
            run = self.benchmark_stage.ensure(item, application.record_id)
            ids.update(benchmark_run_id=run.record_id)

            self.machine.advance(item, artifact_id=str(run.record_id))
        except BenchLedgerError as exc:
            logger.error("%s failed during %s: %s",
                         item.describe(), self.machine.state(item).value, exc)
            self.machine.fail(item, str(exc))
            return ItemOutcome(
                item=item, state=WorkItemState.FAILED, error=str(exc), **ids
            )
        return ItemOutcome(item=item, state=WorkItemState.DONE, **ids)
