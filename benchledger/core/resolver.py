"""Expands the test matrix into outstanding work items.

Ordering is part of the contract, because the run loop truncates by
position: specs in configuration order; within a spec, framework commits
oldest -> newest; within a commit, test names in configured order.

Merge commits (more than one parent) are never tested on their own; their
content is covered by the linear history they merge.

Only benchmark runs whose framework build was produced by *this* instance
count as completed; results from other machines are not comparable.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable, Sequence
from pathlib import Path

from pydantic import BaseModel, ConfigDict

from benchledger.core.ledger import Ledger
from benchledger.core.source_control import SourceControl
from benchledger.models.config import MatrixSpec
from benchledger.models.tasks import WorkItem, WorkItemKey

logger = logging.getLogger(__name__)


def _commit_count(keys: Iterable[WorkItemKey]) -> int:
    return len({k.framework_commit for k in keys})


class Resolution(BaseModel):
    """Needed, already completed and outstanding work for one invocation."""

    model_config = ConfigDict(frozen=True)

    needed: list[WorkItem]
    completed: frozenset[WorkItemKey]
    outstanding: list[WorkItem]
    # Every own-instance run record, repeats of the same key included.
    completed_runs: int

    def summary_lines(self) -> list[str]:
        return [
            f"Tests already executed: {_commit_count(self.completed)} framework "
            f"revisions, {self.completed_runs} test runs",
            f"Tests needed: {_commit_count(i.key for i in self.needed)} framework "
            f"revisions, {len(self.needed)} test runs",
            f"Tests remaining: {_commit_count(i.key for i in self.outstanding)} framework "
            f"revisions, {len(self.outstanding)} test runs",
        ]


class TaskResolver:
    """Turns matrix specs plus ledger contents into work items.

    Parameters
    ----------
    source_control:
        Used to resolve application revisions and walk framework history.
    ledger:
        Source of completed benchmark runs.
    instance_id:
        Identity of this tool instance.
    framework_home, apps_home:
        Local checkouts of the framework and applications repositories.
    """

    def __init__(
        self,
        source_control: SourceControl,
        ledger: Ledger,
        instance_id: uuid.UUID,
        *,
        framework_home: Path,
        apps_home: Path,
    ) -> None:
        self._scm = source_control
        self._ledger = ledger
        self._instance_id = instance_id
        self._framework_home = Path(framework_home)
        self._apps_home = Path(apps_home)

    # ------------------------------------------------------------------
    # Expansion
    # ------------------------------------------------------------------

    def expand_spec(self, spec: MatrixSpec) -> list[WorkItem]:
        """Work items for one spec: non-merge commits x test names."""
        application_commit = self._scm.resolve_commit(
            self._apps_home, spec.application_branch, spec.application_revision
        )
        start, end = spec.framework_range
        revisions = self._scm.log_range(
            self._framework_home, spec.framework_branch, start, end
        )
        non_merge = [r for r in revisions if r.parent_count == 1]
        logger.debug(
            "%s %s..%s: %d commits, %d non-merge",
            spec.framework_branch,
            start,
            end,
            len(revisions),
            len(non_merge),
        )
        return [
            WorkItem(
                test_name=test_name,
                framework_commit=revision.id,
                application_commit=application_commit,
                application_name=spec.application_name,
                framework_branch=spec.framework_branch,
                application_branch=spec.application_branch,
            )
            for revision in non_merge
            for test_name in spec.test_names
        ]

    def expand(self, specs: Sequence[MatrixSpec]) -> list[WorkItem]:
        """All work items for *specs*, in spec order."""
        items: list[WorkItem] = []
        for spec in specs:
            items.extend(self.expand_spec(spec))
        return items

    # ------------------------------------------------------------------
    # Completed work
    # ------------------------------------------------------------------

    def completed_keys(self) -> frozenset[WorkItemKey]:
        """Identities of benchmark runs this instance has already produced.

        Raises ``LineageIntegrityError`` if any run's lineage is broken.
        """
        keys, _ = self._completed()
        return keys

    def _completed(self) -> tuple[frozenset[WorkItemKey], int]:
        keys: set[WorkItemKey] = set()
        runs = 0
        foreign = 0
        for run in self._ledger.iter_benchmark_runs():
            lineage = self._ledger.lineage(run)
            if lineage.framework_build.instance_id != self._instance_id:
                foreign += 1
                continue
            runs += 1
            keys.add(
                WorkItemKey(
                    test_name=run.test_name,
                    framework_commit=lineage.framework_build.framework_commit,
                    application_commit=lineage.application_build.application_commit,
                    application_name=lineage.application_build.test_project,
                )
            )
        if foreign:
            logger.debug("Ignoring %d benchmark runs from other instances", foreign)
        return frozenset(keys), runs

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def resolve(self, specs: Sequence[MatrixSpec]) -> Resolution:
        needed = self.expand(specs)
        completed, completed_runs = self._completed()
        outstanding: list[WorkItem] = []
        seen: set[WorkItemKey] = set(completed)
        for item in needed:
            # Overlapping specs can yield the same work twice; keep the first.
            if item.key not in seen:
                seen.add(item.key)
                outstanding.append(item)
        resolution = Resolution(
            needed=needed,
            completed=completed,
            outstanding=outstanding,
            completed_runs=completed_runs,
        )
        for line in resolution.summary_lines():
            logger.info(line)
        return resolution
