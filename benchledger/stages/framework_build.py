"""Framework build — check out a framework commit and publish it locally.

One global lineage: the pointer set remembers only the most recent
framework build. Build command failures are recorded, not raised, so the
build output survives for diagnosis; downstream stages can tell a failed
build apart by inspecting the record's executions.
"""

from __future__ import annotations

import logging
import shutil
import uuid

from benchledger.core.errors import BenchLedgerError
from benchledger.core.fingerprint import Fingerprint
from benchledger.models.execution import Execution
from benchledger.models.pointers import PointerSet
from benchledger.models.records import FrameworkBuildRecord
from benchledger.models.tasks import WorkItem
from benchledger.stages.base import BaseStage

logger = logging.getLogger(__name__)


class CleanOutputError(BenchLedgerError):
    """Raised when old framework build output cannot be removed."""


class FrameworkBuildStage(BaseStage):
    """Builds the framework at ``item.framework_commit``."""

    @property
    def stage_id(self) -> str:
        return "framework_build"

    @property
    def display_name(self) -> str:
        return "Framework build"

    def describe(self, item: WorkItem) -> str:
        return f"{item.framework_commit[:7]} [{item.framework_branch}]"

    # ------------------------------------------------------------------
    # Lineage
    # ------------------------------------------------------------------

    def current_pointer(self, state: PointerSet, item: WorkItem) -> uuid.UUID | None:
        return state.last_framework_build

    def load_record(self, record_id: uuid.UUID) -> FrameworkBuildRecord | None:
        return self.ctx.ledger.get_framework_build(record_id)

    def advance_pointer(self, item: WorkItem, record_id: uuid.UUID) -> None:
        self.ctx.pointers.advance_framework(record_id)

    def fingerprint(
        self, item: WorkItem, upstream_id: uuid.UUID | None, toolchain: str
    ) -> Fingerprint:
        return Fingerprint(
            commit=item.framework_commit,
            toolchain=toolchain,
            expected_output=self.ctx.expand_path(
                self.ctx.settings.framework_expected_output
            ),
        )

    # ------------------------------------------------------------------
    # Build
    # ------------------------------------------------------------------

    def prepare(self, item: WorkItem) -> None:
        # While we're building there is no current framework build.
        self.ctx.pointers.advance_framework(None)

        # Clear old output so the build is isolated from earlier ones.
        for template in self.ctx.settings.framework_clean_paths:
            path = self.ctx.expand_path(template)
            try:
                if path.is_dir() and not path.is_symlink():
                    logger.info("Removing %s", path)
                    shutil.rmtree(path)
                elif path.is_symlink() or path.exists():
                    logger.info("Removing %s", path)
                    path.unlink()
            except OSError as exc:
                raise CleanOutputError(
                    f"Couldn't remove old build output {path}: {exc}"
                ) from exc

    def build(
        self,
        item: WorkItem,
        desired: Fingerprint,
        toolchain_execution: Execution,
    ) -> FrameworkBuildRecord:
        settings = self.ctx.settings
        self.ctx.source_control.checkout(
            settings.framework_home, item.framework_branch, item.framework_commit
        )
        executions = [
            self.ctx.runner.run(command, capture=False, check=False)
            for command in settings.framework_build_commands
        ]
        record = FrameworkBuildRecord(
            instance_id=self.ctx.instance_id,
            framework_commit=item.framework_commit,
            toolchain_fingerprint=desired.toolchain,
            toolchain_execution=toolchain_execution,
            executions=executions,
        )
        if not record.succeeded:
            logger.warning(
                "Framework build %s failed; recording it anyway", self.describe(item)
            )
        return record

    def append(self, record: FrameworkBuildRecord) -> None:
        self.ctx.ledger.append_framework_build(record)
