"""Application build — stage one test project against a framework build.

One lineage per test project. The record names the framework build it was
compiled against; a new framework build therefore invalidates it. Build
command failures are fatal for the work item.
"""

from __future__ import annotations

import logging
import uuid

from benchledger.core.fingerprint import Fingerprint
from benchledger.models.execution import Execution
from benchledger.models.pointers import PointerSet
from benchledger.models.records import ApplicationBuildRecord
from benchledger.models.tasks import WorkItem
from benchledger.stages.base import BaseStage, MissingPreconditionError

logger = logging.getLogger(__name__)


class ApplicationBuildStage(BaseStage):
    """Builds ``item.test_project`` at ``item.application_commit``."""

    @property
    def stage_id(self) -> str:
        return "application_build"

    @property
    def display_name(self) -> str:
        return "Application build"

    def describe(self, item: WorkItem) -> str:
        return f"{item.test_project} {item.application_commit[:7]} [{item.application_branch}]"

    def check_upstream(self, upstream_id: uuid.UUID | None) -> None:
        if upstream_id is None:
            raise MissingPreconditionError(
                "The framework must be built before test projects can be built"
            )
        if not self.ctx.ledger.framework_builds.exists(upstream_id):
            raise MissingPreconditionError(
                f"Framework build {upstream_id} is not in the ledger"
            )

    # ------------------------------------------------------------------
    # Lineage
    # ------------------------------------------------------------------

    def current_pointer(self, state: PointerSet, item: WorkItem) -> uuid.UUID | None:
        return state.last_application_builds.get(item.test_project)

    def load_record(self, record_id: uuid.UUID) -> ApplicationBuildRecord | None:
        return self.ctx.ledger.get_application_build(record_id)

    def advance_pointer(self, item: WorkItem, record_id: uuid.UUID) -> None:
        self.ctx.pointers.advance_application(item.test_project, record_id)

    def fingerprint(
        self, item: WorkItem, upstream_id: uuid.UUID | None, toolchain: str
    ) -> Fingerprint:
        return Fingerprint(
            commit=item.application_commit,
            toolchain=toolchain,
            upstream_id=upstream_id,
            expected_output=self.ctx.expand_path(
                self.ctx.settings.application_expected_output, item.test_project
            ),
        )

    # ------------------------------------------------------------------
    # Build
    # ------------------------------------------------------------------

    def build(
        self,
        item: WorkItem,
        desired: Fingerprint,
        toolchain_execution: Execution,
    ) -> ApplicationBuildRecord:
        settings = self.ctx.settings
        self.ctx.source_control.checkout(
            settings.apps_home, item.application_branch, item.application_commit
        )
        executions = [
            self.ctx.runner.run(
                self.ctx.project_command(command, item.test_project),
                capture=False,
                check=True,
            )
            for command in settings.application_build_commands
        ]
        return ApplicationBuildRecord(
            instance_id=self.ctx.instance_id,
            framework_build_id=desired.upstream_id,
            test_project=item.test_project,
            application_commit=item.application_commit,
            toolchain_fingerprint=desired.toolchain,
            toolchain_execution=toolchain_execution,
            executions=executions,
        )

    def append(self, record: ApplicationBuildRecord) -> None:
        self.ctx.ledger.append_application_build(record)
