"""Immutable artifact records stored in the ledger.

Three record kinds form a lineage:

    FrameworkBuildRecord <- ApplicationBuildRecord <- BenchmarkRunRecord

Every record is identified by a random UUID. Two records produced from the
same inputs by two invocations get different ids; reuse happens only
through the pointer set, never by content.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field

from benchledger.models.execution import Execution


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ArtifactRecord(BaseModel):
    """Fields shared by every record kind."""

    model_config = ConfigDict(frozen=True)

    record_id: uuid.UUID = Field(default_factory=uuid.uuid4)
    instance_id: uuid.UUID  # the tool instance that produced this record
    toolchain_fingerprint: str
    toolchain_execution: Execution | None = None
    created_at: datetime = Field(default_factory=_utcnow)

    @property
    def source_commit(self) -> str | None:
        """Commit this artifact was built from, if the kind has one."""
        return None

    @property
    def upstream_id(self) -> uuid.UUID | None:
        """Id of the upstream artifact this one was built against."""
        return None


class FrameworkBuildRecord(ArtifactRecord):
    """One attempt to build and locally publish the framework at a commit.

    A failed build is still a record: inspect ``executions`` to find out.
    """

    framework_commit: str
    executions: list[Execution] = []

    @property
    def source_commit(self) -> str | None:
        return self.framework_commit

    @property
    def succeeded(self) -> bool:
        return all(e.succeeded for e in self.executions)


class ApplicationBuildRecord(ArtifactRecord):
    """A build of one test project against a specific framework build."""

    framework_build_id: uuid.UUID
    test_project: str
    application_commit: str
    executions: list[Execution] = []

    @property
    def source_commit(self) -> str | None:
        return self.application_commit

    @property
    def upstream_id(self) -> uuid.UUID | None:
        return self.framework_build_id


class BenchmarkRunRecord(ArtifactRecord):
    """One benchmark run: the server process plus the load generator runs."""

    application_build_id: uuid.UUID
    test_name: str
    server_execution: Execution
    load_generator_executions: list[Execution] = []

    @property
    def upstream_id(self) -> uuid.UUID | None:
        return self.application_build_id
