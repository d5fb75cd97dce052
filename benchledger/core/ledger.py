"""Append-only ledger of framework builds, application builds and benchmark runs.

The ledger lives in a records directory that is usually a git checkout
shared between tool instances. It is:
- Append-only (no update, no delete)
- Typed (one store per record kind)
- Referentially checked (a record may only name upstream records that exist)
"""

from __future__ import annotations

import uuid
from collections.abc import Iterator
from pathlib import Path

from pydantic import BaseModel, ConfigDict

from benchledger.core.errors import BenchLedgerError
from benchledger.core.record_store import RecordStore
from benchledger.models.records import (
    ApplicationBuildRecord,
    BenchmarkRunRecord,
    FrameworkBuildRecord,
)

FRAMEWORK_BUILDS = "framework-builds"
APPLICATION_BUILDS = "app-builds"
BENCHMARK_RUNS = "test-runs"


class MissingUpstreamError(BenchLedgerError):
    """Raised when appending a record whose upstream record is not in the ledger."""


class LineageIntegrityError(BenchLedgerError):
    """Raised when a stored record references an id that does not exist."""


class Lineage(BaseModel):
    """A benchmark run joined with the builds that produced its environment."""

    model_config = ConfigDict(frozen=True)

    run: BenchmarkRunRecord
    application_build: ApplicationBuildRecord
    framework_build: FrameworkBuildRecord


class Ledger:
    """Typed facade over the three record stores.

    Parameters
    ----------
    db_home:
        Root directory of the records repository.
    """

    def __init__(self, db_home: Path) -> None:
        self.db_home = Path(db_home)
        self.framework_builds: RecordStore[FrameworkBuildRecord] = RecordStore(
            self.db_home, FRAMEWORK_BUILDS, FrameworkBuildRecord
        )
        self.application_builds: RecordStore[ApplicationBuildRecord] = RecordStore(
            self.db_home, APPLICATION_BUILDS, ApplicationBuildRecord
        )
        self.benchmark_runs: RecordStore[BenchmarkRunRecord] = RecordStore(
            self.db_home, BENCHMARK_RUNS, BenchmarkRunRecord
        )

    # ------------------------------------------------------------------
    # Append
    # ------------------------------------------------------------------

    def append_framework_build(self, record: FrameworkBuildRecord) -> uuid.UUID:
        self.framework_builds.write(record.record_id, record)
        return record.record_id

    def append_application_build(self, record: ApplicationBuildRecord) -> uuid.UUID:
        if not self.framework_builds.exists(record.framework_build_id):
            raise MissingUpstreamError(
                f"Application build {record.record_id} references unknown "
                f"framework build {record.framework_build_id}"
            )
        self.application_builds.write(record.record_id, record)
        return record.record_id

    def append_benchmark_run(self, record: BenchmarkRunRecord) -> uuid.UUID:
        if not self.application_builds.exists(record.application_build_id):
            raise MissingUpstreamError(
                f"Benchmark run {record.record_id} references unknown "
                f"application build {record.application_build_id}"
            )
        self.benchmark_runs.write(record.record_id, record)
        return record.record_id

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def get_framework_build(self, record_id: uuid.UUID) -> FrameworkBuildRecord | None:
        return self.framework_builds.read(record_id)

    def get_application_build(self, record_id: uuid.UUID) -> ApplicationBuildRecord | None:
        return self.application_builds.read(record_id)

    def get_benchmark_run(self, record_id: uuid.UUID) -> BenchmarkRunRecord | None:
        return self.benchmark_runs.read(record_id)

    def iter_benchmark_runs(self) -> Iterator[BenchmarkRunRecord]:
        for _, record in self.benchmark_runs.items():
            yield record

    def lineage(self, run: BenchmarkRunRecord) -> Lineage:
        """Resolve *run* back through its application and framework builds.

        A dangling reference is a data-integrity error, never a silent skip.
        """
        app_build = self.application_builds.read(run.application_build_id)
        if app_build is None:
            raise LineageIntegrityError(
                f"Benchmark run {run.record_id} references missing "
                f"application build {run.application_build_id}"
            )
        framework_build = self.framework_builds.read(app_build.framework_build_id)
        if framework_build is None:
            raise LineageIntegrityError(
                f"Application build {app_build.record_id} references missing "
                f"framework build {app_build.framework_build_id}"
            )
        return Lineage(
            run=run,
            application_build=app_build,
            framework_build=framework_build,
        )

    def counts(self) -> dict[str, int]:
        return {
            FRAMEWORK_BUILDS: len(self.framework_builds),
            APPLICATION_BUILDS: len(self.application_builds),
            BENCHMARK_RUNS: len(self.benchmark_runs),
        }
