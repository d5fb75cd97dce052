"""Benchmark run — start the staged server and drive load against it.

Never cached: each run is the data being collected, so every call produces
a new record. The server is always stopped, even when the load generator
fails, and its output is captured into the record.
"""

from __future__ import annotations

import logging
import socket
import time
import uuid
from typing import ClassVar

from benchledger.core.errors import BenchLedgerError
from benchledger.core.fingerprint import Fingerprint
from benchledger.core.process import BackgroundProcess, CommandFailedError
from benchledger.models.execution import Command, Execution
from benchledger.models.records import BenchmarkRunRecord
from benchledger.models.tasks import WorkItem
from benchledger.stages.base import BaseStage, MissingPreconditionError, StageContext

logger = logging.getLogger(__name__)


class ServerStartupError(BenchLedgerError):
    """Raised when the benchmark server does not start listening in time."""


class BenchmarkRunStage(BaseStage):
    """Runs ``item.test_name`` against an application build."""

    cacheable: ClassVar[bool] = False

    def __init__(self, context: StageContext, *, quick: bool = False) -> None:
        super().__init__(context)
        self.quick = quick

    @property
    def stage_id(self) -> str:
        return "benchmark_run"

    @property
    def display_name(self) -> str:
        return "Benchmark run"

    def describe(self, item: WorkItem) -> str:
        return f"{item.test_name} on {item.test_project}"

    def check_upstream(self, upstream_id: uuid.UUID | None) -> None:
        if upstream_id is None or not self.ctx.ledger.application_builds.exists(upstream_id):
            raise MissingPreconditionError(
                f"Application build {upstream_id} must exist before a benchmark can run"
            )

    def fingerprint(
        self, item: WorkItem, upstream_id: uuid.UUID | None, toolchain: str
    ) -> Fingerprint:
        return Fingerprint(toolchain=toolchain, upstream_id=upstream_id)

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def build(
        self,
        item: WorkItem,
        desired: Fingerprint,
        toolchain_execution: Execution,
    ) -> BenchmarkRunRecord:
        settings = self.ctx.settings
        definition = settings.benchmark(item.test_name)
        url = f"http://localhost:{settings.server_port}{definition.path}"
        durations = [
            definition.warmup_duration,
            definition.quick_duration if self.quick else definition.duration,
        ]

        server = self.ctx.runner.start(
            self.ctx.project_command(settings.server_command, item.test_project)
        )
        load_executions: list[Execution] = []
        try:
            self._wait_for_server(server, settings.server_port, settings.server_startup_seconds)
            for duration in durations:
                command = Command(
                    program=settings.load_generator_program,
                    args=definition.load_generator_args(url, duration),
                    working_dir=str(settings.home),
                )
                load_executions.append(self.ctx.runner.run(command, capture=True, check=True))
        finally:
            server_execution = server.stop()

        return BenchmarkRunRecord(
            instance_id=self.ctx.instance_id,
            application_build_id=desired.upstream_id,
            test_name=item.test_name,
            toolchain_fingerprint=desired.toolchain,
            toolchain_execution=toolchain_execution,
            server_execution=server_execution,
            load_generator_executions=load_executions,
        )

    def append(self, record: BenchmarkRunRecord) -> None:
        self.ctx.ledger.append_benchmark_run(record)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _wait_for_server(server: BackgroundProcess, port: int, timeout: float) -> None:
        deadline = time.monotonic() + timeout
        while True:
            if not server.is_running():
                raise CommandFailedError(server.stop())
            try:
                with socket.create_connection(("localhost", port), timeout=1.0):
                    return
            except OSError:
                if time.monotonic() >= deadline:
                    raise ServerStartupError(
                        f"Server `{server.command.describe()}` did not listen on "
                        f"port {port} within {timeout}s"
                    ) from None
                time.sleep(0.2)
