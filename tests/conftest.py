"""Shared test fixtures for benchledger.

Source control and process execution are replaced with in-memory fakes:
``FakeSourceControl`` serves a scripted commit history and ``FakeRunner``
records every command, answers the toolchain version probe and creates the
expected build output of the fake build commands.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable, Sequence
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import pytest

from benchledger.config import BenchSettings
from benchledger.core.ledger import Ledger
from benchledger.core.orchestrator import Orchestrator
from benchledger.core.pointer_store import PointerStore
from benchledger.core.process import CommandFailedError, ProcessRunner
from benchledger.core.source_control import HEAD, LogEntry, UnresolvableReferenceError
from benchledger.models.config import BenchmarkDefinition, MatrixSpec
from benchledger.models.execution import Command, Execution
from benchledger.models.records import (
    ApplicationBuildRecord,
    BenchmarkRunRecord,
    FrameworkBuildRecord,
)
from benchledger.models.tasks import WorkItem
from benchledger.stages.base import StageContext
from benchledger.stages.benchmark_run import BenchmarkRunStage

INSTANCE_ID = uuid.UUID("0b8c6a9e-3f0e-4c53-9d51-56d8f1f6e7b1")
OTHER_INSTANCE_ID = uuid.UUID("7d1f2c3e-0000-4000-8000-000000000002")

JDK8 = "openjdk version \"1.8.0_292\"\n"
JDK11 = "openjdk version \"11.0.11\"\n"

# Framework history on master, oldest first: root, A, B (merge), C, D
FW_ROOT = "0" * 40
FW_A = "a" * 40
FW_MERGE = "b" * 40
FW_C = "c" * 40
FW_D = "d" * 40
APP_HEAD = "9" * 40

TEST_NAMES = ["scala-simple", "scala-json"]


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeSourceControl:
    """In-memory SourceControl keyed by (repository path, branch)."""

    def __init__(self) -> None:
        self.histories: dict[tuple[Path, str], list[LogEntry]] = {}
        self.checkouts: list[tuple[Path, str, str]] = []
        self.fetches: list[tuple[str, Path, list[str]]] = []
        self.pushes: list[tuple[str, Path, str]] = []

    def add_history(self, repo: Path, branch: str, entries: Sequence[tuple[str, int]]) -> None:
        history = self.histories.setdefault((Path(repo), branch), [])
        history.extend(LogEntry(id=c, parent_count=p) for c, p in entries)

    def resolve_commit(self, repo: Path, branch: str, revision: str) -> str:
        history = self.histories.get((Path(repo), branch), [])
        if revision == HEAD and history:
            return history[-1].id
        if any(e.id == revision for e in history):
            return revision
        raise UnresolvableReferenceError(
            f"Couldn't resolve revision {revision} on branch {branch} in repo {repo}"
        )

    def log_range(self, repo: Path, branch: str, start: str, end: str) -> list[LogEntry]:
        history = self.histories.get((Path(repo), branch), [])
        ids = [e.id for e in history]
        first = ids.index(self.resolve_commit(repo, branch, start))
        last = ids.index(self.resolve_commit(repo, branch, end))
        return history[first + 1 : last + 1]

    def checkout(self, repo: Path, branch: str, commit: str) -> None:
        self.checkouts.append((Path(repo), branch, commit))

    def fetch_or_clone(self, remote: str, repo: Path, branches: Sequence[str]) -> None:
        self.fetches.append((remote, Path(repo), list(branches)))

    def push_changes(self, remote: str, repo: Path, branch: str) -> bool:
        self.pushes.append((remote, Path(repo), branch))
        return True


class FakeBackgroundProcess:
    """Stand-in for a started server process."""

    def __init__(self, command: Command) -> None:
        self.command = command
        self.pid = 4242
        self.stopped = False

    def is_running(self) -> bool:
        return not self.stopped

    def stop(self, grace_seconds: float = 10.0) -> Execution:
        self.stopped = True
        return Execution(
            command=self.command,
            start_time=_now(),
            end_time=_now(),
            stdout="Listening for HTTP on /0.0.0.0:9000\n",
            stderr="",
            return_code=143,
        )


class FakeRunner(ProcessRunner):
    """ProcessRunner that never spawns anything.

    ``return_codes`` maps a program name to the exit code it should report;
    ``effects`` maps a program name to a callable run on success.
    """

    def __init__(self, placeholders: dict[str, str]) -> None:
        super().__init__(placeholders)
        self.toolchain_version = JDK8
        self.return_codes: dict[str, int] = {}
        self.effects: dict[str, Callable[[Command], None]] = {}
        self.commands: list[Command] = []
        self.started: list[FakeBackgroundProcess] = []

    def programs(self) -> list[str]:
        return [c.program for c in self.commands]

    def run(self, command: Command, *, capture: bool = True, check: bool = True) -> Execution:
        command = self.expand(command)
        if command.program.endswith("/bin/java"):
            return Execution(
                command=command,
                start_time=_now(),
                end_time=_now(),
                stdout="",
                stderr=self.toolchain_version,
                return_code=0,
            )
        self.commands.append(command)
        code = self.return_codes.get(command.program, 0)
        execution = Execution(
            command=command,
            start_time=_now(),
            end_time=_now(),
            stdout="Requests/sec: 1234.56\n" if capture else None,
            stderr="" if capture else None,
            return_code=code,
        )
        if code == 0 and command.program in self.effects:
            self.effects[command.program](command)
        if code != 0 and check:
            raise CommandFailedError(execution)
        return execution

    def start(self, command: Command) -> FakeBackgroundProcess:
        process = FakeBackgroundProcess(self.expand(command))
        self.started.append(process)
        return process


# ---------------------------------------------------------------------------
# Settings and collaborators
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path: Path) -> BenchSettings:
    """Settings rooted in a temp directory with fake build commands."""
    return BenchSettings(
        instance_id=INSTANCE_ID,
        home=tmp_path / "home",
        toolchain_home=tmp_path / "jdk",
        db_remote="https://example.invalid/records.git",
        framework_remote="https://example.invalid/framework.git",
        apps_remote="https://example.invalid/apps.git",
        framework_build_commands=[
            Command(program="build-framework", working_dir="<framework.home>")
        ],
        framework_clean_paths=["<publish.home>/local"],
        framework_expected_output="<publish.home>/local",
        application_build_commands=[
            Command(program="build-app", args=["<project>"], working_dir="<apps.home>")
        ],
        application_expected_output="<apps.home>/<project>/bin/<project>",
        server_command=Command(
            program="<apps.home>/<project>/bin/<project>",
            args=["-Dhttp.port=<server.port>"],
            working_dir="<apps.home>/<project>",
        ),
        benchmarks={
            "scala-simple": BenchmarkDefinition(
                path="/simple", warmup_duration="1s", duration="30s", quick_duration="2s"
            ),
        },
        matrix=[
            MatrixSpec(
                framework_branch="master",
                framework_range=(FW_ROOT, HEAD),
                test_names=TEST_NAMES,
            )
        ],
    )


@pytest.fixture
def source_control(settings: BenchSettings) -> FakeSourceControl:
    """Framework master: root, A, B (merge of two parents), C, D."""
    scm = FakeSourceControl()
    scm.add_history(
        settings.framework_home,
        "master",
        [(FW_ROOT, 0), (FW_A, 1), (FW_MERGE, 2), (FW_C, 1), (FW_D, 1)],
    )
    scm.add_history(settings.apps_home, "master", [(APP_HEAD, 0)])
    return scm


@pytest.fixture
def runner(settings: BenchSettings) -> FakeRunner:
    """FakeRunner whose build commands create their expected output."""
    fake = FakeRunner(settings.placeholders())

    def _publish(command: Command) -> None:
        (settings.publish_home / "local").mkdir(parents=True, exist_ok=True)

    def _stage_app(command: Command) -> None:
        project = command.args[0]
        binary = settings.apps_home / project / "bin" / project
        binary.parent.mkdir(parents=True, exist_ok=True)
        binary.write_text("#!/bin/sh\n")

    fake.effects["build-framework"] = _publish
    fake.effects["build-app"] = _stage_app
    return fake


@pytest.fixture
def ledger(settings: BenchSettings) -> Ledger:
    """Provide a Ledger over the temp records directory."""
    return Ledger(settings.db_home)


@pytest.fixture
def pointers(settings: BenchSettings) -> PointerStore:
    """Provide a PointerStore on the temp state file."""
    return PointerStore(settings.state_path)


@pytest.fixture
def no_server_wait(monkeypatch: pytest.MonkeyPatch) -> None:
    """Skip the TCP readiness poll; fake servers never listen."""
    monkeypatch.setattr(
        BenchmarkRunStage,
        "_wait_for_server",
        staticmethod(lambda server, port, timeout: None),
    )


@pytest.fixture
def context(
    settings: BenchSettings,
    ledger: Ledger,
    pointers: PointerStore,
    runner: FakeRunner,
    source_control: FakeSourceControl,
) -> StageContext:
    """Provide a StageContext wired to the fakes."""
    return StageContext(settings, ledger, pointers, runner, source_control)


@pytest.fixture
def orchestrator(
    settings: BenchSettings,
    runner: FakeRunner,
    source_control: FakeSourceControl,
    no_server_wait: None,
) -> Orchestrator:
    """Provide an Orchestrator wired to the fakes."""
    return Orchestrator(settings, source_control=source_control, runner=runner)


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


@pytest.fixture
def make_work_item() -> Callable[..., WorkItem]:
    """Factory fixture: build a WorkItem with sensible defaults."""

    def _factory(**overrides: Any) -> WorkItem:
        defaults: dict[str, Any] = {
            "test_name": "scala-simple",
            "framework_commit": FW_A,
            "application_commit": APP_HEAD,
            "application_name": "scala-bench",
            "framework_branch": "master",
            "application_branch": "master",
        }
        defaults.update(overrides)
        return WorkItem(**defaults)

    return _factory


@pytest.fixture
def make_execution() -> Callable[..., Execution]:
    """Factory fixture: a finished Execution."""

    def _factory(program: str = "true", return_code: int | None = 0, **overrides: Any) -> Execution:
        defaults: dict[str, Any] = {
            "command": Command(program=program),
            "start_time": _now(),
            "end_time": _now(),
            "stdout": "",
            "stderr": "",
            "return_code": return_code,
        }
        defaults.update(overrides)
        return Execution(**defaults)

    return _factory


@pytest.fixture
def make_completed_run(
    ledger: Ledger, make_execution: Callable[..., Execution]
) -> Callable[..., BenchmarkRunRecord]:
    """Factory fixture: append a framework build, application build and run."""

    def _factory(
        framework_commit: str = FW_A,
        test_name: str = "scala-simple",
        *,
        instance_id: uuid.UUID = INSTANCE_ID,
        framework_instance_id: uuid.UUID | None = None,
        application_commit: str = APP_HEAD,
        test_project: str = "scala-bench",
    ) -> BenchmarkRunRecord:
        framework = FrameworkBuildRecord(
            instance_id=framework_instance_id or instance_id,
            framework_commit=framework_commit,
            toolchain_fingerprint=JDK8,
        )
        ledger.append_framework_build(framework)
        application = ApplicationBuildRecord(
            instance_id=instance_id,
            framework_build_id=framework.record_id,
            test_project=test_project,
            application_commit=application_commit,
            toolchain_fingerprint=JDK8,
        )
        ledger.append_application_build(application)
        run = BenchmarkRunRecord(
            instance_id=instance_id,
            application_build_id=application.record_id,
            test_name=test_name,
            toolchain_fingerprint=JDK8,
            server_execution=make_execution("server"),
        )
        ledger.append_benchmark_run(run)
        return run

    return _factory
