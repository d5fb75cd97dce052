"""Tests for the three pipeline stages and the shared ensure() lifecycle."""

from __future__ import annotations

import shutil
import socket
import uuid

import pytest

from benchledger.core.fingerprint import (
    NO_EXISTING_RECORD,
    OUTPUT_MISSING,
    TOOLCHAIN_CHANGED,
    UPSTREAM_CHANGED,
)
from benchledger.core.process import CommandFailedError, ProcessRunner
from benchledger.models.execution import Command
from benchledger.models.records import FrameworkBuildRecord
from benchledger.stages import (
    ApplicationBuildStage,
    BaseStage,
    BenchmarkRunStage,
    CleanOutputError,
    FrameworkBuildStage,
    MissingPreconditionError,
    ServerStartupError,
    StageContext,
)

from conftest import APP_HEAD, FW_A, FW_C, JDK11


@pytest.fixture
def framework_stage(context: StageContext) -> FrameworkBuildStage:
    return FrameworkBuildStage(context)


@pytest.fixture
def application_stage(context: StageContext) -> ApplicationBuildStage:
    return ApplicationBuildStage(context)


@pytest.fixture
def benchmark_stage(context: StageContext, no_server_wait: None) -> BenchmarkRunStage:
    return BenchmarkRunStage(context)


class TestStageContext:
    def test_requires_instance_id(self, settings, ledger, pointers, runner, source_control):
        settings = settings.model_copy(update={"instance_id": None})
        with pytest.raises(MissingPreconditionError):
            StageContext(settings, ledger, pointers, runner, source_control)

    def test_expand_path(self, context: StageContext, settings):
        path = context.expand_path("<apps.home>/<project>/bin", "scala-bench")
        assert path == settings.apps_home / "scala-bench" / "bin"


class TestEnsureIsFinal:
    def test_stages_do_not_override_ensure(self):
        for stage_cls in (FrameworkBuildStage, ApplicationBuildStage, BenchmarkRunStage):
            assert stage_cls.ensure is BaseStage.ensure

    def test_repr_marks_uncached_stage(self, context: StageContext):
        assert "UNCACHED" in repr(BenchmarkRunStage(context))
        assert "UNCACHED" not in repr(FrameworkBuildStage(context))


class TestFrameworkBuildStage:
    def test_first_build(self, framework_stage, make_work_item, ledger, pointers, source_control, settings):
        result = framework_stage.ensure(make_work_item())
        assert result.reused is False
        assert result.reasons == [NO_EXISTING_RECORD]
        assert ledger.get_framework_build(result.record_id).framework_commit == FW_A
        assert pointers.read().last_framework_build == result.record_id
        assert source_control.checkouts == [(settings.framework_home, "master", FW_A)]

    def test_second_call_reuses(self, framework_stage, make_work_item, ledger, runner):
        first = framework_stage.ensure(make_work_item())
        second = framework_stage.ensure(make_work_item(test_name="scala-json"))
        assert second.reused is True
        assert second.record_id == first.record_id
        assert len(ledger.framework_builds) == 1
        assert runner.programs().count("build-framework") == 1

    def test_new_commit_rebuilds(self, framework_stage, make_work_item, ledger):
        framework_stage.ensure(make_work_item())
        result = framework_stage.ensure(make_work_item(framework_commit=FW_C))
        assert result.reused is False
        assert result.reasons == ["commit changed to ccccccc"]
        assert len(ledger.framework_builds) == 2

    def test_toolchain_change_rebuilds(self, framework_stage, make_work_item, runner):
        framework_stage.ensure(make_work_item())
        runner.toolchain_version = JDK11
        result = framework_stage.ensure(make_work_item())
        assert result.reasons == [TOOLCHAIN_CHANGED]
        assert result.record.toolchain_fingerprint == JDK11

    def test_missing_output_rebuilds(self, framework_stage, make_work_item, settings):
        framework_stage.ensure(make_work_item())
        (settings.publish_home / "local").rmdir()
        result = framework_stage.ensure(make_work_item())
        assert result.reasons == [OUTPUT_MISSING]

    def test_rebuild_clears_pointer_and_old_output(
        self, framework_stage, make_work_item, runner, pointers, settings
    ):
        framework_stage.ensure(make_work_item())
        stale = settings.publish_home / "local" / "stale.jar"
        stale.write_text("old")

        seen: dict[str, object] = {}
        publish = runner.effects["build-framework"]

        def _observe(command: Command) -> None:
            seen["pointer"] = pointers.read().last_framework_build
            seen["stale_exists"] = stale.exists()
            publish(command)

        runner.effects["build-framework"] = _observe
        result = framework_stage.ensure(make_work_item(framework_commit=FW_C))
        assert seen == {"pointer": None, "stale_exists": False}
        assert pointers.read().last_framework_build == result.record_id

    def test_failed_build_is_recorded_not_raised(self, framework_stage, make_work_item, runner, ledger, pointers):
        runner.return_codes["build-framework"] = 1
        result = framework_stage.ensure(make_work_item())
        record = ledger.get_framework_build(result.record_id)
        assert isinstance(record, FrameworkBuildRecord)
        assert record.succeeded is False
        assert record.executions[0].return_code == 1
        assert pointers.read().last_framework_build == result.record_id

    def test_build_output_is_streamed(self, framework_stage, make_work_item, ledger):
        result = framework_stage.ensure(make_work_item())
        execution = result.record.executions[0]
        assert execution.stdout is None and execution.stderr is None

    def test_record_carries_toolchain_execution(self, framework_stage, make_work_item, settings):
        result = framework_stage.ensure(make_work_item())
        assert result.record.toolchain_execution.command.program == f"{settings.toolchain_home}/bin/java"

    def test_symlinked_output_is_unlinked_not_followed(
        self, framework_stage, make_work_item, settings, tmp_path
    ):
        target = tmp_path / "shared-publish"
        target.mkdir()
        (target / "keep.jar").write_text("shared")
        settings.publish_home.mkdir(parents=True, exist_ok=True)
        (settings.publish_home / "local").symlink_to(target, target_is_directory=True)

        framework_stage.ensure(make_work_item())
        assert (target / "keep.jar").exists()
        assert not (settings.publish_home / "local").is_symlink()

    def test_unremovable_output_raises_stage_error(
        self, framework_stage, make_work_item, settings, monkeypatch
    ):
        (settings.publish_home / "local").mkdir(parents=True)

        def _busy(path, *args, **kwargs):
            raise OSError(16, "Device or resource busy", str(path))

        monkeypatch.setattr("benchledger.stages.framework_build.shutil.rmtree", _busy)
        with pytest.raises(CleanOutputError, match="resource busy"):
            framework_stage.ensure(make_work_item())


class TestApplicationBuildStage:
    def test_requires_upstream(self, application_stage, make_work_item):
        with pytest.raises(MissingPreconditionError):
            application_stage.ensure(make_work_item(), None)

    def test_requires_upstream_in_ledger(self, application_stage, make_work_item):
        with pytest.raises(MissingPreconditionError):
            application_stage.ensure(make_work_item(), uuid.uuid4())

    def test_first_build_then_reuse(self, framework_stage, application_stage, make_work_item, ledger, runner):
        item = make_work_item()
        framework = framework_stage.ensure(item)
        first = application_stage.ensure(item, framework.record_id)
        assert first.reasons == [NO_EXISTING_RECORD]
        assert first.record.framework_build_id == framework.record_id
        assert first.record.application_commit == APP_HEAD

        second = application_stage.ensure(item, framework.record_id)
        assert second.reused is True
        assert second.record_id == first.record_id
        assert runner.programs().count("build-app") == 1
        assert len(ledger.application_builds) == 1

    def test_new_framework_build_invalidates(self, framework_stage, application_stage, make_work_item):
        first_item = make_work_item()
        framework = framework_stage.ensure(first_item)
        application_stage.ensure(first_item, framework.record_id)

        next_item = make_work_item(framework_commit=FW_C)
        newer = framework_stage.ensure(next_item)
        result = application_stage.ensure(next_item, newer.record_id)
        assert result.reused is False
        assert result.reasons == [UPSTREAM_CHANGED]

    def test_project_substituted_into_command(self, framework_stage, application_stage, make_work_item, runner, settings):
        item = make_work_item(application_name="java-bench")
        framework = framework_stage.ensure(item)
        application_stage.ensure(item, framework.record_id)
        build = [c for c in runner.commands if c.program == "build-app"][0]
        assert build.args == ["java-bench"]
        assert build.working_dir == str(settings.apps_home)

    def test_lineages_are_per_project(self, framework_stage, application_stage, make_work_item, pointers):
        scala = make_work_item()
        java = make_work_item(application_name="java-bench")
        framework = framework_stage.ensure(scala)
        scala_build = application_stage.ensure(scala, framework.record_id)
        java_build = application_stage.ensure(java, framework.record_id)
        assert java_build.reasons == [NO_EXISTING_RECORD]
        assert pointers.read().last_application_builds == {
            "scala-bench": scala_build.record_id,
            "java-bench": java_build.record_id,
        }

    def test_failed_build_raises_and_records_nothing(
        self, framework_stage, application_stage, make_work_item, runner, ledger, pointers
    ):
        item = make_work_item()
        framework = framework_stage.ensure(item)
        runner.return_codes["build-app"] = 2
        with pytest.raises(CommandFailedError):
            application_stage.ensure(item, framework.record_id)
        assert len(ledger.application_builds) == 0
        assert pointers.read().last_application_builds == {}


class TestBenchmarkRunStage:
    @pytest.fixture
    def application_id(self, framework_stage, application_stage, make_work_item) -> uuid.UUID:
        item = make_work_item()
        framework = framework_stage.ensure(item)
        return application_stage.ensure(item, framework.record_id).record_id

    def test_requires_application_build(self, benchmark_stage, make_work_item):
        with pytest.raises(MissingPreconditionError):
            benchmark_stage.ensure(make_work_item(), uuid.uuid4())

    def test_every_call_is_a_new_run(self, benchmark_stage, make_work_item, application_id, ledger):
        first = benchmark_stage.ensure(make_work_item(), application_id)
        second = benchmark_stage.ensure(make_work_item(), application_id)
        assert first.reused is False and second.reused is False
        assert first.record_id != second.record_id
        assert len(ledger.benchmark_runs) == 2

    def test_run_record_contents(self, benchmark_stage, make_work_item, application_id, runner, settings):
        result = benchmark_stage.ensure(make_work_item(), application_id)
        record = result.record
        assert record.application_build_id == application_id
        assert record.test_name == "scala-simple"
        assert record.server_execution.return_code == 143
        assert [e.command.args for e in record.load_generator_executions] == [
            ["-t4", "-c32", "-d1s", "http://localhost:9000/simple"],
            ["-t4", "-c32", "-d30s", "http://localhost:9000/simple"],
        ]
        server = runner.started[0]
        assert server.command.program == str(settings.apps_home / "scala-bench" / "bin" / "scala-bench")
        assert server.command.args == ["-Dhttp.port=9000"]
        assert server.stopped is True

    def test_quick_mode_uses_short_duration(self, context, make_work_item, application_id, no_server_wait):
        stage = BenchmarkRunStage(context, quick=True)
        record = stage.ensure(make_work_item(), application_id).record
        assert record.load_generator_executions[-1].command.args[2] == "-d2s"

    def test_server_stopped_when_load_generator_fails(
        self, benchmark_stage, make_work_item, application_id, runner, ledger
    ):
        runner.return_codes["wrk"] = 1
        with pytest.raises(CommandFailedError):
            benchmark_stage.ensure(make_work_item(), application_id)
        assert runner.started[0].stopped is True
        assert len(ledger.benchmark_runs) == 0

    def test_does_not_move_pointers(self, benchmark_stage, make_work_item, application_id, pointers):
        before = pointers.read()
        benchmark_stage.ensure(make_work_item(), application_id)
        assert pointers.read() == before


@pytest.mark.skipif(shutil.which("sh") is None, reason="needs a POSIX shell")
class TestServerReadiness:
    @pytest.fixture
    def server(self):
        process = ProcessRunner().start(
            Command(program="sh", args=["-c", "exec sleep 30"])
        )
        yield process
        process.stop(grace_seconds=5)

    @staticmethod
    def _unused_port() -> int:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.bind(("127.0.0.1", 0))
            return sock.getsockname()[1]

    def test_returns_once_listening(self, server):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as listener:
            listener.bind(("127.0.0.1", 0))
            listener.listen()
            port = listener.getsockname()[1]
            BenchmarkRunStage._wait_for_server(server, port, 5.0)
        assert server.is_running()

    def test_times_out_when_nothing_listens(self, server):
        port = self._unused_port()
        with pytest.raises(ServerStartupError, match=f"port {port}"):
            BenchmarkRunStage._wait_for_server(server, port, 0.5)

    def test_server_exiting_early_fails_the_run(self):
        process = ProcessRunner().start(
            Command(program="sh", args=["-c", "echo bind failed >&2; exit 3"])
        )
        with pytest.raises(CommandFailedError) as excinfo:
            BenchmarkRunStage._wait_for_server(process, self._unused_port(), 10.0)
        assert excinfo.value.execution.return_code == 3
        assert "bind failed" in excinfo.value.execution.stderr
