"""Synchronous process execution producing ``Execution`` records.

There is no timeout: a hung build blocks the whole run. Background
processes (the benchmark server) write their output to temporary files so
that a chatty server cannot fill a pipe and stall.
"""

from __future__ import annotations

import logging
import os
import subprocess
import tempfile
from datetime import datetime, timezone
from typing import IO

from benchledger.core.errors import BenchLedgerError
from benchledger.models.execution import Command, Execution

logger = logging.getLogger(__name__)


class CommandFailedError(BenchLedgerError):
    """Raised when a command exits non-zero (or cannot start) in checked mode."""

    def __init__(self, execution: Execution) -> None:
        self.execution = execution
        if execution.return_code is None:
            detail = f"could not be started: {execution.stderr}"
        else:
            detail = f"exited with code {execution.return_code}"
        super().__init__(f"Command `{execution.command.describe()}` {detail}")


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _environment(command: Command) -> dict[str, str]:
    env = dict(os.environ)
    env.update(command.env)
    return env


class BackgroundProcess:
    """A running command whose Execution is produced by ``stop()``."""

    def __init__(
        self,
        command: Command,
        popen: subprocess.Popen,
        stdout: IO[bytes],
        stderr: IO[bytes],
        start_time: datetime,
    ) -> None:
        self.command = command
        self._popen = popen
        self._stdout = stdout
        self._stderr = stderr
        self._start_time = start_time
        self._execution: Execution | None = None

    @property
    def pid(self) -> int:
        return self._popen.pid

    def is_running(self) -> bool:
        return self._popen.poll() is None

    def stop(self, grace_seconds: float = 10.0) -> Execution:
        """Terminate the process (SIGTERM, then SIGKILL) and collect output.

        Calling ``stop()`` again returns the same Execution.
        """
        if self._execution is not None:
            return self._execution
        if self._popen.poll() is None:
            self._popen.terminate()
            try:
                self._popen.wait(timeout=grace_seconds)
            except subprocess.TimeoutExpired:
                logger.warning("Process %d ignored SIGTERM, killing", self._popen.pid)
                self._popen.kill()
                self._popen.wait()
        end_time = _now()
        stdout = self._drain(self._stdout)
        stderr = self._drain(self._stderr)
        self._execution = Execution(
            command=self.command,
            start_time=self._start_time,
            end_time=end_time,
            stdout=stdout,
            stderr=stderr,
            return_code=self._popen.returncode,
        )
        return self._execution

    @staticmethod
    def _drain(handle: IO[bytes]) -> str:
        handle.seek(0)
        data = handle.read().decode("utf-8", errors="replace")
        handle.close()
        return data


class ProcessRunner:
    """Runs ``Command`` descriptors.

    Parameters
    ----------
    placeholders:
        ``<token> -> value`` mapping applied to every command before it runs.
    """

    def __init__(self, placeholders: dict[str, str] | None = None) -> None:
        self._placeholders = placeholders or {}

    def expand(self, command: Command) -> Command:
        return command.substitute(self._placeholders)

    def run(
        self,
        command: Command,
        *,
        capture: bool = True,
        check: bool = True,
    ) -> Execution:
        """Run *command* to completion.

        With ``capture=False`` output is streamed to the terminal and the
        Execution's ``stdout``/``stderr`` are None. With ``check=True`` a
        non-zero exit raises ``CommandFailedError``.
        """
        command = self.expand(command)
        logger.info("Running `%s` in %s", command.describe(), command.working_dir)
        start_time = _now()
        try:
            completed = subprocess.run(
                [command.program, *command.args],
                cwd=command.working_dir,
                env=_environment(command),
                capture_output=capture,
                text=True if capture else None,
            )
        except OSError as exc:
            execution = Execution(
                command=command,
                start_time=start_time,
                end_time=_now(),
                stderr=str(exc),
                return_code=None,
            )
        else:
            execution = Execution(
                command=command,
                start_time=start_time,
                end_time=_now(),
                stdout=completed.stdout if capture else None,
                stderr=completed.stderr if capture else None,
                return_code=completed.returncode,
            )

        if not execution.succeeded:
            logger.warning(
                "`%s` finished with return code %s",
                command.describe(),
                execution.return_code,
            )
            if check:
                raise CommandFailedError(execution)
        return execution

    def start(self, command: Command) -> BackgroundProcess:
        """Start *command* in the background."""
        command = self.expand(command)
        logger.info("Starting `%s` in %s", command.describe(), command.working_dir)
        start_time = _now()
        handles: list[IO[bytes]] = []
        try:
            stdout = tempfile.TemporaryFile()
            handles.append(stdout)
            stderr = tempfile.TemporaryFile()
            handles.append(stderr)
            popen = subprocess.Popen(
                [command.program, *command.args],
                cwd=command.working_dir,
                env=_environment(command),
                stdout=stdout,
                stderr=stderr,
            )
        except OSError as exc:
            for handle in handles:
                handle.close()
            raise CommandFailedError(
                Execution(
                    command=command,
                    start_time=start_time,
                    end_time=_now(),
                    stderr=str(exc),
                    return_code=None,
                )
            ) from exc
        return BackgroundProcess(command, popen, stdout, stderr, start_time)
