"""Command descriptors and the record of one external command invocation."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from datetime import datetime

from pydantic import BaseModel, ConfigDict


class Command(BaseModel):
    """An external command: program, arguments, working directory, env overrides.

    Command templates in configuration may contain ``<placeholder>`` tokens
    (``<toolchain.home>``, ``<framework.home>`` ...) which are expanded with
    ``substitute()`` before the command is run.
    """

    model_config = ConfigDict(frozen=True)

    program: str
    args: list[str] = []
    working_dir: str = "."
    env: dict[str, str] = {}

    def _map_strings(self, f: Callable[[str], str]) -> Command:
        return Command(
            program=f(self.program),
            args=[f(a) for a in self.args],
            working_dir=f(self.working_dir),
            env={k: f(v) for k, v in self.env.items()},
        )

    def replace(self, original: str, replacement: str) -> Command:
        """Return a copy with every occurrence of *original* replaced."""
        return self._map_strings(lambda s: s.replace(original, replacement))

    def substitute(self, placeholders: Mapping[str, str]) -> Command:
        """Expand all ``<name>`` placeholders from *placeholders*."""
        command = self
        for token, value in placeholders.items():
            command = command.replace(token, value)
        return command

    def describe(self) -> str:
        return " ".join([self.program, *self.args])


class Execution(BaseModel):
    """Immutable record of a single command invocation.

    ``stdout``/``stderr`` are ``None`` when output was streamed to the
    terminal instead of captured. ``return_code`` is ``None`` when the
    process could not be launched at all.
    """

    model_config = ConfigDict(frozen=True)

    command: Command
    start_time: datetime
    end_time: datetime
    stdout: str | None = None
    stderr: str | None = None
    return_code: int | None = None

    @property
    def succeeded(self) -> bool:
        return self.return_code == 0

    @property
    def duration_seconds(self) -> float:
        return (self.end_time - self.start_time).total_seconds()
