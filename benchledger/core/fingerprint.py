"""Reuse-or-rebuild decisions for cached pipeline stages.

``decide()`` compares the record the pointer set currently names with the
inputs a stage wants now. An empty list means the existing artifact is
reused; otherwise each entry is a human-readable reason to rebuild.

Two inputs are probes of the outside world and are taken fresh on every
call: the toolchain version output (``ToolchainProbe.capture``) and the
presence of the expected build output on disk.
"""

from __future__ import annotations

import logging
import uuid
from pathlib import Path

from pydantic import BaseModel, ConfigDict

from benchledger.core.process import ProcessRunner
from benchledger.models.execution import Command, Execution
from benchledger.models.records import ArtifactRecord

logger = logging.getLogger(__name__)

NO_EXISTING_RECORD = "no existing build record"
TOOLCHAIN_CHANGED = "toolchain version changed"
UPSTREAM_CHANGED = "upstream build changed"
OUTPUT_MISSING = "expected output missing"


class Fingerprint(BaseModel):
    """The inputs that decide whether an artifact can be reused.

    ``commit``, ``upstream_id`` and ``expected_output`` are ``None`` for
    stages that have no such input.
    """

    model_config = ConfigDict(frozen=True)

    commit: str | None = None
    toolchain: str
    upstream_id: uuid.UUID | None = None
    expected_output: Path | None = None


def decide(existing: ArtifactRecord | None, desired: Fingerprint) -> list[str]:
    """Return the reasons *existing* cannot stand in for *desired*.

    Reasons are always reported in the same order: commit, toolchain,
    upstream, expected output.
    """
    if existing is None:
        return [NO_EXISTING_RECORD]

    reasons: list[str] = []
    if desired.commit is not None and existing.source_commit != desired.commit:
        reasons.append(f"commit changed to {desired.commit[:7]}")
    if existing.toolchain_fingerprint != desired.toolchain:
        reasons.append(TOOLCHAIN_CHANGED)
    if desired.upstream_id is not None and existing.upstream_id != desired.upstream_id:
        reasons.append(UPSTREAM_CHANGED)
    if desired.expected_output is not None and not desired.expected_output.exists():
        reasons.append(OUTPUT_MISSING)
    return reasons


def fingerprint_text(execution: Execution) -> str:
    """The diagnostic output of a version command, stderr first.

    ``java -version`` and friends print to stderr, so both streams count.
    """
    return (execution.stderr or "") + (execution.stdout or "")


class ToolchainProbe:
    """Captures the toolchain's version output.

    Parameters
    ----------
    runner:
        Used to run *command*; its placeholders are applied.
    command:
        The version command, e.g. ``<toolchain.home>/bin/java -version``.
    """

    def __init__(self, runner: ProcessRunner, command: Command) -> None:
        self._runner = runner
        self._command = command

    def capture(self) -> Execution:
        execution = self._runner.run(self._command, capture=True, check=False)
        if execution.return_code is None:
            logger.warning(
                "Toolchain version command could not start: %s", execution.stderr
            )
        return execution
