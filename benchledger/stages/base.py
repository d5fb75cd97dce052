"""Abstract base stage with an enforced reuse-or-rebuild lifecycle.

Every concrete stage inherits from BaseStage and supplies only the
stage-specific pieces. The ``ensure()`` wrapper is **not overridable**; it
fixes the canonical ordering:

    check upstream -> capture toolchain -> fingerprint -> decide
        -> (reuse) | (prepare -> build -> append -> advance pointer)

so that a record is always on disk before the pointer set names it, and
clean-up of old build output only happens once a rebuild is decided.
"""

from __future__ import annotations

import abc
import logging
import uuid
from pathlib import Path
from typing import ClassVar, final

from pydantic import BaseModel, ConfigDict

from benchledger.config import BenchSettings
from benchledger.core.errors import BenchLedgerError
from benchledger.core.fingerprint import Fingerprint, ToolchainProbe, decide, fingerprint_text
from benchledger.core.ledger import Ledger
from benchledger.core.pointer_store import PointerStore
from benchledger.core.process import ProcessRunner
from benchledger.core.source_control import SourceControl
from benchledger.models.execution import Command, Execution
from benchledger.models.pointers import PointerSet
from benchledger.models.records import ArtifactRecord
from benchledger.models.tasks import WorkItem

logger = logging.getLogger(__name__)

PROJECT = "<project>"


class MissingPreconditionError(BenchLedgerError):
    """Raised when a stage's upstream artifact is not available."""


class StageResult(BaseModel):
    """Outcome of ``BaseStage.ensure``."""

    model_config = ConfigDict(frozen=True)

    record_id: uuid.UUID
    record: ArtifactRecord
    reused: bool
    reasons: list[str] = []


class StageContext:
    """Collaborators shared by all stages of one run.

    Parameters
    ----------
    settings:
        Instance settings (paths, command templates, identity).
    ledger, pointers:
        Where records are appended and lineage pointers advanced.
    runner, source_control:
        External command execution and git access.
    """

    def __init__(
        self,
        settings: BenchSettings,
        ledger: Ledger,
        pointers: PointerStore,
        runner: ProcessRunner,
        source_control: SourceControl,
    ) -> None:
        if settings.instance_id is None:
            raise MissingPreconditionError("An instance_id must be configured")
        self.settings = settings
        self.instance_id: uuid.UUID = settings.instance_id
        self.ledger = ledger
        self.pointers = pointers
        self.runner = runner
        self.source_control = source_control
        self.toolchain = ToolchainProbe(runner, settings.toolchain_version_command)

    def expand_path(self, template: str, project: str | None = None) -> Path:
        """Expand placeholders in a path template."""
        text = template
        if project is not None:
            text = text.replace(PROJECT, project)
        for token, value in self.settings.placeholders().items():
            text = text.replace(token, value)
        return Path(text)

    def project_command(self, command: Command, project: str) -> Command:
        return command.replace(PROJECT, project)


class BaseStage(abc.ABC):
    """Abstract base for the framework build, application build and run stages.

    Subclasses **must** implement the abstract members below.
    Subclasses **must not** override ``ensure()``.
    """

    # False for stages whose every execution is the product (benchmark runs).
    cacheable: ClassVar[bool] = True

    def __init__(self, context: StageContext) -> None:
        self.ctx = context

    # ------------------------------------------------------------------
    # Abstract interface: subclasses implement these
    # ------------------------------------------------------------------

    @property
    @abc.abstractmethod
    def stage_id(self) -> str:
        """Unique stage identifier (e.g. ``'framework_build'``)."""
        ...

    @property
    @abc.abstractmethod
    def display_name(self) -> str:
        """Human-readable name used in log lines."""
        ...

    @abc.abstractmethod
    def fingerprint(
        self, item: WorkItem, upstream_id: uuid.UUID | None, toolchain: str
    ) -> Fingerprint:
        """The inputs this stage would build from right now."""
        ...

    @abc.abstractmethod
    def build(
        self,
        item: WorkItem,
        desired: Fingerprint,
        toolchain_execution: Execution,
    ) -> ArtifactRecord:
        """Run the stage's commands and return the new (unsaved) record."""
        ...

    @abc.abstractmethod
    def append(self, record: ArtifactRecord) -> None:
        """Append *record* to the ledger."""
        ...

    # ------------------------------------------------------------------
    # Hooks with defaults
    # ------------------------------------------------------------------

    def check_upstream(self, upstream_id: uuid.UUID | None) -> None:
        """Raise ``MissingPreconditionError`` if the upstream is unusable."""

    def current_pointer(self, state: PointerSet, item: WorkItem) -> uuid.UUID | None:
        return None

    def load_record(self, record_id: uuid.UUID) -> ArtifactRecord | None:
        return None

    def advance_pointer(self, item: WorkItem, record_id: uuid.UUID) -> None:
        """Point this stage's lineage at *record_id*."""

    def prepare(self, item: WorkItem) -> None:
        """Runs only when a rebuild was decided, before ``build``."""

    def describe(self, item: WorkItem) -> str:
        return item.describe()

    # ------------------------------------------------------------------
    # Lifecycle (not overridable)
    # ------------------------------------------------------------------

    @final
    def ensure(self, item: WorkItem, upstream_id: uuid.UUID | None = None) -> StageResult:
        """Reuse the current artifact for *item* or produce a new one.  **Do not override.**"""
        self.check_upstream(upstream_id)

        # Probed fresh every time; a toolchain upgrade mid-run must be seen.
        toolchain_execution = self.ctx.toolchain.capture()
        desired = self.fingerprint(item, upstream_id, fingerprint_text(toolchain_execution))
        description = self.describe(item)

        reasons: list[str] = []
        if self.cacheable:
            state = self.ctx.pointers.read_or_default()
            existing_id = self.current_pointer(state, item)
            existing = self.load_record(existing_id) if existing_id else None
            reasons = decide(existing, desired)
            if not reasons:
                logger.info("%s %s already built: %s", self.display_name, description, existing_id)
                return StageResult(record_id=existing_id, record=existing, reused=True)
            logger.info(
                "Can't use existing %s for %s: %s",
                self.display_name,
                description,
                ", ".join(reasons),
            )

        self.prepare(item)
        record = self.build(item, desired, toolchain_execution)
        logger.info("Recording %s %s: %s", self.display_name, description, record.record_id)
        self.append(record)
        if self.cacheable:
            self.advance_pointer(item, record.record_id)
        return StageResult(
            record_id=record.record_id,
            record=record,
            reused=False,
            reasons=reasons,
        )

    # ------------------------------------------------------------------
    # Repr
    # ------------------------------------------------------------------

    def __repr__(self) -> str:
        cached = "" if self.cacheable else " [UNCACHED]"
        return f"<{type(self).__name__} stage_id={self.stage_id!r}{cached}>"
