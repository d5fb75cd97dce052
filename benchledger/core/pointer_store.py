"""Local persistence of the pointer set (``state.json``).

Every change is a read-modify-write of the whole structure. Two tool
instances sharing one state file could otherwise lose each other's update,
so writes are guarded by:
- an in-process lock;
- a ``revision`` counter checked right before an atomic ``os.replace``;
- a bounded retry that re-reads and re-applies the single-slot change.

A window between the revision check and the replace remains; running two
instances against one home directory is still unsupported.
"""

from __future__ import annotations

import logging
import os
import threading
import uuid
from collections.abc import Callable
from pathlib import Path

from pydantic import ValidationError

from benchledger.core.errors import BenchLedgerError
from benchledger.core.record_store import MalformedRecordError
from benchledger.models.pointers import PointerSet

logger = logging.getLogger(__name__)


class PointerConflictError(BenchLedgerError):
    """Raised when the pointer set keeps changing underneath a write."""


class PointerStore:
    """Reads and writes the pointer set file.

    Parameters
    ----------
    path:
        Location of ``state.json``. Parent directories are created on write.
    max_attempts:
        How many times a conflicting update is re-applied before giving up.
    """

    def __init__(self, path: Path, *, max_attempts: int = 3) -> None:
        self._path = Path(path)
        self._max_attempts = max_attempts
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def read(self) -> PointerSet | None:
        if not self._path.exists():
            return None
        try:
            return PointerSet.model_validate_json(self._path.read_bytes())
        except ValidationError as exc:
            raise MalformedRecordError(
                f"Cannot parse pointer state at {self._path}: {exc}"
            ) from exc

    def read_or_default(self) -> PointerSet:
        return self.read() or PointerSet()

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    def advance_framework(self, build_id: uuid.UUID | None) -> PointerSet:
        """Point the framework lineage at *build_id* (or clear it)."""
        return self._update(lambda state: state.with_framework_build(build_id))

    def advance_application(self, project: str, build_id: uuid.UUID) -> PointerSet:
        """Point the lineage of test project *project* at *build_id*."""
        return self._update(lambda state: state.with_application_build(project, build_id))

    def _update(self, change: Callable[[PointerSet], PointerSet]) -> PointerSet:
        with self._lock:
            for attempt in range(1, self._max_attempts + 1):
                current = self.read_or_default()
                updated = change(current).model_copy(
                    update={"revision": current.revision + 1}
                )
                if self._write_if_unchanged(current.revision, updated):
                    return updated
                logger.warning(
                    "Pointer state at %s changed during update (attempt %d/%d)",
                    self._path,
                    attempt,
                    self._max_attempts,
                )
        raise PointerConflictError(
            f"Pointer state at {self._path} kept changing; gave up after "
            f"{self._max_attempts} attempts"
        )

    def _on_disk_revision(self) -> int:
        state = self.read()
        return state.revision if state else 0

    def _write_if_unchanged(self, expected_revision: int, state: PointerSet) -> bool:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_name(f"{self._path.name}.{os.getpid()}.tmp")
        tmp.write_text(state.model_dump_json(indent=2), encoding="utf-8")
        if self._on_disk_revision() != expected_revision:
            tmp.unlink()
            return False
        os.replace(tmp, self._path)
        return True
