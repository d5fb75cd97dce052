"""Id-addressed, immutable JSON record store.

Storage layout: {base_path}/{kind}/{uuid}.json
No delete and no overwrite: records are immutable once written.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterator
from pathlib import Path
from typing import Generic, TypeVar

from pydantic import BaseModel, ValidationError

from benchledger.core.errors import BenchLedgerError

logger = logging.getLogger(__name__)

RecordT = TypeVar("RecordT", bound=BaseModel)


class MalformedRecordError(BenchLedgerError):
    """Raised when a stored record cannot be parsed."""


class RecordExistsError(BenchLedgerError):
    """Raised when writing would overwrite an existing record."""


class RecordStore(Generic[RecordT]):
    """Stores one kind of record as pretty-printed JSON, one file per id.

    Parameters
    ----------
    base_path:
        Root of the records repository.
    kind:
        Sub-directory name for this record kind (e.g. ``"test-runs"``).
    model:
        The pydantic model used to parse stored files.
    """

    def __init__(self, base_path: Path, kind: str, model: type[RecordT]) -> None:
        self._dir = Path(base_path) / kind
        self._kind = kind
        self._model = model

    @property
    def kind(self) -> str:
        return self._kind

    def _record_path(self, record_id: uuid.UUID) -> Path:
        return self._dir / f"{record_id}.json"

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    def write(self, record_id: uuid.UUID, record: RecordT) -> Path:
        """Write *record* under *record_id*. Refuses to overwrite."""
        path = self._record_path(record_id)
        if path.exists():
            raise RecordExistsError(
                f"{self._kind} record {record_id} already exists at {path}"
            )
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(record.model_dump_json(indent=2), encoding="utf-8")
        tmp.replace(path)
        logger.info("Wrote %s record %s", self._kind, record_id)
        return path

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def read(self, record_id: uuid.UUID) -> RecordT | None:
        """Return the record stored under *record_id*, or None."""
        path = self._record_path(record_id)
        if not path.exists():
            return None
        try:
            return self._model.model_validate_json(path.read_bytes())
        except ValidationError as exc:
            raise MalformedRecordError(
                f"Cannot parse {self._kind} record {record_id} at {path}: {exc}"
            ) from exc

    def exists(self, record_id: uuid.UUID) -> bool:
        return self._record_path(record_id).exists()

    def ids(self) -> list[uuid.UUID]:
        """All stored ids, sorted for deterministic iteration."""
        if not self._dir.is_dir():
            return []
        ids: list[uuid.UUID] = []
        for path in self._dir.glob("*.json"):
            try:
                ids.append(uuid.UUID(path.stem))
            except ValueError as exc:
                raise MalformedRecordError(
                    f"Unexpected file in {self._kind} store: {path.name}"
                ) from exc
        return sorted(ids, key=str)

    def items(self) -> Iterator[tuple[uuid.UUID, RecordT]]:
        for record_id in self.ids():
            record = self.read(record_id)
            if record is not None:
                yield record_id, record

    def __len__(self) -> int:
        return len(self.ids())
