"""The pointer set: most recent artifact per lineage."""

from __future__ import annotations

import uuid

from pydantic import BaseModel, ConfigDict


class PointerSet(BaseModel):
    """Mutable-by-replacement state of one tool instance.

    ``last_framework_build`` is the single global framework lineage;
    ``last_application_builds`` holds one slot per test project name.
    ``revision`` increases on every write and is used for optimistic
    concurrency by ``PointerStore``.
    """

    model_config = ConfigDict(frozen=True)

    last_framework_build: uuid.UUID | None = None
    last_application_builds: dict[str, uuid.UUID] = {}
    revision: int = 0

    def with_framework_build(self, build_id: uuid.UUID | None) -> PointerSet:
        return self.model_copy(update={"last_framework_build": build_id})

    def with_application_build(self, project: str, build_id: uuid.UUID) -> PointerSet:
        builds = dict(self.last_application_builds)
        builds[project] = build_id
        return self.model_copy(update={"last_application_builds": builds})
