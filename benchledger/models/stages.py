"""Per-work-item pipeline states and the allowed transitions between them."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict


class WorkItemState(str, Enum):
    """Where a work item is in the three-stage pipeline."""

    PENDING = "pending"
    FRAMEWORK_BUILD = "framework_build"
    APPLICATION_BUILD = "application_build"
    BENCHMARK_RUN = "benchmark_run"
    DONE = "done"
    FAILED = "failed"


# Terminal states (DONE, FAILED) have no outgoing transitions.
VALID_TRANSITIONS: dict[WorkItemState, set[WorkItemState]] = {
    WorkItemState.PENDING: {WorkItemState.FRAMEWORK_BUILD},
    WorkItemState.FRAMEWORK_BUILD: {WorkItemState.APPLICATION_BUILD, WorkItemState.FAILED},
    WorkItemState.APPLICATION_BUILD: {WorkItemState.BENCHMARK_RUN, WorkItemState.FAILED},
    WorkItemState.BENCHMARK_RUN: {WorkItemState.DONE, WorkItemState.FAILED},
    WorkItemState.DONE: set(),
    WorkItemState.FAILED: set(),
}

# Order in which a successful item walks the pipeline.
PIPELINE_ORDER: list[WorkItemState] = [
    WorkItemState.FRAMEWORK_BUILD,
    WorkItemState.APPLICATION_BUILD,
    WorkItemState.BENCHMARK_RUN,
    WorkItemState.DONE,
]


class WorkItemTransition(BaseModel):
    """A single recorded state change of a work item."""

    model_config = ConfigDict(frozen=True)

    from_state: WorkItemState
    to_state: WorkItemState
    artifact_id: str | None = None
    failure_reason: str | None = None
