"""Deterministic per-work-item state machine.

Enforces:
- Valid state transitions only (VALID_TRANSITIONS table)
- Stages run in pipeline order (framework -> application -> benchmark)
- DONE and FAILED are terminal
- Every transition is kept in an in-memory history for reporting
"""

from __future__ import annotations

from benchledger.core.errors import BenchLedgerError
from benchledger.models.stages import (
    PIPELINE_ORDER,
    VALID_TRANSITIONS,
    WorkItemState,
    WorkItemTransition,
)
from benchledger.models.tasks import WorkItem, WorkItemKey


class InvalidTransitionError(BenchLedgerError):
    """Raised when a requested state transition is not valid."""


class WorkMachine:
    """Tracks the pipeline state of each work item in one run."""

    def __init__(self) -> None:
        self._states: dict[WorkItemKey, WorkItemState] = {}
        self._history: dict[WorkItemKey, list[WorkItemTransition]] = {}

    # ------------------------------------------------------------------
    # State management
    # ------------------------------------------------------------------

    def initialize(self, item: WorkItem) -> WorkItemState:
        self._states[item.key] = WorkItemState.PENDING
        self._history[item.key] = []
        return WorkItemState.PENDING

    def state(self, item: WorkItem) -> WorkItemState:
        return self._states.get(item.key, WorkItemState.PENDING)

    def history(self, item: WorkItem) -> list[WorkItemTransition]:
        return list(self._history.get(item.key, []))

    # ------------------------------------------------------------------
    # Transition logic
    # ------------------------------------------------------------------

    def transition(
        self,
        item: WorkItem,
        target_state: WorkItemState,
        *,
        artifact_id: str | None = None,
        failure_reason: str | None = None,
    ) -> WorkItemTransition:
        """Move *item* to *target_state*, validating against VALID_TRANSITIONS."""
        current = self.state(item)
        allowed = VALID_TRANSITIONS.get(current, set())
        if target_state not in allowed:
            raise InvalidTransitionError(
                f"Cannot move {item.describe()} from {current.value} to "
                f"{target_state.value}. Allowed: {sorted(s.value for s in allowed)}"
            )
        record = WorkItemTransition(
            from_state=current,
            to_state=target_state,
            artifact_id=artifact_id,
            failure_reason=failure_reason,
        )
        self._states[item.key] = target_state
        self._history.setdefault(item.key, []).append(record)
        return record

    def advance(self, item: WorkItem, *, artifact_id: str | None = None) -> WorkItemState:
        """Move *item* to the next stage in pipeline order."""
        current = self.state(item)
        if current == WorkItemState.PENDING:
            target = PIPELINE_ORDER[0]
        elif current in PIPELINE_ORDER[:-1]:
            target = PIPELINE_ORDER[PIPELINE_ORDER.index(current) + 1]
        else:
            raise InvalidTransitionError(
                f"{item.describe()} is {current.value}; nothing follows"
            )
        self.transition(item, target, artifact_id=artifact_id)
        return target

    def fail(self, item: WorkItem, reason: str) -> WorkItemTransition:
        return self.transition(item, WorkItemState.FAILED, failure_reason=reason)
