"""benchledger data models — all Pydantic v2, all frozen (immutable)."""

from benchledger.models.config import BenchmarkDefinition, MatrixSpec
from benchledger.models.execution import Command, Execution
from benchledger.models.pointers import PointerSet
from benchledger.models.records import (
    ApplicationBuildRecord,
    ArtifactRecord,
    BenchmarkRunRecord,
    FrameworkBuildRecord,
)
from benchledger.models.stages import (
    PIPELINE_ORDER,
    VALID_TRANSITIONS,
    WorkItemState,
    WorkItemTransition,
)
from benchledger.models.tasks import WorkItem, WorkItemKey

__all__ = [
    # config
    "BenchmarkDefinition",
    "MatrixSpec",
    # execution
    "Command",
    "Execution",
    # pointers
    "PointerSet",
    # records
    "ArtifactRecord",
    "FrameworkBuildRecord",
    "ApplicationBuildRecord",
    "BenchmarkRunRecord",
    # stages
    "WorkItemState",
    "WorkItemTransition",
    "VALID_TRANSITIONS",
    "PIPELINE_ORDER",
    # tasks
    "WorkItem",
    "WorkItemKey",
]
