"""The three pipeline stages: framework build, application build, benchmark run.

Each stage is a concrete subclass of ``BaseStage``; the base class owns the
reuse-or-rebuild lifecycle and the stages supply commands, fingerprints and
lineage pointers.
"""

from benchledger.stages.application_build import ApplicationBuildStage
from benchledger.stages.base import (
    BaseStage,
    MissingPreconditionError,
    StageContext,
    StageResult,
)
from benchledger.stages.benchmark_run import BenchmarkRunStage, ServerStartupError
from benchledger.stages.framework_build import CleanOutputError, FrameworkBuildStage

__all__ = [
    "BaseStage",
    "StageContext",
    "StageResult",
    "MissingPreconditionError",
    "FrameworkBuildStage",
    "CleanOutputError",
    "ApplicationBuildStage",
    "BenchmarkRunStage",
    "ServerStartupError",
]
