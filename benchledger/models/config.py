"""Test matrix and benchmark definition models."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator


class MatrixSpec(BaseModel):
    """One entry of the declarative test matrix.

    Loaded from ``[[matrix]]`` tables in the configuration file::

        [[matrix]]
        framework_branch = "master"
        framework_range = ["2.3.0", "HEAD"]
        application_branch = "master"
        application_revision = "HEAD"
        test_names = ["scala-simple", "scala-json"]
    """

    model_config = ConfigDict(frozen=True)

    framework_branch: str
    framework_range: tuple[str, str]  # (start exclusive, end inclusive)
    application_branch: str = "master"
    application_revision: str = "HEAD"
    application_name: str = "scala-bench"
    test_names: list[str] = Field(min_length=1)

    @field_validator("test_names")
    @classmethod
    def _no_duplicate_tests(cls, v: list[str]) -> list[str]:
        if len(set(v)) != len(v):
            raise ValueError(f"duplicate test names: {v}")
        return v


class BenchmarkDefinition(BaseModel):
    """How to drive load for one named test."""

    model_config = ConfigDict(frozen=True)

    path: str = "/"
    threads: int = 4
    connections: int = 32
    warmup_duration: str = "10s"
    duration: str = "60s"
    quick_duration: str = "5s"

    def load_generator_args(self, url: str, duration: str) -> list[str]:
        return [
            f"-t{self.threads}",
            f"-c{self.connections}",
            f"-d{duration}",
            url,
        ]
