"""Work items derived from the test matrix."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class WorkItemKey(BaseModel):
    """Identity of a piece of work, used for deduplication.

    Branches are deliberately absent: two work items that differ only in
    the branch they were discovered on are the same work.
    """

    model_config = ConfigDict(frozen=True)

    test_name: str
    framework_commit: str
    application_commit: str
    application_name: str


class WorkItem(BaseModel):
    """One (framework commit, application commit, test name) to benchmark."""

    model_config = ConfigDict(frozen=True)

    test_name: str
    framework_commit: str
    application_commit: str
    application_name: str
    framework_branch: str
    application_branch: str

    @property
    def key(self) -> WorkItemKey:
        return WorkItemKey(
            test_name=self.test_name,
            framework_commit=self.framework_commit,
            application_commit=self.application_commit,
            application_name=self.application_name,
        )

    @property
    def test_project(self) -> str:
        """The application project built for this item."""
        return self.application_name

    def describe(self) -> str:
        return (
            f"{self.test_name} @ {self.framework_commit[:7]} [{self.framework_branch}]"
            f" / {self.application_name} {self.application_commit[:7]}"
        )
