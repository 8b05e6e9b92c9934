"""Records produced by the refactoring loop and pure helpers to combine them."""

from __future__ import annotations

from typing import Annotated, Dict, List, Literal, Mapping, Optional, Sequence, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator


class RecordModel(BaseModel):
    """Immutable record with strict field handling."""

    model_config = ConfigDict(extra="forbid", frozen=True)


class RefactorStepResult(RecordModel):
    """One attempted edit of a file."""

    task: str
    file_contents: str
    commit: str


class Issue(RecordModel):
    """Finding reported by a validation script against a commit."""

    command: str
    issue: str
    file_path: str
    commit: str
    code: Optional[str] = None

    def identity(self) -> tuple[str, str, str, str]:
        """Key used to decide whether an issue already existed before an edit."""
        return (self.command, self.file_path, self.code or "", self.issue)


def last_commit(steps: Sequence[RefactorStepResult]) -> Optional[str]:
    """Return the commit of the final step, if any."""
    return steps[-1].commit if steps else None


class _ResultBase(RecordModel):
    file_path: str
    issues: List[Issue] = Field(default_factory=list)
    steps: List[RefactorStepResult] = Field(default_factory=list)
    last_commit: Optional[str] = None

    @model_validator(mode="after")
    def _last_commit_matches_steps(self):
        expected = last_commit(self.steps)
        if self.last_commit != expected:
            raise ValueError(
                f"last_commit must equal the commit of the final step ({expected!r}), "
                f"got {self.last_commit!r}"
            )
        return self


class RefactorSuccess(_ResultBase):
    status: Literal["success"] = "success"


class RefactorFailure(_ResultBase):
    status: Literal["failure"] = "failure"
    failure_description: str


RefactorResult = Annotated[Union[RefactorSuccess, RefactorFailure], Field(discriminator="status")]

T = TypeVar("T")


class RefactorFilesResult(RecordModel):
    """Per-file histories of accepted and discarded results."""

    accepted: Dict[str, List[RefactorResult]] = Field(default_factory=dict)
    discarded: Dict[str, List[RefactorFailure]] = Field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not self.accepted and not self.discarded

    def last_accepted_commit(self) -> Optional[str]:
        """Commit of the last accepted entry that produced one, in insertion order."""
        latest: Optional[str] = None
        for results in self.accepted.values():
            for result in results:
                if result.last_commit:
                    latest = result.last_commit
        return latest

    def final_status(self, file_path: str) -> Optional[str]:
        """Run-wide status of ``file_path``: any success wins.

        Accepted edits stay in the tree for the rest of the run while discarded
        attempts never do, so one accepted success means the file was changed.
        """
        if any(result.status == "success" for result in self.accepted.get(file_path, ())):
            return "success"
        if file_path in self.accepted or file_path in self.discarded:
            return "failure"
        return None

    def final_statuses(self) -> Dict[str, str]:
        """:meth:`final_status` of every file seen, each file listed once."""
        statuses: Dict[str, str] = {}
        for file_path in (*self.accepted, *self.discarded):
            status = self.final_status(file_path)
            if status is not None:
                statuses.setdefault(file_path, status)
        return statuses


def push_result(record: Mapping[str, Sequence[T]], result: T, file_path: str) -> Dict[str, List[T]]:
    """Return a copy of ``record`` with ``result`` appended under ``file_path``."""
    merged = {key: list(values) for key, values in record.items()}
    merged.setdefault(file_path, []).append(result)
    return merged


def merge_records(
    first: Mapping[str, Sequence[T]],
    second: Mapping[str, Sequence[T]],
) -> Dict[str, List[T]]:
    """Concatenate two per-file histories, keeping ``first`` before ``second``."""
    merged = {key: list(values) for key, values in first.items()}
    for key, values in second.items():
        merged.setdefault(key, []).extend(values)
    return merged


def merge_refactor_files_results(
    first: RefactorFilesResult,
    second: RefactorFilesResult,
) -> RefactorFilesResult:
    """Fold ``second`` into ``first`` without mutating either."""
    return RefactorFilesResult(
        accepted=merge_records(first.accepted, second.accepted),
        discarded=merge_records(first.discarded, second.discarded),
    )


__all__ = [
    "Issue",
    "RecordModel",
    "RefactorFailure",
    "RefactorFilesResult",
    "RefactorResult",
    "RefactorStepResult",
    "RefactorSuccess",
    "last_commit",
    "merge_records",
    "merge_refactor_files_results",
    "push_result",
]
