from __future__ import annotations

import pytest
from pydantic import TypeAdapter, ValidationError

from refactor_bot.refactor.types import (
    Issue,
    RefactorFailure,
    RefactorFilesResult,
    RefactorResult,
    RefactorStepResult,
    RefactorSuccess,
    merge_records,
    merge_refactor_files_results,
    push_result,
)


def _step(commit: str) -> RefactorStepResult:
    return RefactorStepResult(task="edit", file_contents=f"# {commit}\n", commit=commit)


def _success(path: str, commit: str) -> RefactorSuccess:
    return RefactorSuccess(file_path=path, steps=[_step(commit)], last_commit=commit)


def _failure(path: str, reason: str) -> RefactorFailure:
    return RefactorFailure(file_path=path, failure_description=reason)


A = RefactorFilesResult(accepted={"x.py": [_success("x.py", "c1")]}, discarded={"y.py": [_failure("y.py", "a")]})
B = RefactorFilesResult(accepted={"x.py": [_success("x.py", "c2")]}, discarded={"z.py": [_failure("z.py", "b")]})
C = RefactorFilesResult(discarded={"y.py": [_failure("y.py", "c")]})


def test_merge_with_empty_is_identity() -> None:
    empty = RefactorFilesResult()
    assert merge_refactor_files_results(empty, A) == A
    assert merge_refactor_files_results(A, empty) == A


def test_merge_is_associative() -> None:
    left = merge_refactor_files_results(merge_refactor_files_results(A, B), C)
    right = merge_refactor_files_results(A, merge_refactor_files_results(B, C))
    assert left == right


def test_merge_concatenates_in_order_per_key() -> None:
    merged = merge_refactor_files_results(A, B)
    assert [result.last_commit for result in merged.accepted["x.py"]] == ["c1", "c2"]
    reversed_merge = merge_refactor_files_results(B, A)
    assert [result.last_commit for result in reversed_merge.accepted["x.py"]] == ["c2", "c1"]
    assert merged.discarded.keys() == {"y.py", "z.py"}


def test_merge_does_not_mutate_inputs() -> None:
    before = A.model_dump()
    merge_refactor_files_results(A, B)
    assert A.model_dump() == before


def test_push_and_merge_records_copy_their_input() -> None:
    record = {"a": [1]}
    pushed = push_result(record, 2, "a")
    assert pushed == {"a": [1, 2]}
    assert record == {"a": [1]}
    assert merge_records({"a": [1]}, {"a": [2], "b": [3]}) == {"a": [1, 2], "b": [3]}


def test_last_commit_must_match_final_step() -> None:
    with pytest.raises(ValidationError):
        RefactorSuccess(file_path="x.py", steps=[_step("c1")], last_commit="other")
    with pytest.raises(ValidationError):
        RefactorFailure(file_path="x.py", failure_description="x", last_commit="c1")


def test_results_parse_by_status() -> None:
    adapter = TypeAdapter(RefactorResult)
    parsed = adapter.validate_python(
        {"status": "failure", "file_path": "x.py", "failure_description": "lint issues"}
    )
    assert isinstance(parsed, RefactorFailure)
    assert isinstance(adapter.validate_python(_success("x.py", "c1").model_dump()), RefactorSuccess)


def test_final_status_prefers_any_success() -> None:
    result = merge_refactor_files_results(
        RefactorFilesResult(accepted={"x.py": [_success("x.py", "c1")]}),
        RefactorFilesResult(discarded={"x.py": [_failure("x.py", "no changes")]}),
    )
    assert result.final_status("x.py") == "success"
    assert result.final_status("y.py") is None
    assert RefactorFilesResult(discarded={"y.py": [_failure("y.py", "x")]}).final_status("y.py") == "failure"


def test_last_accepted_commit_follows_insertion_order() -> None:
    merged = merge_refactor_files_results(A, B)
    assert merged.last_accepted_commit() == "c2"
    assert RefactorFilesResult().last_accepted_commit() is None


def test_issue_identity_ignores_commit() -> None:
    before = Issue(command="ruff", issue="F401 unused", file_path="x.py", commit="c0", code="F401")
    after = before.model_copy(update={"commit": "c1"})
    assert before.identity() == after.identity()


def test_final_statuses_list_each_file_once() -> None:
    merged = merge_refactor_files_results(
        RefactorFilesResult(discarded={"x.py": [_failure("x.py", "lint")]}),
        merge_refactor_files_results(A, C),
    )

    assert merged.final_statuses() == {"x.py": "success", "y.py": "failure"}
