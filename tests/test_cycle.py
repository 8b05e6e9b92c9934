from __future__ import annotations

import asyncio
from typing import List, Optional

from refactor_bot.pipeline import Persistence, PipelineStep
from refactor_bot.refactor.cycle import CycleDetected, CycleDetector, PlanFilesResult
from refactor_bot.refactor.plan_files import PlanFiles, PlanFilesInput, filter_planned_files


def _scripted_step(plans: List[List[str]]) -> PipelineStep[PlanFilesInput, PlanFilesResult]:
    remaining = list(plans)

    async def _plan(request: PlanFilesInput, scope: Optional[Persistence]) -> PlanFilesResult:
        return PlanFilesResult(planned_files=remaining.pop(0), raw_response="scripted")

    return PipelineStep(name="plan-files", input_model=PlanFilesInput, result_model=PlanFilesResult, transform=_plan)


def _request(commit: str) -> PlanFilesInput:
    return PlanFilesInput(objective="o", commit=commit, candidates=["a", "b"], model="m")


def test_detector_flags_repeat_at_same_commit() -> None:
    detector = CycleDetector()
    assert detector.observe("c1", ["a", "b"]) is False
    assert detector.observe("c2", ["a", "b"]) is False
    assert detector.observe("c1", ["b", "a"]) is False
    assert detector.observe("c1", ["a", "b"]) is True
    assert len(detector) == 3


def test_empty_plans_are_never_cycles() -> None:
    detector = CycleDetector()
    assert detector.observe("c1", []) is False
    assert detector.observe("c1", []) is False


def test_plan_files_returns_cycle_on_repeat() -> None:
    producer = PlanFiles(_scripted_step([["a", "b"], ["a", "b"]]))

    first = asyncio.run(producer(_request("c1"), None))
    second = asyncio.run(producer(_request("c1"), None))

    assert isinstance(first, PlanFilesResult)
    assert isinstance(second, CycleDetected)
    assert second.kind == "cycle"
    assert second.planned_files == ["a", "b"]
    assert second.commit == "c1"


def test_plan_files_marks_cache_hits() -> None:
    producer = PlanFiles(_scripted_step([["a"]]))
    persistence = Persistence.in_memory("refactor")

    first = asyncio.run(producer(_request("c1"), persistence))
    assert isinstance(first, PlanFilesResult) and not first.cached

    # A fresh detector sees the cached plan as new.
    replay = PlanFiles(producer.step)
    second = asyncio.run(replay(_request("c1"), persistence))
    assert isinstance(second, PlanFilesResult)
    assert second.cached
    assert second.planned_files == ["a"]


def test_filter_planned_files_keeps_candidates_in_order() -> None:
    planned = ["./b.py", "missing.py", "a.py", "b.py"]
    assert filter_planned_files(planned, ["a.py", "b.py", ".hidden.py"]) == ["b.py", "a.py"]
    assert filter_planned_files([".hidden.py"], [".hidden.py"]) == [".hidden.py"]
