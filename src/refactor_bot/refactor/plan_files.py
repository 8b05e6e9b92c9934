"""Ask the model which files to change next."""

from __future__ import annotations

import logging
from typing import List, Optional, Protocol, Sequence, Union

from pydantic import BaseModel, Field

from ..budget import Budget
from ..models.llm_client import LLMClient, LLMRequest
from ..pipeline import Persistence, PipelineStep
from ..prompts import SYSTEM_PROMPT, render_plan_prompt
from .cycle import CycleDetected, CycleDetector, PlanFilesResult, PlanOutcome
from .types import RecordModel

LOGGER = logging.getLogger(__name__)

PLAN_FILES_STEP = "plan-files"


class PlanFilesInput(RecordModel):
    objective: str
    commit: str
    candidates: List[str] = Field(default_factory=list)
    model: str


class _PlanReply(BaseModel):
    files: List[str]


_PlanResponse = Union[List[str], _PlanReply]


def filter_planned_files(planned: Sequence[str], candidates: Sequence[str]) -> List[str]:
    """Keep planned paths that are candidates, in plan order and without repeats."""
    allowed = set(candidates)
    selected: List[str] = []
    for raw in planned:
        path = raw.strip()
        if path.startswith("./"):
            path = path[2:]
        if path not in allowed:
            LOGGER.warning("Planner proposed %r which is not a candidate file; ignoring it", raw)
            continue
        if path in selected:
            continue
        selected.append(path)
    return selected


def make_plan_files_step(
    client: LLMClient,
    *,
    budget: Optional[Budget] = None,
) -> PipelineStep[PlanFilesInput, PlanFilesResult]:
    """Build the memoized planning step backed by ``client``."""

    async def _plan(request: PlanFilesInput, scope: Optional[Persistence]) -> PlanFilesResult:
        llm_request: LLMRequest[_PlanResponse] = LLMRequest(
            prompt=render_plan_prompt(request.objective, request.candidates),
            system_prompt=SYSTEM_PROMPT,
            model=request.model,
            budget=budget,
            label=scope.location if scope else PLAN_FILES_STEP,
        )
        reply, completion = await client.complete_structured(llm_request, _PlanResponse)
        planned = reply.files if isinstance(reply, _PlanReply) else reply
        return PlanFilesResult(
            planned_files=filter_planned_files(planned, request.candidates),
            raw_response=completion.text,
        )

    return PipelineStep(
        name=PLAN_FILES_STEP,
        input_model=PlanFilesInput,
        result_model=PlanFilesResult,
        transform=_plan,
    )


class PlanProducer(Protocol):
    """Anything that turns repository state into the next plan."""

    async def __call__(
        self,
        request: PlanFilesInput,
        persistence: Optional[Persistence],
    ) -> PlanOutcome: ...


class PlanFiles:
    """Planning step plus cycle detection across one run."""

    def __init__(
        self,
        step: PipelineStep[PlanFilesInput, PlanFilesResult],
        *,
        detector: Optional[CycleDetector] = None,
    ) -> None:
        self.step = step
        self._detector = detector or CycleDetector()

    async def __call__(
        self,
        request: PlanFilesInput,
        persistence: Optional[Persistence],
    ) -> PlanOutcome:
        result, cached = await self.step.execute_traced(request, persistence)
        if cached:
            result = result.model_copy(update={"cached": True})
        if self._detector.observe(request.commit, result.planned_files):
            return CycleDetected(
                planned_files=result.planned_files,
                commit=request.commit,
                raw_response=result.raw_response,
            )
        return result


__all__ = [
    "PLAN_FILES_STEP",
    "PlanFiles",
    "PlanFilesInput",
    "PlanProducer",
    "filter_planned_files",
    "make_plan_files_step",
]
