"""The plan, edit, validate loop.

Each iteration plans against the current commit, executes the batch, resets
the tree to the last accepted commit and folds the batch result into the run
result. The loop ends on an empty plan, a repeated plan, or once the budget
is spent.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Annotated, Dict, List, Mapping, Optional, Union

from pydantic import Field

from .. import events as ev
from ..budget import Budget, BudgetExhaustedError
from ..events import EventSink, NullEventSink
from ..pipeline import Persistence
from ..tools.vcs import GitError
from .cycle import CycleDetected, PlanFilesResult
from .escalation import model_for_step
from .plan_files import PLAN_FILES_STEP, PlanFilesInput, PlanProducer
from .refactor_batch import BatchRefactorer, RefactorBatchInput, VersionControl
from .rollback import reset_to_last_accepted_commit
from .types import (
    RecordModel,
    RefactorFailure,
    RefactorFilesResult,
    RefactorResult,
    merge_refactor_files_results,
)

LOGGER = logging.getLogger(__name__)

LOOP_STEP = "loop"


class LoopState(str, Enum):
    PLANNING = "planning"
    BATCH_EXECUTING = "batch_executing"
    TERMINATED = "terminated"


PlanFilesRecord = Annotated[Union[PlanFilesResult, CycleDetected], Field(discriminator="kind")]


class PlanAndRefactorInput(RecordModel):
    objective: str
    start_commit: str
    candidates: List[str] = Field(default_factory=list)
    model: str = "gpt-4o-mini"
    model_by_step_code: Dict[str, str] = Field(default_factory=dict)


class PlanAndRefactorResult(RecordModel):
    """Accumulated per-file results plus every planning decision, in order."""

    accepted: Dict[str, List[RefactorResult]] = Field(default_factory=dict)
    discarded: Dict[str, List[RefactorFailure]] = Field(default_factory=dict)
    plan_files_results: List[PlanFilesRecord] = Field(default_factory=list)
    termination_reason: str = ""

    @property
    def files(self) -> RefactorFilesResult:
        return RefactorFilesResult(accepted=self.accepted, discarded=self.discarded)


@dataclass(slots=True)
class PlanAndRefactorDeps:
    plan_files: PlanProducer
    refactor_batch: BatchRefactorer
    vcs: VersionControl
    events: EventSink = field(default_factory=NullEventSink)
    budget: Optional[Budget] = None
    persistence: Optional[Persistence] = None


def _planning_model(
    request: PlanAndRefactorInput,
    scope: Optional[Persistence],
) -> str:
    code = scope.child(PLAN_FILES_STEP).location if scope is not None else PLAN_FILES_STEP
    return model_for_step(
        code,
        default_model=request.model,
        model_by_step_code=request.model_by_step_code,
    )


def _batch_summary(result: RefactorFilesResult) -> Mapping[str, List[str]]:
    return {"accepted": sorted(result.accepted), "discarded": sorted(result.discarded)}


async def plan_and_refactor(
    request: PlanAndRefactorInput,
    deps: PlanAndRefactorDeps,
) -> PlanAndRefactorResult:
    """Plan and refactor until the planner has nothing left to do."""
    head = await asyncio.to_thread(deps.vcs.current_commit)
    if head != request.start_commit:
        raise GitError(f"Refactor loop expected to start at {request.start_commit}, but HEAD is {head}")

    scope = deps.persistence.child(LOOP_STEP) if deps.persistence is not None else None
    model = _planning_model(request, scope)

    files = RefactorFilesResult()
    records: List[Union[PlanFilesResult, CycleDetected]] = []
    last_batch = RefactorFilesResult()
    state = LoopState.PLANNING
    reason = ""

    while state is not LoopState.TERMINATED:
        if deps.budget is not None and deps.budget.exhausted:
            deps.events.dispatch(ev.budget_exhausted(deps.budget.spent_cents, deps.budget.limit_cents))
            reason = "budget exhausted"
            state = LoopState.TERMINATED
            break

        commit = await asyncio.to_thread(deps.vcs.current_commit)
        plan_request = PlanFilesInput(
            objective=request.objective,
            commit=commit,
            candidates=list(request.candidates),
            model=model,
        )
        try:
            outcome = await deps.plan_files(plan_request, scope)
        except BudgetExhaustedError:
            if deps.budget is not None:
                deps.events.dispatch(
                    ev.budget_exhausted(deps.budget.spent_cents, deps.budget.limit_cents)
                )
            reason = "budget exhausted"
            state = LoopState.TERMINATED
            break

        # A cycle is recorded as the empty plan that replaces it.
        record = (
            outcome.model_copy(update={"planned_files": [], "raw_response": ""})
            if isinstance(outcome, CycleDetected)
            else outcome
        )
        records.append(record)
        deps.events.dispatch(
            ev.plan_files_complete(record, cached=isinstance(record, PlanFilesResult) and record.cached)
        )

        if isinstance(outcome, CycleDetected):
            LOGGER.warning(
                "Planner repeated %s at %s without progress (previous batch: %s); stopping",
                outcome.planned_files,
                commit[:12],
                _batch_summary(last_batch),
            )
            deps.events.dispatch(ev.cycle_detected(outcome.planned_files, commit))
            planned: List[str] = []
            reason = "cycle detected"
        else:
            planned = list(outcome.planned_files)
            reason = "nothing left to plan"

        if not planned:
            state = LoopState.TERMINATED
            break

        state = LoopState.BATCH_EXECUTING
        LOGGER.info("Refactoring %d file(s) at %s: %s", len(planned), commit[:12], ", ".join(planned))
        last_batch = await deps.refactor_batch(
            RefactorBatchInput(objective=request.objective, planned_files=planned, start_commit=commit),
            scope,
        )
        await reset_to_last_accepted_commit(deps.vcs, last_batch, commit)
        files = merge_refactor_files_results(files, last_batch)
        state = LoopState.PLANNING

    deps.events.dispatch(ev.loop_terminated(reason, len(records)))
    LOGGER.info("Loop terminated after %d planning call(s): %s", len(records), reason)
    return PlanAndRefactorResult(
        accepted=files.accepted,
        discarded=files.discarded,
        plan_files_results=records,
        termination_reason=reason,
    )


__all__ = [
    "LOOP_STEP",
    "LoopState",
    "PlanAndRefactorDeps",
    "PlanAndRefactorInput",
    "PlanAndRefactorResult",
    "PlanFilesRecord",
    "plan_and_refactor",
]
