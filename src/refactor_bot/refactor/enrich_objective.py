"""Add repository facts to the objective before planning starts."""

from __future__ import annotations

from typing import List, Mapping, Optional, Sequence

from pydantic import Field

from ..budget import Budget
from ..models.llm_client import LLMClient, LLMRequest, LLMResponseFormatError
from ..pipeline import Persistence, PipelineStep
from ..prompts import SYSTEM_PROMPT, render_enrich_prompt
from .escalation import model_for_step
from .types import RecordModel

ENRICH_OBJECTIVE_STEP = "enrich-objective"


class EnrichObjectiveInput(RecordModel):
    objective: str
    tracked_files: List[str] = Field(default_factory=list)
    model: str


class EnrichObjectiveResult(RecordModel):
    enriched_objective: str


def combine_objective(objective: str, reply: str) -> str:
    """Append the model's findings below the original objective."""
    return f"{objective.strip()}\n\n{reply.strip()}"


def make_enrich_objective_step(
    client: LLMClient,
    *,
    budget: Optional[Budget] = None,
) -> PipelineStep[EnrichObjectiveInput, EnrichObjectiveResult]:
    async def _enrich(
        request: EnrichObjectiveInput,
        scope: Optional[Persistence],
    ) -> EnrichObjectiveResult:
        completion = await client.complete(
            LLMRequest(
                prompt=render_enrich_prompt(request.objective, request.tracked_files),
                system_prompt=SYSTEM_PROMPT,
                model=request.model,
                temperature=1.0,
                budget=budget,
                label=scope.location if scope else ENRICH_OBJECTIVE_STEP,
            )
        )
        if not completion.text.strip():
            raise LLMResponseFormatError("Objective enrichment returned no text.")
        return EnrichObjectiveResult(
            enriched_objective=combine_objective(request.objective, completion.text)
        )

    return PipelineStep(
        name=ENRICH_OBJECTIVE_STEP,
        input_model=EnrichObjectiveInput,
        result_model=EnrichObjectiveResult,
        transform=_enrich,
    )


async def enrich_objective(
    step: PipelineStep[EnrichObjectiveInput, EnrichObjectiveResult],
    objective: str,
    tracked_files: Sequence[str],
    *,
    persistence: Optional[Persistence],
    default_model: str,
    model_by_step_code: Mapping[str, str] | None = None,
) -> str:
    """Return ``objective`` extended with facts gathered by the model."""
    model = model_for_step(
        step.step_code(persistence),
        default_model=default_model,
        model_by_step_code=model_by_step_code,
    )
    result = await step.execute(
        EnrichObjectiveInput(objective=objective, tracked_files=list(tracked_files), model=model),
        persistence,
    )
    return result.enriched_objective


__all__ = [
    "ENRICH_OBJECTIVE_STEP",
    "EnrichObjectiveInput",
    "EnrichObjectiveResult",
    "combine_objective",
    "enrich_objective",
    "make_enrich_objective_step",
]
