"""Edit and validate the planned files of one batch, in plan order."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Protocol, Sequence, Tuple

from pydantic import Field

from .. import events as ev
from ..budget import Budget, BudgetExhaustedError
from ..config import RefactorConfig, ScriptSpec
from ..events import EventSink, NullEventSink
from ..models.llm_client import RETRYABLE_ERRORS
from ..pipeline import Persistence, PipelineStep
from .escalation import ModelEscalationPolicy, model_for_step
from .refactor_file import GENERATE_EDIT_STEP, EditExecutor, EditRequest, UnreadableFileError
from .types import (
    Issue,
    RecordModel,
    RefactorFailure,
    RefactorFilesResult,
    RefactorResult,
    RefactorStepResult,
    RefactorSuccess,
    push_result,
)

LOGGER = logging.getLogger(__name__)

REFACTOR_BATCH_STEP = "refactor-batch"
BASELINE_ISSUES_STEP = "baseline-issues"


class RefactorBatchInput(RecordModel):
    objective: str
    planned_files: List[str]
    start_commit: str


class BaselineInput(RecordModel):
    commit: str
    script: ScriptSpec
    files: List[str] = Field(default_factory=list)


class BaselineIssues(RecordModel):
    issues: List[Issue] = Field(default_factory=list)


class ValidationRunner(Protocol):
    async def run_async(
        self,
        spec: ScriptSpec,
        changed_files: Sequence[str],
        commit: str,
    ) -> List[Issue]: ...


class VersionControl(Protocol):
    def current_commit(self) -> str: ...

    def commit_all(self, message: str) -> Optional[str]: ...

    def reset_to(self, commit: str) -> None: ...

    def restore_tree(self, commit: str, message: str) -> Optional[str]: ...


class BatchRefactorer(Protocol):
    async def __call__(
        self,
        request: RefactorBatchInput,
        persistence: Optional[Persistence],
    ) -> RefactorFilesResult: ...


@dataclass(slots=True)
class BatchSettings:
    """Validation scripts and model choices for editing files."""

    lint_scripts: Sequence[ScriptSpec] = ()
    test_scripts: Sequence[ScriptSpec] = ()
    default_model: str = "gpt-4o-mini"
    model_by_step_code: Mapping[str, str] = field(default_factory=dict)
    escalation: ModelEscalationPolicy = field(default_factory=ModelEscalationPolicy)
    max_attempts: int = 3

    @classmethod
    def from_config(cls, config: RefactorConfig) -> "BatchSettings":
        return cls(
            lint_scripts=tuple(config.lint_scripts),
            test_scripts=tuple(config.test_scripts),
            default_model=config.model,
            model_by_step_code=dict(config.model_by_step_code),
            escalation=ModelEscalationPolicy(dict(config.use_more_expensive_models_on_retry)),
            max_attempts=config.max_attempts,
        )


class RefactorBatch:
    """Apply one plan: edit each file, keep what validates, neutralise the rest."""

    def __init__(
        self,
        *,
        executor: EditExecutor,
        validator: ValidationRunner,
        vcs: VersionControl,
        settings: BatchSettings,
        events: Optional[EventSink] = None,
        budget: Optional[Budget] = None,
    ) -> None:
        self._executor = executor
        self._validator = validator
        self._vcs = vcs
        self._settings = settings
        self._events = events or NullEventSink()
        self._budget = budget
        self._baseline_step: PipelineStep[BaselineInput, BaselineIssues] = PipelineStep(
            name=BASELINE_ISSUES_STEP,
            input_model=BaselineInput,
            result_model=BaselineIssues,
            transform=self._collect_baseline,
        )

    async def __call__(
        self,
        request: RefactorBatchInput,
        persistence: Optional[Persistence],
    ) -> RefactorFilesResult:
        scope = persistence.child(REFACTOR_BATCH_STEP) if persistence is not None else None
        accepted: Dict[str, List[RefactorResult]] = {}
        discarded: Dict[str, List[RefactorFailure]] = {}
        last_good = request.start_commit

        for file_path in request.planned_files:
            if self._budget is not None and self._budget.exhausted:
                self._report_budget(self._budget, f"before {file_path}")
                break
            try:
                outcome = await self._refactor_file(file_path, request.objective, last_good, scope)
            except BudgetExhaustedError:
                if self._budget is not None:
                    self._report_budget(self._budget, f"while editing {file_path}")
                break

            if isinstance(outcome, RefactorSuccess):
                accepted = push_result(accepted, outcome, file_path)
                last_good = outcome.last_commit or last_good
            else:
                discarded = push_result(discarded, outcome, file_path)
                if outcome.last_commit is not None:
                    await asyncio.to_thread(
                        self._vcs.restore_tree,
                        last_good,
                        f"refactor-bot: discard changes to {file_path}",
                    )
            self._events.dispatch(
                ev.refactor_file_complete(outcome, accepted=isinstance(outcome, RefactorSuccess))
            )

        self._events.dispatch(ev.batch_complete(list(accepted), list(discarded), last_good))
        return RefactorFilesResult(accepted=accepted, discarded=discarded)

    async def _refactor_file(
        self,
        file_path: str,
        objective: str,
        base_commit: str,
        scope: Optional[Persistence],
    ) -> RefactorResult:
        settings = self._settings
        edit_code = scope.child(GENERATE_EDIT_STEP).location if scope else GENERATE_EDIT_STEP
        model = model_for_step(
            edit_code,
            default_model=settings.default_model,
            model_by_step_code=settings.model_by_step_code,
        )
        baseline = await self._baseline(file_path, base_commit, scope)

        for attempt in range(1, settings.max_attempts + 1):
            try:
                step = await self._executor(
                    EditRequest(
                        file_path=file_path,
                        objective=objective,
                        model=model,
                        attempt=attempt,
                        budget=self._budget,
                    ),
                    scope,
                )
            except UnreadableFileError as error:
                LOGGER.warning("Skipping %s: %s", file_path, error)
                return RefactorFailure(file_path=file_path, failure_description=f"unreadable file: {error}")
            except RETRYABLE_ERRORS as error:
                next_model = settings.escalation.next_model(model)
                if next_model is None or attempt >= settings.max_attempts:
                    LOGGER.warning("Giving up on %s after %d attempt(s): %s", file_path, attempt, error)
                    return RefactorFailure(
                        file_path=file_path,
                        failure_description=f"unusable model output after {attempt} attempt(s): {error}",
                    )
                LOGGER.warning(
                    "Escalating %s from %s to %s after: %s", file_path, model, next_model, error
                )
                self._events.dispatch(ev.model_escalated(file_path, model, next_model, str(error)))
                model = next_model
                continue

            if step is None:
                return RefactorFailure(file_path=file_path, failure_description="no changes")
            return await self._classify(file_path, step, baseline)

        raise AssertionError("unreachable: every attempt returns or continues")  # pragma: no cover

    async def _classify(
        self,
        file_path: str,
        step: RefactorStepResult,
        baseline: Sequence[List[Issue]],
    ) -> RefactorResult:
        scripts = self._scripts()
        for category in ("lint", "test"):
            fresh: List[Issue] = []
            for index, (kind, spec) in enumerate(scripts):
                if kind != category:
                    continue
                known = {issue.identity() for issue in baseline[index]}
                current = await self._validator.run_async(spec, self._files_for(spec, file_path), step.commit)
                fresh.extend(issue for issue in current if issue.identity() not in known)
            if fresh:
                first = fresh[0]
                location = f"{first.file_path}: " if first.file_path else ""
                return RefactorFailure(
                    file_path=file_path,
                    issues=fresh,
                    steps=[step],
                    last_commit=step.commit,
                    failure_description=f"{category} issues: {location}{first.issue}",
                )
        return RefactorSuccess(file_path=file_path, steps=[step], last_commit=step.commit)

    async def _baseline(
        self,
        file_path: str,
        commit: str,
        scope: Optional[Persistence],
    ) -> List[List[Issue]]:
        """Issues present before the edit, one list per script in :meth:`_scripts` order."""
        baseline: List[List[Issue]] = []
        for _, spec in self._scripts():
            result = await self._baseline_step.execute(
                BaselineInput(commit=commit, script=spec, files=self._files_for(spec, file_path)),
                scope,
            )
            baseline.append(list(result.issues))
        return baseline

    def _scripts(self) -> List[Tuple[str, ScriptSpec]]:
        # Positional, so specs sharing a command keep separate baselines.
        settings = self._settings
        return [("lint", spec) for spec in settings.lint_scripts] + [
            ("test", spec) for spec in settings.test_scripts
        ]

    async def _collect_baseline(self, request: BaselineInput, scope: Optional[Persistence]) -> BaselineIssues:
        issues = await self._validator.run_async(request.script, request.files, request.commit)
        return BaselineIssues(issues=issues)

    @staticmethod
    def _files_for(spec: ScriptSpec, file_path: str) -> List[str]:
        return [file_path] if spec.supports_file_filtering else []

    def _report_budget(self, budget: Budget, context: str) -> None:
        LOGGER.warning(
            "Budget exhausted %s; skipping the rest of the batch (spent %.2f of %.2f cents)",
            context,
            budget.spent_cents,
            budget.limit_cents,
        )
        self._events.dispatch(ev.budget_exhausted(budget.spent_cents, budget.limit_cents))


__all__ = [
    "BASELINE_ISSUES_STEP",
    "BaselineInput",
    "BaselineIssues",
    "BatchRefactorer",
    "BatchSettings",
    "REFACTOR_BATCH_STEP",
    "RefactorBatch",
    "RefactorBatchInput",
    "ValidationRunner",
    "VersionControl",
]
