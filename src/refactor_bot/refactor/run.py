"""End-to-end refactor run inside a sandbox clone of the target repository."""

from __future__ import annotations

import asyncio
import logging
import re
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from ..budget import Budget, BudgetExhaustedError
from ..config import RefactorConfig
from ..events import EventSink, LoggingEventSink
from ..models.llm_client import LLMClient
from ..pipeline import Persistence, SqliteCache
from ..tools.checks import ScriptRunner, run_bootstrap_scripts
from ..tools.vcs import GitError, GitRepository
from .enrich_objective import enrich_objective, make_enrich_objective_step
from .plan_and_refactor import (
    PlanAndRefactorDeps,
    PlanAndRefactorInput,
    PlanAndRefactorResult,
    plan_and_refactor,
)
from .plan_files import PlanFiles, make_plan_files_step
from .refactor_batch import BatchSettings, RefactorBatch
from .refactor_file import ModelStepExecutor

LOGGER = logging.getLogger(__name__)

ROOT_LOCATION = "refactor"

_SLUG_RE = re.compile(r"[^a-z0-9]+")


def slugify(value: str) -> str:
    slug = _SLUG_RE.sub("-", value.lower()).strip("-")
    return slug or "refactor"


@dataclass(slots=True)
class RefactorRunResult:
    result: PlanAndRefactorResult
    sandbox_path: Path
    spent_cents: float
    start_commit: str


@dataclass(slots=True, frozen=True)
class RunPaths:
    """Where a named refactor keeps its sandbox and cache."""

    root: Path

    @classmethod
    def for_config(cls, config: RefactorConfig, *, cwd: Optional[Path] = None) -> "RunPaths":
        work_dir = config.work_dir
        if not work_dir.is_absolute():
            work_dir = (cwd or Path.cwd()) / work_dir
        return cls(root=work_dir.resolve() / "refactors" / slugify(config.name))

    @property
    def work_dir(self) -> Path:
        return self.root.parent.parent

    @property
    def sandbox(self) -> Path:
        return self.root / "sandbox"

    @property
    def cache(self) -> Path:
        return self.root / "cache.sqlite"


def _pending_changes(source: GitRepository, work_dir: Path) -> List[Path]:
    """Uncommitted paths of ``source``, ignoring our own work directory."""
    changes: List[Path] = []
    for path in source.working_tree_changes():
        absolute = (source.root / path).resolve()
        if absolute == work_dir or work_dir in absolute.parents:
            continue
        changes.append(path)
    return changes


def prepare_sandbox(config: RefactorConfig, paths: RunPaths, *, cwd: Optional[Path] = None) -> GitRepository:
    """Clone the target repository into the sandbox, honouring the dirty-tree policy."""
    source_repo: Optional[GitRepository] = None
    if config.repository is None:
        source_repo = GitRepository.discover(cwd)
        source: str | Path = source_repo.root
    else:
        candidate = Path(config.repository).expanduser()
        if not candidate.is_absolute() and cwd is not None:
            candidate = cwd / candidate
        if (candidate / ".git").exists():
            source_repo = GitRepository(candidate)
            source = source_repo.root
        else:
            source = config.repository

    pending: List[Path] = []
    if source_repo is not None:
        pending = _pending_changes(source_repo, paths.work_dir)
        if pending and not config.allow_dirty_working_tree:
            raise GitError(
                f"Working tree at {source_repo.root} has uncommitted changes "
                f"({', '.join(p.as_posix() for p in pending[:5])}); commit them or set "
                "allow_dirty_working_tree"
            )

    LOGGER.info("Cloning %s into %s", source, paths.sandbox)
    sandbox = GitRepository.clone(source, paths.sandbox, ref=config.ref)

    if pending and source_repo is not None:
        for relative in pending:
            origin = source_repo.root / relative
            target = sandbox.root / relative
            if origin.is_dir():
                shutil.copytree(origin, target, dirs_exist_ok=True)
            elif origin.exists():
                target.parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(origin, target)
            else:
                target.unlink(missing_ok=True)
        sandbox.commit_all("refactor-bot: include uncommitted changes")
    return sandbox


def list_candidates(repo: GitRepository, include: List[str]) -> List[str]:
    return sorted(path.as_posix() for path in repo.list_tracked_paths(*include))


async def run_refactor(
    config: RefactorConfig,
    client: LLMClient,
    *,
    events: Optional[EventSink] = None,
    cwd: Optional[Path] = None,
) -> RefactorRunResult:
    """Clone, bootstrap, enrich the objective, then plan and refactor."""
    paths = RunPaths.for_config(config, cwd=cwd)
    sandbox = await asyncio.to_thread(prepare_sandbox, config, paths, cwd=cwd)
    if config.bootstrap_scripts:
        await asyncio.to_thread(run_bootstrap_scripts, sandbox.root, config.bootstrap_scripts)

    start_commit = await asyncio.to_thread(sandbox.current_commit)
    budget = Budget(limit_cents=config.budget_cents)
    sink = LoggingEventSink(events)

    with SqliteCache(paths.cache) as cache:
        persistence = Persistence(cache=cache, location=ROOT_LOCATION)
        candidates = await asyncio.to_thread(list_candidates, sandbox, list(config.include))
        LOGGER.info("%d candidate file(s) in %s", len(candidates), sandbox.root)

        objective = config.objective
        if config.enrich_objective:
            try:
                objective = await enrich_objective(
                    make_enrich_objective_step(client, budget=budget),
                    config.objective,
                    candidates,
                    persistence=persistence,
                    default_model=config.model,
                    model_by_step_code=config.model_by_step_code,
                )
            except BudgetExhaustedError:
                LOGGER.warning("Budget exhausted before enriching the objective; using it as given")

        deps = PlanAndRefactorDeps(
            plan_files=PlanFiles(make_plan_files_step(client, budget=budget)),
            refactor_batch=RefactorBatch(
                executor=ModelStepExecutor(client, sandbox),
                validator=ScriptRunner(sandbox.root),
                vcs=sandbox,
                settings=BatchSettings.from_config(config),
                events=sink,
                budget=budget,
            ),
            vcs=sandbox,
            events=sink,
            budget=budget,
            persistence=persistence,
        )
        result = await plan_and_refactor(
            PlanAndRefactorInput(
                objective=objective,
                start_commit=start_commit,
                candidates=candidates,
                model=config.model,
                model_by_step_code=dict(config.model_by_step_code),
            ),
            deps,
        )

    return RefactorRunResult(
        result=result,
        sandbox_path=sandbox.root,
        spent_cents=budget.spent_cents,
        start_commit=start_commit,
    )


__all__ = [
    "ROOT_LOCATION",
    "RefactorRunResult",
    "RunPaths",
    "list_candidates",
    "prepare_sandbox",
    "run_refactor",
    "slugify",
]
