"""
Planning, editing and validation steps of a refactor run.
"""

from importlib import import_module
from typing import Any

_EXPORTS = {
    "CycleDetected": "cycle",
    "PlanFilesResult": "cycle",
    "ModelEscalationPolicy": "escalation",
    "model_for_step": "escalation",
    "PlanAndRefactorDeps": "plan_and_refactor",
    "PlanAndRefactorInput": "plan_and_refactor",
    "PlanAndRefactorResult": "plan_and_refactor",
    "plan_and_refactor": "plan_and_refactor",
    "PlanFiles": "plan_files",
    "PlanFilesInput": "plan_files",
    "BatchSettings": "refactor_batch",
    "RefactorBatch": "refactor_batch",
    "RefactorRunResult": "run",
    "run_refactor": "run",
    "RefactorFailure": "types",
    "RefactorFilesResult": "types",
    "RefactorSuccess": "types",
    "merge_refactor_files_results": "types",
}

__all__ = sorted(_EXPORTS)


def __getattr__(name: str) -> Any:
    """Lazily import submodules so ``refactor.types`` stays cheap to import."""
    if name in _EXPORTS:
        module = import_module(f"{__name__}.{_EXPORTS[name]}")
        return getattr(module, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
