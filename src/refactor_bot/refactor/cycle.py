"""Planning outcomes and detection of plans that repeat without progress."""

from __future__ import annotations

import logging
from typing import List, Literal, Sequence, Set, Union

from pydantic import Field

from .types import RecordModel

LOGGER = logging.getLogger(__name__)


class PlanFilesResult(RecordModel):
    """Ordered files the planner wants changed next, plus its raw rationale."""

    kind: Literal["plan"] = "plan"
    planned_files: List[str] = Field(default_factory=list)
    raw_response: str = ""
    # Set when the plan was loaded from the step cache instead of the model.
    cached: bool = False


class CycleDetected(RecordModel):
    """Planner proposed a plan already seen for the same repository state."""

    kind: Literal["cycle"] = "cycle"
    planned_files: List[str] = Field(default_factory=list)
    commit: str
    raw_response: str = ""


PlanOutcome = Union[PlanFilesResult, CycleDetected]


class CycleDetector:
    """Remember ``(commit, planned files)`` pairs observed during one run."""

    def __init__(self) -> None:
        self._seen: Set[tuple[str, tuple[str, ...]]] = set()

    def observe(self, commit: str, planned_files: Sequence[str]) -> bool:
        """Record a plan; return ``True`` when it repeats an earlier observation.

        Empty plans never form a cycle since they already end the loop.
        """
        if not planned_files:
            return False
        key = (commit, tuple(planned_files))
        if key in self._seen:
            LOGGER.debug("Plan %s repeats at commit %s", list(planned_files), commit[:12])
            return True
        self._seen.add(key)
        return False

    def __len__(self) -> int:
        return len(self._seen)


__all__ = ["CycleDetected", "CycleDetector", "PlanFilesResult", "PlanOutcome"]
