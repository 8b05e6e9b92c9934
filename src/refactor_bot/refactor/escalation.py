"""Model selection per step and escalation to costlier models on retry."""

from __future__ import annotations

from dataclasses import dataclass, field
from fnmatch import fnmatchcase
from typing import Mapping, Optional


@dataclass(slots=True, frozen=True)
class ModelEscalationPolicy:
    """One-hop mapping from a model to the costlier model used on retry."""

    fallbacks: Mapping[str, str] = field(default_factory=dict)

    def next_model(self, model: str) -> Optional[str]:
        """Return the model to retry with, or ``None`` when escalation stops."""
        candidate = self.fallbacks.get(model)
        if not candidate or candidate == model:
            return None
        return candidate


def model_for_step(
    step_code: str,
    *,
    default_model: str,
    model_by_step_code: Mapping[str, str] | None = None,
) -> str:
    """Pick the model for ``step_code``; the first matching glob pattern wins."""
    for pattern, model in (model_by_step_code or {}).items():
        if fnmatchcase(step_code, pattern):
            return model
    return default_model


__all__ = ["ModelEscalationPolicy", "model_for_step"]
