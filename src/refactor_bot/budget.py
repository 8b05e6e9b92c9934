"""Monetary budget shared by every model call of a run."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Mapping

LOGGER = logging.getLogger(__name__)

# Cents per 1K tokens as (prompt, completion).
MODEL_PRICES_CENTS: Dict[str, tuple[float, float]] = {
    "gpt-4o-mini": (0.015, 0.06),
    "gpt-4o": (0.25, 1.0),
    "gpt-4.1-mini": (0.04, 0.16),
    "gpt-4.1": (0.2, 0.8),
    "gpt-4-turbo": (1.0, 3.0),
    "gpt-4": (3.0, 6.0),
    "gpt-3.5-turbo": (0.05, 0.15),
}
DEFAULT_PRICE_CENTS: tuple[float, float] = (1.0, 3.0)


class BudgetExhaustedError(RuntimeError):
    """Raised when a model call is requested after the budget has been spent."""


def estimate_cost_cents(
    model: str,
    prompt_tokens: int,
    completion_tokens: int,
    *,
    prices: Mapping[str, tuple[float, float]] = MODEL_PRICES_CENTS,
) -> float:
    """Return the cost of a completion in cents."""
    prompt_rate, completion_rate = prices.get(model, DEFAULT_PRICE_CENTS)
    return (prompt_tokens / 1000.0) * prompt_rate + (completion_tokens / 1000.0) * completion_rate


@dataclass(slots=True)
class Budget:
    """Running total of spend against a fixed limit."""

    limit_cents: float
    spent_cents: float = 0.0
    charges: list[tuple[str, float]] = field(default_factory=list)

    @property
    def remaining_cents(self) -> float:
        return max(self.limit_cents - self.spent_cents, 0.0)

    @property
    def exhausted(self) -> bool:
        return self.spent_cents >= self.limit_cents

    def ensure_available(self) -> None:
        if self.exhausted:
            raise BudgetExhaustedError(
                f"Budget of {self.limit_cents:.2f} cents exhausted (spent {self.spent_cents:.2f})."
            )

    def charge(self, cents: float, *, label: str = "") -> None:
        if cents < 0:
            raise ValueError("Charges must be non-negative.")
        self.spent_cents += cents
        self.charges.append((label, cents))
        if self.exhausted:
            LOGGER.warning(
                "Budget exhausted after %s: spent %.2f of %.2f cents",
                label or "charge",
                self.spent_cents,
                self.limit_cents,
            )


__all__ = [
    "Budget",
    "BudgetExhaustedError",
    "DEFAULT_PRICE_CENTS",
    "MODEL_PRICES_CENTS",
    "estimate_cost_cents",
]
