"""Event sink used to observe planning and refactoring progress."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Protocol, Sequence, runtime_checkable

from .pipeline.fingerprint import to_jsonable

LOGGER = logging.getLogger(__name__)

PLAN_FILES_COMPLETE = "plan-files-complete"
CYCLE_DETECTED = "cycle-detected"
REFACTOR_FILE_COMPLETE = "refactor-file-complete"
MODEL_ESCALATED = "model-escalated"
BATCH_COMPLETE = "batch-complete"
BUDGET_EXHAUSTED = "budget-exhausted"
LOOP_TERMINATED = "loop-terminated"


@dataclass(slots=True, frozen=True)
class Event:
    """Notification emitted by the control loop."""

    type: str
    data: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@runtime_checkable
class EventSink(Protocol):
    """Fire-and-forget notification channel."""

    def dispatch(self, event: Event) -> None: ...


class NullEventSink:
    """Sink that drops every event."""

    def dispatch(self, event: Event) -> None:
        return None


class ListEventSink:
    """Sink that records events in dispatch order; handy for assertions."""

    def __init__(self) -> None:
        self.events: List[Event] = []

    def dispatch(self, event: Event) -> None:
        self.events.append(event)

    def of_type(self, event_type: str) -> List[Event]:
        return [event for event in self.events if event.type == event_type]


class LoggingEventSink:
    """Mirror events to the standard logger, then forward them."""

    def __init__(self, forward: EventSink | None = None, *, logger: logging.Logger | None = None) -> None:
        self._forward = forward
        self._logger = logger or LOGGER

    def dispatch(self, event: Event) -> None:
        self._logger.info("%s %s", event.type, _summarise(event.data))
        if self._forward is not None:
            self._forward.dispatch(event)


def _summarise(data: Dict[str, Any]) -> str:
    parts = []
    for key, value in data.items():
        if key == "raw_response":
            continue
        if isinstance(value, list):
            value = ", ".join(str(item) for item in value) or "-"
        parts.append(f"{key}={value}")
    return " ".join(parts)


def plan_files_complete(result: Any, *, cached: bool = False) -> Event:
    payload = to_jsonable(result)
    return Event(
        PLAN_FILES_COMPLETE,
        {
            "kind": payload.get("kind", "plan"),
            "planned_files": list(payload.get("planned_files", [])),
            "raw_response": payload.get("raw_response", ""),
            "cached": cached,
        },
    )


def cycle_detected(planned_files: Sequence[str], commit: str) -> Event:
    return Event(CYCLE_DETECTED, {"planned_files": list(planned_files), "commit": commit})


def refactor_file_complete(result: Any, *, accepted: bool) -> Event:
    payload = to_jsonable(result)
    return Event(
        REFACTOR_FILE_COMPLETE,
        {
            "file_path": payload.get("file_path"),
            "status": payload.get("status"),
            "accepted": accepted,
            "last_commit": payload.get("last_commit"),
            "failure_description": payload.get("failure_description"),
        },
    )


def model_escalated(file_path: str, from_model: str, to_model: str, reason: str) -> Event:
    return Event(
        MODEL_ESCALATED,
        {"file_path": file_path, "from_model": from_model, "to_model": to_model, "reason": reason},
    )


def batch_complete(accepted: Sequence[str], discarded: Sequence[str], commit: str) -> Event:
    return Event(
        BATCH_COMPLETE,
        {"accepted": list(accepted), "discarded": list(discarded), "commit": commit},
    )


def budget_exhausted(spent_cents: float, limit_cents: float) -> Event:
    return Event(BUDGET_EXHAUSTED, {"spent_cents": spent_cents, "limit_cents": limit_cents})


def loop_terminated(reason: str, planning_calls: int) -> Event:
    return Event(LOOP_TERMINATED, {"reason": reason, "planning_calls": planning_calls})


__all__ = [
    "BATCH_COMPLETE",
    "BUDGET_EXHAUSTED",
    "CYCLE_DETECTED",
    "Event",
    "EventSink",
    "LOOP_TERMINATED",
    "ListEventSink",
    "LoggingEventSink",
    "MODEL_ESCALATED",
    "NullEventSink",
    "PLAN_FILES_COMPLETE",
    "REFACTOR_FILE_COMPLETE",
    "batch_complete",
    "budget_exhausted",
    "cycle_detected",
    "loop_terminated",
    "model_escalated",
    "plan_files_complete",
    "refactor_file_complete",
]
