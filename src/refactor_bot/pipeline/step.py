"""Memoized asynchronous pipeline steps.

A :class:`PipelineStep` wraps an async transform ``(input, persistence) ->
result``. Inputs are validated into their pydantic model, fingerprinted from
their canonical encoding, and the validated result is stored in the cache
backend carried by :class:`Persistence`. A later execution with the same
fingerprint at the same step location returns the stored result without
running the transform again, which makes a run resumable after a crash.

Side effects performed by the transform are *not* replayed on a cache hit;
callers that need notifications must emit them after ``execute`` returns.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

from pydantic import ValidationError
from pydantic.type_adapter import TypeAdapter

from .cache import CacheBackend, CacheEntry, InMemoryCache
from .fingerprint import fingerprint, to_jsonable

LOGGER = logging.getLogger(__name__)

InputT = TypeVar("InputT")
ResultT = TypeVar("ResultT")


@dataclass(slots=True, frozen=True)
class Persistence:
    """Cache backend plus the location of the step currently executing."""

    cache: CacheBackend
    location: str = ""

    @classmethod
    def in_memory(cls, location: str = "") -> "Persistence":
        return cls(cache=InMemoryCache(), location=location)

    def child(self, name: str) -> "Persistence":
        """Return the context handed to steps nested under ``name``."""
        location = f"{self.location}/{name}" if self.location else name
        return Persistence(cache=self.cache, location=location)


Transform = Callable[[Any, Optional[Persistence]], Awaitable[Any]]


class PipelineStep(Generic[InputT, ResultT]):
    """Named, cacheable async transform with validated input and result."""

    def __init__(
        self,
        *,
        name: str,
        input_model: type[InputT],
        result_model: type[ResultT],
        transform: Transform,
    ) -> None:
        self.name = name
        self.input_model = input_model
        self.result_model = result_model
        self._transform = transform
        self._input_adapter = TypeAdapter(input_model)
        self._result_adapter = TypeAdapter(result_model)

    def __repr__(self) -> str:
        return f"PipelineStep(name={self.name!r})"

    def step_code(self, persistence: Persistence | None) -> str:
        """Hierarchical code of this step when executed under ``persistence``."""
        if persistence is None:
            return self.name
        return persistence.child(self.name).location

    def cache_key(self, payload: Any, persistence: Persistence) -> str:
        request = self._coerce_input(payload)
        return f"{self.step_code(persistence)}:{fingerprint(request)}"

    async def execute(self, payload: Any, persistence: Persistence | None = None) -> ResultT:
        """Run the step, or return its cached result for an identical input."""
        result, _ = await self.execute_traced(payload, persistence)
        return result

    async def execute_traced(
        self,
        payload: Any,
        persistence: Persistence | None = None,
    ) -> tuple[ResultT, bool]:
        """Like :meth:`execute` but also report whether the cache was hit."""
        request = self._coerce_input(payload)
        if persistence is None:
            raw = await self._transform(request, None)
            return self._coerce_result(raw), False

        scope = persistence.child(self.name)
        digest = fingerprint(request)
        key = f"{scope.location}:{digest}"

        entry = scope.cache.get(key)
        if entry is not None:
            LOGGER.debug("Cache hit for %s (%s)", scope.location, digest[:12])
            return self._coerce_result(entry.output), True

        started = time.perf_counter()
        raw = await self._transform(request, scope)
        result = self._coerce_result(raw)
        elapsed_ms = int((time.perf_counter() - started) * 1000)
        scope.cache.put(
            CacheEntry(
                key=key,
                output=to_jsonable(result),
                metadata={
                    "step": scope.location,
                    "fingerprint": digest,
                    "duration_ms": elapsed_ms,
                },
                created_at=datetime.now(timezone.utc),
            )
        )
        LOGGER.debug("Executed %s in %d ms (%s)", scope.location, elapsed_ms, digest[:12])
        return result, False

    def _coerce_input(self, payload: Any) -> InputT:
        if isinstance(self.input_model, type) and isinstance(payload, self.input_model):
            return payload
        try:
            return self._input_adapter.validate_python(payload)
        except ValidationError as error:
            raise ValueError(f"Input for step '{self.name}' did not validate: {error}") from error

    def _coerce_result(self, payload: Any) -> ResultT:
        if isinstance(self.result_model, type) and isinstance(payload, self.result_model):
            return payload
        try:
            return self._result_adapter.validate_python(payload)
        except ValidationError as error:
            raise ValueError(f"Result of step '{self.name}' did not validate: {error}") from error


def pipeline_step(
    *,
    name: str,
    input_model: type[InputT],
    result_model: type[ResultT],
) -> Callable[[Transform], PipelineStep[InputT, ResultT]]:
    """Decorator turning an async transform into a :class:`PipelineStep`."""

    def _wrap(transform: Transform) -> PipelineStep[InputT, ResultT]:
        return PipelineStep(
            name=name,
            input_model=input_model,
            result_model=result_model,
            transform=transform,
        )

    return _wrap


__all__ = ["Persistence", "PipelineStep", "Transform", "pipeline_step"]
