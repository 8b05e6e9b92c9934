from __future__ import annotations

import asyncio
from typing import List, Optional

import pytest
from pydantic import BaseModel

from refactor_bot.pipeline import InMemoryCache, Persistence, PipelineStep, SqliteCache, pipeline_step


class Greeting(BaseModel):
    name: str
    punctuation: str = "!"


class Reply(BaseModel):
    text: str


def _counting_step(calls: List[str]) -> PipelineStep[Greeting, Reply]:
    async def _greet(request: Greeting, scope: Optional[Persistence]) -> Reply:
        calls.append(request.name)
        return Reply(text=f"hello {request.name}{request.punctuation}")

    return PipelineStep(name="greet", input_model=Greeting, result_model=Reply, transform=_greet)


def test_identical_inputs_execute_transform_once() -> None:
    calls: List[str] = []
    step = _counting_step(calls)
    persistence = Persistence.in_memory("root")

    first = asyncio.run(step.execute({"name": "ada"}, persistence))
    second = asyncio.run(step.execute(Greeting(name="ada"), persistence))

    assert calls == ["ada"]
    assert first == second == Reply(text="hello ada!")


def test_different_inputs_miss_the_cache() -> None:
    calls: List[str] = []
    step = _counting_step(calls)
    persistence = Persistence.in_memory()

    asyncio.run(step.execute({"name": "ada"}, persistence))
    asyncio.run(step.execute({"name": "ada", "punctuation": "?"}, persistence))

    assert calls == ["ada", "ada"]


def test_execute_traced_reports_cache_hits() -> None:
    step = _counting_step([])
    persistence = Persistence.in_memory()

    _, cached_first = asyncio.run(step.execute_traced({"name": "bo"}, persistence))
    _, cached_second = asyncio.run(step.execute_traced({"name": "bo"}, persistence))

    assert (cached_first, cached_second) == (False, True)


def test_without_persistence_every_call_runs() -> None:
    calls: List[str] = []
    step = _counting_step(calls)

    asyncio.run(step.execute({"name": "ada"}))
    asyncio.run(step.execute({"name": "ada"}))

    assert calls == ["ada", "ada"]


def test_cache_key_uses_hierarchical_step_code() -> None:
    step = _counting_step([])
    persistence = Persistence.in_memory("refactor").child("loop")

    assert step.step_code(persistence) == "refactor/loop/greet"
    assert step.cache_key({"name": "x"}, persistence).startswith("refactor/loop/greet:")
    assert step.step_code(None) == "greet"


def test_nested_steps_receive_child_location() -> None:
    cache = InMemoryCache()
    seen_locations: List[str] = []

    @pipeline_step(name="inner", input_model=Greeting, result_model=Reply)
    async def inner(request: Greeting, scope: Optional[Persistence]) -> Reply:
        assert scope is not None
        seen_locations.append(scope.location)
        return Reply(text=request.name.upper())

    @pipeline_step(name="outer", input_model=Greeting, result_model=Reply)
    async def outer(request: Greeting, scope: Optional[Persistence]) -> Reply:
        return await inner.execute(request, scope)

    root = Persistence(cache=cache, location="refactor")
    result = asyncio.run(outer.execute({"name": "ada"}, root))

    assert result.text == "ADA"
    assert seen_locations == ["refactor/outer/inner"]
    assert cache.has(outer.cache_key({"name": "ada"}, root))
    assert cache.has(inner.cache_key({"name": "ada"}, root.child("outer")))
    assert len(cache) == 2


def test_cached_results_are_revalidated_into_the_result_model() -> None:
    step = _counting_step([])
    persistence = Persistence.in_memory()
    asyncio.run(step.execute({"name": "ada"}, persistence))

    result = asyncio.run(step.execute({"name": "ada"}, persistence))

    assert isinstance(result, Reply)


def test_invalid_input_raises_value_error() -> None:
    step = _counting_step([])
    with pytest.raises(ValueError, match="greet"):
        asyncio.run(step.execute({"punctuation": "!"}, Persistence.in_memory()))


def test_durable_cache_survives_reopen(tmp_path) -> None:
    calls: List[str] = []
    step = _counting_step(calls)
    db_path = tmp_path / "cache.sqlite"

    with SqliteCache(db_path) as cache:
        first = asyncio.run(step.execute({"name": "ada"}, Persistence(cache=cache, location="run")))

    with SqliteCache(db_path) as cache:
        second = asyncio.run(step.execute({"name": "ada"}, Persistence(cache=cache, location="run")))
        entries = cache.list_entries("run/greet")

    assert calls == ["ada"]
    assert first == second
    assert len(entries) == 1
    assert entries[0].metadata["step"] == "run/greet"
    assert "duration_ms" in entries[0].metadata
