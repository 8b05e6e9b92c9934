from __future__ import annotations

import json
import sys
from typing import Any, Dict

import pytest
from typer.testing import CliRunner

from refactor_bot import cli
from refactor_bot.config import load_config
from refactor_bot.models import LLMClient, RawCompletion
from refactor_bot.pipeline import CacheEntry, SqliteCache
from refactor_bot.refactor.plan_and_refactor import PlanAndRefactorResult
from refactor_bot.refactor.run import RefactorRunResult, RunPaths
from refactor_bot.refactor.types import RefactorFailure, RefactorStepResult, RefactorSuccess


class _OneFileClient(LLMClient):
    def __init__(self) -> None:
        super().__init__("gpt-4o-mini", retry_delay=0.0)
        self.plans = [["src/pkg/a.py"], []]

    def _raw_invoke(self, payload: Dict[str, Any]) -> RawCompletion:
        prompt = payload["messages"][-1]["content"]
        if "## Candidate Files" in prompt:
            return RawCompletion(json.dumps(self.plans.pop(0)))
        if "## File `src/pkg/a.py`" in prompt:
            return RawCompletion('```python\n"""Adds."""\n\n\ndef add(left, right):\n    return left + right\n```')
        raise AssertionError(prompt[:60])


def _write_config(tmp_path, git_repo):
    config_path = tmp_path / "refactor.yaml"
    lines = [
        "name: Docstrings",
        "objective: Add module docstrings",
        f"repository: {git_repo.root.as_posix()}",
        f"work_dir: {(tmp_path / 'work').as_posix()}",
        "enrich_objective: false",
        "test_scripts: []",
        "lint_scripts:",
        f"  - args: [{json.dumps(sys.executable)}, -c, 'pass']",
    ]
    config_path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return config_path


def test_run_prints_summary(tmp_path, git_repo, monkeypatch) -> None:
    config_path = _write_config(tmp_path, git_repo)
    monkeypatch.setattr(cli, "_build_client", lambda config: _OneFileClient())

    result = CliRunner().invoke(cli.app, ["run", "--config", str(config_path)], catch_exceptions=False)

    assert result.exit_code == 0, result.output
    assert "Refactor summary:" in result.output
    assert "  - src/pkg/a.py (" in result.output
    assert "- Stopped: nothing left to plan" in result.output
    assert "- Planning calls: 2" in result.output


def test_summary_reports_each_file_once_by_final_status(tmp_path, git_repo, monkeypatch) -> None:
    config_path = _write_config(tmp_path, git_repo)
    step = RefactorStepResult(task="edit", file_contents="x\n", commit="c2c2c2c2c2c2c2c2")
    result = PlanAndRefactorResult(
        accepted={"src/pkg/a.py": [RefactorSuccess(file_path="src/pkg/a.py", steps=[step], last_commit=step.commit)]},
        discarded={
            "src/pkg/a.py": [RefactorFailure(file_path="src/pkg/a.py", failure_description="lint issues")],
            "src/pkg/b.py": [RefactorFailure(file_path="src/pkg/b.py", failure_description="no changes")],
        },
        termination_reason="nothing left to plan",
    )

    async def fake_run(config, client):
        return RefactorRunResult(result=result, sandbox_path=tmp_path, spent_cents=0.0, start_commit="c0")

    monkeypatch.setattr(cli, "_build_client", lambda config: _OneFileClient())
    monkeypatch.setattr(cli, "run_refactor", fake_run)

    output = CliRunner().invoke(cli.app, ["run", "--config", str(config_path)], catch_exceptions=False).output

    assert output.count("src/pkg/a.py") == 1
    assert "  - src/pkg/a.py (c2c2c2c2c2c2)" in output
    assert "  - src/pkg/b.py: no changes" in output
    assert "lint issues" not in output


def test_run_without_api_key_exits(tmp_path, git_repo, monkeypatch) -> None:
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    config_path = _write_config(tmp_path, git_repo)

    result = CliRunner().invoke(cli.app, ["run", "--config", str(config_path)])

    assert result.exit_code == 1
    assert "OPENAI_API_KEY" in result.output


def test_run_reports_dirty_tree(tmp_path, git_repo, monkeypatch) -> None:
    git_repo.write("src/pkg/a.py", "changed = True\n")
    config_path = _write_config(tmp_path, git_repo)
    monkeypatch.setattr(cli, "_build_client", lambda config: _OneFileClient())

    result = CliRunner().invoke(cli.app, ["run", "--config", str(config_path)])

    assert result.exit_code == 1
    assert "Refactor failed:" in result.output


def test_invalid_config_exits_with_message(tmp_path) -> None:
    config_path = tmp_path / "refactor.yaml"
    config_path.write_text("name: x\nobjective: y\nmax_attempts: 0\n", encoding="utf-8")

    result = CliRunner().invoke(cli.app, ["cache-list", "--config", str(config_path)])

    assert result.exit_code == 1
    assert "Invalid configuration" in result.output


def test_missing_config_is_a_usage_error(tmp_path) -> None:
    result = CliRunner().invoke(cli.app, ["cache-list", "--config", str(tmp_path / "absent.yaml")])

    assert result.exit_code == 2


def test_cache_list_and_clear(tmp_path, git_repo) -> None:
    config_path = _write_config(tmp_path, git_repo)
    runner = CliRunner()

    empty = runner.invoke(cli.app, ["cache-list", "--config", str(config_path)])
    assert "No cache recorded yet." in empty.output

    cache_path = RunPaths.for_config(load_config(config_path)).cache
    cache_path.parent.mkdir(parents=True)
    with SqliteCache(cache_path) as cache:
        cache.put(CacheEntry(key="refactor/loop/plan-files:abc", output={}, metadata={"duration_ms": 12}))
        cache.put(CacheEntry(key="refactor/enrich-objective:def", output={}))

    listed = runner.invoke(cli.app, ["cache-list", "--config", str(config_path), "--prefix", "refactor/loop"])
    assert listed.exit_code == 0
    assert "refactor/loop/plan-files:abc (12 ms)" in listed.output
    assert "enrich-objective" not in listed.output

    cleared = runner.invoke(cli.app, ["cache-clear", "--config", str(config_path), "--prefix", "refactor/loop"])
    assert "Removed 1 cached entry." in cleared.output
    cleared_all = runner.invoke(cli.app, ["cache-clear", "--config", str(config_path)])
    assert "Removed 1 cached entry." in cleared_all.output


@pytest.mark.parametrize("command", ["run", "cache-list", "cache-clear"])
def test_help_lists_commands(command: str) -> None:
    result = CliRunner().invoke(cli.app, ["--help"])

    assert result.exit_code == 0
    assert command in result.output
