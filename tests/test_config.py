from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from refactor_bot.config import RefactorConfig, ScriptSpec, load_config


def _write(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "refactor.yaml"
    path.write_text(text, encoding="utf-8")
    return path


def test_defaults_are_applied(tmp_path) -> None:
    config = load_config(_write(tmp_path, "name: tidy\nobjective: Remove dead code\n"))

    assert config.model == "gpt-4o-mini"
    assert config.budget_cents == 1000
    assert config.max_attempts == 3
    assert config.include == ["*.py"]
    assert config.work_dir == Path(".refactor-bot")
    assert config.use_more_expensive_models_on_retry == {"gpt-4o-mini": "gpt-4o"}
    assert [spec.args[0] for spec in config.lint_scripts] == ["ruff", "mypy"]
    assert [spec.supports_file_filtering for spec in config.lint_scripts] == [True, False]
    assert config.test_scripts[0].command == "pytest -q -rf"


def test_scripts_and_overrides_from_yaml(tmp_path) -> None:
    path = _write(
        tmp_path,
        """
name: tidy
objective: Remove dead code
lint_scripts:
  - args: [flake8]
    parse: stdout
    supports_file_filtering: true
test_scripts: []
budget_cents: 50
""",
    )

    config = load_config(path, objective="Rename helpers", budget_cents=None)

    assert config.objective == "Rename helpers"
    assert config.budget_cents == 50
    assert config.lint_scripts == [ScriptSpec(args=["flake8"], supports_file_filtering=True)]
    assert config.test_scripts == []


def test_unknown_keys_are_rejected(tmp_path) -> None:
    with pytest.raises(ValidationError):
        load_config(_write(tmp_path, "name: a\nobjective: b\nbudget: 3\n"))


def test_top_level_must_be_a_mapping(tmp_path) -> None:
    with pytest.raises(ValueError, match="mapping"):
        load_config(_write(tmp_path, "- just\n- a list\n"))


def test_invalid_values_are_rejected() -> None:
    with pytest.raises(ValidationError):
        RefactorConfig(name="a", objective="b", max_attempts=0)
    with pytest.raises(ValidationError):
        RefactorConfig(name="a", objective="b", bootstrap_scripts=[[]])
    with pytest.raises(ValidationError):
        ScriptSpec(args=[])
