"""Refactor configuration loaded from YAML."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Literal, Mapping, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_CONFIG_NAME = "refactor.yaml"


class ConfigModel(BaseModel):
    """Base model for configuration sections; unknown keys are rejected."""

    model_config = ConfigDict(extra="forbid", frozen=True)


class ScriptSpec(ConfigModel):
    """A lint or test command run after every edit."""

    args: List[str] = Field(min_length=1)
    parse: Literal["stdout", "stderr"] = "stdout"
    supports_file_filtering: bool = False

    @property
    def command(self) -> str:
        return " ".join(self.args)


def _default_lint_scripts() -> List[ScriptSpec]:
    return [
        ScriptSpec(
            args=["ruff", "check", "--output-format", "concise"],
            parse="stdout",
            supports_file_filtering=True,
        ),
        ScriptSpec(
            args=["mypy", "--no-error-summary", "."],
            parse="stdout",
            supports_file_filtering=False,
        ),
    ]


def _default_test_scripts() -> List[ScriptSpec]:
    return [
        ScriptSpec(args=["pytest", "-q", "-rf"], parse="stdout", supports_file_filtering=False),
    ]


class RefactorConfig(ConfigModel):
    """Everything a refactor run needs to know up front."""

    name: str = Field(min_length=1)
    """Short name of the refactoring; used for the work directory."""

    objective: str = Field(min_length=1)

    repository: Optional[str] = None
    """Repository to clone (URL or path). ``None`` targets the current repository."""

    ref: Optional[str] = None

    allow_dirty_working_tree: bool = False

    budget_cents: float = Field(default=1000, ge=0)
    """Maximum amount of money a single run may spend."""

    bootstrap_scripts: List[List[str]] = Field(default_factory=list)

    model: str = "gpt-4o-mini"

    model_by_step_code: Dict[str, str] = Field(
        default_factory=lambda: {"**/enrich*": "gpt-4o", "**/plan*": "gpt-4o"}
    )

    use_more_expensive_models_on_retry: Dict[str, str] = Field(
        default_factory=lambda: {"gpt-4o-mini": "gpt-4o"}
    )

    lint_scripts: List[ScriptSpec] = Field(default_factory=_default_lint_scripts)

    test_scripts: List[ScriptSpec] = Field(default_factory=_default_test_scripts)

    include: List[str] = Field(default_factory=lambda: ["*.py"])
    """Git pathspecs selecting the candidate files offered to the planner."""

    max_attempts: int = Field(default=3, ge=1)

    enrich_objective: bool = True

    work_dir: Path = Path(".refactor-bot")

    @field_validator("bootstrap_scripts")
    @classmethod
    def _non_empty_commands(cls, value: List[List[str]]) -> List[List[str]]:
        for command in value:
            if not command:
                raise ValueError("bootstrap scripts must not be empty commands")
        return value


def load_config_data(config_path: Path) -> Dict[str, Any]:
    """Read the raw YAML mapping from ``config_path``."""
    with config_path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    if not isinstance(data, Mapping):
        raise ValueError(f"Configuration must be a mapping at the top level: {config_path}")
    return dict(data)


def load_config(config_path: Path | str, **overrides: Any) -> RefactorConfig:
    """Load and validate a :class:`RefactorConfig`.

    ``overrides`` with a ``None`` value are ignored, which lets CLI options
    pass through unset flags untouched.
    """
    path = Path(config_path)
    data = load_config_data(path)
    data.update({key: value for key, value in overrides.items() if value is not None})
    return RefactorConfig.model_validate(data)


__all__ = [
    "DEFAULT_CONFIG_NAME",
    "RefactorConfig",
    "ScriptSpec",
    "load_config",
    "load_config_data",
]
