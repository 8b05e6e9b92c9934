"""CLI commands for running refactors and managing their step cache."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional

import typer
import yaml
from pydantic import ValidationError

from .config import DEFAULT_CONFIG_NAME, RefactorConfig, load_config
from .models import LLMClientError, OpenAIChatClient
from .pipeline import SqliteCache
from .refactor.run import RefactorRunResult, RunPaths, run_refactor
from .tools.checks import ScriptError
from .tools.vcs import GitError

APP_HELP = "Plan, edit and validate refactors with a language model."
LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"

LOGGER = logging.getLogger(__name__)

app = typer.Typer(help=APP_HELP)


def configure_logging(level: int = logging.INFO) -> None:
    """Install a single stream handler on the root logger."""
    logging.basicConfig(level=level, format=LOG_FORMAT, datefmt="%H:%M:%S", force=True)


def _load(config: str, **overrides: object) -> RefactorConfig:
    config_path = Path(config)
    if not config_path.exists():
        raise typer.BadParameter(f"Config file not found: {config_path}")
    try:
        return load_config(config_path, **overrides)
    except yaml.YAMLError as error:
        typer.echo(f"Failed to parse config: {error}")
        raise typer.Exit(code=1) from error
    except (ValidationError, ValueError) as error:
        typer.echo(f"Invalid configuration: {error}")
        raise typer.Exit(code=1) from error


def _build_client(config: RefactorConfig) -> OpenAIChatClient:
    try:
        return OpenAIChatClient(model=config.model)
    except ValueError as error:
        if "api key" in str(error).lower():
            typer.echo("No API key given. Set OPENAI_API_KEY.")
        else:
            typer.echo(f"Failed to initialise the model client: {error}")
        raise typer.Exit(code=1) from error


def _print_summary(run: RefactorRunResult) -> None:
    result = run.result
    statuses = result.files.final_statuses()
    changed = [path for path, status in statuses.items() if status == "success"]
    failed = [path for path, status in statuses.items() if status == "failure"]

    typer.echo("Refactor summary:")
    typer.echo(f"- Start commit: {run.start_commit[:12]}")
    if changed:
        typer.echo("- Accepted:")
        for file_path in changed:
            commits = [entry.last_commit for entry in result.accepted[file_path] if entry.last_commit]
            typer.echo(f"  - {file_path} ({commits[-1][:12] if commits else '-'})")
    else:
        typer.echo("- Accepted: none")
    if failed:
        typer.echo("- Discarded:")
        for file_path in failed:
            failures = result.discarded.get(file_path)
            reason = failures[-1].failure_description if failures else "no accepted edit"
            typer.echo(f"  - {file_path}: {reason}")
    typer.echo(f"- Planning calls: {len(result.plan_files_results)}")
    typer.echo(f"- Stopped: {result.termination_reason or 'unknown'}")
    typer.echo(f"- Spent: {run.spent_cents:.2f} cents")
    typer.echo(f"- Sandbox: {run.sandbox_path.as_posix()}")


@app.command()
def run(
    config: str = typer.Option(
        DEFAULT_CONFIG_NAME,
        "--config",
        "-c",
        help="Path to the refactor configuration file.",
    ),
    objective: Optional[str] = typer.Option(
        None,
        "--objective",
        "-o",
        help="Override the objective from the configuration.",
    ),
    budget_cents: Optional[float] = typer.Option(
        None,
        "--budget-cents",
        help="Override the spending limit in cents.",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log debug output."),
) -> None:
    """Run a refactor in a sandbox clone and report what was accepted."""
    configure_logging(logging.DEBUG if verbose else logging.INFO)
    refactor_config = _load(config, objective=objective, budget_cents=budget_cents)
    client = _build_client(refactor_config)

    try:
        outcome = asyncio.run(run_refactor(refactor_config, client))
    except (GitError, ScriptError, LLMClientError) as error:
        typer.echo(f"Refactor failed: {error}")
        raise typer.Exit(code=1) from error

    _print_summary(outcome)
    if not outcome.result.accepted and outcome.result.discarded:
        raise typer.Exit(code=1)


@app.command("cache-list")
def cache_list(
    config: str = typer.Option(
        DEFAULT_CONFIG_NAME,
        "--config",
        "-c",
        help="Path to the refactor configuration file.",
    ),
    prefix: str = typer.Option("", "--prefix", help="Only list keys starting with this step code."),
) -> None:
    """List cached step results of a refactor."""
    paths = RunPaths.for_config(_load(config))
    if not paths.cache.exists():
        typer.echo("No cache recorded yet.")
        return
    with SqliteCache(paths.cache) as cache:
        entries = cache.list_entries(prefix)
    if not entries:
        typer.echo("No cached entries.")
        return
    for entry in entries:
        duration = entry.metadata.get("duration_ms")
        suffix = f" ({duration} ms)" if duration is not None else ""
        typer.echo(f"{entry.created_at.isoformat(timespec='seconds')} {entry.key}{suffix}")


@app.command("cache-clear")
def cache_clear(
    config: str = typer.Option(
        DEFAULT_CONFIG_NAME,
        "--config",
        "-c",
        help="Path to the refactor configuration file.",
    ),
    prefix: str = typer.Option("", "--prefix", help="Only clear keys starting with this step code."),
) -> None:
    """Delete cached step results so they are recomputed on the next run."""
    paths = RunPaths.for_config(_load(config))
    if not paths.cache.exists():
        typer.echo("No cache recorded yet.")
        return
    with SqliteCache(paths.cache) as cache:
        removed = cache.clear(prefix)
    typer.echo(f"Removed {removed} cached entr{'y' if removed == 1 else 'ies'}.")


if __name__ == "__main__":
    app()
