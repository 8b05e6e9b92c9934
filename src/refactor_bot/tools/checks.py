"""Run lint/test scripts in the sandbox and turn their output into issues."""

from __future__ import annotations

import asyncio
import logging
import re
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, List, Sequence

from ..config import ScriptSpec
from ..refactor.types import Issue

LOGGER = logging.getLogger(__name__)

# ``path:line[:col]: [CODE] message`` as printed by ruff, mypy, flake8 and pylint.
_LOCATION_RE = re.compile(
    r"^(?P<path>[^\s:][^:]*?):(?P<line>\d+)(?::(?P<col>\d+))?:\s*"
    r"(?:(?P<severity>error|warning|note):\s*)?"
    r"(?:(?P<code>[A-Z]+[0-9]+)\s+)?"
    r"(?P<message>.+?)\s*$"
)
_MYPY_CODE_RE = re.compile(r"\s*\[(?P<code>[a-z][a-z0-9-]*)\]$")
_PYTEST_FAILED_RE = re.compile(r"^(?P<kind>FAILED|ERROR)\s+(?P<node>\S+)(?:\s+-\s+(?P<message>.*))?$")

Parser = Callable[[str, ScriptSpec, str], List[Issue]]


class ScriptError(RuntimeError):
    """Raised when a bootstrap command exits unsuccessfully."""


@dataclass(slots=True)
class ScriptOutcome:
    """Raw result of running one script."""

    command: List[str]
    exit_code: int | None
    stdout: str
    stderr: str

    def channel(self, name: str) -> str:
        return self.stderr if name == "stderr" else self.stdout


def parse_location_findings(output: str, spec: ScriptSpec, commit: str) -> List[Issue]:
    """Parse ``path:line[:col]: [CODE] message`` lines."""
    issues: List[Issue] = []
    for raw_line in output.splitlines():
        match = _LOCATION_RE.match(raw_line.strip())
        if match is None:
            continue
        if match.group("severity") == "note":
            continue
        message = match.group("message")
        code = match.group("code")
        if code is None:
            trailing = _MYPY_CODE_RE.search(message)
            if trailing is not None:
                code = trailing.group("code")
                message = message[: trailing.start()].rstrip()
        issues.append(
            Issue(
                command=spec.command,
                issue=message,
                file_path=_normalise_path(match.group("path")),
                commit=commit,
                code=code,
            )
        )
    return issues


def parse_pytest_failures(output: str, spec: ScriptSpec, commit: str) -> List[Issue]:
    """Parse the short test summary emitted by ``pytest -rf``."""
    issues: List[Issue] = []
    for raw_line in output.splitlines():
        match = _PYTEST_FAILED_RE.match(raw_line.strip())
        if match is None:
            continue
        node = match.group("node")
        issues.append(
            Issue(
                command=spec.command,
                issue=(match.group("message") or match.group("kind")).strip(),
                file_path=_normalise_path(node.split("::", 1)[0]),
                commit=commit,
                code=node,
            )
        )
    return issues


DEFAULT_PARSERS: tuple[Parser, ...] = (parse_location_findings, parse_pytest_failures)


def _normalise_path(raw: str) -> str:
    path = raw.strip().replace("\\", "/")
    if path.startswith("./"):
        path = path[2:]
    return path


def _dedupe(issues: Iterable[Issue]) -> List[Issue]:
    seen: set[tuple[str, str, str, str]] = set()
    unique: List[Issue] = []
    for issue in issues:
        key = issue.identity()
        if key in seen:
            continue
        seen.add(key)
        unique.append(issue)
    return unique


class ScriptRunner:
    """Execute validation scripts inside ``root`` and collect issues."""

    def __init__(
        self,
        root: Path | str,
        *,
        parsers: Sequence[Parser] = DEFAULT_PARSERS,
        timeout: float | None = None,
    ) -> None:
        self.root = Path(root)
        self._parsers = tuple(parsers)
        self._timeout = timeout

    def command_for(self, spec: ScriptSpec, changed_files: Sequence[str]) -> List[str]:
        command = list(spec.args)
        if spec.supports_file_filtering and changed_files:
            command.extend(changed_files)
        return command

    def execute(self, command: Sequence[str]) -> ScriptOutcome:
        executable = command[0]
        if shutil.which(executable) is None:
            return ScriptOutcome(
                command=list(command),
                exit_code=None,
                stdout="",
                stderr=f"Executable not available: {executable}",
            )
        try:
            process = subprocess.run(  # noqa: S603  # command comes from the refactor config
                list(command),
                cwd=self.root,
                check=False,
                capture_output=True,
                text=True,
                timeout=self._timeout,
            )
        except subprocess.TimeoutExpired as error:
            return ScriptOutcome(
                command=list(command),
                exit_code=None,
                stdout=error.stdout if isinstance(error.stdout, str) else "",
                stderr=f"Timed out after {self._timeout} seconds",
            )
        return ScriptOutcome(
            command=list(command),
            exit_code=process.returncode,
            stdout=process.stdout,
            stderr=process.stderr,
        )

    def run(self, spec: ScriptSpec, changed_files: Sequence[str], commit: str) -> List[Issue]:
        """Run ``spec`` and return the issues it reports against ``commit``."""
        command = self.command_for(spec, changed_files)
        outcome = self.execute(command)
        if outcome.exit_code is None:
            LOGGER.warning("%s could not run: %s", spec.command, outcome.stderr)
            return [
                Issue(
                    command=spec.command,
                    issue=outcome.stderr,
                    file_path="",
                    commit=commit,
                    code="not-run",
                )
            ]

        output = outcome.channel(spec.parse)
        issues: List[Issue] = []
        for parser in self._parsers:
            issues.extend(parser(output, spec, commit))
        issues = _dedupe(issues)

        if outcome.exit_code != 0 and not issues:
            fallback = (outcome.stderr.strip() or outcome.stdout.strip()).splitlines()
            issues.append(
                Issue(
                    command=spec.command,
                    issue=fallback[-1] if fallback else f"exit code {outcome.exit_code}",
                    file_path="",
                    commit=commit,
                    code=f"exit-{outcome.exit_code}",
                )
            )
        LOGGER.debug("%s reported %d issue(s) at %s", spec.command, len(issues), commit[:12])
        return issues

    async def run_async(self, spec: ScriptSpec, changed_files: Sequence[str], commit: str) -> List[Issue]:
        return await asyncio.to_thread(self.run, spec, list(changed_files), commit)


def run_bootstrap_scripts(root: Path | str, scripts: Sequence[Sequence[str]]) -> None:
    """Run each bootstrap command in ``root``; raise on the first failure."""
    runner = ScriptRunner(root)
    for command in scripts:
        LOGGER.info("Bootstrap: %s", " ".join(command))
        outcome = runner.execute(command)
        if outcome.exit_code != 0:
            detail = outcome.stderr.strip() or outcome.stdout.strip() or "no output"
            raise ScriptError(
                f"Bootstrap command {' '.join(command)!r} failed "
                f"(exit code {outcome.exit_code}): {detail}"
            )


__all__ = [
    "DEFAULT_PARSERS",
    "ScriptError",
    "ScriptOutcome",
    "ScriptRunner",
    "parse_location_findings",
    "parse_pytest_failures",
    "run_bootstrap_scripts",
]
