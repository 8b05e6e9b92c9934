from __future__ import annotations

import subprocess
import sys
import textwrap
from dataclasses import dataclass
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))


@dataclass(slots=True)
class GitFixture:
    """Small git repository with two modules to refactor."""

    root: Path

    def run_git(self, *args: str) -> str:
        completed = subprocess.run(
            ["git", *args],
            cwd=self.root,
            check=True,
            capture_output=True,
            text=True,
        )
        return completed.stdout

    def write(self, relative: str, content: str) -> Path:
        path = self.root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        return path

    def read(self, relative: str) -> str:
        return (self.root / relative).read_text(encoding="utf-8")

    def commit(self, message: str) -> str:
        self.run_git("add", "--all")
        self.run_git("commit", "-m", message)
        return self.head()

    def head(self) -> str:
        return self.run_git("rev-parse", "HEAD").strip()


@pytest.fixture()
def git_repo(tmp_path: Path) -> GitFixture:
    """Create a git repository holding ``src/pkg/a.py`` and ``src/pkg/b.py``."""

    repo_root = tmp_path / "target-repo"
    repo_root.mkdir()
    repo = GitFixture(root=repo_root)

    repo.run_git("init")
    repo.run_git("config", "user.email", "dev@example.com")
    repo.run_git("config", "user.name", "Refactor Tests")

    repo.write("src/pkg/__init__.py", "")
    repo.write(
        "src/pkg/a.py",
        textwrap.dedent(
            """
            def add(left, right):
                return left + right
            """
        ).lstrip(),
    )
    repo.write(
        "src/pkg/b.py",
        textwrap.dedent(
            """
            def sub(left, right):
                return left - right
            """
        ).lstrip(),
    )
    repo.write("README.md", "# target\n")
    repo.commit("Initial target state")
    return repo
