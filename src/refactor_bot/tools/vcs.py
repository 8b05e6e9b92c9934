"""Git helpers used to commit, restore and roll back refactoring work.

Everything here is synchronous; async callers go through
``asyncio.to_thread``.
"""

from __future__ import annotations

import shutil
import subprocess
from pathlib import Path
from typing import Dict, List, Sequence


class GitError(RuntimeError):
    """A git invocation failed or the directory is not usable as a repository."""


COMMITTER_NAME = "refactor-bot"
COMMITTER_EMAIL = "refactor-bot@localhost"

_NOTHING_TO_COMMIT = ("nothing to commit", "no changes added")


def _run(
    args: Sequence[str],
    cwd: Path,
    *,
    check: bool = True,
) -> subprocess.CompletedProcess[str]:
    completed = subprocess.run(
        ["git", *args],
        cwd=cwd,
        capture_output=True,
        encoding="utf-8",
        errors="replace",
        check=False,
    )
    if check and completed.returncode != 0:
        detail = (completed.stderr or completed.stdout or "").strip() or f"exit code {completed.returncode}"
        raise GitError(f"git {' '.join(args)} failed in {cwd}: {detail}")
    return completed


class GitRepository:
    """Working copy at ``root`` driven through the ``git`` executable."""

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root).resolve()
        if not (self.root / ".git").exists():
            raise GitError(f"{self.root} is not the root of a git working copy")

    def __repr__(self) -> str:
        return f"GitRepository({self.root.as_posix()!r})"

    @classmethod
    def discover(cls, start: Path | str | None = None) -> "GitRepository":
        """Walk up from ``start`` (default: the cwd) to the enclosing working copy."""
        origin = Path(start).resolve() if start is not None else Path.cwd().resolve()
        for directory in (origin, *origin.parents):
            if (directory / ".git").exists():
                return cls(directory)
        raise GitError(f"No git working copy contains {origin}")

    @classmethod
    def clone(
        cls,
        source: str | Path,
        destination: Path | str,
        *,
        ref: str | None = None,
    ) -> "GitRepository":
        """Clone ``source`` into ``destination``, replacing any earlier sandbox."""
        target = Path(destination).resolve()
        if target.exists():
            shutil.rmtree(target)
        target.parent.mkdir(parents=True, exist_ok=True)
        _run(["clone", "--quiet", str(source), str(target)], target.parent)

        repo = cls(target)
        repo._ensure_identity()
        if ref:
            repo.checkout(ref)
        return repo

    def _run_git(self, args: Sequence[str], *, check: bool = True) -> subprocess.CompletedProcess[str]:
        return _run(args, self.root, check=check)

    def git(self, *args: str, check: bool = True) -> subprocess.CompletedProcess[str]:
        """Run an arbitrary git subcommand inside the working copy."""
        return self._run_git(args, check=check)

    def _ensure_identity(self) -> None:
        # Sandboxes may live on machines without a global git identity.
        for key, value in (("user.name", COMMITTER_NAME), ("user.email", COMMITTER_EMAIL)):
            configured = self._run_git(["config", "--get", key], check=False).stdout.strip()
            if not configured:
                self._run_git(["config", key, value])

    # ---------------------------------------------------------------- reading
    def list_tracked_paths(self, *patterns: str) -> List[Path]:
        """Tracked files, relative to the root, limited to ``patterns`` if given."""
        args = ["ls-files", "-z"]
        if patterns:
            args += ["--", *patterns]
        listing = self._run_git(args).stdout
        return [Path(name) for name in listing.split("\0") if name]

    def current_commit(self) -> str:
        """Full SHA that ``HEAD`` points at."""
        resolved = self._run_git(["rev-parse", "--verify", "HEAD"], check=False)
        sha = resolved.stdout.strip()
        if resolved.returncode != 0 or not sha:
            raise GitError(f"{self.root} has no commits yet")
        return sha

    # ---------------------------------------------------------------- writing
    def checkout(self, ref: str) -> None:
        self._run_git(["checkout", "--quiet", ref])

    def commit_all(self, message: str, *, allow_empty: bool = False) -> str | None:
        """Stage everything and commit it.

        Returns the new SHA, or ``None`` if the tree had nothing to record.
        """
        self._run_git(["add", "--all"])
        args = ["commit", "-m", message]
        if allow_empty:
            args.append("--allow-empty")
        attempt = self._run_git(args, check=False)
        if attempt.returncode == 0:
            return self.current_commit()
        detail = (attempt.stdout + attempt.stderr).strip()
        if any(marker in detail.lower() for marker in _NOTHING_TO_COMMIT):
            return None
        raise GitError(f"git commit failed in {self.root}: {detail}")

    def commit_paths(self, paths: Sequence[str], message: str) -> str | None:
        """Commit only ``paths``; returns ``None`` when they did not change."""
        self._run_git(["add", "--", *paths])
        staged = self._run_git(["diff", "--cached", "--quiet", "--", *paths], check=False)
        if staged.returncode == 0:
            return None
        self._run_git(["commit", "-m", message, "--", *paths])
        return self.current_commit()

    def reset_to(self, commit: str) -> None:
        """Hard-reset ``HEAD`` to ``commit``.

        Untracked files survive, so bootstrap output in a sandbox stays usable.
        """
        self._run_git(["reset", "--hard", commit])

    def restore_tree(self, commit: str, message: str) -> str | None:
        """Make the tree match ``commit`` again and record that as a new commit.

        History is kept intact, unlike :meth:`reset_to`, and only tracked paths
        are recorded. Returns the new commit or ``None`` when the tree already
        matched.
        """
        self._run_git(["restore", "--source", commit, "--worktree", "--staged", "--", "."])
        if self._run_git(["diff", "--cached", "--quiet"], check=False).returncode == 0:
            return None
        self._run_git(["commit", "-m", message])
        return self.current_commit()

    # ----------------------------------------------------------------- status
    def _porcelain(self) -> Dict[Path, str]:
        """Map each changed path to its two-letter porcelain status."""
        changes: Dict[Path, str] = {}
        for row in self._run_git(["status", "--porcelain"]).stdout.splitlines():
            if len(row) < 4:
                continue
            code, name = row[:2], row[3:]
            if " -> " in name and code[0] in "RC":
                name = name.split(" -> ", 1)[1]
            changes[Path(name.strip().strip('"'))] = code
        return changes

    def working_tree_changes(self, *, include_untracked: bool = True) -> List[Path]:
        """Sorted paths with uncommitted changes."""
        changed = [
            path
            for path, code in self._porcelain().items()
            if include_untracked or code != "??"
        ]
        return sorted(changed, key=Path.as_posix)

    def is_clean(self, *, include_untracked: bool = True) -> bool:
        return not self.working_tree_changes(include_untracked=include_untracked)


__all__ = ["GitError", "GitRepository"]
