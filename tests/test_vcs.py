from __future__ import annotations

from pathlib import Path

import pytest

from refactor_bot.tools.vcs import GitError, GitRepository


def test_discover_finds_root_from_subdirectory(git_repo) -> None:
    repo = GitRepository.discover(git_repo.root / "src" / "pkg")
    assert repo.root == git_repo.root.resolve()


def test_discover_outside_repository_fails(tmp_path) -> None:
    with pytest.raises(GitError):
        GitRepository.discover(tmp_path)


def test_commit_paths_records_only_changed_paths(git_repo) -> None:
    repo = GitRepository(git_repo.root)
    start = repo.current_commit()

    assert repo.commit_paths(["src/pkg/a.py"], "no-op") is None

    git_repo.write("src/pkg/a.py", "def add(a, b):\n    return a + b\n")
    commit = repo.commit_paths(["src/pkg/a.py"], "edit a")

    assert commit is not None and commit != start
    assert repo.current_commit() == commit
    assert git_repo.run_git("show", f"{start}:src/pkg/a.py").startswith("def add(left, right)")
    assert repo.is_clean()


def test_restore_tree_keeps_history(git_repo) -> None:
    repo = GitRepository(git_repo.root)
    start = repo.current_commit()
    git_repo.write("src/pkg/b.py", "broken(\n")
    bad = repo.commit_all("bad edit")

    restored = repo.restore_tree(start, "discard bad edit")

    assert restored not in (None, start, bad)
    assert git_repo.read("src/pkg/b.py") == git_repo.run_git("show", f"{start}:src/pkg/b.py")
    log = git_repo.run_git("log", "--format=%s")
    assert "bad edit" in log and "discard bad edit" in log


def test_reset_to_removes_commits_but_keeps_untracked_files(git_repo) -> None:
    repo = GitRepository(git_repo.root)
    start = repo.current_commit()
    git_repo.write("src/pkg/a.py", "changed\n")
    repo.commit_all("change a")
    git_repo.write("scratch.txt", "leftover\n")

    repo.reset_to(start)

    assert repo.current_commit() == start
    assert (git_repo.root / "scratch.txt").read_text(encoding="utf-8") == "leftover\n"
    assert git_repo.read("src/pkg/a.py").startswith("def add(left, right)")
    assert repo.is_clean(include_untracked=False)


def test_working_tree_changes_lists_tracked_and_untracked(git_repo) -> None:
    repo = GitRepository(git_repo.root)
    git_repo.write("src/pkg/a.py", "changed\n")
    git_repo.write("new.txt", "x\n")

    assert repo.working_tree_changes() == [Path("new.txt"), Path("src/pkg/a.py")]
    assert repo.working_tree_changes(include_untracked=False) == [Path("src/pkg/a.py")]
    assert not repo.is_clean()


def test_list_tracked_paths_filters_by_pathspec(git_repo) -> None:
    repo = GitRepository(git_repo.root)
    paths = {path.as_posix() for path in repo.list_tracked_paths("*.py")}
    assert paths == {"src/pkg/__init__.py", "src/pkg/a.py", "src/pkg/b.py"}


def test_clone_replaces_existing_sandbox(git_repo, tmp_path) -> None:
    destination = tmp_path / "work" / "sandbox"
    destination.mkdir(parents=True)
    (destination / "stale.txt").write_text("old", encoding="utf-8")

    sandbox = GitRepository.clone(git_repo.root, destination)

    assert sandbox.current_commit() == git_repo.head()
    assert not (destination / "stale.txt").exists()
    assert (destination / "src" / "pkg" / "a.py").exists()
    (destination / "src" / "pkg" / "a.py").write_text("edited\n", encoding="utf-8")
    assert sandbox.commit_all("sandbox edit") is not None


def test_restore_tree_leaves_untracked_files_alone(git_repo) -> None:
    repo = GitRepository(git_repo.root)
    start = repo.current_commit()
    git_repo.write("build-env/marker", "installed\n")
    git_repo.write("src/pkg/b.py", "broken(\n")
    repo.commit_paths(["src/pkg/b.py"], "bad edit")

    restored = repo.restore_tree(start, "discard bad edit")

    assert restored is not None
    assert git_repo.read("build-env/marker") == "installed\n"
    assert "build-env/marker" not in git_repo.run_git("ls-files")
    assert repo.working_tree_changes() == [Path("build-env")]


def test_restore_tree_without_differences_records_nothing(git_repo) -> None:
    repo = GitRepository(git_repo.root)
    start = repo.current_commit()

    assert repo.restore_tree(start, "nothing to discard") is None
    assert repo.current_commit() == start
