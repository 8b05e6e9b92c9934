"""Git and validation-script integrations."""

from .checks import ScriptError, ScriptOutcome, ScriptRunner, run_bootstrap_scripts
from .vcs import GitError, GitRepository

__all__ = [
    "GitError",
    "GitRepository",
    "ScriptError",
    "ScriptOutcome",
    "ScriptRunner",
    "run_bootstrap_scripts",
]
