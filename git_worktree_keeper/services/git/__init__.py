"""Git-related services for git-worktree-keeper."""

from .worktrees import WorktreeService, find_repo_root
from .repos import discover_repos, repo_info, add_label, remove_label

__all__ = [
    "WorktreeService",
    "find_repo_root",
    "discover_repos",
    "repo_info",
    "add_label",
    "remove_label",
]
