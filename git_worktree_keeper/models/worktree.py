"""Worktree, repository and resolution target models."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional


@dataclass
class WorktreeInfo:
    """Live state of a worktree as reported by git."""

    path: str
    repo_path: str  # Main repository the worktree belongs to
    branch: str  # Empty for detached HEAD
    origin_url: str = ""  # Empty for local-only repositories
    is_dirty: bool = False

    @property
    def repo_name(self) -> str:
        return Path(self.repo_path).name if self.repo_path else ""

    def __str__(self) -> str:
        """String representation of worktree."""
        branch = self.branch or "(detached)"
        return f"{self.repo_name}:{branch} @ {self.path}"


@dataclass
class RepoInfo:
    """A main repository found in the repository directory."""

    name: str
    path: str
    branch: str = ""  # Currently checked-out branch
    labels: List[str] = field(default_factory=list)


@dataclass
class Target:
    """A single resolved worktree or repository.

    ``id`` is None when the target is a main repository rather than a
    tracked worktree.
    """

    path: str
    branch: str
    main_repo_path: str
    id: Optional[int] = None

    @property
    def repo_name(self) -> str:
        return Path(self.main_repo_path).name

    def describe(self) -> str:
        prefix = f"{self.id}: " if self.id is not None else ""
        return f"{prefix}{self.repo_name}:{self.branch} ({self.path})"
