"""Shared constants for git-worktree-keeper."""

from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import List


# Per-user state (config file, debug log)
STATE_DIR = Path.home() / ".wt"
DEFAULT_CONFIG_FILE = STATE_DIR / "config.yaml"

# Registry files, both live in the worktree-scanning directory
REGISTRY_FILE_NAME = ".wt-cache.json"
LOCK_FILE_NAME = ".wt-cache.lock"

DEFAULT_LOCK_TIMEOUT = 10.0
LOCK_POLL_INTERVAL = 0.05

# Forge API rate limits keep the refresh pool small
DEFAULT_PR_CONCURRENCY = 5
MAX_PR_CONCURRENCY = 32
PR_CACHE_MAX_AGE = timedelta(hours=24)

# Git config key holding comma separated repository labels
LABELS_CONFIG_SECTION = "wt"
LABELS_CONFIG_OPTION = "labels"

# Normalized PR states
PR_STATE_OPEN = "OPEN"
PR_STATE_MERGED = "MERGED"
PR_STATE_CLOSED = "CLOSED"

# Why prune left a worktree in place
PRUNE_SKIP_DIRTY = "Dirty"
PRUNE_SKIP_NOT_MERGED = "PR not merged"


@dataclass
class ColumnDefinition:
    """Definition of a table column."""

    key: str
    label: str
    width: int = 0  # 0 means auto-width


COLUMNS: List[ColumnDefinition] = [
    ColumnDefinition("id", "ID", 4),
    ColumnDefinition("repo", "Repo", 20),
    ColumnDefinition("branch", "Branch", 30),
    ColumnDefinition("pr", "PR", 12),
    ColumnDefinition("note", "Note", 30),
    ColumnDefinition("path", "Path"),
]

SYMBOL_DIRTY = "*"

PR_STATE_COLORS = {
    PR_STATE_OPEN: "green",
    PR_STATE_MERGED: "magenta",
    PR_STATE_CLOSED: "red",
}
