"""Configuration handling for git-worktree-keeper"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

import yaml

from git_worktree_keeper.constants import (
    DEFAULT_CONFIG_FILE,
    DEFAULT_LOCK_TIMEOUT,
    DEFAULT_PR_CONCURRENCY,
    MAX_PR_CONCURRENCY,
)
from git_worktree_keeper.logging_config import get_logger

logger = get_logger(__name__)

# Environment variables that override the config file
ENV_OVERRIDES = {
    "WT_WORKTREE_DIR": "worktree_dir",
    "WT_REPO_DIR": "repo_dir",
    "GITHUB_TOKEN": "github_token",
}


@dataclass
class Config:
    """Configuration for git-worktree-keeper with validation."""

    # Directories
    worktree_dir: Optional[str] = None  # Holds worktrees, the registry and its lock
    repo_dir: Optional[str] = None  # Main repositories (falls back to worktree_dir)

    # Registry locking
    lock_timeout: float = DEFAULT_LOCK_TIMEOUT

    # PR refresh
    pr_concurrency: int = DEFAULT_PR_CONCURRENCY
    pr_cache_max_age_hours: float = 24
    github_token: Optional[str] = None

    # Display
    default_sort: str = "id"  # id, repo, branch

    verbose: bool = False
    debug: bool = False

    def __post_init__(self):
        """Validate configuration after initialization."""
        self._validate_dirs()
        self._validate_lock_timeout()
        self._validate_pr_concurrency()
        self._validate_pr_cache_max_age()
        self._validate_default_sort()

    def _validate_dirs(self):
        """Expand ~ and reject blank directory settings."""
        for name in ("worktree_dir", "repo_dir"):
            value = getattr(self, name)
            if value is None:
                continue
            if not str(value).strip():
                raise ValueError(f"{name} cannot be empty")
            setattr(self, name, str(Path(str(value).strip()).expanduser()))

    def _validate_lock_timeout(self):
        """Validate lock_timeout is positive."""
        if self.lock_timeout <= 0:
            raise ValueError(f"lock_timeout must be positive, got {self.lock_timeout}")

    def _validate_pr_concurrency(self):
        """Validate pr_concurrency is within the allowed range."""
        if not 1 <= self.pr_concurrency <= MAX_PR_CONCURRENCY:
            raise ValueError(
                f"pr_concurrency must be between 1 and {MAX_PR_CONCURRENCY}, got {self.pr_concurrency}"
            )

    def _validate_pr_cache_max_age(self):
        """Validate pr_cache_max_age_hours is not negative."""
        if self.pr_cache_max_age_hours < 0:
            raise ValueError(
                f"pr_cache_max_age_hours cannot be negative, got {self.pr_cache_max_age_hours}"
            )

    def _validate_default_sort(self):
        """Validate default_sort is one of allowed values."""
        allowed = ["id", "repo", "branch"]
        if self.default_sort not in allowed:
            raise ValueError(f"default_sort must be one of {allowed}, got '{self.default_sort}'")

    def require_worktree_dir(self) -> Path:
        """Return the absolute worktree directory or raise if it is not configured."""
        if not self.worktree_dir:
            raise ValueError(
                "worktree directory not configured (set WT_WORKTREE_DIR or worktree_dir in config)"
            )
        return Path(self.worktree_dir).resolve()

    def repo_scan_dir(self) -> Optional[Path]:
        """Directory whose children are main repositories."""
        directory = self.repo_dir or self.worktree_dir
        return Path(directory).resolve() if directory else None

    def to_dict(self) -> dict:
        """Convert config to dictionary."""
        return {
            "worktree_dir": self.worktree_dir,
            "repo_dir": self.repo_dir,
            "lock_timeout": self.lock_timeout,
            "pr_concurrency": self.pr_concurrency,
            "pr_cache_max_age_hours": self.pr_cache_max_age_hours,
            "github_token": self.github_token,
            "default_sort": self.default_sort,
            "verbose": self.verbose,
            "debug": self.debug,
        }

    def get(self, key: str, default=None):
        """Get config value by key."""
        return getattr(self, key, default)

    @classmethod
    def from_dict(cls, config_dict: dict) -> "Config":
        """Create Config from dictionary."""
        # Extract only known fields
        known_fields = {
            "worktree_dir",
            "repo_dir",
            "lock_timeout",
            "pr_concurrency",
            "pr_cache_max_age_hours",
            "github_token",
            "default_sort",
            "verbose",
            "debug",
        }

        filtered = {k: v for k, v in config_dict.items() if k in known_fields}
        return cls(**filtered)


def load_config(path: Optional[Union[str, Path]] = None, **overrides) -> Config:
    """Load configuration from YAML, the environment and explicit overrides.

    Later sources win: config file, then environment variables, then
    keyword overrides whose value is not None.

    Args:
        path: Config file path (defaults to ~/.wt/config.yaml; a missing file is fine)
        **overrides: Values taken from command-line flags

    Returns:
        Validated Config
    """
    config_path = Path(path).expanduser() if path else DEFAULT_CONFIG_FILE
    values: dict = {}

    if config_path.exists():
        with open(config_path, "r") as f:
            loaded = yaml.safe_load(f) or {}
        if not isinstance(loaded, dict):
            raise ValueError(f"Config file {config_path} must contain a mapping")
        values.update(loaded)
        logger.debug(f"Loaded config from {config_path}")
    elif path:
        raise FileNotFoundError(f"Config file not found: {config_path}")

    for env_name, field_name in ENV_OVERRIDES.items():
        env_value = os.environ.get(env_name)
        if env_value:
            values[field_name] = env_value

    values.update({k: v for k, v in overrides.items() if v is not None})
    return Config.from_dict(values)
