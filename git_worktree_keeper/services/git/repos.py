"""Main repository discovery and labels."""

from pathlib import Path
from typing import List, Optional

import git

from git_worktree_keeper.constants import LABELS_CONFIG_OPTION, LABELS_CONFIG_SECTION
from git_worktree_keeper.exceptions import GitOperationError
from git_worktree_keeper.logging_config import get_logger
from git_worktree_keeper.models.worktree import RepoInfo
from git_worktree_keeper.services.git.worktrees import get_current_branch

logger = get_logger(__name__)


def is_main_repo(path: Path) -> bool:
    """Main repositories have .git as a directory; worktrees have a .git file."""
    return (path / ".git").is_dir()


def parse_labels(value: str) -> List[str]:
    """Split a comma separated label list, dropping blanks."""
    return [label.strip() for label in value.split(",") if label.strip()]


def get_labels(repo: git.Repo) -> List[str]:
    """Labels stored in the repository's local git config (wt.labels)."""
    reader = repo.config_reader(config_level="repository")
    try:
        value = reader.get_value(LABELS_CONFIG_SECTION, LABELS_CONFIG_OPTION, "")
    finally:
        reader.release()
    return parse_labels(str(value))


def set_labels(repo: git.Repo, labels: List[str]) -> None:
    """Replace the repository's labels; an empty list clears them."""
    with repo.config_writer(config_level="repository") as writer:
        if labels:
            writer.set_value(LABELS_CONFIG_SECTION, LABELS_CONFIG_OPTION, ",".join(labels))
        elif writer.has_option(LABELS_CONFIG_SECTION, LABELS_CONFIG_OPTION):
            writer.remove_option(LABELS_CONFIG_SECTION, LABELS_CONFIG_OPTION)


def repo_info(path: str) -> Optional[RepoInfo]:
    """Read name, current branch and labels of a main repository.

    Returns:
        RepoInfo, or None if the path is not a readable repository
    """
    try:
        repo = git.Repo(path)
    except (git.exc.InvalidGitRepositoryError, git.exc.NoSuchPathError) as e:
        logger.debug(f"Skipping {path}: {e}")
        return None

    try:
        return RepoInfo(
            name=Path(path).name,
            path=str(path),
            branch=get_current_branch(repo),
            labels=get_labels(repo),
        )
    finally:
        repo.close()


def discover_repos(repo_dir: Optional[str]) -> List[RepoInfo]:
    """Main repositories among the direct children of repo_dir.

    Args:
        repo_dir: Directory to scan; None yields no repositories

    Returns:
        RepoInfo objects sorted by name
    """
    if not repo_dir:
        return []

    base = Path(repo_dir).resolve()
    if not base.is_dir():
        logger.debug(f"Repository directory {base} does not exist")
        return []

    repos = []
    for child in sorted(base.iterdir()):
        if child.is_dir() and is_main_repo(child):
            info = repo_info(str(child))
            if info is not None:
                repos.append(info)

    logger.debug(f"Found {len(repos)} repositories in {base}")
    return repos


def add_label(repo_path: str, label: str) -> bool:
    """Add a label to a repository.

    Returns:
        False if the label was already present

    Raises:
        GitOperationError: If the repository cannot be opened
    """
    label = label.strip()
    if not label or "," in label:
        raise ValueError(f"invalid label {label!r}")
    try:
        repo = git.Repo(repo_path)
    except (git.exc.InvalidGitRepositoryError, git.exc.NoSuchPathError) as e:
        raise GitOperationError("add_label", repo_path, str(e)) from e

    try:
        labels = get_labels(repo)
        if label in labels:
            return False
        set_labels(repo, labels + [label])
        logger.info(f"Added label {label!r} to {repo_path}")
        return True
    finally:
        repo.close()


def remove_label(repo_path: str, label: str) -> bool:
    """Remove a label from a repository.

    Returns:
        False if the label was not present
    """
    try:
        repo = git.Repo(repo_path)
    except (git.exc.InvalidGitRepositoryError, git.exc.NoSuchPathError) as e:
        raise GitOperationError("remove_label", repo_path, str(e)) from e

    try:
        labels = get_labels(repo)
        if label not in labels:
            return False
        set_labels(repo, [existing for existing in labels if existing != label])
        logger.info(f"Removed label {label!r} from {repo_path}")
        return True
    finally:
        repo.close()
