"""Worktree discovery and removal for git-worktree-keeper."""

import os
from pathlib import Path
from threading import Lock
from typing import Optional

import git

from git_worktree_keeper.exceptions import GitOperationError
from git_worktree_keeper.logging_config import get_logger
from git_worktree_keeper.models.worktree import WorktreeInfo

logger = get_logger(__name__)


def get_origin_url(repo: git.Repo) -> str:
    """URL of the 'origin' remote, or an empty string for local-only repositories."""
    try:
        return repo.remotes.origin.url
    except (AttributeError, IndexError, ValueError):
        return ""


def get_current_branch(repo: git.Repo) -> str:
    """Checked-out branch name, or an empty string for detached HEAD."""
    try:
        return repo.active_branch.name
    except TypeError:
        return ""  # Detached HEAD


def get_main_repo_path(repo: git.Repo) -> str:
    """Main repository path for a worktree or main checkout.

    The common git dir is shared by every worktree; its parent is the main
    repository.
    """
    common_dir = repo.git.rev_parse("--git-common-dir")
    common_path = Path(common_dir)
    if not common_path.is_absolute():
        common_path = Path(repo.working_tree_dir) / common_path
    return str(common_path.resolve().parent)


def is_worktree_dir(path: Path) -> bool:
    """Linked worktrees have a .git file; main repositories have a .git directory."""
    return (path / ".git").is_file()


class WorktreeService:
    """Service for listing and removing worktrees in a worktree directory."""

    def __init__(self, scan_dir: str):
        """Initialize the worktree service.

        Args:
            scan_dir: Directory whose direct children are worktrees
        """
        self.scan_dir = scan_dir
        self._worktree_info: Optional[list[WorktreeInfo]] = None  # Cache for worktree information
        self._cache_lock = Lock()  # Thread safety for cache access

    def clear_cache(self):
        """Clear the worktree information cache."""
        with self._cache_lock:
            self._worktree_info = None

    def _read_worktree(self, path: Path) -> Optional[WorktreeInfo]:
        """Build WorktreeInfo for one directory, None if git cannot read it."""
        try:
            repo = git.Repo(path)
        except (git.exc.InvalidGitRepositoryError, git.exc.NoSuchPathError) as e:
            logger.debug(f"Skipping {path}: not a readable worktree ({e})")
            return None

        try:
            return WorktreeInfo(
                path=str(path),
                repo_path=get_main_repo_path(repo),
                branch=get_current_branch(repo),
                origin_url=get_origin_url(repo),
                is_dirty=repo.is_dirty(untracked_files=True),
            )
        except git.exc.GitCommandError as e:
            stderr = (e.stderr if hasattr(e, "stderr") else str(e)).strip()
            logger.debug(f"Skipping {path}: {stderr}")
            return None
        finally:
            repo.close()

    def list_worktrees(self) -> list[WorktreeInfo]:
        """List the worktrees directly inside the scan directory.

        Returns:
            WorktreeInfo objects sorted by path
        """
        with self._cache_lock:
            if self._worktree_info is not None:
                return self._worktree_info

        scan_path = Path(self.scan_dir).resolve()
        worktree_list = []

        if not scan_path.is_dir():
            logger.debug(f"Worktree directory {scan_path} does not exist")
        else:
            for child in sorted(scan_path.iterdir()):
                if not child.is_dir() or not is_worktree_dir(child):
                    continue
                info = self._read_worktree(child)
                if info is not None:
                    worktree_list.append(info)

        logger.debug(f"Found {len(worktree_list)} worktrees in {scan_path}")
        for wt in worktree_list:
            logger.debug(f"  {wt}")

        with self._cache_lock:
            self._worktree_info = worktree_list
        return worktree_list

    def remove_worktree(self, worktree: WorktreeInfo, force: bool = False) -> None:
        """Remove a worktree with ``git worktree remove``.

        Args:
            worktree: Worktree to remove
            force: Force removal even if working tree is dirty or locked

        Raises:
            GitOperationError: If git refuses or fails
        """
        args = ["remove", worktree.path]
        if force:
            args.append("--force")

        try:
            repo = git.Repo(worktree.repo_path)
            try:
                repo.git.worktree(*args)
            finally:
                repo.close()
        except git.exc.GitCommandError as e:
            # Extract detailed error information from GitCommandError
            stderr = (e.stderr if hasattr(e, "stderr") else str(e)).strip()
            status = e.status if hasattr(e, "status") else "unknown"
            if stderr:
                error_msg = f"git worktree remove failed (exit {status}): {stderr}"
            else:
                error_msg = f"git worktree remove failed with exit code {status}"
            raise GitOperationError("remove_worktree", worktree.path, error_msg) from e
        except (git.exc.InvalidGitRepositoryError, git.exc.NoSuchPathError) as e:
            raise GitOperationError("remove_worktree", worktree.path, f"main repository unavailable: {e}") from e

        logger.info(f"Removed worktree at {worktree.path}")

        # Clear cache since worktree list changed
        self.clear_cache()


def find_repo_root(path: str) -> Optional[str]:
    """Main repository path for any directory inside a repository or worktree.

    Returns:
        The main repository path, or None outside of git
    """
    if not os.path.exists(path):
        return None
    try:
        repo = git.Repo(path, search_parent_directories=True)
    except (git.exc.InvalidGitRepositoryError, git.exc.NoSuchPathError):
        return None
    try:
        if repo.bare or repo.working_tree_dir is None:
            return None
        return get_main_repo_path(repo)
    except git.exc.GitCommandError as e:
        logger.debug(f"Could not determine repository for {path}: {e}")
        return None
    finally:
        repo.close()
