"""Pytest fixtures for git-worktree-keeper tests"""
import tempfile
from pathlib import Path
from unittest.mock import Mock

import git
import pytest

from git_worktree_keeper.models.registry import PRStatus, utcnow
from git_worktree_keeper.models.worktree import RepoInfo, WorktreeInfo


@pytest.fixture
def temp_dir():
    """Create a temporary directory for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        # Resolve so paths compare equal to what git and realpath report (macOS /private/var)
        yield Path(tmpdir).resolve()


@pytest.fixture
def worktree_dir(temp_dir):
    """Directory holding worktrees and the registry."""
    path = temp_dir / "worktrees"
    path.mkdir()
    return path


@pytest.fixture
def repo_dir(temp_dir):
    """Directory holding main repositories."""
    path = temp_dir / "repos"
    path.mkdir()
    return path


@pytest.fixture
def mock_config(worktree_dir, repo_dir):
    """Create a mock configuration dictionary."""
    return {
        "worktree_dir": str(worktree_dir),
        "repo_dir": str(repo_dir),
        "lock_timeout": 2.0,
        "pr_concurrency": 2,
        "verbose": False,
        "debug": False,
        "github_token": None,
    }


def init_repo(path: Path, origin: str = "git@github.com:test/test-repo.git") -> git.Repo:
    """Initialize a repository with one commit on 'main' and an origin remote."""
    path.mkdir(parents=True)
    repo = git.Repo.init(path)

    # Configure git user for commits
    with repo.config_writer() as writer:
        writer.set_value("user", "name", "Test User")
        writer.set_value("user", "email", "test@example.com")

    test_file = path / "README.md"
    test_file.write_text("# Test Repository\n")
    repo.index.add(["README.md"])
    repo.index.commit("Initial commit")
    repo.git.branch("-M", "main")

    if origin:
        repo.create_remote("origin", origin)
    return repo


@pytest.fixture
def make_repo(repo_dir):
    """Factory creating main repositories under repo_dir."""
    repos = []

    def _make(name: str, origin: str = "git@github.com:test/test-repo.git") -> git.Repo:
        repo = init_repo(repo_dir / name, origin)
        repos.append(repo)
        return repo

    yield _make

    for repo in repos:
        repo.close()


@pytest.fixture
def add_worktree(worktree_dir):
    """Factory adding a linked worktree for a new branch under worktree_dir."""

    def _add(repo: git.Repo, folder: str, branch: str) -> Path:
        path = worktree_dir / folder
        repo.git.worktree("add", "-b", branch, str(path))
        return path

    return _add


@pytest.fixture
def git_repo(make_repo):
    """A single real repository named 'test_repo'."""
    return make_repo("test_repo")


def make_worktree(root: Path, repo: str, folder: str, branch: str, origin: str = "") -> WorktreeInfo:
    """WorktreeInfo for a synthetic layout rooted at root (no git involved)."""
    return WorktreeInfo(
        path=str(root / "worktrees" / folder),
        repo_path=str(root / "repos" / repo),
        branch=branch,
        origin_url=origin,
    )


@pytest.fixture
def sample_worktrees(temp_dir):
    """Two repositories sharing a branch name, plus a unique branch."""
    return [
        make_worktree(temp_dir, "alpha", "alpha-shared", "shared", "git@github.com:test/alpha.git"),
        make_worktree(temp_dir, "beta", "beta-shared", "shared", "git@github.com:test/beta.git"),
        make_worktree(temp_dir, "alpha", "alpha-solo", "feature/solo", "git@github.com:test/alpha.git"),
    ]


@pytest.fixture
def sample_repos(temp_dir):
    """RepoInfo objects matching sample_worktrees, with labels."""
    return [
        RepoInfo(name="alpha", path=str(temp_dir / "repos" / "alpha"), branch="main", labels=["backend"]),
        RepoInfo(name="beta", path=str(temp_dir / "repos" / "beta"), branch="main", labels=["backend", "web"]),
    ]


@pytest.fixture
def open_pr():
    """A freshly fetched open PR."""
    return PRStatus(
        number=42,
        state="OPEN",
        url="https://github.com/test/alpha/pull/42",
        author="octocat",
        comment_count=3,
        cached_at=utcnow(),
        fetched=True,
    )


@pytest.fixture
def mock_forge(open_pr):
    """Forge returning the same open PR for every branch."""
    forge = Mock()
    forge.get_pr_for_branch = Mock(return_value=open_pr)
    return forge


@pytest.fixture
def wt_factory(temp_dir):
    """Factory for synthetic WorktreeInfo objects under temp_dir."""

    def _make(repo: str, folder: str, branch: str, origin: str = "") -> WorktreeInfo:
        return make_worktree(temp_dir, repo, folder, branch, origin)

    return _make
