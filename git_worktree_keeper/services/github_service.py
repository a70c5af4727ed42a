"""GitHub API integration: pull request status for worktree branches"""
import os
from threading import Lock
from typing import Dict, Optional, TYPE_CHECKING, Union
from urllib.parse import urlparse

from github import Auth, Github, GithubException

from git_worktree_keeper.constants import PR_STATE_CLOSED, PR_STATE_MERGED, PR_STATE_OPEN
from git_worktree_keeper.exceptions import ForgeAPIError
from git_worktree_keeper.logging_config import get_logger
from git_worktree_keeper.models.registry import PRStatus, utcnow

if TYPE_CHECKING:
    from github.PullRequest import PullRequest
    from github.Repository import Repository
    from git_worktree_keeper.config import Config

logger = get_logger(__name__)


def is_github_url(remote_url: str) -> bool:
    return "github.com" in remote_url


def parse_github_repo(remote_url: str) -> Optional[str]:
    """Extract 'org/repo' from an SSH or HTTPS GitHub remote URL."""
    if not is_github_url(remote_url):
        return None

    if remote_url.startswith("git@"):
        # Handle SSH URL format (git@github.com:org/repo.git)
        path = remote_url.split("github.com:", 1)[1]
    else:
        # Handle HTTPS URL format (https://github.com/org/repo.git)
        parsed_url = urlparse(remote_url)
        path = parsed_url.path.strip("/")

    if path.endswith(".git"):
        path = path[:-4]

    return path if path.count("/") == 1 else None


def _normalize_state(pr: "PullRequest") -> str:
    if pr.merged:
        return PR_STATE_MERGED
    if pr.state == "closed":
        return PR_STATE_CLOSED
    return PR_STATE_OPEN


class GitHubService:
    """Forge client for GitHub, shared by the PR refresh workers."""

    def __init__(self, config: Union["Config", dict]):
        """Initialize the service.

        Args:
            config: Config object or dict; the token falls back to GITHUB_TOKEN
        """
        self.config = config
        self.debug_mode = config.get("debug", False)
        self.github_token = config.get("github_token") or os.environ.get("GITHUB_TOKEN")
        self.github: Optional[Github] = None
        self._repos: Dict[str, "Repository"] = {}
        self._repos_lock = Lock()

    @property
    def enabled(self) -> bool:
        return bool(self.github_token)

    def _get_repo(self, slug: str) -> "Repository":
        """Get (and memoize) the API repository object for 'org/repo'."""
        with self._repos_lock:
            if slug in self._repos:
                return self._repos[slug]
            if self.github is None:
                assert self.github_token is not None, "GitHub token must be set"
                self.github = Github(auth=Auth.Token(self.github_token))
            try:
                gh_repo = self.github.get_repo(slug)
            except GithubException as e:
                raise ForgeAPIError("get_repo", f"{slug}: {e}") from e
            self._repos[slug] = gh_repo
            logger.debug(f"[GitHub] GitHub integration enabled for: {slug}")
            return gh_repo

    def get_pr_for_branch(self, origin_url: str, branch: str) -> PRStatus:
        """Fetch the status of the most recent PR whose head is the branch.

        Returns:
            PRStatus with fetched=True; number 0 means the branch has no PR

        Raises:
            ForgeAPIError: If the URL is not a GitHub repository or the API call fails
        """
        slug = parse_github_repo(origin_url)
        if slug is None:
            raise ForgeAPIError("get_pr_for_branch", f"not a GitHub repository: {origin_url}")

        gh_repo = self._get_repo(slug)
        org_name = slug.split("/")[0]

        try:
            pulls = list(gh_repo.get_pulls(state="all", head=f"{org_name}:{branch}"))
            if not pulls:
                logger.debug(f"[GitHub] No PR for {slug}:{branch}")
                return PRStatus(fetched=True, cached_at=utcnow())

            latest_pr = max(pulls, key=lambda pr: pr.created_at)
            reviews = list(latest_pr.get_reviews())
            status = PRStatus(
                number=latest_pr.number,
                state=_normalize_state(latest_pr),
                is_draft=bool(latest_pr.draft),
                url=latest_pr.html_url,
                author=latest_pr.user.login if latest_pr.user else "",
                comment_count=latest_pr.comments + latest_pr.review_comments,
                has_reviews=bool(reviews),
                is_approved=any(review.state == "APPROVED" for review in reviews),
                cached_at=utcnow(),
                fetched=True,
            )
        except GithubException as e:
            raise ForgeAPIError("get_pr_for_branch", f"{slug}:{branch}: {e}") from e

        if self.debug_mode:
            logger.debug(f"[GitHub] Branch {branch} has PR #{status.number} ({status.state})")
        return status

    def close(self) -> None:
        """Close the GitHub API connection to clean up resources."""
        if self.github:
            try:
                self.github.close()
                logger.debug("[GitHub] Closed GitHub API connection")
            except Exception as e:
                logger.debug(f"[GitHub] Error closing GitHub API connection: {e}")


def detect_forge(origin_url: str, service: Optional[GitHubService]) -> Optional[GitHubService]:
    """Forge client able to answer for an origin URL, or None."""
    if not origin_url or service is None or not service.enabled:
        return None
    if parse_github_repo(origin_url) is None:
        return None
    return service
