"""Turn user input into exactly one worktree or repository.

Input can be a worktree id, a branch name, a ``scope:branch`` token where the
scope is a repository name or a label, explicit -n/-r/-l flags, or nothing at
all, in which case the working directory decides. Resolution works on the
path -> id mapping produced by a fresh sync, never on process state, so the
precedence rules are testable in isolation.
"""
import os
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from git_worktree_keeper.exceptions import (
    AmbiguousTarget,
    InvalidTarget,
    TargetNotFound,
    TargetRequired,
)
from git_worktree_keeper.logging_config import get_logger
from git_worktree_keeper.models.registry import Registry
from git_worktree_keeper.models.worktree import RepoInfo, Target, WorktreeInfo

logger = get_logger(__name__)


@dataclass
class ResolveContext:
    """Ambient input for context-based resolution."""

    working_directory: Optional[str] = None
    explicit_id: Optional[int] = None
    explicit_repo: Optional[str] = None
    explicit_label: Optional[str] = None


@dataclass
class ScopedTarget:
    """A parsed ``[scope:]branch`` token."""

    branch: str
    repos: List[RepoInfo] = field(default_factory=list)  # Empty when unscoped
    is_label: bool = False


def _norm(path: str) -> str:
    return os.path.realpath(path)


def _is_within(path: str, root: str) -> bool:
    return path == root or path.startswith(root.rstrip(os.sep) + os.sep)


def parse_positive_int(value: str) -> Optional[int]:
    """Return the integer for strings like '7', None for anything else."""
    value = value.strip()
    if not (value.isascii() and value.isdigit()):
        return None
    number = int(value)
    return number if number > 0 else None


def split_scope(token: str) -> Tuple[Optional[str], str]:
    """Split 'scope:branch' at the first colon.

    Branches may contain '/', so the colon is the only separator.

    Raises:
        InvalidTarget: For an empty scope (':branch') or empty branch ('scope:')
    """
    if ":" not in token:
        return None, token
    scope, branch = token.split(":", 1)
    if not scope:
        raise InvalidTarget(token, "scope before ':' is empty")
    if not branch:
        raise InvalidTarget(token, f"branch name required after {scope + ':'!r}")
    return scope, branch


class TargetResolver:
    """Resolves targets against one synced snapshot of worktrees and repositories."""

    def __init__(
        self,
        worktrees: Iterable[WorktreeInfo],
        path_to_id: Dict[str, int],
        repos: Iterable[RepoInfo] = (),
        registry: Optional[Registry] = None,
    ):
        """Initialize the resolver.

        Args:
            worktrees: Live worktrees, as passed to sync_worktrees
            path_to_id: Result of sync_worktrees for those worktrees
            repos: Known main repositories with their labels
            registry: Synced registry, used to explain ids that are no longer live
        """
        self.worktrees = list(worktrees)
        self.path_to_id = dict(path_to_id)
        self.repos = self._merge_repos(list(repos), self.worktrees)
        self.registry = registry

    @staticmethod
    def _merge_repos(repos: List[RepoInfo], worktrees: List[WorktreeInfo]) -> List[RepoInfo]:
        """Add repositories only known through their worktrees."""
        known = {_norm(r.path) for r in repos}
        merged = list(repos)
        for wt in worktrees:
            if wt.repo_path and _norm(wt.repo_path) not in known:
                known.add(_norm(wt.repo_path))
                merged.append(RepoInfo(name=wt.repo_name, path=wt.repo_path))
        return merged

    def _target_for(self, wt: WorktreeInfo) -> Target:
        return Target(
            path=wt.path,
            branch=wt.branch,
            main_repo_path=wt.repo_path,
            id=self.path_to_id.get(wt.path),
        )

    def _worktrees_in(self, repo: RepoInfo) -> List[WorktreeInfo]:
        root = _norm(repo.path)
        return [wt for wt in self.worktrees if wt.repo_path and _norm(wt.repo_path) == root]

    @staticmethod
    def _candidate(target: Target) -> str:
        return f"{target.id} ({target.repo_name}:{target.branch})"

    def find_repo(self, name: str) -> Optional[RepoInfo]:
        """Repository by folder name, case-insensitive."""
        lowered = name.lower()
        for repo in self.repos:
            if repo.name.lower() == lowered:
                return repo
        return None

    def find_repos_by_label(self, label: str) -> List[RepoInfo]:
        return [repo for repo in self.repos if label in repo.labels]

    def resolve_scope(self, scope: str) -> Tuple[List[RepoInfo], bool]:
        """Resolve a scope to repositories: repository name first, then label.

        Returns:
            (repos, is_label)

        Raises:
            TargetNotFound: If the scope names neither a repository nor a label
        """
        repo = self.find_repo(scope)
        if repo is not None:
            return [repo], False

        labelled = self.find_repos_by_label(scope)
        if labelled:
            return labelled, True

        raise TargetNotFound(f"no repo or label found: {scope}")

    def parse_scoped_target(self, token: str) -> ScopedTarget:
        scope, branch = split_scope(token)
        if scope is None:
            return ScopedTarget(branch=branch)
        repos, is_label = self.resolve_scope(scope)
        return ScopedTarget(branch=branch, repos=repos, is_label=is_label)

    def resolve_by_id(self, worktree_id: int) -> Target:
        """Resolve a worktree id among the live worktrees.

        Raises:
            TargetNotFound: If no live worktree has this id
        """
        for wt in self.worktrees:
            if self.path_to_id.get(wt.path) == worktree_id:
                return self._target_for(wt)

        found = self.registry.get_by_id(worktree_id) if self.registry is not None else None
        if found is not None:
            _, entry = found
            if entry.is_removed:
                raise TargetNotFound(
                    f"worktree ID {worktree_id} was removed ({entry.path}); run 'wt list' to see IDs"
                )
            raise TargetNotFound(
                f"worktree ID {worktree_id} no longer exists at {entry.path}; run 'wt list' to see IDs"
            )
        raise TargetNotFound(f"worktree ID {worktree_id} not found (run 'wt list' to see IDs)")

    def _scoped_matches(self, parsed: ScopedTarget) -> List[Target]:
        matches = []
        for repo in parsed.repos:
            for wt in self._worktrees_in(repo):
                if wt.branch == parsed.branch:
                    matches.append(self._target_for(wt))
                    break
        return matches

    def _branch_matches(self, branch: str) -> List[Target]:
        return [self._target_for(wt) for wt in self.worktrees if wt.branch == branch]

    def resolve_by_id_or_branch(self, value: str) -> Target:
        """Resolve a worktree id, a branch name, or a ``scope:branch`` token.

        A number that matches no id is retried as a branch name. An unscoped
        branch checked out in several repositories is ambiguous; a label scope
        matching several repositories resolves to the first match.

        Raises:
            TargetNotFound, AmbiguousTarget, InvalidTarget
        """
        worktree_id = parse_positive_int(value)
        if worktree_id is not None:
            try:
                return self.resolve_by_id(worktree_id)
            except TargetNotFound:
                if not self._branch_matches(value):
                    raise
                logger.debug(f"No worktree with ID {worktree_id}, matching {value!r} as a branch")

        parsed = self.parse_scoped_target(value)

        if parsed.repos:
            matches = self._scoped_matches(parsed)
            if not matches:
                if parsed.is_label:
                    raise TargetNotFound(
                        f"worktree not found: {value} (label matched {len(parsed.repos)} repos)"
                    )
                raise TargetNotFound(f"worktree not found: {value}")
            return matches[0]

        matches = self._branch_matches(parsed.branch)
        if not matches:
            raise TargetNotFound(
                f"no worktree found for {value!r} (run 'wt list' to see available worktrees)"
            )
        if len(matches) > 1:
            raise AmbiguousTarget(
                f"branch {value!r} exists in multiple repos, use the worktree ID or repo:{value}",
                [self._candidate(m) for m in matches],
            )
        return matches[0]

    def resolve_worktree_targets(self, tokens: Iterable[str]) -> List[Target]:
        """Resolve several ``[scope:]branch`` tokens (or ids) for multi-repository commands.

        Every match is returned: all repositories of a label scope, and every
        repository holding an unscoped branch. Results are unique by path.

        Raises:
            TargetNotFound: If any token matches nothing
        """
        results: List[Target] = []
        for token in tokens:
            worktree_id = parse_positive_int(token)
            if worktree_id is not None and any(v == worktree_id for v in self.path_to_id.values()):
                results.append(self.resolve_by_id(worktree_id))
                continue

            parsed = self.parse_scoped_target(token)
            if parsed.repos:
                matches = self._scoped_matches(parsed)
                if not matches:
                    if parsed.is_label:
                        raise TargetNotFound(
                            f"worktree not found: {token} (label matched {len(parsed.repos)} repos)"
                        )
                    raise TargetNotFound(f"worktree not found: {token}")
            else:
                matches = self._branch_matches(parsed.branch)
                if not matches:
                    raise TargetNotFound(f"worktree not found: {parsed.branch}")
            results.extend(matches)

        seen = set()
        unique = []
        for target in results:
            if target.path not in seen:
                seen.add(target.path)
                unique.append(target)
        return unique

    def _repo_target(self, repo: RepoInfo) -> Target:
        return Target(path=repo.path, branch=repo.branch, main_repo_path=repo.path)

    def resolve_by_id_or_repo_or_context(self, context: ResolveContext) -> Target:
        """Resolve from explicit flags, falling back to the working directory.

        Precedence, first match wins:
            1. explicit id
            2. explicit repository name (its checked-out branch and path)
            3. explicit label naming exactly one repository
            4. working directory inside a known worktree
            5. working directory inside a repository but not a worktree: ambiguous
            6. otherwise: a target is required

        Raises:
            TargetNotFound, AmbiguousTarget, TargetRequired
        """
        if context.explicit_id is not None:
            return self.resolve_by_id(context.explicit_id)

        if context.explicit_repo:
            repo = self.find_repo(context.explicit_repo)
            if repo is None:
                raise TargetNotFound(f"repository {context.explicit_repo!r} not found")
            return self._repo_target(repo)

        if context.explicit_label:
            labelled = self.find_repos_by_label(context.explicit_label)
            if not labelled:
                raise TargetNotFound(f"no repos found with label {context.explicit_label!r}")
            if len(labelled) > 1:
                raise AmbiguousTarget(
                    f"label {context.explicit_label!r} matches {len(labelled)} repos, use -r to pick one",
                    [repo.name for repo in labelled],
                )
            return self._repo_target(labelled[0])

        if context.working_directory:
            cwd = _norm(context.working_directory)

            best: Optional[WorktreeInfo] = None
            for wt in self.worktrees:
                root = _norm(wt.path)
                if _is_within(cwd, root) and (best is None or len(root) > len(_norm(best.path))):
                    best = wt
            if best is not None:
                return self._target_for(best)

            for repo in self.repos:
                if _is_within(cwd, _norm(repo.path)):
                    raise AmbiguousTarget(
                        f"inside repository {repo.name!r} but not in a worktree, "
                        "specify a worktree with -n ID or the repository with -r NAME",
                        [self._candidate(self._target_for(wt)) for wt in self._worktrees_in(repo)],
                    )

        raise TargetRequired(
            "no target given and the current directory is not a worktree "
            "(use -n ID, -r REPO or -l LABEL)"
        )
