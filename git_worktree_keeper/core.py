"""Command layer: every command runs inside one locked load-sync-save bracket."""
import os
import signal
import subprocess
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Callable, Dict, Iterator, List, Optional, Sequence, Tuple, Union

from git_worktree_keeper.config import Config
from git_worktree_keeper.constants import PR_STATE_MERGED, PRUNE_SKIP_DIRTY, PRUNE_SKIP_NOT_MERGED
from git_worktree_keeper.exceptions import GitOperationError, TargetNotFound
from git_worktree_keeper.logging_config import get_logger
from git_worktree_keeper.models.registry import Registry, WorktreeEntry
from git_worktree_keeper.models.worktree import RepoInfo, Target, WorktreeInfo
from git_worktree_keeper.services import registry_service
from git_worktree_keeper.services.git import (
    WorktreeService,
    add_label,
    discover_repos,
    find_repo_root,
    remove_label,
    repo_info,
)
from git_worktree_keeper.services.github_service import GitHubService, detect_forge
from git_worktree_keeper.services.pr_refresh import RefreshResult, refresh_pr_status
from git_worktree_keeper.services.resolver import ResolveContext, TargetResolver
from git_worktree_keeper.services.sync_service import key_for_path, mark_removed, sync_worktrees

logger = get_logger(__name__)

ProgressCallback = Callable[[int, int], None]


@dataclass
class Session:
    """One synced view of the registry, valid inside a locked bracket."""

    registry: Registry
    worktrees: List[WorktreeInfo]
    path_to_id: Dict[str, int]
    resolver: TargetResolver

    def entry_for(self, target: Target) -> Optional[WorktreeEntry]:
        key = key_for_path(self.registry, target.path)
        return self.registry.entries.get(key) if key else None

    def worktree_for(self, target: Target) -> Optional[WorktreeInfo]:
        for wt in self.worktrees:
            if wt.path == target.path:
                return wt
        return None


@dataclass
class WorktreeRow:
    """A live worktree with its id and registry entry, for display."""

    id: int
    worktree: WorktreeInfo
    entry: WorktreeEntry


@dataclass
class PruneResult:
    """Outcome of a prune run; in a dry run ``removed`` lists what would go."""

    removed: List[Target] = field(default_factory=list)
    skipped: List[Tuple[Target, str]] = field(default_factory=list)
    failed: List[Tuple[Target, str]] = field(default_factory=list)
    dry_run: bool = False


def prune_skip_reason(worktree: WorktreeInfo, entry: Optional[WorktreeEntry]) -> Optional[str]:
    """Why a worktree must not be pruned, or None when it can go.

    Only clean worktrees whose fetched, cached PR is merged qualify.
    """
    if worktree.is_dirty:
        return PRUNE_SKIP_DIRTY
    pr = entry.pr if entry is not None else None
    if pr is None or not pr.fetched or pr.state != PR_STATE_MERGED:
        return PRUNE_SKIP_NOT_MERGED
    return None


class WorktreeKeeper:
    """Main class for managing worktree identities and metadata."""

    def __init__(self, config: Union[Config, dict], working_directory: Optional[str] = None):
        """Initialize WorktreeKeeper.

        Args:
            config: Configuration dict or Config object
            working_directory: Directory used for context resolution (defaults to cwd)
        """
        self.config = config if isinstance(config, Config) else Config.from_dict(config)
        self.worktree_dir = self.config.require_worktree_dir()
        if not self.worktree_dir.is_dir():
            raise ValueError(f"worktree directory does not exist: {self.worktree_dir}")
        self.working_directory = working_directory or os.getcwd()
        self.worktree_service = WorktreeService(str(self.worktree_dir))
        self.github_service = GitHubService(self.config)

    def _known_repos(self, worktrees: List[WorktreeInfo]) -> List[RepoInfo]:
        """Repositories in the repo dir, plus those only reachable via worktrees or cwd."""
        repos = discover_repos(self.config.repo_scan_dir())
        known = {os.path.realpath(r.path) for r in repos}

        extra_paths = [wt.repo_path for wt in worktrees if wt.repo_path]
        cwd_repo = find_repo_root(self.working_directory)
        if cwd_repo:
            extra_paths.append(cwd_repo)

        for path in extra_paths:
            real = os.path.realpath(path)
            if real in known:
                continue
            known.add(real)
            info = repo_info(path)
            if info is not None:
                repos.append(info)
        return repos

    @contextmanager
    def session(self, save: bool = True) -> Iterator[Session]:
        """Lock, load and sync the registry; save on clean exit.

        Raises:
            LockTimeout: If another process holds the registry lock too long
        """
        with registry_service.locked_registry(
            self.worktree_dir, timeout=self.config.lock_timeout, save_on_exit=save
        ) as registry:
            self.worktree_service.clear_cache()
            worktrees = self.worktree_service.list_worktrees()
            path_to_id = sync_worktrees(registry, worktrees)
            resolver = TargetResolver(worktrees, path_to_id, self._known_repos(worktrees), registry)
            yield Session(registry, worktrees, path_to_id, resolver)

    def context(
        self,
        worktree_id: Optional[int] = None,
        repo: Optional[str] = None,
        label: Optional[str] = None,
    ) -> ResolveContext:
        return ResolveContext(
            working_directory=self.working_directory,
            explicit_id=worktree_id,
            explicit_repo=repo,
            explicit_label=label,
        )

    def _forge_for(self, origin_url: str):
        return detect_forge(origin_url, self.github_service)

    def _refresh(self, session: Session, force: bool, on_progress: Optional[ProgressCallback] = None) -> RefreshResult:
        """Run the PR refresh, turning Ctrl-C into a cancellation that keeps partial results."""
        cancel_event = threading.Event()
        previous = None
        in_main_thread = threading.current_thread() is threading.main_thread()

        def _on_interrupt(signum, frame):
            logger.warning("Interrupted, keeping PR status fetched so far")
            cancel_event.set()

        if in_main_thread:
            previous = signal.signal(signal.SIGINT, _on_interrupt)
        try:
            return refresh_pr_status(
                session.registry,
                session.worktrees,
                self._forge_for,
                concurrency=self.config.pr_concurrency,
                cancel_event=cancel_event,
                force=force,
                max_age=timedelta(hours=self.config.pr_cache_max_age_hours),
                on_progress=on_progress,
            )
        finally:
            if in_main_thread:
                signal.signal(signal.SIGINT, previous)
            self.github_service.close()

    def list_worktrees(
        self,
        refresh_pr: bool = False,
        force: bool = False,
        sort_by: Optional[str] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> List[WorktreeRow]:
        """Sync and return all live worktrees, optionally refreshing PR status first."""
        with self.session() as session:
            if refresh_pr:
                self._refresh(session, force, on_progress)
            rows = []
            for wt in session.worktrees:
                key = key_for_path(session.registry, wt.path)
                rows.append(WorktreeRow(id=session.path_to_id[wt.path], worktree=wt, entry=session.registry.entries[key]))

        sort_by = sort_by or self.config.default_sort
        if sort_by == "repo":
            rows.sort(key=lambda r: (r.worktree.repo_name, r.worktree.branch))
        elif sort_by == "branch":
            rows.sort(key=lambda r: (r.worktree.branch, r.worktree.repo_name))
        else:
            rows.sort(key=lambda r: r.id)
        return rows

    def refresh_prs(self, force: bool = False, on_progress: Optional[ProgressCallback] = None) -> RefreshResult:
        with self.session() as session:
            return self._refresh(session, force, on_progress)

    def resolve(self, value: Optional[str] = None, context: Optional[ResolveContext] = None) -> Target:
        """Resolve an id-or-branch argument, or flags and working directory when no argument is given."""
        with self.session() as session:
            if value:
                return session.resolver.resolve_by_id_or_branch(value)
            return session.resolver.resolve_by_id_or_repo_or_context(context or self.context())

    def show(
        self, context: ResolveContext, value: Optional[str] = None
    ) -> tuple[Target, Optional[WorktreeEntry]]:
        with self.session() as session:
            if value:
                target = session.resolver.resolve_by_id_or_branch(value)
            else:
                target = session.resolver.resolve_by_id_or_repo_or_context(context)
            return target, session.entry_for(target)

    def _worktree_entry(self, session: Session, context: ResolveContext) -> tuple[Target, str]:
        target = session.resolver.resolve_by_id_or_repo_or_context(context)
        key = key_for_path(session.registry, target.path) if target.id is not None else None
        if key is None:
            raise TargetNotFound(
                f"{target.repo_name} is a repository, not a tracked worktree; notes attach to worktrees"
            )
        return target, key

    def set_note(self, context: ResolveContext, note: Optional[str]) -> Target:
        """Set (or clear, with None) the note of the resolved worktree."""
        with self.session() as session:
            target, key = self._worktree_entry(session, context)
            session.registry.set_note(key, note)
            logger.info(f"Note {'set on' if note else 'cleared from'} {target.describe()}")
            return target

    def get_note(self, context: ResolveContext) -> tuple[Target, Optional[str]]:
        with self.session() as session:
            target, key = self._worktree_entry(session, context)
            return target, session.registry.entries[key].note

    def remove(self, value: str, force: bool = False) -> Target:
        """Delete a worktree through git and mark its entry removed."""
        with self.session() as session:
            target = session.resolver.resolve_by_id_or_branch(value)
            worktree = session.worktree_for(target)
            if worktree is None:
                raise TargetNotFound(f"{value} is not a worktree")
            key = key_for_path(session.registry, target.path)
            self.worktree_service.remove_worktree(worktree, force=force)
            if key:
                mark_removed(session.registry, key)
            return target

    def prune(
        self,
        ids: Sequence[int] = (),
        force: bool = False,
        dry_run: bool = False,
        refresh_pr: bool = False,
        on_progress: Optional[ProgressCallback] = None,
    ) -> PruneResult:
        """Remove worktrees whose PR was merged, marking their entries removed.

        Without ids every live worktree is considered; with ids only those are,
        and ``force`` removes them even when dirty or unmerged.

        Args:
            ids: Worktree ids to prune instead of scanning everything
            force: Skip the merged/clean checks (requires ids)
            dry_run: Report what would be removed without touching anything
            refresh_pr: Refresh cached PR status before deciding

        Raises:
            ValueError: If force is given without ids
        """
        if force and not ids:
            raise ValueError("--force requires -n/--id to target specific worktrees")

        result = PruneResult(dry_run=dry_run)
        with self.session() as session:
            if refresh_pr:
                self._refresh(session, force=False, on_progress=on_progress)

            if ids:
                targeted = [session.worktree_for(session.resolver.resolve_by_id(i)) for i in ids]
                candidates = list({wt.path: wt for wt in targeted}.values())
            else:
                candidates = sorted(session.worktrees, key=lambda wt: (wt.repo_name, wt.branch))

            for wt in candidates:
                target = Target(
                    path=wt.path, branch=wt.branch, main_repo_path=wt.repo_path, id=session.path_to_id[wt.path]
                )
                key = key_for_path(session.registry, wt.path)
                reason = prune_skip_reason(wt, session.registry.entries.get(key) if key else None)
                if reason and not force:
                    result.skipped.append((target, reason))
                    continue
                if dry_run:
                    result.removed.append(target)
                    continue
                try:
                    self.worktree_service.remove_worktree(wt, force=force)
                except GitOperationError as e:
                    logger.warning(f"Failed to remove {wt.path}: {e}")
                    result.failed.append((target, str(e)))
                    continue
                if key:
                    mark_removed(session.registry, key)
                result.removed.append(target)

        logger.info(
            f"Prune: {len(result.removed)} removed, {len(result.skipped)} skipped, {len(result.failed)} failed"
        )
        return result

    def exec_in(
        self,
        command: Sequence[str],
        tokens: Sequence[str] = (),
        ids: Sequence[int] = (),
        run: Callable[..., subprocess.CompletedProcess] = subprocess.run,
    ) -> Dict[str, int]:
        """Run a command in every resolved worktree.

        Targets are resolved under the lock; the commands run after it is
        released so long-running commands do not block other invocations.

        Returns:
            Mapping of worktree path to exit code
        """
        with self.session() as session:
            targets: List[Target] = [session.resolver.resolve_by_id(i) for i in ids]
            if tokens:
                targets.extend(session.resolver.resolve_worktree_targets(tokens))
            if not targets:
                targets.append(session.resolver.resolve_by_id_or_repo_or_context(self.context()))

        results = {}
        seen = set()
        for target in targets:
            if target.path in seen:
                continue
            seen.add(target.path)
            logger.info(f"Running {' '.join(command)} in {target.path}")
            completed = run(list(command), cwd=target.path)
            results[target.path] = completed.returncode
        return results

    def reset(self) -> Dict[str, int]:
        """Clear the registry and re-sync, renumbering live worktrees from 1."""
        with registry_service.locked_registry(self.worktree_dir, timeout=self.config.lock_timeout) as registry:
            registry_service.reset(registry)
            self.worktree_service.clear_cache()
            return sync_worktrees(registry, self.worktree_service.list_worktrees())

    def label(self, label: str, repo: Optional[str] = None, remove: bool = False) -> RepoInfo:
        """Add or remove a label on a named repository (or the current one)."""
        with self.session(save=False) as session:
            if repo:
                info = session.resolver.find_repo(repo)
                if info is None:
                    raise TargetNotFound(f"repository {repo!r} not found")
            else:
                root = find_repo_root(self.working_directory)
                info = repo_info(root) if root else None
                if info is None:
                    raise TargetNotFound("not in a git repository (use -r REPO)")

        changed = remove_label(info.path, label) if remove else add_label(info.path, label)
        if not changed:
            logger.info(f"Label {label!r} {'not present on' if remove else 'already on'} {info.name}")
        return repo_info(info.path) or info
