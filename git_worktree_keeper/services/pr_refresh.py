"""Bounded-parallel refresh of cached pull request status."""
import threading
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, Dict, Iterable, List, Optional, Protocol

from git_worktree_keeper.constants import DEFAULT_PR_CONCURRENCY, PR_CACHE_MAX_AGE, PR_STATE_MERGED
from git_worktree_keeper.logging_config import get_logger
from git_worktree_keeper.models.registry import PRStatus, Registry, utcnow
from git_worktree_keeper.models.worktree import WorktreeInfo
from git_worktree_keeper.services.sync_service import key_for_path

logger = get_logger(__name__)


class Forge(Protocol):
    def get_pr_for_branch(self, origin_url: str, branch: str) -> Optional[PRStatus]:
        ...


ForgeLookup = Callable[[str], Optional[Forge]]


@dataclass
class PRFetchItem:
    """A single branch whose PR status needs to be fetched."""

    key: str
    origin_url: str
    branch: str
    forge: Forge


@dataclass
class RefreshResult:
    fetched: int = 0
    failed: int = 0
    skipped: int = 0
    cancelled: int = 0


def collect_fetch_items(
    registry: Registry,
    worktrees: Iterable[WorktreeInfo],
    forge_for: ForgeLookup,
    force: bool = False,
    max_age: timedelta = PR_CACHE_MAX_AGE,
) -> tuple[List[PRFetchItem], int]:
    """Pick the worktrees whose PR status should be fetched.

    Skipped: no origin, detached HEAD, no forge for the origin, a merged PR
    (final state), and unless forced, a cache entry that is still fresh.

    Returns:
        (items, skipped count)
    """
    items = []
    skipped = 0
    for wt in worktrees:
        key = key_for_path(registry, wt.path)
        if key is None or not wt.origin_url or not wt.branch:
            skipped += 1
            continue

        forge = forge_for(wt.origin_url)
        if forge is None:
            skipped += 1
            continue

        cached = registry.get_pr(key)
        if cached is not None and cached.fetched:
            if cached.state == PR_STATE_MERGED or (not force and not cached.is_stale(max_age)):
                skipped += 1
                continue

        items.append(PRFetchItem(key=key, origin_url=wt.origin_url, branch=wt.branch, forge=forge))
    return items, skipped


def _fetch(registry: Registry, item: PRFetchItem, cancel_event: threading.Event) -> Optional[PRStatus]:
    """Worker: fetch one PR status and store it unless the refresh was cancelled."""
    if cancel_event.is_set():
        return None
    pr = item.forge.get_pr_for_branch(item.origin_url, item.branch)
    if cancel_event.is_set():
        return None
    if pr is None:
        # The forge was asked and the branch has no PR
        pr = PRStatus(fetched=True, cached_at=utcnow())
    registry.set_pr(item.key, pr)
    return pr


def refresh_pr_status(
    registry: Registry,
    worktrees: Iterable[WorktreeInfo],
    forge_for: ForgeLookup,
    concurrency: int = DEFAULT_PR_CONCURRENCY,
    cancel_event: Optional[threading.Event] = None,
    force: bool = False,
    max_age: timedelta = PR_CACHE_MAX_AGE,
    on_progress: Optional[Callable[[int, int], None]] = None,
) -> RefreshResult:
    """Fetch PR status for many worktrees with a fixed-size worker pool.

    Results are written into the registry as they arrive, under its in-memory
    lock. A failed fetch logs a warning and leaves that entry's cached status
    untouched. Setting ``cancel_event`` stops scheduling new fetches; whatever
    completed before stays in the registry.

    Args:
        registry: Registry updated in place
        worktrees: Live worktrees (already synced into the registry)
        forge_for: Returns the forge client for an origin URL, or None
        concurrency: Worker pool size
        cancel_event: Optional cancellation signal
        force: Refetch even when the cached status is fresh
        max_age: Age after which cached status is considered stale
        on_progress: Called with (completed, total) after each fetch

    Returns:
        Counts of fetched, failed, skipped and cancelled items
    """
    cancel_event = cancel_event or threading.Event()
    items, skipped = collect_fetch_items(registry, worktrees, forge_for, force=force, max_age=max_age)
    result = RefreshResult(skipped=skipped)

    if not items:
        return result

    logger.debug(f"Fetching PR status for {len(items)} worktrees using {concurrency} workers")
    total = len(items)
    completed = 0

    executor = ThreadPoolExecutor(max_workers=max(1, concurrency), thread_name_prefix="pr-refresh")
    try:
        future_to_item: Dict[Future, PRFetchItem] = {
            executor.submit(_fetch, registry, item, cancel_event): item for item in items
        }
        pending = set(future_to_item)

        def harvest(done) -> None:
            nonlocal completed
            for future in done:
                item = future_to_item[future]
                completed += 1
                if future.cancelled():
                    result.cancelled += 1
                    continue
                try:
                    pr = future.result()
                except Exception as e:
                    result.failed += 1
                    logger.warning(f"Failed to fetch PR status for {item.branch} ({item.key}): {e}")
                else:
                    if pr is None:
                        result.cancelled += 1
                    else:
                        result.fetched += 1
                if on_progress:
                    on_progress(completed, total)

        while pending:
            done, pending = wait(pending, timeout=0.1, return_when=FIRST_COMPLETED)
            harvest(done)

            if cancel_event.is_set() and pending:
                # Count what already finished; queued fetches never start and
                # running ones discard their result
                done, pending = wait(pending, timeout=0)
                harvest(done)
                logger.debug(f"PR refresh cancelled with {len(pending)} fetches outstanding")
                result.cancelled += len(pending)
                break
    finally:
        executor.shutdown(wait=not cancel_event.is_set(), cancel_futures=True)

    if result.failed:
        logger.warning(f"Failed to fetch PR status for {result.failed} branch(es)")
    return result
