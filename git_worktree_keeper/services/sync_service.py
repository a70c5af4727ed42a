"""Reconcile the registry with the worktrees that exist on disk.

Worktrees can be created, moved or deleted behind the tool's back (plain
``git worktree`` commands), so every command re-syncs before it reads ids.
Entries are keyed by folder name rather than full path so a moved worktree
keeps its id.
"""
import hashlib
import os
from typing import Dict, Iterable, List, Optional

from git_worktree_keeper.logging_config import get_logger
from git_worktree_keeper.models.registry import Registry, WorktreeEntry, utcnow
from git_worktree_keeper.models.worktree import WorktreeInfo

logger = get_logger(__name__)


def make_worktree_key(path: str) -> str:
    """Registry key for a worktree: its folder name."""
    return os.path.basename(os.path.normpath(path))


def _disambiguated_key(path: str) -> str:
    parent = os.path.dirname(os.path.normpath(path))
    digest = hashlib.sha1(parent.encode()).hexdigest()[:8]
    return f"{make_worktree_key(path)}@{digest}"


def _archive_removed(registry: Registry, key: str, entry: WorktreeEntry) -> None:
    """Move a removed entry out of the way so its key can be reassigned."""
    archive_key = f"{key}@{entry.id}"
    while archive_key in registry.entries:
        archive_key += "~"
    registry.entries[archive_key] = entry
    del registry.entries[key]
    logger.debug(f"Archived removed entry {key} (id {entry.id}) as {archive_key}")


def _assign(registry: Registry, key: str, wt: WorktreeInfo) -> int:
    entry = registry.entries.get(key)

    if entry is not None and entry.is_removed:
        # A removed entry cannot be trusted to be the same worktree
        _archive_removed(registry, key, entry)
        entry = None

    if entry is not None:
        # Metadata may be stale, e.g. after a branch rename or a move
        if (entry.path, entry.repo_path, entry.branch, entry.origin_url) != (
            wt.path, wt.repo_path, wt.branch, wt.origin_url
        ):
            logger.debug(f"Updating metadata for {key} (id {entry.id})")
            entry.path = wt.path
            entry.repo_path = wt.repo_path
            entry.branch = wt.branch
            entry.origin_url = wt.origin_url
        return entry.id

    new_id = registry.next_id
    registry.next_id += 1
    registry.entries[key] = WorktreeEntry(
        id=new_id,
        path=wt.path,
        repo_path=wt.repo_path,
        branch=wt.branch,
        origin_url=wt.origin_url,
    )
    logger.debug(f"Assigned id {new_id} to {key}")
    return new_id


def _choose_keys(registry: Registry, worktrees: List[WorktreeInfo]) -> Dict[str, str]:
    """Pick the registry key for every live worktree, independent of list order.

    A worktree already tracked under its disambiguated key keeps it, and so
    does the holder of a plain key whose entry records its path. When several
    live worktrees share a folder name, a free plain key goes to the smallest
    path; a plain key held by some other worktree is never handed over.
    """
    groups: Dict[str, List[WorktreeInfo]] = {}
    for wt in worktrees:
        groups.setdefault(make_worktree_key(wt.path), []).append(wt)

    keys: Dict[str, str] = {}
    for plain, members in groups.items():
        entry = registry.entries.get(plain)
        plain_free = entry is None or entry.is_removed
        undecided = []
        for wt in members:
            hashed = _disambiguated_key(wt.path)
            if hashed in registry.entries:
                keys[wt.path] = hashed
            elif entry is not None and not entry.is_removed and entry.path == wt.path:
                keys[wt.path] = plain
            else:
                undecided.append(wt)

        if len(members) == 1:
            # A lone worktree may have moved; it keeps the plain key
            for wt in undecided:
                keys[wt.path] = plain
            continue

        for wt in sorted(undecided, key=lambda w: w.path):
            if plain_free:
                keys[wt.path] = plain
                plain_free = False
                continue
            keys[wt.path] = _disambiguated_key(wt.path)
            logger.warning(
                f"Worktree folder name {plain!r} is not unique, "
                f"tracking {wt.path} as {keys[wt.path]!r}"
            )
    return keys


def sync_worktrees(registry: Registry, worktrees: Iterable[WorktreeInfo]) -> Dict[str, int]:
    """Bring the registry up to date with the live worktrees.

    Known worktrees keep their id and get fresh metadata; new ones get the
    next id. Entries for worktrees that are no longer live are left as they
    are, so a later explicit removal can still mark them and their note and
    PR history survive. Calling this twice with the same live set, in any
    order, is a no-op the second time.

    Args:
        registry: Registry to update in place
        worktrees: Live worktrees reported by git

    Returns:
        Mapping of worktree path to id, covering exactly the live worktrees
    """
    worktrees = list(worktrees)
    path_to_id: Dict[str, int] = {}

    with registry.lock:
        keys = _choose_keys(registry, worktrees)
        for wt in worktrees:
            path_to_id[wt.path] = _assign(registry, keys[wt.path], wt)

    logger.debug(f"Synced {len(path_to_id)} live worktrees (next id {registry.next_id})")
    return path_to_id


def mark_removed(registry: Registry, key: str) -> Optional[WorktreeEntry]:
    """Mark an entry as removed after the tool deleted its worktree.

    Returns:
        The marked entry, or None if the key is unknown
    """
    with registry.lock:
        entry = registry.entries.get(key)
        if entry is None:
            logger.debug(f"No registry entry for {key}, nothing to mark removed")
            return None
        if entry.removed_at is None:
            entry.removed_at = utcnow()
            logger.debug(f"Marked {key} (id {entry.id}) as removed")
        return entry


def key_for_path(registry: Registry, path: str) -> Optional[str]:
    """Key of the live entry tracking a path, if any."""
    for key, entry in registry.live_entries():
        if entry.path == path:
            return key
    key = make_worktree_key(path)
    return key if key in registry.entries else None
