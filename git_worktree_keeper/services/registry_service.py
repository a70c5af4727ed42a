"""Registry store: durable worktree identities and metadata on disk."""
import json
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Tuple, Union

from git_worktree_keeper.constants import (
    DEFAULT_LOCK_TIMEOUT,
    LOCK_FILE_NAME,
    REGISTRY_FILE_NAME,
)
from git_worktree_keeper.exceptions import RegistryError
from git_worktree_keeper.logging_config import get_logger
from git_worktree_keeper.models.registry import Registry
from git_worktree_keeper.services.file_lock import FileLock

logger = get_logger(__name__)

PathLike = Union[str, Path]


def registry_path(directory: PathLike) -> Path:
    """Path of the registry file for a worktree directory."""
    return Path(directory) / REGISTRY_FILE_NAME


def lock_path(directory: PathLike) -> Path:
    """Path of the lock file for a worktree directory."""
    return Path(directory) / LOCK_FILE_NAME


def _is_legacy_pr_map(data: dict) -> bool:
    """Old files were a bare origin URL -> branch -> PR mapping."""
    if "worktrees" in data or "next_id" in data:
        return False
    return all(isinstance(v, dict) and all(isinstance(pr, dict) for pr in v.values())
               for v in data.values())


def load(directory: PathLike) -> Registry:
    """Load the registry for a worktree directory.

    A missing file is first use, not a failure, and yields an empty registry.
    Legacy or corrupted files also yield an empty registry, with a warning.

    Args:
        directory: Worktree-scanning directory holding the registry file

    Returns:
        The loaded Registry

    Raises:
        OSError: If the file exists but cannot be read
    """
    path = registry_path(directory)

    try:
        with open(path, "r") as f:
            raw = f.read()
    except FileNotFoundError:
        logger.debug(f"No registry file at {path}, starting empty")
        return Registry()

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        logger.warning(f"Invalid JSON in registry file {path}, starting fresh: {e}")
        return Registry()

    if not isinstance(data, dict):
        logger.warning(f"Registry file {path} is not a JSON object, starting fresh")
        return Registry()

    if data and _is_legacy_pr_map(data):
        logger.warning(f"Registry file {path} uses the legacy PR-only format, starting fresh")
        return Registry()

    try:
        registry = Registry.from_dict(data)
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        logger.warning(f"Malformed registry file {path}, starting fresh: {e}")
        return Registry()

    logger.debug(f"Loaded registry with {len(registry.entries)} entries (next id {registry.next_id})")
    return registry


def save(directory: PathLike, registry: Registry) -> None:
    """Save the registry atomically: write a temp file, then rename it over the old one.

    A failure at any point leaves the previous registry file intact.

    Raises:
        RegistryError: If the registry cannot be serialized
        OSError: If writing or renaming fails
    """
    path = registry_path(directory)
    temp_path = path.with_name(path.name + ".tmp")

    with registry.lock:
        try:
            payload = json.dumps(registry.to_dict(), indent=2)
        except (TypeError, ValueError) as e:
            raise RegistryError(f"Cannot serialize registry: {e}") from e

    try:
        fd = os.open(temp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w") as f:
            f.write(payload)
            f.flush()  # Ensure data is written to disk
            os.fsync(f.fileno())

        # Atomic rename (POSIX systems guarantee atomicity)
        os.replace(temp_path, path)
        logger.debug(f"Saved registry with {len(registry.entries)} entries to {path}")
    finally:
        # Clean up temp file if it still exists
        if temp_path.exists():
            try:
                temp_path.unlink()
            except OSError as e:
                logger.debug(f"Could not remove temp file {temp_path}: {e}")


def load_with_lock(
    directory: PathLike, timeout: float = DEFAULT_LOCK_TIMEOUT
) -> Tuple[Registry, FileLock]:
    """Acquire the registry lock, then load.

    The caller must call ``release()`` on the returned lock after saving,
    typically in a ``finally`` block.

    Raises:
        LockTimeout: If the lock could not be acquired in time
    """
    lock = FileLock(str(lock_path(directory)), timeout=timeout)
    lock.acquire()
    try:
        registry = load(directory)
    except BaseException:
        lock.release()
        raise
    return registry, lock


@contextmanager
def locked_registry(
    directory: PathLike, timeout: float = DEFAULT_LOCK_TIMEOUT, save_on_exit: bool = True
) -> Iterator[Registry]:
    """Hold the registry lock for a full load-mutate-save bracket.

    The registry is saved only when the body completes without an exception.

    Example:
        with locked_registry(worktree_dir) as registry:
            sync_worktrees(registry, live)
    """
    registry, lock = load_with_lock(directory, timeout=timeout)
    try:
        yield registry
        if save_on_exit:
            save(directory, registry)
    finally:
        lock.release()


def reset(registry: Registry) -> None:
    """Clear all entries and restart ids at 1, in place.

    Live worktrees get new ids on the next sync.
    """
    with registry.lock:
        registry.entries.clear()
        registry.extra.clear()
        registry.next_id = 1
    logger.info("Registry reset")
