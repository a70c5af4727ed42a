"""Advisory file lock serializing registry read-modify-write cycles."""
import os
import time
from typing import Optional

from git_worktree_keeper.constants import DEFAULT_LOCK_TIMEOUT, LOCK_POLL_INTERVAL
from git_worktree_keeper.exceptions import LockTimeout
from git_worktree_keeper.logging_config import get_logger

# Import fcntl for POSIX file locking (Unix/Linux/macOS)
try:
    import fcntl
    HAS_FCNTL = True
except ImportError:
    HAS_FCNTL = False

logger = get_logger(__name__)


class FileLock:
    """Exclusive, same-host lock on a lock file using flock.

    The lock file is created if needed; its contents are irrelevant. Locks
    belong to the open file, so two FileLock objects on the same path exclude
    each other even inside one process.

    Usage:
        with FileLock(path, timeout=5):
            ...
    """

    def __init__(self, path: str, timeout: float = DEFAULT_LOCK_TIMEOUT):
        """Initialize the lock.

        Args:
            path: Path of the lock file
            timeout: Seconds to wait before giving up with LockTimeout
        """
        self.path = str(path)
        self.timeout = timeout
        self._fd: Optional[int] = None

    @property
    def is_locked(self) -> bool:
        return self._fd is not None

    def acquire(self) -> "FileLock":
        """Block until the lock is held or the timeout expires.

        Returns:
            self, so the caller can keep it as a release handle

        Raises:
            LockTimeout: If another process holds the lock past the timeout
            OSError: If the lock file cannot be opened
        """
        if self._fd is not None:
            return self

        fd = os.open(self.path, os.O_CREAT | os.O_RDWR, 0o600)

        if not HAS_FCNTL:
            logger.debug("File locking not available on this platform")
            self._fd = fd
            return self

        deadline = time.monotonic() + self.timeout
        try:
            while True:
                try:
                    fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                    break
                except BlockingIOError:
                    if time.monotonic() >= deadline:
                        logger.debug(f"Gave up waiting for lock {self.path}")
                        raise LockTimeout(self.path, self.timeout)
                    time.sleep(LOCK_POLL_INTERVAL)
        except BaseException:
            # Includes KeyboardInterrupt while sleeping
            os.close(fd)
            raise

        self._fd = fd
        logger.debug(f"Acquired lock {self.path}")
        return self

    def release(self) -> None:
        """Release the lock. Safe to call more than once or without acquire()."""
        fd = self._fd
        if fd is None:
            return
        self._fd = None

        try:
            if HAS_FCNTL:
                fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            os.close(fd)
            logger.debug(f"Released lock {self.path}")

    def __enter__(self) -> "FileLock":
        return self.acquire()

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.release()

    def __del__(self):
        # Closing the descriptor drops the flock if a caller forgot to release
        if self._fd is not None:
            try:
                os.close(self._fd)
            except OSError:
                pass
