"""Custom exceptions for git-worktree-keeper"""

from typing import List, Optional


class WorktreeKeeperError(Exception):
    """Base exception for all git-worktree-keeper errors."""
    pass


class LockTimeout(WorktreeKeeperError):
    """Raised when the registry lock could not be acquired in time."""

    def __init__(self, path: str, timeout: float):
        self.path = path
        self.timeout = timeout
        super().__init__(
            f"Timed out after {timeout:g}s waiting for lock {path} "
            "(another wt process may be running)"
        )


class RegistryError(WorktreeKeeperError):
    """Exception raised when the registry cannot be serialized or parsed."""
    pass


class TargetError(WorktreeKeeperError):
    """Base exception for target resolution failures."""
    pass


class TargetNotFound(TargetError):
    """Raised when an ID, branch or repository matches nothing live."""
    pass


class AmbiguousTarget(TargetError):
    """Raised when more than one candidate matches a target."""

    def __init__(self, message: str, candidates: Optional[List[str]] = None):
        self.candidates = list(candidates or [])
        if self.candidates:
            message += "\n  " + "\n  ".join(self.candidates)
        super().__init__(message)


class TargetRequired(TargetError):
    """Raised when no target was given and none can be inferred."""
    pass


class InvalidTarget(TargetError):
    """Raised for malformed target tokens such as ':branch' or 'repo:'."""

    def __init__(self, token: str, reason: str):
        self.token = token
        super().__init__(f"invalid target {token!r}: {reason}")


class GitOperationError(WorktreeKeeperError):
    """Exception raised for errors in Git operations."""

    def __init__(self, operation: str, path: Optional[str] = None, message: Optional[str] = None):
        self.operation = operation
        self.path = path
        self.message = message

        error_msg = f"Git operation '{operation}' failed"
        if path:
            error_msg += f" for '{path}'"
        if message:
            error_msg += f": {message}"

        super().__init__(error_msg)


class ForgeAPIError(WorktreeKeeperError):
    """Exception raised for errors in forge (GitHub) API operations."""

    def __init__(self, operation: str, message: Optional[str] = None):
        self.operation = operation
        self.message = message

        error_msg = f"Forge API operation '{operation}' failed"
        if message:
            error_msg += f": {message}"

        super().__init__(error_msg)
