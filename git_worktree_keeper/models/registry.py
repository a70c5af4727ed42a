"""Registry models: worktree identities, cached PR status and notes."""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from threading import Lock
from typing import Any, Dict, Iterator, Optional, Tuple

from git_worktree_keeper.constants import PR_CACHE_MAX_AGE


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    if not value:
        return None
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class PRStatus:
    """Cached pull request status for a worktree's branch.

    The core stores this without interpreting it. ``fetched`` distinguishes
    "the forge was asked and there is no PR" (number 0) from "never fetched".
    """

    number: int = 0
    state: str = ""  # OPEN, MERGED, CLOSED
    is_draft: bool = False
    url: str = ""
    author: str = ""
    comment_count: int = 0
    has_reviews: bool = False
    is_approved: bool = False
    cached_at: Optional[datetime] = None
    fetched: bool = False
    extra: Dict[str, Any] = field(default_factory=dict)

    _FIELDS = (
        "number", "state", "is_draft", "url", "author",
        "comment_count", "has_reviews", "is_approved", "cached_at", "fetched",
    )

    def is_stale(self, max_age: timedelta = PR_CACHE_MAX_AGE) -> bool:
        """Return True if the status was never cached or is older than max_age."""
        if self.cached_at is None:
            return True
        return utcnow() - self.cached_at > max_age

    @property
    def has_pr(self) -> bool:
        return self.number > 0

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = dict(self.extra)
        data.update({
            "number": self.number,
            "state": self.state,
            "is_draft": self.is_draft,
            "url": self.url,
            "author": self.author,
            "comment_count": self.comment_count,
            "has_reviews": self.has_reviews,
            "is_approved": self.is_approved,
            "cached_at": format_timestamp(self.cached_at),
            "fetched": self.fetched,
        })
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PRStatus":
        return cls(
            number=int(data.get("number") or 0),
            state=data.get("state") or "",
            is_draft=bool(data.get("is_draft", False)),
            url=data.get("url") or "",
            author=data.get("author") or "",
            comment_count=int(data.get("comment_count") or 0),
            has_reviews=bool(data.get("has_reviews", False)),
            is_approved=bool(data.get("is_approved", False)),
            cached_at=parse_timestamp(data.get("cached_at")),
            fetched=bool(data.get("fetched", False)),
            extra={k: v for k, v in data.items() if k not in cls._FIELDS},
        )


@dataclass
class WorktreeEntry:
    """One record per known worktree, keyed in the registry by folder name."""

    id: int
    path: str = ""
    repo_path: str = ""
    branch: str = ""
    origin_url: str = ""
    note: Optional[str] = None
    removed_at: Optional[datetime] = None
    pr: Optional[PRStatus] = None
    extra: Dict[str, Any] = field(default_factory=dict)  # Unknown fields, written back verbatim

    _FIELDS = ("id", "path", "repo_path", "branch", "origin_url", "note", "removed_at", "pr")

    @property
    def is_removed(self) -> bool:
        return self.removed_at is not None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = dict(self.extra)
        data["id"] = self.id
        data["path"] = self.path
        # Empty optional fields are omitted
        if self.repo_path:
            data["repo_path"] = self.repo_path
        if self.branch:
            data["branch"] = self.branch
        if self.origin_url:
            data["origin_url"] = self.origin_url
        if self.note:
            data["note"] = self.note
        if self.removed_at is not None:
            data["removed_at"] = format_timestamp(self.removed_at)
        if self.pr is not None:
            data["pr"] = self.pr.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WorktreeEntry":
        pr_data = data.get("pr")
        return cls(
            id=int(data["id"]),
            path=data.get("path") or "",
            repo_path=data.get("repo_path") or "",
            branch=data.get("branch") or "",
            origin_url=data.get("origin_url") or "",
            note=data.get("note") or None,
            removed_at=parse_timestamp(data.get("removed_at")),
            pr=PRStatus.from_dict(pr_data) if isinstance(pr_data, dict) else None,
            extra={k: v for k, v in data.items() if k not in cls._FIELDS},
        )


@dataclass
class Registry:
    """Persisted identity and metadata store for one worktree directory.

    ``next_id`` only ever grows (until an explicit reset) so an id is never
    handed out twice. The in-memory lock guards concurrent writers inside one
    process, such as the PR refresh workers; cross-process exclusion is the
    job of the advisory file lock.
    """

    entries: Dict[str, WorktreeEntry] = field(default_factory=dict)
    next_id: int = 1
    extra: Dict[str, Any] = field(default_factory=dict)
    _lock: Lock = field(default_factory=Lock, repr=False, compare=False)

    def __post_init__(self):
        # next_id must stay above every id ever assigned, even in a hand-edited file
        highest = max((entry.id for entry in self.entries.values()), default=0)
        self.next_id = max(self.next_id, highest + 1, 1)

    @property
    def lock(self) -> Lock:
        return self._lock

    def live_entries(self) -> Iterator[Tuple[str, WorktreeEntry]]:
        """Iterate over (key, entry) pairs that are not marked removed."""
        for key, entry in self.entries.items():
            if not entry.is_removed:
                yield key, entry

    def get_by_id(self, worktree_id: int) -> Optional[Tuple[str, WorktreeEntry]]:
        """Find an entry by id, removed entries included."""
        for key, entry in self.entries.items():
            if entry.id == worktree_id:
                return key, entry
        return None

    def get_pr(self, key: str) -> Optional[PRStatus]:
        with self._lock:
            entry = self.entries.get(key)
            return entry.pr if entry else None

    def set_pr(self, key: str, pr: Optional[PRStatus]) -> None:
        """Store PR status for an entry; unknown keys are ignored."""
        with self._lock:
            entry = self.entries.get(key)
            if entry is not None:
                entry.pr = pr

    def set_note(self, key: str, note: Optional[str]) -> bool:
        """Set or clear (None/empty) the note of an entry. Returns False if unknown."""
        with self._lock:
            entry = self.entries.get(key)
            if entry is None:
                return False
            entry.note = note or None
            return True

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = dict(self.extra)
        data["worktrees"] = {key: entry.to_dict() for key, entry in self.entries.items()}
        data["next_id"] = self.next_id
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Registry":
        worktrees = data.get("worktrees") or {}
        entries = {key: WorktreeEntry.from_dict(value) for key, value in worktrees.items()}
        # Legacy PR map is superseded by per-entry PR status
        extra = {k: v for k, v in data.items() if k not in ("worktrees", "next_id", "prs")}
        return cls(entries=entries, next_id=int(data.get("next_id") or 1), extra=extra)
