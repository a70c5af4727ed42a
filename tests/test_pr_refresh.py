"""Tests for the parallel PR status refresh"""
import threading
import time
from datetime import timedelta
from unittest.mock import Mock

from git_worktree_keeper.exceptions import ForgeAPIError
from git_worktree_keeper.models.registry import PRStatus, Registry, utcnow
from git_worktree_keeper.services.pr_refresh import collect_fetch_items, refresh_pr_status
from git_worktree_keeper.services.sync_service import sync_worktrees


def synced(worktrees):
    registry = Registry()
    sync_worktrees(registry, worktrees)
    return registry


class TestCollectFetchItems:
    """Which worktrees need a fetch."""

    def test_all_candidates(self, sample_worktrees, mock_forge):
        registry = synced(sample_worktrees)
        items, skipped = collect_fetch_items(registry, sample_worktrees, lambda url: mock_forge)
        assert len(items) == 3
        assert skipped == 0

    def test_skips_without_origin_or_branch(self, wt_factory, mock_forge):
        worktrees = [
            wt_factory("alpha", "no-origin", "feature", origin=""),
            wt_factory("alpha", "detached", "", origin="git@github.com:test/alpha.git"),
        ]
        registry = synced(worktrees)
        items, skipped = collect_fetch_items(registry, worktrees, lambda url: mock_forge)
        assert items == []
        assert skipped == 2

    def test_skips_without_forge(self, sample_worktrees):
        registry = synced(sample_worktrees)
        items, skipped = collect_fetch_items(registry, sample_worktrees, lambda url: None)
        assert items == []
        assert skipped == 3

    def test_skips_fresh_cache_unless_forced(self, sample_worktrees, mock_forge, open_pr):
        registry = synced(sample_worktrees)
        registry.set_pr("alpha-shared", open_pr)

        items, skipped = collect_fetch_items(registry, sample_worktrees, lambda url: mock_forge)
        assert [item.key for item in items] == ["beta-shared", "alpha-solo"]
        assert skipped == 1

        items, _ = collect_fetch_items(registry, sample_worktrees, lambda url: mock_forge, force=True)
        assert len(items) == 3

    def test_refetches_stale_cache(self, sample_worktrees, mock_forge):
        registry = synced(sample_worktrees)
        stale = PRStatus(number=1, state="OPEN", fetched=True, cached_at=utcnow() - timedelta(hours=48))
        registry.set_pr("alpha-shared", stale)
        items, _ = collect_fetch_items(registry, sample_worktrees, lambda url: mock_forge)
        assert "alpha-shared" in [item.key for item in items]

    def test_merged_is_final(self, sample_worktrees, mock_forge):
        """A merged PR is never refetched, even when forced."""
        registry = synced(sample_worktrees)
        merged = PRStatus(number=5, state="MERGED", fetched=True, cached_at=utcnow() - timedelta(days=30))
        registry.set_pr("alpha-shared", merged)
        items, _ = collect_fetch_items(registry, sample_worktrees, lambda url: mock_forge, force=True)
        assert "alpha-shared" not in [item.key for item in items]


class TestRefreshPRStatus:
    """Fetching and storing."""

    def test_results_written_to_registry(self, sample_worktrees, mock_forge):
        registry = synced(sample_worktrees)
        result = refresh_pr_status(registry, sample_worktrees, lambda url: mock_forge, concurrency=2)

        assert result.fetched == 3
        assert result.failed == 0
        for key in ("alpha-shared", "beta-shared", "alpha-solo"):
            assert registry.get_pr(key).number == 42
        mock_forge.get_pr_for_branch.assert_any_call("git@github.com:test/beta.git", "shared")

    def test_no_pr_is_recorded(self, sample_worktrees):
        """A branch without a PR is cached as fetched with number 0."""
        forge = Mock()
        forge.get_pr_for_branch = Mock(return_value=None)
        registry = synced(sample_worktrees)

        refresh_pr_status(registry, sample_worktrees[:1], lambda url: forge)
        pr = registry.get_pr("alpha-shared")
        assert pr.fetched
        assert not pr.has_pr
        assert pr.cached_at is not None

    def test_failure_leaves_entry_unchanged(self, sample_worktrees, open_pr, caplog):
        """One failed fetch does not abort the others or touch the old cache."""
        old = PRStatus(number=7, state="OPEN", fetched=True, cached_at=utcnow() - timedelta(hours=48))

        def get_pr_for_branch(origin_url, branch):
            if origin_url.endswith("beta.git"):
                raise ForgeAPIError("get_pr_for_branch", "rate limited")
            return open_pr

        forge = Mock()
        forge.get_pr_for_branch = Mock(side_effect=get_pr_for_branch)
        registry = synced(sample_worktrees)
        registry.set_pr("beta-shared", old)

        result = refresh_pr_status(registry, sample_worktrees, lambda url: forge)

        assert result.fetched == 2
        assert result.failed == 1
        assert registry.get_pr("beta-shared") is old
        assert registry.get_pr("alpha-shared").number == 42
        assert "rate limited" in caplog.text

    def test_concurrency_is_bounded(self, wt_factory, open_pr):
        worktrees = [
            wt_factory("alpha", f"alpha-{i}", f"branch-{i}", "git@github.com:test/alpha.git")
            for i in range(8)
        ]
        registry = synced(worktrees)
        active = 0
        peak = 0
        lock = threading.Lock()

        def get_pr_for_branch(origin_url, branch):
            nonlocal active, peak
            with lock:
                active += 1
                peak = max(peak, active)
            time.sleep(0.05)
            with lock:
                active -= 1
            return open_pr

        forge = Mock()
        forge.get_pr_for_branch = Mock(side_effect=get_pr_for_branch)
        result = refresh_pr_status(registry, worktrees, lambda url: forge, concurrency=3)

        assert result.fetched == 8
        assert 1 < peak <= 3

    def test_progress_callback(self, sample_worktrees, mock_forge):
        registry = synced(sample_worktrees)
        calls = []
        refresh_pr_status(
            registry, sample_worktrees, lambda url: mock_forge,
            on_progress=lambda done, total: calls.append((done, total)),
        )
        assert calls[-1] == (3, 3)
        assert len(calls) == 3

    def test_nothing_to_fetch(self, sample_worktrees):
        registry = synced(sample_worktrees)
        result = refresh_pr_status(registry, sample_worktrees, lambda url: None)
        assert result.fetched == 0
        assert result.skipped == 3


class TestCancellation:
    """Stopping a refresh part way."""

    def test_cancel_before_start(self, sample_worktrees, mock_forge):
        registry = synced(sample_worktrees)
        cancel = threading.Event()
        cancel.set()

        result = refresh_pr_status(registry, sample_worktrees, lambda url: mock_forge, cancel_event=cancel)

        assert result.fetched == 0
        assert result.cancelled == 3
        assert all(registry.get_pr(key) is None for key in registry.entries)

    def test_cancel_keeps_completed_results(self, wt_factory, open_pr):
        """Results finished before the cancel stay; the rest never run."""
        worktrees = [
            wt_factory("alpha", f"alpha-{i}", f"branch-{i}", "git@github.com:test/alpha.git")
            for i in range(6)
        ]
        registry = synced(worktrees)
        cancel = threading.Event()
        started = []

        def get_pr_for_branch(origin_url, branch):
            started.append(branch)
            if branch == "branch-0":
                return open_pr
            cancel.set()
            time.sleep(0.05)
            return open_pr

        forge = Mock()
        forge.get_pr_for_branch = Mock(side_effect=get_pr_for_branch)
        result = refresh_pr_status(
            registry, worktrees, lambda url: forge, concurrency=1, cancel_event=cancel
        )

        assert registry.get_pr("alpha-0").number == 42
        assert registry.get_pr("alpha-1") is None
        assert result.fetched == 1
        assert result.fetched + result.cancelled + result.failed == 6
        assert len(started) < 6
