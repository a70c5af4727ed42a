"""Tests for target resolution"""
import pytest

from git_worktree_keeper.exceptions import (
    AmbiguousTarget,
    InvalidTarget,
    TargetError,
    TargetNotFound,
    TargetRequired,
)
from git_worktree_keeper.models.registry import Registry
from git_worktree_keeper.models.worktree import RepoInfo
from git_worktree_keeper.services.resolver import (
    ResolveContext,
    TargetResolver,
    parse_positive_int,
    split_scope,
)
from git_worktree_keeper.services.sync_service import mark_removed, sync_worktrees


@pytest.fixture
def resolver(sample_worktrees, sample_repos):
    """alpha-shared=1, beta-shared=2, alpha-solo=3."""
    path_to_id = sync_worktrees(Registry(), sample_worktrees)
    return TargetResolver(sample_worktrees, path_to_id, sample_repos)


class TestParsing:
    """Token helpers."""

    def test_parse_positive_int(self):
        assert parse_positive_int("7") == 7
        assert parse_positive_int(" 12 ") == 12
        assert parse_positive_int("0") is None
        assert parse_positive_int("-3") is None
        assert parse_positive_int("feature") is None
        assert parse_positive_int("\u00b2") is None
        assert parse_positive_int("\u0663") is None

    def test_split_scope(self):
        assert split_scope("feature/x") == (None, "feature/x")
        assert split_scope("alpha:feature/x") == ("alpha", "feature/x")
        # Only the first colon separates
        assert split_scope("alpha:weird:name") == ("alpha", "weird:name")

    @pytest.mark.parametrize("token", [":shared", "alpha:", ":"])
    def test_split_scope_rejects_empty_parts(self, token):
        with pytest.raises(InvalidTarget) as exc_info:
            split_scope(token)
        assert exc_info.value.token == token
        assert isinstance(exc_info.value, TargetError)


class TestResolveById:
    def test_existing_id(self, resolver, sample_worktrees):
        target = resolver.resolve_by_id(2)
        assert target.path == sample_worktrees[1].path
        assert target.branch == "shared"
        assert target.repo_name == "beta"
        assert target.id == 2

    def test_unknown_id(self, resolver):
        with pytest.raises(TargetNotFound, match="worktree ID 9"):
            resolver.resolve_by_id(9)

    def test_removed_id_is_reported(self, sample_worktrees, sample_repos):
        registry = Registry()
        sync_worktrees(registry, sample_worktrees)
        mark_removed(registry, "alpha-solo")
        live = sample_worktrees[:2]
        resolver = TargetResolver(live, sync_worktrees(registry, live), sample_repos, registry)

        with pytest.raises(TargetNotFound, match="worktree ID 3 was removed"):
            resolver.resolve_by_id(3)
        with pytest.raises(TargetNotFound, match="was removed"):
            resolver.resolve_by_id_or_branch("3")

    def test_vanished_id_is_reported(self, sample_worktrees, sample_repos):
        registry = Registry()
        sync_worktrees(registry, sample_worktrees)
        live = sample_worktrees[:2]
        resolver = TargetResolver(live, sync_worktrees(registry, live), sample_repos, registry)

        with pytest.raises(TargetNotFound, match="no longer exists"):
            resolver.resolve_by_id(3)


class TestResolveByIdOrBranch:
    """Positional target arguments."""

    def test_numeric_id(self, resolver):
        assert resolver.resolve_by_id_or_branch("3").branch == "feature/solo"

    def test_unique_branch(self, resolver):
        assert resolver.resolve_by_id_or_branch("feature/solo").id == 3

    def test_non_ascii_digit_is_not_an_id(self, resolver):
        with pytest.raises(TargetNotFound):
            resolver.resolve_by_id_or_branch("\u00b2")

    def test_ambiguous_branch_lists_candidates(self, resolver):
        with pytest.raises(AmbiguousTarget) as exc_info:
            resolver.resolve_by_id_or_branch("shared")
        assert exc_info.value.candidates == ["1 (alpha:shared)", "2 (beta:shared)"]
        assert "1 (alpha:shared)" in str(exc_info.value)

    def test_repo_scope(self, resolver):
        assert resolver.resolve_by_id_or_branch("beta:shared").id == 2

    def test_repo_scope_is_case_insensitive(self, resolver):
        assert resolver.resolve_by_id_or_branch("ALPHA:shared").id == 1

    def test_label_scope_single_repo(self, resolver):
        assert resolver.resolve_by_id_or_branch("web:shared").id == 2

    def test_label_scope_first_match_wins(self, resolver):
        assert resolver.resolve_by_id_or_branch("backend:shared").id == 1

    def test_repo_name_beats_label(self, sample_worktrees, temp_dir):
        """A scope that is both a repository name and a label means the repository."""
        repos = [
            RepoInfo(name="alpha", path=str(temp_dir / "repos" / "alpha")),
            RepoInfo(name="beta", path=str(temp_dir / "repos" / "beta"), labels=["alpha"]),
        ]
        resolver = TargetResolver(sample_worktrees, sync_worktrees(Registry(), sample_worktrees), repos)
        assert resolver.resolve_by_id_or_branch("alpha:shared").repo_name == "alpha"

    def test_unknown_scope(self, resolver):
        with pytest.raises(TargetNotFound, match="no repo or label"):
            resolver.resolve_by_id_or_branch("nope:shared")

    def test_scope_without_branch(self, resolver):
        with pytest.raises(TargetNotFound, match="worktree not found"):
            resolver.resolve_by_id_or_branch("beta:feature/solo")

    def test_unknown_branch(self, resolver):
        with pytest.raises(TargetNotFound):
            resolver.resolve_by_id_or_branch("missing")

    @pytest.mark.parametrize("token", [":shared", "alpha:"])
    def test_invalid_tokens(self, resolver, token):
        with pytest.raises(InvalidTarget):
            resolver.resolve_by_id_or_branch(token)

    def test_numeric_branch_without_matching_id(self, sample_worktrees, wt_factory):
        """A number that is not a live id is tried as a branch name."""
        worktrees = sample_worktrees + [wt_factory("beta", "beta-1234", "1234")]
        resolver = TargetResolver(worktrees, sync_worktrees(Registry(), worktrees))
        assert resolver.resolve_by_id_or_branch("1234").branch == "1234"

    def test_unknown_number(self, resolver):
        with pytest.raises(TargetNotFound, match="worktree ID 99"):
            resolver.resolve_by_id_or_branch("99")


class TestResolveByContext:
    """Flags and working directory."""

    def test_explicit_id_beats_repo(self, sample_worktrees, sample_repos):
        """-n wins over -r even when they disagree."""
        path_to_id = {
            sample_worktrees[0].path: 4,
            sample_worktrees[1].path: 9,
            sample_worktrees[2].path: 5,
        }
        resolver = TargetResolver(sample_worktrees, path_to_id, sample_repos)
        target = resolver.resolve_by_id_or_repo_or_context(
            ResolveContext(explicit_id=9, explicit_repo="alpha")
        )
        assert target.id == 9
        assert target.repo_name == "beta"

    def test_explicit_repo(self, resolver, sample_repos):
        target = resolver.resolve_by_id_or_repo_or_context(ResolveContext(explicit_repo="Beta"))
        assert target.path == sample_repos[1].path
        assert target.branch == "main"
        assert target.id is None

    def test_explicit_repo_unknown(self, resolver):
        with pytest.raises(TargetNotFound):
            resolver.resolve_by_id_or_repo_or_context(ResolveContext(explicit_repo="gamma"))

    def test_explicit_label(self, resolver):
        target = resolver.resolve_by_id_or_repo_or_context(ResolveContext(explicit_label="web"))
        assert target.repo_name == "beta"

    def test_explicit_label_ambiguous(self, resolver):
        with pytest.raises(AmbiguousTarget) as exc_info:
            resolver.resolve_by_id_or_repo_or_context(ResolveContext(explicit_label="backend"))
        assert exc_info.value.candidates == ["alpha", "beta"]

    def test_explicit_label_unknown(self, resolver):
        with pytest.raises(TargetNotFound):
            resolver.resolve_by_id_or_repo_or_context(ResolveContext(explicit_label="mobile"))

    def test_cwd_inside_worktree(self, resolver, sample_worktrees):
        cwd = sample_worktrees[2].path + "/src/pkg"
        target = resolver.resolve_by_id_or_repo_or_context(ResolveContext(working_directory=cwd))
        assert target.id == 3

    def test_cwd_prefix_is_not_containment(self, resolver, sample_worktrees):
        """'alpha-solo-extra' is not inside 'alpha-solo'."""
        cwd = sample_worktrees[2].path + "-extra"
        with pytest.raises(TargetRequired):
            resolver.resolve_by_id_or_repo_or_context(ResolveContext(working_directory=cwd))

    def test_cwd_inside_repo_is_ambiguous(self, resolver, sample_repos):
        cwd = sample_repos[0].path + "/src"
        with pytest.raises(AmbiguousTarget) as exc_info:
            resolver.resolve_by_id_or_repo_or_context(ResolveContext(working_directory=cwd))
        assert exc_info.value.candidates == ["1 (alpha:shared)", "3 (alpha:feature/solo)"]

    def test_cwd_elsewhere_requires_target(self, resolver, temp_dir):
        with pytest.raises(TargetRequired):
            resolver.resolve_by_id_or_repo_or_context(
                ResolveContext(working_directory=str(temp_dir / "unrelated"))
            )

    def test_no_context_requires_target(self, resolver):
        with pytest.raises(TargetRequired):
            resolver.resolve_by_id_or_repo_or_context(ResolveContext())


class TestResolveWorktreeTargets:
    """Multi-target resolution for exec."""

    def test_unscoped_branch_matches_every_repo(self, resolver):
        targets = resolver.resolve_worktree_targets(["shared"])
        assert [t.id for t in targets] == [1, 2]

    def test_label_scope_matches_every_repo(self, resolver):
        targets = resolver.resolve_worktree_targets(["backend:shared"])
        assert [t.id for t in targets] == [1, 2]

    def test_results_are_unique(self, resolver):
        targets = resolver.resolve_worktree_targets(["web:shared", "2", "beta:shared"])
        assert [t.id for t in targets] == [2]

    def test_ids_and_branches(self, resolver):
        targets = resolver.resolve_worktree_targets(["3", "beta:shared"])
        assert [t.id for t in targets] == [3, 2]

    def test_missing_token_fails(self, resolver):
        with pytest.raises(TargetNotFound):
            resolver.resolve_worktree_targets(["shared", "missing"])


class TestRepos:
    def test_repos_known_only_through_worktrees(self, sample_worktrees):
        resolver = TargetResolver(sample_worktrees, sync_worktrees(Registry(), sample_worktrees))
        assert {repo.name for repo in resolver.repos} == {"alpha", "beta"}
        assert resolver.resolve_by_id_or_branch("beta:shared").id == 2
