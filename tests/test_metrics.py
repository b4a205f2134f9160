"""Tests for MetricsEngine reports and the memoization cache."""

from datetime import timedelta

import pytest
from conftest import NOW, make_pr, make_repo, make_review

from prwatch.models import Repository, TeamUser
from prwatch.services.metrics import MetricsCache, MetricsEngine, TimeRange

API = make_repo("api")
WEB = make_repo("web")


def _corpus():
    """Ten PRs: 3 open (1 draft, 1 reviewed), 2 closed unmerged, 4 merged, 1 open but 40 days old."""
    return [
        make_pr(API, 1, author="alice", created_days_ago=2, assignees=["bob"]),
        make_pr(
            API,
            2,
            author="alice",
            created_days_ago=3,
            reviews=[make_review(1, "bob", "APPROVED", NOW - timedelta(days=3) + timedelta(hours=4))],
        ),
        make_pr(WEB, 3, author="bob", created_days_ago=1, draft=True),
        make_pr(WEB, 4, author="bob", created_days_ago=5, state="closed"),
        make_pr(API, 5, author="carol", created_days_ago=6, state="closed"),
        make_pr(API, 6, author="alice", created_days_ago=10, state="closed", merged_after_hours=10),
        make_pr(API, 7, author="bob", created_days_ago=12, state="closed", merged_after_hours=20),
        make_pr(
            WEB,
            8,
            author="carol",
            created_days_ago=4,
            state="closed",
            merged_after_hours=30,
            reviews=[
                make_review(2, "carol", "COMMENTED", NOW - timedelta(days=4) + timedelta(hours=1)),
                make_review(3, "alice", "APPROVED", NOW - timedelta(days=4) + timedelta(hours=8)),
            ],
        ),
        make_pr(WEB, 9, author="alice", created_days_ago=8, state="closed", merged_after_hours=40),
        make_pr(API, 10, author="carol", created_days_ago=40),
    ]


@pytest.fixture
def engine() -> MetricsEngine:
    return MetricsEngine(clock=lambda: NOW.timestamp())


USERS = [TeamUser(username="alice", name="Alice"), TeamUser(username="bob"), TeamUser(username="dave")]


class TestTimeRange:
    """TimeRange parsing and days."""

    def test_days(self) -> None:
        assert [t.days for t in TimeRange] == [7, 30, 90, 180]

    def test_parse_falls_back_to_30_days(self) -> None:
        assert TimeRange.parse("6m") is TimeRange.LAST_6_MONTHS
        assert TimeRange.parse("1y") is TimeRange.LAST_30_DAYS
        assert TimeRange.parse(None) is TimeRange.LAST_30_DAYS


class TestOverview:
    """Overview counts over a known corpus."""

    def test_counts_for_30_days(self, engine: MetricsEngine) -> None:
        stats = engine.overview(_corpus(), "30d")
        assert stats.total_prs == 9
        assert stats.open_prs == 2
        assert stats.draft_prs == 1
        assert stats.closed_prs == 2
        assert stats.merged_prs == 4
        assert stats.pending_review == 1
        assert stats.old_prs_count == 1

    def test_latencies_from_timestamps(self, engine: MetricsEngine) -> None:
        stats = engine.overview(_corpus(), "30d")
        # first non-author reviews: PR 2 after 4h, PR 8 after 8h
        assert stats.avg_hours_to_first_review == 6.0
        assert stats.avg_hours_to_merge == 25.0

    def test_range_narrows_corpus(self, engine: MetricsEngine) -> None:
        stats = engine.overview(_corpus(), TimeRange.LAST_7_DAYS)
        assert stats.total_prs == 6
        assert stats.merged_prs == 1
        assert stats.old_prs_count == 1

    def test_no_samples_gives_none(self, engine: MetricsEngine) -> None:
        stats = engine.overview([make_pr(API, 1)], "30d")
        assert stats.avg_hours_to_first_review is None
        assert stats.avg_hours_to_merge is None

    def test_repeated_call_returns_cached_object(self, engine: MetricsEngine) -> None:
        corpus = _corpus()
        first = engine.overview(corpus, "30d")
        assert engine.overview(corpus, "30d") is first

    def test_clear_cache_forces_recompute(self, engine: MetricsEngine) -> None:
        corpus = _corpus()
        first = engine.overview(corpus, "30d")
        engine.clear_cache()
        second = engine.overview(corpus, "30d")
        assert second is not first
        assert second == first


class TestUserStats:
    """Per-user report."""

    def test_per_user_counts(self, engine: MetricsEngine) -> None:
        stats = {s.username: s for s in engine.user_stats(_corpus(), USERS, "30d")}
        alice = stats["alice"]
        assert alice.name == "Alice"
        assert alice.prs_created == 4
        assert alice.reviews_given == 1
        assert alice.approvals_given == 1
        assert alice.prs_assigned == 0
        assert alice.oldest_pr_days == 3

        bob = stats["bob"]
        assert bob.name == "bob"
        assert bob.prs_created == 3
        assert bob.reviews_given == 1
        assert bob.prs_assigned == 1
        assert bob.oldest_pr_days == 1

    def test_user_without_activity(self, engine: MetricsEngine) -> None:
        stats = {s.username: s for s in engine.user_stats(_corpus(), USERS, "30d")}
        dave = stats["dave"]
        assert (dave.prs_created, dave.reviews_given, dave.prs_assigned, dave.oldest_pr_days) == (0, 0, 0, 0)
        assert dave.avatar == "https://github.com/dave.png"

    def test_preserves_user_order(self, engine: MetricsEngine) -> None:
        assert [s.username for s in engine.user_stats(_corpus(), USERS, "30d")] == ["alice", "bob", "dave"]


class TestRepoStats:
    """Per-repository report."""

    def test_per_repository_counts(self, engine: MetricsEngine) -> None:
        stats = {s.name: s for s in engine.repo_stats(_corpus(), [API, WEB], "30d")}
        api = stats["api"]
        assert api.full_name == "octo-org/api"
        assert api.owner == "octo-org"
        assert api.total_prs == 6
        assert api.open_prs == 3
        assert api.merged_prs == 2
        assert api.closed_prs == 3
        assert api.pending_review == 3

        web = stats["web"]
        assert web.total_prs == 4
        assert web.draft_prs == 1
        assert web.pending_review == 0

    def test_invalid_url_skipped(self, engine: MetricsEngine) -> None:
        bad = Repository(url="https://example.com/nope", name="nope")
        stats = engine.repo_stats(_corpus(), [bad, API], "30d")
        assert [s.name for s in stats] == ["api"]

    def test_counts_ignore_time_range(self, engine: MetricsEngine) -> None:
        prs = [make_pr(API, 1, created_days_ago=1), make_pr(API, 2, created_days_ago=100)]
        [api] = engine.repo_stats(prs, [API], "7d")
        assert api.total_prs == 2
        assert api.open_prs == 2


class TestMetricsCache:
    """TTL expiry."""

    def test_entries_expire(self) -> None:
        now = [1000.0]
        cache = MetricsCache(ttl_seconds=300, clock=lambda: now[0])
        cache.set(("overview", "30d", 1), "data")
        assert cache.get(("overview", "30d", 1)) == "data"
        now[0] += 301
        assert cache.get(("overview", "30d", 1)) is None
        assert cache.keys() == []

    def test_cache_info(self, engine: MetricsEngine) -> None:
        engine.overview(_corpus(), "7d")
        info = engine.cache_info()
        assert info["size"] == 1
        assert info["keys"] == ["overview-7d-10"]


def test_overview_for_mixed_ten_pr_corpus(engine: MetricsEngine) -> None:
    """3 merged, 2 draft, 1 closed unmerged, 4 open (2 of them never reviewed)."""
    reviewed = [make_review(1, "bob", "COMMENTED", NOW)]
    corpus = [
        make_pr(API, 1, state="closed", merged_after_hours=1),
        make_pr(API, 2, state="closed", merged_after_hours=2),
        make_pr(WEB, 3, state="closed", merged_after_hours=3),
        make_pr(API, 4, draft=True),
        make_pr(WEB, 5, draft=True),
        make_pr(WEB, 6, state="closed"),
        make_pr(API, 7, reviews=reviewed),
        make_pr(API, 8, reviews=reviewed),
        make_pr(WEB, 9),
        make_pr(WEB, 10),
    ]
    stats = engine.overview(corpus, "6m")
    assert stats.total_prs == 10
    assert stats.merged_prs == 3
    assert stats.draft_prs == 2
    assert stats.closed_prs == 1
    assert stats.open_prs == 4
    assert stats.pending_review == 2
