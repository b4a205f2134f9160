"""Team activity statistics over the full (open + closed) PR corpus.

Three reports: overview, per user, per repository. Each is memoized by
(report kind, time range, corpus size) for a few minutes; clear_cache()
drops every memoized result after a deliberate statistics refresh.
"""

import logging
import time
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, List, Sequence, Tuple

from pydantic import BaseModel

from prwatch.models import PullRequest, Repository, ReviewState, TeamUser, parse_repo_url

LOG = logging.getLogger("prwatch.services.metrics")

CACHE_TTL_SECONDS = 5 * 60
STALE_PR_DAYS = 30


class TimeRange(str, Enum):
    """Selectable statistics windows; filtering is by PR creation date."""

    LAST_7_DAYS = "7d"
    LAST_30_DAYS = "30d"
    LAST_3_MONTHS = "3m"
    LAST_6_MONTHS = "6m"

    @property
    def days(self) -> int:
        return {"7d": 7, "30d": 30, "3m": 90, "6m": 180}[self.value]

    @property
    def label(self) -> str:
        return {
            "7d": "Last 7 days",
            "30d": "Last 30 days",
            "3m": "Last 3 months",
            "6m": "Last 6 months",
        }[self.value]

    @classmethod
    def parse(cls, value: "str | TimeRange | None") -> "TimeRange":
        """Parse a range value; unknown values fall back to 30 days."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            return cls.LAST_30_DAYS


class OverviewStats(BaseModel):
    total_prs: int
    open_prs: int
    closed_prs: int
    merged_prs: int
    draft_prs: int
    pending_review: int
    old_prs_count: int
    avg_hours_to_first_review: float | None = None
    avg_hours_to_merge: float | None = None


class UserStats(BaseModel):
    username: str
    name: str
    avatar: str
    prs_created: int
    reviews_given: int
    approvals_given: int
    prs_assigned: int
    oldest_pr_days: int


class RepoStats(BaseModel):
    name: str
    owner: str
    full_name: str
    total_prs: int
    open_prs: int
    closed_prs: int
    merged_prs: int
    draft_prs: int
    pending_review: int


class MetricsCache:
    """TTL cache for computed reports."""

    def __init__(self, ttl_seconds: float = CACHE_TTL_SECONDS, clock: Callable[[], float] = time.time) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: Dict[Tuple[str, str, int], Tuple[float, Any]] = {}

    def get(self, key: Tuple[str, str, int]) -> Any | None:
        cached = self._entries.get(key)
        if cached is None:
            return None
        stored_at, data = cached
        if self._clock() - stored_at > self._ttl:
            del self._entries[key]
            return None
        return data

    def set(self, key: Tuple[str, str, int], data: Any) -> None:
        self._entries[key] = (self._clock(), data)

    def clear(self) -> None:
        self._entries.clear()

    def keys(self) -> List[Tuple[str, str, int]]:
        return list(self._entries)


def _hours(delta: timedelta) -> float:
    return delta.total_seconds() / 3600


def _mean(values: List[float]) -> float | None:
    if not values:
        return None
    return round(sum(values) / len(values), 1)


class MetricsEngine:
    """Computes overview, user and repository reports for a time range."""

    def __init__(self, clock: Callable[[], float] = time.time, ttl_seconds: float = CACHE_TTL_SECONDS) -> None:
        self._clock = clock
        self._cache = MetricsCache(ttl_seconds=ttl_seconds, clock=clock)

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self._clock(), tz=UTC)

    def _in_range(self, prs: Sequence[PullRequest], time_range: TimeRange) -> List[PullRequest]:
        cutoff = self._now() - timedelta(days=time_range.days)
        return [pr for pr in prs if pr.created_at >= cutoff]

    def overview(self, prs: Sequence[PullRequest], time_range: "str | TimeRange" = TimeRange.LAST_30_DAYS) -> OverviewStats:
        time_range = TimeRange.parse(time_range)
        key = ("overview", time_range.value, len(prs))
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        now = self._now()
        in_range = self._in_range(prs, time_range)
        stale_cutoff = now - timedelta(days=STALE_PR_DAYS)

        review_latencies = []
        for pr in in_range:
            reviewed = [r.submitted_at for r in pr.reviews if r.submitted_at and r.user.login != pr.user.login]
            if reviewed:
                review_latencies.append(_hours(min(reviewed) - pr.created_at))
        merge_latencies = [_hours(pr.merged_at - pr.created_at) for pr in in_range if pr.merged_at]

        stats = OverviewStats(
            total_prs=len(in_range),
            open_prs=sum(1 for pr in in_range if pr.state == "open" and not pr.draft),
            closed_prs=sum(1 for pr in in_range if pr.state == "closed" and not pr.is_merged),
            merged_prs=sum(1 for pr in in_range if pr.is_merged),
            draft_prs=sum(1 for pr in in_range if pr.draft),
            pending_review=sum(1 for pr in in_range if pr.state == "open" and not pr.draft and not pr.reviews),
            old_prs_count=sum(1 for pr in prs if pr.state == "open" and pr.created_at < stale_cutoff),
            avg_hours_to_first_review=_mean(review_latencies),
            avg_hours_to_merge=_mean(merge_latencies),
        )
        self._cache.set(key, stats)
        return stats

    def user_stats(
        self,
        prs: Sequence[PullRequest],
        users: Sequence[TeamUser],
        time_range: "str | TimeRange" = TimeRange.LAST_30_DAYS,
    ) -> List[UserStats]:
        time_range = TimeRange.parse(time_range)
        key = ("users", time_range.value, len(prs))
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        now = self._now()
        in_range = self._in_range(prs, time_range)
        stats = []
        for user in users:
            authored = [pr for pr in in_range if pr.user.login == user.username]
            reviews = [r for pr in in_range for r in pr.reviews if r.user.login == user.username]
            still_open = [pr.created_at for pr in authored if pr.state == "open"]
            stats.append(
                UserStats(
                    username=user.username,
                    name=user.name,
                    avatar=user.avatar,
                    prs_created=len(authored),
                    reviews_given=len(reviews),
                    approvals_given=sum(1 for r in reviews if r.state == ReviewState.APPROVED),
                    prs_assigned=sum(1 for pr in in_range if user.username in pr.assignee_logins),
                    oldest_pr_days=(now - min(still_open)).days if still_open else 0,
                )
            )
        self._cache.set(key, stats)
        return stats

    def repo_stats(
        self,
        prs: Sequence[PullRequest],
        repositories: Sequence[Repository],
        time_range: "str | TimeRange" = TimeRange.LAST_30_DAYS,
    ) -> List[RepoStats]:
        """Per-repository counts over the whole corpus; `time_range` only keys the cache."""
        time_range = TimeRange.parse(time_range)
        key = ("repos", time_range.value, len(prs))
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        stats = []
        for repo in repositories:
            try:
                owner, name = parse_repo_url(repo.url)
            except ValueError:
                LOG.warning("Invalid GitHub URL: %s", repo.url)
                continue
            full_name = f"{owner}/{name}"
            repo_prs = [pr for pr in prs if pr.base.repo_full_name == full_name]
            open_prs = [pr for pr in repo_prs if pr.state == "open"]
            stats.append(
                RepoStats(
                    name=repo.name,
                    owner=owner,
                    full_name=full_name,
                    total_prs=len(repo_prs),
                    open_prs=len(open_prs),
                    closed_prs=sum(1 for pr in repo_prs if pr.state == "closed"),
                    merged_prs=sum(1 for pr in repo_prs if pr.is_merged),
                    draft_prs=sum(1 for pr in repo_prs if pr.draft),
                    pending_review=sum(1 for pr in open_prs if not pr.draft),
                )
            )
        self._cache.set(key, stats)
        return stats

    def clear_cache(self) -> None:
        self._cache.clear()
        LOG.debug("Metrics cache cleared")

    def cache_info(self) -> Dict[str, Any]:
        keys = self._cache.keys()
        return {"size": len(keys), "keys": ["-".join(str(p) for p in k) for k in keys]}
