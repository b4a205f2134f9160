"""Shared fixtures: an in-memory GitHub double and PR/repository factories."""

from datetime import UTC, datetime, timedelta
from typing import Any, Dict, List

import pytest

from prwatch.adapters.base import GitPlatformAdapter, GitPlatformError
from prwatch.models import Account, BranchRef, PullRequest, Repository, Review

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)
NOW_MS = int(NOW.timestamp() * 1000)


def make_repo(name: str = "api", owner: str = "octo-org", interval: int | None = None) -> Repository:
    return Repository(url=f"https://github.com/{owner}/{name}", name=name, refresh_interval=interval)


def make_pr(
    repo: Repository,
    number: int,
    author: str = "alice",
    created_days_ago: float = 1,
    state: str = "open",
    draft: bool = False,
    merged_after_hours: float | None = None,
    assignees: List[str] | None = None,
    reviews: List[Review] | None = None,
    title: str | None = None,
    head: str = "feature",
    base: str = "main",
) -> PullRequest:
    created = NOW - timedelta(days=created_days_ago)
    merged = created + timedelta(hours=merged_after_hours) if merged_after_hours is not None else None
    return PullRequest(
        repository_url=repo.url,
        number=number,
        title=title if title is not None else f"PR {number}",
        state=state,
        draft=draft,
        user=Account(login=author),
        assignees=[Account(login=a) for a in (assignees or [])],
        base=BranchRef(ref=base, repo_full_name=repo.full_name),
        head=BranchRef(ref=head, repo_full_name=repo.full_name),
        created_at=created,
        updated_at=created,
        merged_at=merged,
        closed_at=merged,
        reviews=reviews or [],
    )


def make_review(review_id: int, login: str, state: str = "APPROVED", at: datetime | None = None) -> Review:
    return Review(id=review_id, user=Account(login=login), state=state, submitted_at=at)


class FakeAdapter(GitPlatformAdapter):
    """GitPlatformAdapter over in-memory PRs; failures are injected per repository URL."""

    def __init__(self) -> None:
        self.prs: Dict[str, List[PullRequest]] = {}
        self.reviews: Dict[tuple, List[Review]] = {}
        self.list_errors: Dict[str, Exception] = {}
        self.detail_errors: Dict[tuple, Exception] = {}
        self.review_errors: Dict[tuple, Exception] = {}
        self.assign_error: Exception | None = None
        self.org_repos: List[Dict[str, Any]] = []
        self.repo_meta: Dict[str, Dict[str, Any]] = {}
        self.calls: List[tuple] = []

    def add(self, pr: PullRequest) -> PullRequest:
        self.prs.setdefault(pr.repository_url, []).append(pr)
        return pr

    def list_pull_requests(self, repo: Repository, state: str = "open") -> List[PullRequest]:
        self.calls.append(("list", repo.url, state))
        if repo.url in self.list_errors:
            raise self.list_errors[repo.url]
        prs = self.prs.get(repo.url, [])
        if state == "open":
            prs = [pr for pr in prs if pr.state == "open"]
        return [pr.model_copy(update={"comments": 0, "review_comments": 0, "reviews": []}) for pr in prs]

    def get_pull_request(self, repo: Repository, number: int) -> PullRequest:
        self.calls.append(("detail", repo.url, number))
        if (repo.url, number) in self.detail_errors:
            raise self.detail_errors[(repo.url, number)]
        for pr in self.prs.get(repo.url, []):
            if pr.number == number:
                return pr.model_copy(update={"detail_loaded": True})
        raise GitPlatformError("404: Not Found", status_code=404)

    def list_reviews(self, repo: Repository, number: int) -> List[Review]:
        self.calls.append(("reviews", repo.url, number))
        if (repo.url, number) in self.review_errors:
            raise self.review_errors[(repo.url, number)]
        return list(self.reviews.get((repo.url, number), []))

    def add_assignees(self, owner: str, repo: str, number: int, usernames: List[str]) -> None:
        self.calls.append(("assign", f"{owner}/{repo}", number, tuple(usernames)))
        if self.assign_error is not None:
            raise self.assign_error

    def remove_assignees(self, owner: str, repo: str, number: int, usernames: List[str]) -> None:
        self.calls.append(("unassign", f"{owner}/{repo}", number, tuple(usernames)))
        if self.assign_error is not None:
            raise self.assign_error

    def list_org_repositories(self, org: str) -> List[Dict[str, Any]]:
        self.calls.append(("org", org))
        return list(self.org_repos)

    def get_repository(self, full_name: str) -> Dict[str, Any]:
        self.calls.append(("repo", full_name))
        if full_name not in self.repo_meta:
            raise GitPlatformError("404: Not Found", status_code=404)
        return self.repo_meta[full_name]


@pytest.fixture
def fake_adapter() -> FakeAdapter:
    return FakeAdapter()


@pytest.fixture
def repo_a() -> Repository:
    return make_repo("api")


@pytest.fixture
def repo_b() -> Repository:
    return make_repo("web")
