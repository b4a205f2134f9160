"""Fetch coordinator: concurrent per-repository and per-PR fetches.

Adapter calls are blocking (requests) and run in worker threads via
asyncio.to_thread. Repository fetches settle independently: one failing
repository never aborts the others. A repository that is still being
fetched is never fetched a second time concurrently.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Sequence, Tuple

from prwatch.adapters.base import AuthorizationError, GitPlatformAdapter, GitPlatformError
from prwatch.models import PullRequest, Repository

LOG = logging.getLogger("prwatch.services.fetcher")

OPEN = "open"
ALL = "all"


class FetchInProgressError(GitPlatformError):
    """A fetch for this repository is already running."""


@dataclass
class FetchResult:
    """Outcome of a batch fetch: PRs for repositories that succeeded, errors for the rest."""

    fetched: Dict[str, List[PullRequest]] = field(default_factory=dict)
    errors: Dict[str, Exception] = field(default_factory=dict)

    @property
    def pull_requests(self) -> List[PullRequest]:
        return [pr for prs in self.fetched.values() for pr in prs]

    @property
    def authorization_error(self) -> AuthorizationError | None:
        for error in self.errors.values():
            if isinstance(error, AuthorizationError):
                return error
        return None

    @property
    def primary_error(self) -> Exception | None:
        """Error to surface: SSO/authorization first, then the first other one."""
        auth = self.authorization_error
        if auth is not None:
            return auth
        return next(iter(self.errors.values()), None)

    def raise_for_error(self) -> None:
        error = self.primary_error
        if error is not None:
            raise error


class FetchCoordinator:
    """Retrieves PR sets for repositories through a GitPlatformAdapter."""

    def __init__(self, adapter: GitPlatformAdapter) -> None:
        self._adapter = adapter
        # (url, state): a live fetch and a statistics fetch of one repository may overlap
        self._in_flight: set[Tuple[str, str]] = set()

    @property
    def adapter(self) -> GitPlatformAdapter:
        return self._adapter

    @property
    def in_flight(self) -> FrozenSet[str]:
        """URLs with a live (open PR) fetch running."""
        return self.in_flight_for(OPEN)

    def in_flight_for(self, state: str) -> FrozenSet[str]:
        return frozenset(url for url, s in self._in_flight if s == state)

    async def fetch_open(self, repositories: Sequence[Repository]) -> FetchResult:
        """Open PRs with detail and reviews, for the live view."""
        return await self._fetch_batch(repositories, OPEN)

    async def fetch_all(self, repositories: Sequence[Repository]) -> FetchResult:
        """Open and closed PRs with reviews, for the statistics."""
        return await self._fetch_batch(repositories, ALL)

    async def _fetch_batch(self, repositories: Sequence[Repository], state: str) -> FetchResult:
        results = await asyncio.gather(
            *(self.fetch_repository(repo, state) for repo in repositories),
            return_exceptions=True,
        )
        out = FetchResult()
        for repo, result in zip(repositories, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                out.errors[repo.url] = result
                if isinstance(result, AuthorizationError):
                    LOG.error("Token not authorized for %s: %s", repo.full_name, result)
                else:
                    LOG.warning("Failed to load PRs for %s: %s", repo.name, result)
            else:
                out.fetched[repo.url] = result
        LOG.info(
            "Fetched %s PRs: %d repos ok, %d failed, %d PRs",
            state,
            len(out.fetched),
            len(out.errors),
            len(out.pull_requests),
        )
        return out

    async def fetch_repository(self, repo: Repository, state: str = OPEN) -> List[PullRequest]:
        """Fetch one repository's PRs. Errors propagate (SSO ones carry owner/repo)."""
        marker = (repo.url, state)
        if marker in self._in_flight:
            raise FetchInProgressError(f"Fetch of {state} PRs already in progress for {repo.full_name}")
        self._in_flight.add(marker)
        try:
            try:
                listed = await asyncio.to_thread(self._adapter.list_pull_requests, repo, state)
            except AuthorizationError as e:
                raise e.for_repository(repo.owner, repo.repo_name) from e
            LOG.debug("Found %d %s PRs for %s", len(listed), state, repo.name)
            if state == OPEN:
                prs = await asyncio.gather(*(self._with_detail(repo, pr) for pr in listed))
            else:
                prs = await asyncio.gather(*(self._with_reviews(repo, pr) for pr in listed))
            return list(prs)
        finally:
            self._in_flight.discard(marker)

    async def fetch_pull_request(self, repo: Repository, number: int) -> PullRequest:
        """Current detail and reviews of a single PR. Errors propagate."""
        try:
            detail = await asyncio.to_thread(self._adapter.get_pull_request, repo, number)
        except AuthorizationError as e:
            raise e.for_repository(repo.owner, repo.repo_name) from e
        return await self._with_reviews(repo, detail)

    async def _with_detail(self, repo: Repository, pr: PullRequest) -> PullRequest:
        """Upgrade a list-level PR with detail fields and reviews.

        On detail failure the list-level PR is kept with comment counts at 0
        and no reviews.
        """
        try:
            detail = await asyncio.to_thread(self._adapter.get_pull_request, repo, pr.number)
        except Exception as e:
            LOG.warning("Error fetching details for %s#%s: %s", repo.full_name, pr.number, e)
            return pr.model_copy(update={"comments": 0, "review_comments": 0, "reviews": []})
        return await self._with_reviews(repo, pr.upgrade(detail))

    async def _with_reviews(self, repo: Repository, pr: PullRequest) -> PullRequest:
        try:
            reviews = await asyncio.to_thread(self._adapter.list_reviews, repo, pr.number)
        except Exception as e:
            LOG.warning("Error fetching reviews for %s#%s: %s", repo.full_name, pr.number, e)
            return pr.with_reviews([])
        return pr.with_reviews(reviews)
