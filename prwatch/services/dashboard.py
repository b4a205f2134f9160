"""Dashboard: wires scheduler, fetch coordinator, reconciler and metrics.

This is what a UI talks to. It owns the application status (setup
required / ready / error), the last error to show the user, the
statistics corpus, and the optimistic assignment protocol: edit locally,
call GitHub, and on failure force a full reload before re-raising.
"""

import asyncio
import logging
import random
from enum import Enum
from pathlib import Path
from typing import Callable, List, Sequence

from prwatch.adapters.base import AuthorizationError, GitPlatformAdapter, GitPlatformError
from prwatch.adapters.github import GitHubAdapter
from prwatch.config import AppConfig, UserSettings, mask_token, save_user_config, user_config_path
from prwatch.models import Preferences, PRKey, PullRequest, Repository, RepositoryList, TeamUser
from prwatch.scheduler import RefreshLoop, compute_due_repositories, stagger_first_load
from prwatch.services.fetcher import FetchCoordinator, FetchResult
from prwatch.services.metrics import MetricsEngine, OverviewStats, RepoStats, TimeRange, UserStats
from prwatch.services.reconciler import StateReconciler, now_millis
from prwatch.services.repo_catalog import load_repository_list, load_users
from prwatch.services.store import KeyValueStore, YamlFileStore, load_preferences, save_preferences

LOG = logging.getLogger("prwatch.services.dashboard")


class AppStatus(str, Enum):
    SETUP_REQUIRED = "setup_required"
    READY = "ready"
    ERROR = "error"


class PRRefreshOutcome(str, Enum):
    UPDATED = "updated"
    CLOSED = "closed"


class SetupRequiredError(Exception):
    """No GitHub token configured; first-run setup must happen before fetching."""


class AssignmentError(Exception):
    """Assigning or unassigning failed remotely; local state was reloaded."""

    def __init__(self, message: str, pr_key: PRKey, username: str) -> None:
        super().__init__(message)
        self.pr_key = pr_key
        self.username = username


class Dashboard:
    """Application state and the operations a UI triggers."""

    def __init__(
        self,
        config: AppConfig,
        repositories: RepositoryList,
        users: Sequence[TeamUser],
        store: KeyValueStore | None = None,
        adapter: GitPlatformAdapter | None = None,
        adapter_factory: Callable[[str], GitPlatformAdapter] | None = None,
        metrics: MetricsEngine | None = None,
        rng: random.Random | None = None,
        clock: Callable[[], int] = now_millis,
    ) -> None:
        self.config = config
        self.repositories = repositories
        self.users = list(users)
        self._store = store
        self._adapter_factory = adapter_factory or self._default_adapter_factory
        self._rng = rng or random.Random()
        self._clock = clock
        self.reconciler = StateReconciler(store, clock=clock)
        self.metrics = metrics or MetricsEngine()
        self.statistics_prs: List[PullRequest] = []
        self.error: Exception | None = None
        self._fetcher: FetchCoordinator | None = None
        self._loop: RefreshLoop | None = None
        if adapter is None and config.github_token_resolved:
            adapter = self._adapter_factory(config.github_token_resolved)
        if adapter is not None:
            self._fetcher = FetchCoordinator(adapter)

    @classmethod
    def from_config(cls, config: AppConfig, **kwargs) -> "Dashboard":
        """Build a dashboard reading the repository and user lists named in config."""
        repositories = load_repository_list(Path(config.catalog.repos_path))
        if "default_refresh_interval" not in repositories.model_fields_set:
            repositories.default_refresh_interval = config.scheduler.default_repo_interval
        users = load_users(Path(config.catalog.users_path))
        store = kwargs.pop("store", None) or YamlFileStore(config.data_dir)
        return cls(config, repositories, users, store=store, **kwargs)

    def _default_adapter_factory(self, token: str) -> GitPlatformAdapter:
        return GitHubAdapter(token=token, api_url=self.config.github.api_url, timeout=self.config.github.timeout)

    @property
    def status(self) -> AppStatus:
        if self._fetcher is None:
            return AppStatus.SETUP_REQUIRED
        if self.error is not None:
            return AppStatus.ERROR
        return AppStatus.READY

    @property
    def fetcher(self) -> FetchCoordinator:
        if self._fetcher is None:
            raise SetupRequiredError("Configure a GitHub token first")
        return self._fetcher

    @property
    def pull_requests(self) -> Sequence[PullRequest]:
        return self.reconciler.pull_requests

    def _repository(self, url: str) -> Repository:
        repo = self.repositories.by_url(url)
        if repo is None:
            raise KeyError(f"Unknown repository: {url}")
        return repo

    async def start(self) -> AppStatus:
        """Restore cached PRs, then (with a token) run the forced first load."""
        await self.reconciler.load_cached()
        if self._fetcher is None:
            LOG.warning("No GitHub token configured; setup required before fetching")
            return self.status
        await self.refresh_cycle(force=True)
        return self.status

    async def refresh_cycle(self, force: bool = False) -> FetchResult | None:
        """One scheduler tick: fetch due repositories and merge what succeeded."""
        if self._fetcher is None:
            LOG.debug("Skipping refresh: setup required")
            return None
        fetcher = self._fetcher
        now = self._clock()
        last_updates = self.reconciler.last_updates
        default_interval = self.repositories.default_refresh_interval
        due = compute_due_repositories(
            self.repositories.repos,
            last_updates,
            now,
            force=force,
            default_interval=default_interval,
            max_batch=self.config.scheduler.max_batch,
            rng=self._rng,
            jitter=self.config.scheduler.jitter,
            in_flight=fetcher.in_flight,
        )
        if not due:
            LOG.debug("No repositories due")
            return None

        # Never-updated repositories are recorded with a backdated timestamp
        timestamps = stagger_first_load(due, last_updates, now, default_interval, self._rng)
        LOG.info("Refreshing %d repositories%s", len(due), " (forced)" if force else "")
        result = await fetcher.fetch_open(due)
        if result.fetched:
            await self.reconciler.merge(result.fetched, timestamps=timestamps)
        self._record_error(result)
        return result

    def _record_error(self, result: FetchResult) -> None:
        """Surface SSO errors first; other errors only when nothing loaded at all.

        An SSO error is cleared once its repository loads again.
        """
        auth = result.authorization_error
        if auth is not None:
            self.error = auth
            return
        if isinstance(self.error, AuthorizationError):
            failed = f"{self.error.owner}/{self.error.repo}"
            fetched = [self.repositories.by_url(url) for url in result.fetched]
            if any(repo is not None and repo.full_name == failed for repo in fetched):
                self.error = None
        elif result.fetched:
            self.error = None
        elif result.errors:
            self.error = result.primary_error

    async def refresh_repository(self, url: str) -> List[PullRequest]:
        """Manual refresh of one repository."""
        repo = self._repository(url)
        prs = await self.fetcher.fetch_repository(repo)
        await self.reconciler.replace_repository(url, prs)
        return prs

    async def refresh_pull_request(self, url: str, number: int) -> PRRefreshOutcome:
        """Manual refresh of one PR; a PR found closed leaves the live view."""
        repo = self._repository(url)
        pr = await self.fetcher.fetch_pull_request(repo, number)
        if pr.state == "closed":
            await self.reconciler.remove_pull_request(pr.key)
            LOG.info("PR %s#%s is closed; removed from the live view", repo.full_name, number)
            return PRRefreshOutcome.CLOSED
        await self.reconciler.replace_pull_request(pr)
        return PRRefreshOutcome.UPDATED

    async def assign_user(self, url: str, number: int, username: str) -> PullRequest | None:
        return await self._mutate_assignment(url, number, username, add=True)

    async def remove_assignee(self, url: str, number: int, username: str) -> PullRequest | None:
        return await self._mutate_assignment(url, number, username, add=False)

    async def _mutate_assignment(self, url: str, number: int, username: str, add: bool) -> PullRequest | None:
        repo = self._repository(url)
        fetcher = self.fetcher
        key = PRKey(url, number)
        previous = self.reconciler.snapshot.find(key)
        edited = self.reconciler.apply_assignment(key, username, add=add)
        call = fetcher.adapter.add_assignees if add else fetcher.adapter.remove_assignees
        action = "assign" if add else "unassign"
        try:
            await asyncio.to_thread(call, repo.owner, repo.repo_name, number, [username])
        except GitPlatformError as e:
            LOG.warning("Failed to %s %s on %s#%s: %s; reloading", action, username, repo.full_name, number, e)
            if edited is not None and previous is not None:
                await self.reconciler.revert_assignment(edited, previous)
            await self.refresh_cycle(force=True)
            raise AssignmentError(f"Failed to {action} {username}: {e}", key, username) from e
        LOG.info("%s %s on %s#%s", "Assigned" if add else "Unassigned", username, repo.full_name, number)
        return edited

    async def refresh_statistics(self) -> FetchResult:
        """Fetch all PRs (open and closed) for the statistics and drop memoized reports."""
        result = await self.fetcher.fetch_all(self.repositories.repos)
        self.statistics_prs = result.pull_requests
        self.metrics.clear_cache()
        self._record_error(result)
        return result

    def overview(self, time_range: "str | TimeRange" = TimeRange.LAST_30_DAYS) -> OverviewStats:
        return self.metrics.overview(self.statistics_prs, time_range)

    def user_stats(self, time_range: "str | TimeRange" = TimeRange.LAST_30_DAYS) -> List[UserStats]:
        return self.metrics.user_stats(self.statistics_prs, self.users, time_range)

    def repo_stats(self, time_range: "str | TimeRange" = TimeRange.LAST_30_DAYS) -> List[RepoStats]:
        return self.metrics.repo_stats(self.statistics_prs, self.repositories.repos, time_range)

    def save_settings(self, settings: UserSettings) -> bool:
        """Persist user settings and switch to the new token. False if saving failed."""
        path = user_config_path(self.config.data_dir)
        if not save_user_config(path, settings):
            return False
        self.config.github.token = settings.github_token
        self.config.refresh_interval = settings.refresh_interval
        self.config.token_source = "user"
        self._fetcher = FetchCoordinator(self._adapter_factory(settings.github_token))
        self.error = None
        LOG.info("Settings updated (token=%s)", mask_token(settings.github_token))
        return True

    def selected_repos(self) -> List[str]:
        """Names of repositories shown in the live view (all when never set)."""
        names = [r.name for r in self.repositories.repos]
        if self._store is None:
            return names
        prefs = load_preferences(self._store)
        if prefs.selected_repos is None:
            return names
        return [n for n in names if n in set(prefs.selected_repos)]

    def set_selected_repos(self, names: Sequence[str]) -> bool:
        if self._store is None:
            return True
        return save_preferences(self._store, Preferences(selected_repos=list(names)))

    def start_loop(self) -> RefreshLoop:
        """Start the periodic refresh task on the running event loop."""
        if self._loop is None:
            self._loop = RefreshLoop(self.refresh_cycle, interval_seconds=self.config.scheduler.tick_seconds)
        self._loop.start()
        return self._loop

    async def stop_loop(self) -> None:
        if self._loop is not None:
            await self._loop.stop()
