"""Refresh scheduler: every tick, decide which repositories are due for an update.

Due-set computation is a pure function of (repositories, timestamps, now,
force, rng). RefreshLoop owns the asyncio task that calls the refresh
callback on a fixed cadence.
"""

import asyncio
import logging
import random
from typing import Any, Awaitable, Callable, Collection, Dict, List, Mapping, Sequence

from prwatch.models import Repository
from prwatch.models.repository import DEFAULT_REPO_INTERVAL

LOG = logging.getLogger("prwatch.scheduler")

MAX_BATCH_SIZE = 50
JITTER = 0.1
TICK_SECONDS = 30


def repo_interval(repo: Repository, default_interval: int = DEFAULT_REPO_INTERVAL) -> int:
    """Refresh interval of a repository in seconds."""
    return repo.refresh_interval or default_interval


def jittered_interval(interval: float, rng: random.Random, jitter: float = JITTER) -> float:
    """interval * (1 + U[-jitter, +jitter])."""
    return interval * (1 + rng.uniform(-jitter, jitter))


def compute_due_repositories(
    repositories: Sequence[Repository],
    last_updates: Mapping[str, int],
    now_ms: int,
    force: bool = False,
    default_interval: int = DEFAULT_REPO_INTERVAL,
    max_batch: int = MAX_BATCH_SIZE,
    rng: random.Random | None = None,
    jitter: float = JITTER,
    in_flight: Collection[str] = (),
) -> List[Repository]:
    """Repositories to refresh this cycle, most overdue first, at most max_batch.

    A repository is due when now - last_update >= interval * (1 + jitter),
    with jitter drawn per repository on every call. Never-fetched
    repositories are always due; repositories still being fetched never are.
    """
    rng = rng or random.Random()
    candidates: List[tuple[float, int, Repository]] = []
    for index, repo in enumerate(repositories):
        if repo.url in in_flight:
            continue
        if force:
            candidates.append((0.0, index, repo))
            continue
        last = last_updates.get(repo.url)
        if last is None:
            candidates.append((float("-inf"), index, repo))
            continue
        elapsed_s = (now_ms - last) / 1000
        interval = repo_interval(repo, default_interval)
        if elapsed_s >= jittered_interval(interval, rng, jitter):
            candidates.append((-elapsed_s / interval, index, repo))

    candidates.sort(key=lambda c: (c[0], c[1]))
    due = [repo for _, _, repo in candidates[:max_batch]]
    if len(candidates) > max_batch:
        LOG.info("%d repositories due, refreshing %d this cycle", len(candidates), max_batch)
    return due


def stagger_first_load(
    repositories: Sequence[Repository],
    last_updates: Mapping[str, int],
    now_ms: int,
    default_interval: int = DEFAULT_REPO_INTERVAL,
    rng: random.Random | None = None,
) -> Dict[str, int]:
    """Backdated timestamps for repositories that were never updated.

    Each gets now - U[0, interval) so that later due times are spread out
    instead of all aligning to the first load.
    """
    rng = rng or random.Random()
    out: Dict[str, int] = {}
    for repo in repositories:
        if repo.url in last_updates:
            continue
        offset_s = rng.uniform(0, repo_interval(repo, default_interval))
        out[repo.url] = int(now_ms - offset_s * 1000)
    return out


class RefreshLoop:
    """Owned asyncio task that calls `tick` every interval_seconds."""

    def __init__(
        self,
        tick: Callable[[], Awaitable[Any]],
        interval_seconds: float = TICK_SECONDS,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._tick = tick
        self._interval = interval_seconds
        self._sleep = sleep
        self._task: asyncio.Task | None = None
        self.ticks = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run(self, max_ticks: int | None = None) -> None:
        """Tick until cancelled (or max_ticks reached). Tick errors are logged."""
        while max_ticks is None or self.ticks < max_ticks:
            try:
                await self._tick()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                LOG.exception("Refresh tick error: %s", e)
            self.ticks += 1
            if max_ticks is not None and self.ticks >= max_ticks:
                break
            await self._sleep(self._interval)

    def start(self) -> asyncio.Task:
        """Start the loop as a task on the running event loop."""
        if self.running:
            return self._task
        self._task = asyncio.create_task(self.run(), name="prwatch-refresh-loop")
        return self._task

    async def wait(self) -> None:
        """Block until the loop task finishes (or is cancelled)."""
        if self._task is not None:
            await self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
