"""State reconciler: the canonical PR set, refresh timestamps and their persistence.

The state is one immutable PRSnapshot. Every change reads the current
snapshot, computes the next one and replaces it whole. Async paths (merge,
single repository/PR replacement) hold a lock across compute and persist;
optimistic edits are synchronous and therefore atomic on the event loop.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field, replace
from typing import Callable, Dict, Iterable, List, Mapping, Tuple

from prwatch.models import PRKey, PullRequest, RefreshState, pr_timestamp_key
from prwatch.services.store import KeyValueStore, load_refresh_state, save_refresh_state

LOG = logging.getLogger("prwatch.services.reconciler")


def now_millis() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class PRSnapshot:
    """Canonical PR set plus repository and PR timestamps (epoch millis)."""

    pull_requests: Tuple[PullRequest, ...] = ()
    last_updates: Mapping[str, int] = field(default_factory=dict)
    pr_last_updates: Mapping[str, int] = field(default_factory=dict)

    def find(self, key: PRKey) -> PullRequest | None:
        for pr in self.pull_requests:
            if pr.key == key:
                return pr
        return None

    def for_repository(self, url: str) -> List[PullRequest]:
        return [pr for pr in self.pull_requests if pr.repository_url == url]

    def grouped(self) -> Dict[str, List[PullRequest]]:
        """PRs grouped by repository URL, in canonical order."""
        out: Dict[str, List[PullRequest]] = {}
        for pr in self.pull_requests:
            out.setdefault(pr.repository_url, []).append(pr)
        return out


def _dedupe(prs: Iterable[PullRequest]) -> Tuple[PullRequest, ...]:
    """Drop duplicate keys; the last occurrence wins and keeps its position."""
    by_key: Dict[PRKey, PullRequest] = {}
    for pr in prs:
        by_key.pop(pr.key, None)
        by_key[pr.key] = pr
    return tuple(by_key.values())


class StateReconciler:
    """Owns the canonical PR set and writes it to the store after every merge."""

    def __init__(self, store: KeyValueStore | None = None, clock: Callable[[], int] = now_millis) -> None:
        self._store = store
        self._clock = clock
        self._snapshot = PRSnapshot()
        self._lock = asyncio.Lock()

    @property
    def snapshot(self) -> PRSnapshot:
        return self._snapshot

    @property
    def pull_requests(self) -> Tuple[PullRequest, ...]:
        return self._snapshot.pull_requests

    @property
    def last_updates(self) -> Mapping[str, int]:
        return self._snapshot.last_updates

    @property
    def pr_last_updates(self) -> Mapping[str, int]:
        return self._snapshot.pr_last_updates

    def pr_last_update(self, key: PRKey) -> int | None:
        return self._snapshot.pr_last_updates.get(pr_timestamp_key(*key))

    async def load_cached(self) -> PRSnapshot:
        """Restore the persisted snapshot so a cold start shows the last known PRs."""
        if self._store is None:
            return self._snapshot
        state = await asyncio.to_thread(load_refresh_state, self._store)
        prs = [pr for prs in state.cached_prs.values() for pr in prs]
        async with self._lock:
            self._snapshot = PRSnapshot(
                pull_requests=_dedupe(prs),
                last_updates=dict(state.last_updates),
                pr_last_updates=dict(state.pr_last_updates),
            )
        LOG.info("Loaded cached state: %d PRs from %d repositories", len(prs), len(state.cached_prs))
        return self._snapshot

    async def merge(
        self,
        fetched: Mapping[str, List[PullRequest]],
        timestamps: Mapping[str, int] | None = None,
        now_ms: int | None = None,
    ) -> PRSnapshot:
        """Replace the PRs of every repository in `fetched`, keep all others.

        `timestamps` overrides the recorded update time per repository
        (staggered first load); others get now. Timestamps never decrease.
        """
        now = now_ms if now_ms is not None else self._clock()
        timestamps = timestamps or {}
        async with self._lock:
            current = self._snapshot
            kept = [pr for pr in current.pull_requests if pr.repository_url not in fetched]
            incoming = [pr for prs in fetched.values() for pr in prs]
            last_updates = dict(current.last_updates)
            for url in fetched:
                stamp = timestamps.get(url, now)
                last_updates[url] = max(last_updates.get(url, stamp), stamp)
            pr_last_updates = {
                k: v for k, v in current.pr_last_updates.items() if k.rsplit("#", 1)[0] not in fetched
            }
            for pr in incoming:
                pr_last_updates[pr_timestamp_key(*pr.key)] = now
            self._snapshot = PRSnapshot(
                pull_requests=_dedupe([*kept, *incoming]),
                last_updates=last_updates,
                pr_last_updates=pr_last_updates,
            )
            LOG.info(
                "Merged %d PRs from %d repositories (%d kept from others)",
                len(incoming),
                len(fetched),
                len(kept),
            )
            await self._persist_locked()
            return self._snapshot

    async def replace_repository(self, url: str, prs: List[PullRequest], now_ms: int | None = None) -> PRSnapshot:
        """Single-repository manual refresh: swap that repository's slice."""
        return await self.merge({url: prs}, now_ms=now_ms)

    async def replace_pull_request(self, pr: PullRequest, now_ms: int | None = None) -> PRSnapshot:
        """Replace one PR in place (appended if unknown) and stamp it."""
        now = now_ms if now_ms is not None else self._clock()
        async with self._lock:
            current = self._snapshot
            found = False
            prs = []
            for existing in current.pull_requests:
                if existing.key == pr.key:
                    prs.append(pr)
                    found = True
                else:
                    prs.append(existing)
            if not found:
                prs.append(pr)
            pr_last_updates = dict(current.pr_last_updates)
            pr_last_updates[pr_timestamp_key(*pr.key)] = now
            self._snapshot = replace(current, pull_requests=tuple(prs), pr_last_updates=pr_last_updates)
            await self._persist_locked()
            return self._snapshot

    async def remove_pull_request(self, key: PRKey) -> PRSnapshot:
        async with self._lock:
            current = self._snapshot
            pr_last_updates = dict(current.pr_last_updates)
            pr_last_updates.pop(pr_timestamp_key(*key), None)
            self._snapshot = replace(
                current,
                pull_requests=tuple(pr for pr in current.pull_requests if pr.key != key),
                pr_last_updates=pr_last_updates,
            )
            await self._persist_locked()
            return self._snapshot

    def apply_assignment(self, key: PRKey, login: str, add: bool = True) -> PullRequest | None:
        """Optimistic local add/remove of an assignee. Returns the edited PR, None if unknown."""
        current = self._snapshot
        edited: PullRequest | None = None
        prs = []
        for pr in current.pull_requests:
            if pr.key == key:
                edited = pr.with_assignee(login) if add else pr.without_assignee(login)
                prs.append(edited)
            else:
                prs.append(pr)
        if edited is None:
            LOG.warning("Cannot %s %s: PR %s#%s not loaded", "assign" if add else "unassign", login, *key)
            return None
        self._snapshot = replace(current, pull_requests=tuple(prs))
        LOG.debug("Optimistic %s of %s on %s#%s", "assign" if add else "unassign", login, *key)
        return edited

    async def revert_assignment(self, edited: PullRequest, previous: PullRequest) -> bool:
        """Undo an optimistic edit: put `previous` back if `edited` is still the canonical copy.

        A PR replaced by a fetch since the edit is left alone. The restored set is persisted.
        """
        async with self._lock:
            current = self._snapshot
            if not any(pr is edited for pr in current.pull_requests):
                return False
            prs = tuple(previous if pr is edited else pr for pr in current.pull_requests)
            self._snapshot = replace(current, pull_requests=prs)
            LOG.debug("Reverted optimistic edit on %s#%s", *previous.key)
            await self._persist_locked()
            return True

    def to_refresh_state(self) -> RefreshState:
        snapshot = self._snapshot
        return RefreshState(
            last_updates=dict(snapshot.last_updates),
            pr_last_updates=dict(snapshot.pr_last_updates),
            cached_prs=snapshot.grouped(),
        )

    async def persist(self) -> bool:
        async with self._lock:
            return await self._persist_locked()

    async def _persist_locked(self) -> bool:
        if self._store is None:
            return True
        return await asyncio.to_thread(save_refresh_state, self._store, self.to_refresh_state())
