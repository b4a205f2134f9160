"""Tests for StateReconciler: merge isolation, idempotence, timestamps and persistence."""

import asyncio
from pathlib import Path

from conftest import NOW_MS, make_pr

from prwatch.models import PRKey, Repository, pr_timestamp_key
from prwatch.services.reconciler import StateReconciler
from prwatch.services.store import MemoryStore, YamlFileStore, load_refresh_state


def _reconciler(store=None) -> StateReconciler:
    return StateReconciler(store, clock=lambda: NOW_MS)


def test_merge_replaces_only_fetched_repositories(repo_a: Repository, repo_b: Repository) -> None:
    reconciler = _reconciler()
    a1, a2, b1 = make_pr(repo_a, 1), make_pr(repo_a, 2), make_pr(repo_b, 1)

    async def scenario():
        await reconciler.merge({repo_a.url: [a1, a2], repo_b.url: [b1]})
        return await reconciler.merge({repo_a.url: [a2]})

    snapshot = asyncio.run(scenario())
    assert {pr.key for pr in snapshot.pull_requests} == {a2.key, b1.key}
    assert snapshot.for_repository(repo_b.url) == [b1]


def test_merge_is_idempotent(repo_a: Repository, repo_b: Repository) -> None:
    reconciler = _reconciler()
    fetched = {repo_a.url: [make_pr(repo_a, 1), make_pr(repo_a, 2)], repo_b.url: [make_pr(repo_b, 5)]}

    async def scenario():
        first = await reconciler.merge(fetched)
        second = await reconciler.merge(fetched)
        return first, second

    first, second = asyncio.run(scenario())
    assert first.pull_requests == second.pull_requests
    assert first.last_updates == second.last_updates
    assert first.pr_last_updates == second.pr_last_updates


def test_prs_are_unique_by_key(repo_a: Repository) -> None:
    reconciler = _reconciler()
    old = make_pr(repo_a, 1, title="old")
    new = make_pr(repo_a, 1, title="new")

    snapshot = asyncio.run(reconciler.merge({repo_a.url: [old, new]}))

    assert len(snapshot.pull_requests) == 1
    assert snapshot.pull_requests[0].title == "new"


def test_timestamps_recorded_and_never_decrease(repo_a: Repository, repo_b: Repository) -> None:
    reconciler = _reconciler()
    pr = make_pr(repo_a, 1)

    async def scenario():
        await reconciler.merge({repo_a.url: [pr], repo_b.url: []}, timestamps={repo_b.url: NOW_MS - 5000})
        return await reconciler.merge({repo_a.url: [pr]}, now_ms=NOW_MS - 10_000)

    snapshot = asyncio.run(scenario())
    assert snapshot.last_updates[repo_a.url] == NOW_MS
    assert snapshot.last_updates[repo_b.url] == NOW_MS - 5000
    assert reconciler.pr_last_update(pr.key) == NOW_MS - 10_000


def test_pr_timestamps_dropped_for_vanished_prs(repo_a: Repository, repo_b: Repository) -> None:
    reconciler = _reconciler()
    a1, a2, b1 = make_pr(repo_a, 1), make_pr(repo_a, 2), make_pr(repo_b, 1)

    async def scenario():
        await reconciler.merge({repo_a.url: [a1, a2], repo_b.url: [b1]})
        return await reconciler.merge({repo_a.url: [a1]})

    snapshot = asyncio.run(scenario())
    assert pr_timestamp_key(*a2.key) not in snapshot.pr_last_updates
    assert pr_timestamp_key(*a1.key) in snapshot.pr_last_updates
    assert pr_timestamp_key(*b1.key) in snapshot.pr_last_updates


def test_replace_pull_request_in_place(repo_a: Repository) -> None:
    reconciler = _reconciler()
    a1, a2 = make_pr(repo_a, 1), make_pr(repo_a, 2)

    async def scenario():
        await reconciler.merge({repo_a.url: [a1, a2]})
        return await reconciler.replace_pull_request(a1.model_copy(update={"title": "edited"}), now_ms=NOW_MS + 1)

    snapshot = asyncio.run(scenario())
    assert [pr.number for pr in snapshot.pull_requests] == [1, 2]
    assert snapshot.pull_requests[0].title == "edited"
    assert reconciler.pr_last_update(a1.key) == NOW_MS + 1


def test_remove_pull_request(repo_a: Repository) -> None:
    reconciler = _reconciler()
    a1, a2 = make_pr(repo_a, 1), make_pr(repo_a, 2)

    async def scenario():
        await reconciler.merge({repo_a.url: [a1, a2]})
        return await reconciler.remove_pull_request(a1.key)

    snapshot = asyncio.run(scenario())
    assert [pr.number for pr in snapshot.pull_requests] == [2]
    assert reconciler.pr_last_update(a1.key) is None


def test_apply_assignment_is_local_and_synchronous(repo_a: Repository) -> None:
    reconciler = _reconciler()
    asyncio.run(reconciler.merge({repo_a.url: [make_pr(repo_a, 1)]}))

    edited = reconciler.apply_assignment(PRKey(repo_a.url, 1), "carol")

    assert edited is not None
    assert reconciler.snapshot.find(PRKey(repo_a.url, 1)).assignee_logins == ["carol"]
    reconciler.apply_assignment(PRKey(repo_a.url, 1), "carol", add=False)
    assert reconciler.snapshot.find(PRKey(repo_a.url, 1)).assignee_logins == []
    assert reconciler.apply_assignment(PRKey(repo_a.url, 99), "carol") is None


def test_revert_assignment_restores_previous_copy(repo_a: Repository) -> None:
    reconciler = _reconciler()
    asyncio.run(reconciler.merge({repo_a.url: [make_pr(repo_a, 1)]}))
    key = PRKey(repo_a.url, 1)
    previous = reconciler.snapshot.find(key)
    edited = reconciler.apply_assignment(key, "carol")

    assert asyncio.run(reconciler.revert_assignment(edited, previous)) is True
    assert reconciler.snapshot.find(key) is previous


def test_revert_assignment_leaves_refetched_pr_alone(repo_a: Repository) -> None:
    reconciler = _reconciler()
    asyncio.run(reconciler.merge({repo_a.url: [make_pr(repo_a, 1)]}))
    key = PRKey(repo_a.url, 1)
    previous = reconciler.snapshot.find(key)
    edited = reconciler.apply_assignment(key, "carol")
    asyncio.run(reconciler.merge({repo_a.url: [make_pr(repo_a, 1, assignees=["carol"])]}))

    assert asyncio.run(reconciler.revert_assignment(edited, previous)) is False
    assert reconciler.snapshot.find(key).assignee_logins == ["carol"]


def test_merge_persists_and_load_cached_restores(tmp_path: Path, repo_a: Repository, repo_b: Repository) -> None:
    store = YamlFileStore(tmp_path / ".prwatch")
    a1, b1 = make_pr(repo_a, 1, assignees=["bob"]), make_pr(repo_b, 7)
    asyncio.run(_reconciler(store).merge({repo_a.url: [a1], repo_b.url: [b1]}))

    assert (tmp_path / ".prwatch" / "refresh_state.yaml").exists()
    state = load_refresh_state(store)
    assert state.last_updates == {repo_a.url: NOW_MS, repo_b.url: NOW_MS}
    assert set(state.cached_prs) == {repo_a.url, repo_b.url}

    restored = _reconciler(store)
    snapshot = asyncio.run(restored.load_cached())
    assert {pr.key for pr in snapshot.pull_requests} == {a1.key, b1.key}
    assert snapshot.find(a1.key).assignee_logins == ["bob"]
    assert snapshot.find(a1.key).created_at == a1.created_at
    assert snapshot.last_updates[repo_a.url] == NOW_MS


def test_load_cached_without_store_is_empty() -> None:
    snapshot = asyncio.run(_reconciler().load_cached())
    assert snapshot.pull_requests == ()


def test_failed_persist_keeps_memory_state(repo_a: Repository) -> None:
    class BrokenStore(MemoryStore):
        def save(self, key, value):
            from prwatch.services.store import StoreError

            raise StoreError("disk full")

    reconciler = _reconciler(BrokenStore())
    snapshot = asyncio.run(reconciler.merge({repo_a.url: [make_pr(repo_a, 1)]}))
    assert len(snapshot.pull_requests) == 1
    assert asyncio.run(reconciler.persist()) is False
