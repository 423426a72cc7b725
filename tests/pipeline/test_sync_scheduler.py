from __future__ import annotations

import asyncio
from typing import Any

import pytest

from commit_translator.exceptions import GitHubFetchError
from commit_translator.jobs.sync_scheduler import SyncScheduler, SyncStatus, parse_repository_ids

from fakes import github_repo_payload


class FakeOrchestrator:
    def __init__(self, store) -> None:
        self.store = store
        self.calls: list[dict[str, Any]] = []
        self.failing: set[int] = set()
        self.gate: asyncio.Event | None = None

    async def sync_repository(self, repository_id, github_token=None, user_id=None):
        self.calls.append({"repository_id": repository_id, "github_token": github_token, "user_id": user_id})
        if self.gate is not None:
            await self.gate.wait()
        if repository_id in self.failing:
            raise GitHubFetchError("GitHub API error: token ghp_abcdefghijklmnopqrstuvwx rejected", status_code=401)
        return {"success": True, "has_changes": False, "new_commit_count": 0}


def _connect(store, count: int, user_id: str = "user-a") -> list[int]:
    return [store.connect_repository(user_id, github_repo_payload(f"octocat/repo-{i}")).id for i in range(count)]


@pytest.mark.asyncio
async def test_request_sync_marks_synced_or_error(store) -> None:
    first, second = _connect(store, 2)
    orchestrator = FakeOrchestrator(store)
    orchestrator.failing.add(second)
    scheduler = SyncScheduler(orchestrator, store)

    ok = await scheduler.request_sync(first, github_token="ghp_user", user_id="user-a")
    failed = await scheduler.request_sync(second)

    assert ok["status"] == "synced"
    assert ok["result"]["success"] is True
    assert failed["status"] == "error"
    assert "ghp_abcdefghijklmnopqrstuvwx" not in failed["error"]
    assert scheduler.status(first) == SyncStatus.SYNCED
    assert scheduler.statuses() == {first: "synced", second: "error"}
    assert orchestrator.calls[0] == {"repository_id": first, "github_token": "ghp_user", "user_id": "user-a"}


@pytest.mark.asyncio
async def test_second_request_while_syncing_is_skipped(store) -> None:
    (repository_id,) = _connect(store, 1)
    orchestrator = FakeOrchestrator(store)
    orchestrator.gate = asyncio.Event()
    scheduler = SyncScheduler(orchestrator, store)

    running = asyncio.create_task(scheduler.request_sync(repository_id))
    await asyncio.sleep(0)
    assert scheduler.is_syncing(repository_id)

    skipped = await scheduler.request_sync(repository_id)
    orchestrator.gate.set()
    finished = await running

    assert skipped == {"repository_id": repository_id, "skipped": True, "status": "syncing"}
    assert finished["status"] == "synced"
    assert len(orchestrator.calls) == 1


@pytest.mark.asyncio
async def test_cancelled_sync_releases_the_guard(store) -> None:
    (repository_id,) = _connect(store, 1)
    orchestrator = FakeOrchestrator(store)
    orchestrator.gate = asyncio.Event()
    scheduler = SyncScheduler(orchestrator, store)

    running = asyncio.create_task(scheduler.request_sync(repository_id))
    await asyncio.sleep(0)
    assert scheduler.is_syncing(repository_id)

    running.cancel()
    with pytest.raises(asyncio.CancelledError):
        await running

    assert scheduler.status(repository_id) == SyncStatus.ERROR

    orchestrator.gate.set()
    retried = await scheduler.request_sync(repository_id)

    assert retried["skipped"] is False
    assert retried["status"] == "synced"
    assert len(orchestrator.calls) == 2


@pytest.mark.asyncio
async def test_tick_caps_repositories_and_pauses_between_them(store) -> None:
    ids = _connect(store, 5)
    orchestrator = FakeOrchestrator(store)
    sleeps: list[float] = []

    async def fake_sleep(seconds: float) -> None:
        sleeps.append(seconds)

    scheduler = SyncScheduler(orchestrator, store, sleep=fake_sleep)

    summary = await scheduler.tick()

    assert summary["processed"] == 3
    assert summary["synced"] == 3
    assert [call["repository_id"] for call in orchestrator.calls] == ids[:3]
    assert sleeps == [2.0, 2.0]


@pytest.mark.asyncio
async def test_tick_continues_past_failures_and_scopes_by_owner(store) -> None:
    mine = _connect(store, 2, "user-a")
    _connect(store, 2, "user-b")
    orchestrator = FakeOrchestrator(store)
    orchestrator.failing.add(mine[0])
    scheduler = SyncScheduler(orchestrator, store, repositories_per_tick=3, delay_seconds=0)

    summary = await scheduler.tick(user_id="user-a")

    assert summary["processed"] == 2
    assert summary["failed"] == 1
    assert summary["synced"] == 1
    assert {call["user_id"] for call in orchestrator.calls} == {"user-a"}


def test_parse_repository_ids_accepts_csv_lists_and_scalars() -> None:
    assert parse_repository_ids(None) is None
    assert parse_repository_ids("1, 2,,x") == [1, 2]
    assert parse_repository_ids([3, "4"]) == [3, 4]
    assert parse_repository_ids(7) == [7]
    assert parse_repository_ids("") is None
