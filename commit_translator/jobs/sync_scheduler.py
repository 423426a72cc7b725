"""Periodic and on-demand repository sync entrypoints."""

from __future__ import annotations

import asyncio
import enum
import logging
from typing import Any, Awaitable, Callable, Iterable, Optional

from commit_translator.config.settings import settings
from commit_translator.crawlers.github_client import sanitize_for_log, sanitize_log_extra
from commit_translator.orchestrator import CommitTranslatorOrchestrator
from commit_translator.services.analysis_store import AnalysisStore

logger = logging.getLogger(__name__)


class SyncStatus(str, enum.Enum):
    SYNCING = "syncing"
    SYNCED = "synced"
    ERROR = "error"


class SyncScheduler:
    """Per-repository sync guard plus the bounded periodic tick.

    At most one sync per repository is in flight; a second request while one
    is running is skipped rather than queued.
    """

    def __init__(
        self,
        orchestrator: Optional[CommitTranslatorOrchestrator] = None,
        store: Optional[AnalysisStore] = None,
        *,
        repositories_per_tick: Optional[int] = None,
        delay_seconds: Optional[float] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.orchestrator = orchestrator or CommitTranslatorOrchestrator(store=store)
        self.store = store or self.orchestrator.store
        self.repositories_per_tick = (
            settings.SYNC_REPOSITORIES_PER_TICK if repositories_per_tick is None else repositories_per_tick
        )
        self.delay_seconds = settings.SYNC_DELAY_SECONDS if delay_seconds is None else delay_seconds
        self._sleep = sleep
        self._statuses: dict[int, SyncStatus] = {}

    def status(self, repository_id: int) -> Optional[SyncStatus]:
        return self._statuses.get(repository_id)

    def statuses(self) -> dict[int, str]:
        return {repository_id: status.value for repository_id, status in self._statuses.items()}

    def is_syncing(self, repository_id: int) -> bool:
        return self._statuses.get(repository_id) == SyncStatus.SYNCING

    async def request_sync(
        self,
        repository_id: int,
        *,
        github_token: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> dict[str, Any]:
        """Sync one repository unless a sync for it is already running."""

        if self.is_syncing(repository_id):
            logger.info("Sync already in progress, skipping", extra={"repository_id": repository_id})
            return {"repository_id": repository_id, "skipped": True, "status": SyncStatus.SYNCING.value}

        self._statuses[repository_id] = SyncStatus.SYNCING
        try:
            result = await self.orchestrator.sync_repository(
                repository_id,
                github_token=github_token,
                user_id=user_id,
            )
        except asyncio.CancelledError:
            # Never leave the guard stuck on a cancelled run.
            self._statuses[repository_id] = SyncStatus.ERROR
            logger.warning("Repository sync cancelled", extra={"repository_id": repository_id})
            raise
        except Exception as exc:
            self._statuses[repository_id] = SyncStatus.ERROR
            error = sanitize_for_log(str(exc), key="error") or type(exc).__name__
            logger.error(
                "Repository sync failed",
                extra=sanitize_log_extra(repository_id=repository_id, error=error),
                exc_info=True,
            )
            return {
                "repository_id": repository_id,
                "skipped": False,
                "status": SyncStatus.ERROR.value,
                "error": error,
            }

        self._statuses[repository_id] = SyncStatus.SYNCED
        return {
            "repository_id": repository_id,
            "skipped": False,
            "status": SyncStatus.SYNCED.value,
            "result": result,
        }

    async def tick(self, user_id: Optional[str] = None, github_token: Optional[str] = None) -> dict[str, Any]:
        """One periodic pass over the first few connected repositories."""

        repositories = self.store.list_repositories(user_id)[: max(self.repositories_per_tick, 0)]
        logger.info(f"Sync tick started for {len(repositories)} repositories")

        results: list[dict[str, Any]] = []
        for index, repository in enumerate(repositories):
            if index > 0 and self.delay_seconds > 0:
                await self._sleep(self.delay_seconds)
            results.append(
                await self.request_sync(repository.id, github_token=github_token, user_id=user_id)
            )

        synced = sum(1 for item in results if item["status"] == SyncStatus.SYNCED.value and not item["skipped"])
        failed = sum(1 for item in results if item["status"] == SyncStatus.ERROR.value)
        logger.info(f"Sync tick finished: {synced} synced, {failed} failed")
        return {
            "processed": len(results),
            "synced": synced,
            "failed": failed,
            "results": results,
        }


def parse_repository_ids(raw: Any) -> list[int] | None:
    """Parse optional repository IDs from event payloads/query params."""
    if raw is None:
        return None

    if isinstance(raw, str):
        values: Iterable[Any] = [part.strip() for part in raw.split(",")]
    elif isinstance(raw, (list, tuple, set)):
        values = raw
    else:
        values = [raw]

    parsed: list[int] = []
    for value in values:
        text = str(value).strip()
        if not text:
            continue
        try:
            parsed.append(int(text))
        except ValueError:
            continue
    return parsed or None
