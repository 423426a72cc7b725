"""Sync and analysis pipeline orchestration."""

from __future__ import annotations

from datetime import datetime, timedelta
import logging
from typing import Any, Callable, Optional

from commit_translator.config.settings import settings
from commit_translator.crawlers.github_client import GitHubClient, sanitize_for_log, sanitize_log_extra
from commit_translator.exceptions import GitHubFetchError, RepositoryAccessError
from commit_translator.models.repository import AnalysisStatus
from commit_translator.services.analysis_store import AnalysisStore, RepositorySnapshot
from commit_translator.services.change_detector import ChangeDetector
from commit_translator.services.chat_responder import ChatAnswer, RepositoryChatService
from commit_translator.services.commit_translator import CommitTranslatorService
from commit_translator.services.llm_client import LLMClient

logger = logging.getLogger(__name__)


class CommitTranslatorOrchestrator:
    """Ties fetch, change detection, analysis and persistence together."""

    def __init__(
        self,
        *,
        store: Optional[AnalysisStore] = None,
        github_client_factory: Callable[..., Any] = GitHubClient,
        translator: Optional[CommitTranslatorService] = None,
        chat_service: Optional[RepositoryChatService] = None,
        llm_client: Optional[LLMClient] = None,
        change_detector: Optional[ChangeDetector] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ) -> None:
        self.store = store or AnalysisStore()
        self.github_client_factory = github_client_factory
        self._llm_client = llm_client
        self._translator = translator
        self._chat_service = chat_service
        self._change_detector = change_detector or ChangeDetector()
        self._clock = clock

    @property
    def translator(self) -> CommitTranslatorService:
        if self._translator is None:
            self._translator = CommitTranslatorService(self._get_llm_client())
        return self._translator

    @property
    def chat_service(self) -> RepositoryChatService:
        if self._chat_service is None:
            self._chat_service = RepositoryChatService(self.store, self._get_llm_client())
        return self._chat_service

    def _get_llm_client(self) -> LLMClient:
        if self._llm_client is None:
            self._llm_client = LLMClient()
        return self._llm_client

    async def connect_repository(
        self,
        user_id: str,
        full_name: str,
        github_token: Optional[str] = None,
    ) -> RepositorySnapshot:
        """Fetch a repository from GitHub and store it for `user_id` as `pending`.

        Private repositories require the caller's own `github_token`; the
        service-wide token only vouches for public ones.

        Raises:
            GitHubFetchError: repository metadata could not be fetched
            RepositoryAccessError: private repository and no caller token
        """

        async with self.github_client_factory(token=github_token) as client:
            metadata = await client.get_repo(full_name.strip())
        if not metadata.is_ok or not isinstance(metadata.data, dict):
            raise GitHubFetchError(
                f"GitHub API error for {full_name}: {metadata.error or metadata.state.value}",
                status_code=metadata.status_code,
            )
        if metadata.data.get("private") and not github_token:
            logger.warning("Refusing private repository without a caller token", extra=sanitize_log_extra(repo=full_name))
            raise RepositoryAccessError(full_name)
        return self.store.connect_repository(user_id, metadata.data)

    async def sync_repository(
        self,
        repository_id: int,
        github_token: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> dict[str, Any]:
        """Refresh metadata and re-analyze when new commits have landed.

        Raises:
            RepositoryNotFoundError: unknown repository (or not owned by `user_id`)
            GitHubFetchError: repository metadata could not be fetched
        """
        repository = self.store.require_repository(repository_id, user_id)
        logger.info("Sync started", extra=sanitize_log_extra(repository_id=repository_id, repo=repository.full_name))

        async with self.github_client_factory(token=github_token) as client:
            metadata = await client.get_repo(repository.full_name)
            if not metadata.is_ok or not isinstance(metadata.data, dict):
                raise GitHubFetchError(
                    f"GitHub API error for {repository.full_name}: {metadata.error or metadata.state.value}",
                    status_code=metadata.status_code,
                )

            changes = self._change_detector.detect(repository, metadata.data)
            if changes.has_changes:
                logger.info(
                    "Repository metadata changed",
                    extra=sanitize_log_extra(repository_id=repository_id, changed_fields=sorted(changes.updates)),
                )
                repository = self.store.update_repository_metadata(repository_id, changes.updates)

            since = repository.last_analyzed_at or (
                self._clock() - timedelta(hours=settings.SYNC_DEFAULT_WINDOW_HOURS)
            )
            recent = await client.list_commits(
                repository.full_name,
                page=1,
                per_page=settings.SYNC_NEW_COMMITS_PER_PAGE,
                since=since,
            )

        new_commit_count = len(recent.data or []) if recent.is_ok else 0
        if recent.is_failed:
            logger.warning(
                "New-commit check failed; treating as no new commits",
                extra=sanitize_log_extra(repository_id=repository_id, error=recent.error),
            )

        analysis: Optional[dict[str, Any]] = None
        if new_commit_count > 0:
            logger.info(
                "New commits found, triggering re-analysis",
                extra=sanitize_log_extra(repository_id=repository_id, new_commits=new_commit_count),
            )
            self.store.set_analysis_status(repository_id, AnalysisStatus.ANALYZING)
            analysis = await self.run_analysis(repository_id, repository, github_token=github_token)
            repository = self.store.require_repository(repository_id)

        return {
            "success": True,
            "has_changes": changes.has_changes,
            "new_commit_count": new_commit_count,
            "repository": repository.to_dict(),
            "analysis": analysis,
        }

    async def run_analysis(
        self,
        repository_id: int,
        repository_metadata: Optional[RepositorySnapshot] = None,
        *,
        github_token: Optional[str] = None,
    ) -> dict[str, Any]:
        """Full fetch → translate → persist run; failures mark the repository `failed`."""

        started_at = self._clock()
        try:
            repository = repository_metadata or self.store.require_repository(repository_id)
            logger.info(
                "Analysis started",
                extra=sanitize_log_extra(repository_id=repository_id, repo=repository.full_name),
            )
            self.store.set_analysis_status(repository_id, AnalysisStatus.ANALYZING)

            async with self.github_client_factory(token=github_token) as client:
                commits = await client.fetch_all_commits(repository.full_name)
                readme = await client.get_readme(repository.full_name)

            parsed = await self.translator.analyze(repository, commits, readme)
            commit_analysis = self.translator.build_commit_analysis(commits, parsed)

            overview_payload = parsed.overview.to_dict()
            commits_payload = commit_analysis.to_dict()
            self.store.record_overview(repository_id, overview_payload)
            self.store.record_commit_analysis(repository_id, commits_payload)

            completed_at = max(self._clock(), started_at)
            self.store.set_analysis_status(repository_id, AnalysisStatus.COMPLETED, completed_at)
        except Exception as exc:
            error = sanitize_for_log(str(exc), key="error")
            logger.exception(
                "Analysis failed",
                extra=sanitize_log_extra(repository_id=repository_id, error=error),
            )
            self._mark_failed(repository_id)
            return {"success": False, "error": error or type(exc).__name__}

        logger.info(
            "Analysis completed",
            extra=sanitize_log_extra(
                repository_id=repository_id,
                commits=len(commits),
                degraded=parsed.is_degraded,
            ),
        )
        return {
            "success": True,
            "degraded": parsed.is_degraded,
            "overview": overview_payload,
            "commits": commits_payload,
        }

    async def answer_query(self, repository_id: int, query: str, user_id: Optional[str] = None) -> ChatAnswer:
        return await self.chat_service.answer(repository_id, query, user_id=user_id)

    def _mark_failed(self, repository_id: int) -> None:
        try:
            self.store.set_analysis_status(repository_id, AnalysisStatus.FAILED)
        except Exception as exc:
            logger.warning(
                "Could not mark repository as failed",
                extra=sanitize_log_extra(repository_id=repository_id, error=str(exc)),
            )
