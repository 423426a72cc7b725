"""Natural-language questions over a repository's stored analysis."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

from commit_translator.config.settings import settings
from commit_translator.exceptions import LLMError
from commit_translator.models.repository_analysis import AnalysisType
from commit_translator.services.analysis_store import AnalysisStore, RepositorySnapshot
from commit_translator.services.llm_client import LLMClient

logger = logging.getLogger(__name__)

SEARCH_FIELDS = ("plain_english", "business_impact", "message", "type")


@dataclass(slots=True)
class ChatAnswer:
    answer: str
    relevant_commits: list[dict[str, Any]] = field(default_factory=list)
    repository_name: str = ""
    degraded: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "answer": self.answer,
            "relevantCommits": list(self.relevant_commits),
            "repositoryName": self.repository_name,
            "degraded": self.degraded,
        }


def find_relevant_commits(
    commits: Sequence[dict[str, Any]],
    query: str,
    *,
    limit: Optional[int] = None,
) -> list[dict[str, Any]]:
    """Case-insensitive substring match over the translated commit fields."""

    needle = (query or "").strip().lower()
    if not needle:
        return []
    cap = settings.CHAT_RELEVANT_COMMITS_LIMIT if limit is None else limit
    matches: list[dict[str, Any]] = []
    for commit in commits:
        if any(needle in str(commit.get(name) or "").lower() for name in SEARCH_FIELDS):
            matches.append(commit)
            if len(matches) >= cap:
                break
    return matches


def build_repository_context(
    repository: RepositorySnapshot,
    overview: Optional[dict[str, Any]],
    commit_analysis: Optional[dict[str, Any]],
) -> str:
    sections = [
        "\n".join(
            [
                f"Repository: {repository.full_name}",
                f"Description: {repository.description or 'No description'}",
                f"Language: {repository.language or 'Unknown'}",
                f"Stars: {repository.stargazers_count}",
                f"Forks: {repository.forks_count}",
                f"Open Issues: {repository.open_issues_count}",
            ]
        )
    ]

    health = (commit_analysis or {}).get("project_health")
    if isinstance(health, dict):
        sections.append(
            f"Project Health: {health.get('status', '')}\n"
            f"Summary: {health.get('summary', '')}\n"
            f"Recent Activity: {health.get('recent_activity', '')}"
        )

    if overview:
        block = (
            f"Overview: {overview.get('overview', '')}\n"
            f"Activity Level: {overview.get('activity_level', '')}\n"
            f"Lifecycle Stage: {overview.get('lifecycle_stage', '')}\n"
            f"Quality Score: {overview.get('quality_score', '')}/10\n"
            f"Collaboration Health: {overview.get('collaboration_health', '')}"
        )
        if overview.get("key_insights"):
            block += "\n\nKey Insights:\n" + "\n".join(f"- {item}" for item in overview["key_insights"])
        if overview.get("recommendations"):
            block += "\n\nRecommendations:\n" + "\n".join(f"- {item}" for item in overview["recommendations"])
        sections.append(block)

    commits = (commit_analysis or {}).get("recent_commits") or []
    if commits:
        entries = [
            f"Commit: {str(commit.get('sha') or 'unknown')[:8]}\n"
            f"Date: {commit.get('date') or 'unknown'}\n"
            f"Author: {commit.get('author') or 'unknown'}\n"
            f"Message: {commit.get('message') or ''}\n"
            f"Plain English: {commit.get('plain_english') or ''}\n"
            f"Business Impact: {commit.get('business_impact') or ''}\n"
            f"Type: {commit.get('type') or 'unknown'}"
            for commit in commits
        ]
        sections.append("Recent Commits:\n\n" + "\n\n".join(entries))

    return "\n\n".join(sections)


def build_chat_prompt(context: str, query: str) -> str:
    return f"""You are an AI assistant that helps people understand their repositories. You have access to repository data, commit history, and analysis.

Repository Context:
{context}

User Query: "{query}"

Please provide a helpful response that:
1. Directly answers the user's question
2. References specific commits or data when relevant
3. Provides actionable insights
4. Uses clear, conversational language
5. If the query is about "what to do" or recommendations, prioritize the recommendations from the analysis

If you reference specific commits, mention them by their short SHA and describe what they did."""


class RepositoryChatService:
    """Answers queries with the model and falls back to keyword search."""

    def __init__(self, store: AnalysisStore, llm_client: Optional[LLMClient] = None) -> None:
        self._store = store
        self._llm_client = llm_client or LLMClient()

    async def answer(self, repository_id: int, query: str, user_id: Optional[str] = None) -> ChatAnswer:
        repository = self._store.require_repository(repository_id, user_id)
        overview = self._store.latest_analysis(repository_id, AnalysisType.OVERVIEW)
        commit_analysis = self._store.latest_analysis(repository_id, AnalysisType.COMMITS)

        overview_content = overview.content if overview else None
        commits_content = commit_analysis.content if commit_analysis else None
        commits = list((commits_content or {}).get("recent_commits") or [])
        relevant = find_relevant_commits(commits, query)

        context = build_repository_context(repository, overview_content, commits_content)
        try:
            answer = await self._llm_client.complete(
                build_chat_prompt(context, query),
                max_tokens=settings.CHAT_MAX_TOKENS,
            )
        except LLMError as exc:
            logger.warning(
                "Chat model call failed, falling back to keyword search",
                extra={"repository_id": repository_id, "error": str(exc), "matches": len(relevant)},
            )
            return ChatAnswer(
                answer="",
                relevant_commits=relevant,
                repository_name=repository.full_name,
                degraded=True,
            )

        return ChatAnswer(answer=answer, relevant_commits=relevant, repository_name=repository.full_name)
