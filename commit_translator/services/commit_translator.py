"""Plain-English commit translation using an LLM"""

from typing import Any, Optional, Sequence
import logging
import re

from commit_translator.config.settings import settings
from commit_translator.services.analysis_schema import (
    CommitAnalysisPayload,
    CommitRecord,
    ParsedAnalysis,
    parse_analysis_response,
)
from commit_translator.services.commit_insights import classify_commit_message, first_line, translate_commit_message
from commit_translator.services.llm_client import LLMClient

logger = logging.getLogger(__name__)

ANALYSIS_SYSTEM_MESSAGE = (
    "You translate technical software changes into friendly, plain English for "
    "non-technical readers. Return valid JSON only."
)


class CommitTranslatorService:
    """Builds the analysis prompt, calls the model and validates its reply"""

    def __init__(self, llm_client: Optional[LLMClient] = None):
        self.llm_client = llm_client or LLMClient()

    async def analyze(
        self,
        repository: Any,
        commits: Sequence[dict[str, Any]],
        readme: str = "",
    ) -> ParsedAnalysis:
        """
        Classify and translate a repository's commits

        Args:
            repository: Snapshot or GitHub payload with full_name/description/language
            commits: GitHub commit objects as returned by the commits endpoint
            readme: Optional README text

        Returns:
            ParsedAnalysis tagged ok or degraded

        Raises:
            LLMError: when the model endpoint is unavailable
        """
        prompt = self.build_prompt(repository, commits, readme)
        raw_text = await self.llm_client.complete(
            prompt,
            max_tokens=analysis_token_budget(len(commits)),
            system=ANALYSIS_SYSTEM_MESSAGE,
        )
        parsed = parse_analysis_response(raw_text, overview_chars=settings.FALLBACK_OVERVIEW_CHARS)
        logger.info(
            f"Analysis parsed for {_field(repository, 'full_name')}: status={parsed.status.value}, "
            f"translated={len(parsed.commits)}/{len(commits)}"
        )
        return parsed

    def build_prompt(self, repository: Any, commits: Sequence[dict[str, Any]], readme: str = "") -> str:
        prompt_commits = list(commits)[: settings.ANALYSIS_MAX_PROMPT_COMMITS]
        commit_lines = "\n".join(
            f'- "{first_line(commit_message(commit))}" by {commit_author(commit)}' for commit in prompt_commits
        )
        if not commit_lines:
            commit_lines = "- (no commits found)"

        readme_excerpt = (readme or "").strip()[: settings.ANALYSIS_README_EXCERPT_CHARS]
        readme_block = f"\nREADME excerpt:\n{readme_excerpt}\n" if readme_excerpt else ""

        prompt = f"""You are helping a commit translation app explain technical GitHub commits in plain English to no-code builders, business owners and other non-technical team members.

Repository: {_field(repository, 'full_name')}
Description: {_field(repository, 'description') or 'No description provided'}
Language: {_field(repository, 'language') or 'Not specified'}
{readme_block}
Commits to translate (newest first):
{commit_lines}

For each commit, in the SAME ORDER as listed above, provide:
1. "original_message": the commit message
2. "plain_english": a simple, non-technical explanation a business owner would understand
3. "type": "feature" (new functionality), "improvement" (enhancement) or "fix" (bug fix)
4. "business_impact": what this means for the product or its users

Also provide an overall project health summary and a repository overview in simple terms.

Response format:
{{
  "commits": [
    {{"original_message": "...", "plain_english": "...", "type": "feature", "business_impact": "..."}}
  ],
  "project_health": {{
    "status": "healthy|warning|needs_attention",
    "summary": "e.g. 'App is running smoothly with 3 new features this week'",
    "recent_activity": "Description of recent development activity"
  }},
  "overview": {{
    "summary": "Two or three sentences about the project",
    "activity_level": "high|medium|low",
    "lifecycle_stage": "e.g. early development, active, mature, maintenance",
    "quality_score": 7,
    "collaboration_health": "e.g. good",
    "key_insights": ["..."],
    "recommendations": ["..."]
  }}
}}"""
        return prompt

    def build_commit_analysis(
        self,
        commits: Sequence[dict[str, Any]],
        parsed: ParsedAnalysis,
    ) -> CommitAnalysisPayload:
        """Attach each model entry to the fetched commit it describes.

        Entries are matched on their echoed `original_message`; the entry at
        the same position wins when it agrees. An entry that echoes no message
        is taken by position. Commits without a matching entry, or with an
        unknown type, fall back to the keyword heuristics.
        """
        records: list[CommitRecord] = []
        unclaimed: dict[str, list[int]] = {}
        unlabeled: set[int] = set()
        for position, entry in enumerate(parsed.commits):
            key = normalize_message(entry.original_message)
            if key:
                unclaimed.setdefault(key, []).append(position)
            else:
                unlabeled.add(position)

        for index, commit in enumerate(commits):
            message = commit_message(commit)
            translated = None
            candidates = unclaimed.get(normalize_message(first_line(message)))
            if candidates:
                position = index if index in candidates else candidates[0]
                candidates.remove(position)
                translated = parsed.commits[position]
            elif index in unlabeled:
                # No echoed message to compare; trust the position.
                translated = parsed.commits[index]

            plain_english = translated.plain_english if translated and translated.plain_english else ""
            category = translated.category if translated else None
            business_impact = translated.business_impact if translated else ""

            records.append(
                CommitRecord(
                    sha=str(commit.get("sha") or f"unknown-{index}"),
                    message=message.strip() or (translated.original_message if translated else ""),
                    author=commit_author(commit),
                    date=commit_date(commit),
                    plain_english=plain_english or translate_commit_message(message),
                    business_impact=business_impact,
                    type=category or classify_commit_message(message),
                )
            )

        return CommitAnalysisPayload(
            total_commits=len(commits),
            recent_commits=records,
            project_health=parsed.project_health,
        )


def _field(source: Any, name: str) -> Any:
    if isinstance(source, dict):
        return source.get(name)
    return getattr(source, name, None)


def commit_message(commit: dict[str, Any]) -> str:
    details = commit.get("commit") if isinstance(commit.get("commit"), dict) else {}
    return str(details.get("message") or commit.get("message") or "")


def commit_author(commit: dict[str, Any]) -> str:
    details = commit.get("commit") if isinstance(commit.get("commit"), dict) else {}
    author = details.get("author") if isinstance(details.get("author"), dict) else {}
    if author.get("name"):
        return str(author["name"])
    login = commit.get("author") if isinstance(commit.get("author"), dict) else {}
    return str(login.get("login") or "Unknown")


def commit_date(commit: dict[str, Any]) -> str:
    details = commit.get("commit") if isinstance(commit.get("commit"), dict) else {}
    for role in ("committer", "author"):
        block = details.get(role) if isinstance(details.get(role), dict) else {}
        if block.get("date"):
            return str(block["date"])
    return ""


def normalize_message(message: str) -> str:
    """Comparable form of a commit subject: case, whitespace and edge punctuation ignored."""
    text = re.sub(r"\s+", " ", first_line(message or "")).strip().lower()
    return text.strip(" \"'`.")


def analysis_token_budget(commit_count: int) -> int:
    prompted = min(max(commit_count, 0), settings.ANALYSIS_MAX_PROMPT_COMMITS)
    budget = settings.ANALYSIS_MAX_TOKENS + prompted * settings.ANALYSIS_TOKENS_PER_COMMIT
    return min(budget, settings.ANALYSIS_MAX_TOKENS_CEILING)
