"""Typed payloads for analysis results and the model-output validator."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

logger = logging.getLogger(__name__)


class CommitCategory(str, Enum):
    FEATURE = "feature"
    IMPROVEMENT = "improvement"
    FIX = "fix"


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    WARNING = "warning"
    NEEDS_ATTENTION = "needs_attention"


class ActivityLevel(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ParseStatus(str, Enum):
    OK = "ok"
    DEGRADED = "degraded"


DEFAULT_ACTIVITY_LEVEL = ActivityLevel.MEDIUM.value
DEFAULT_LIFECYCLE_STAGE = "active"
DEFAULT_QUALITY_SCORE = 7
DEFAULT_COLLABORATION_HEALTH = "good"
FALLBACK_INSIGHTS = ("Analysis completed with limited data",)
FALLBACK_RECOMMENDATIONS = ("Regular monitoring recommended",)
FALLBACK_COMMIT_PATTERNS = "Standard development patterns observed"


@dataclass(slots=True)
class ProjectHealth:
    status: str
    summary: str
    recent_activity: str

    def to_dict(self) -> dict[str, Any]:
        return {"status": self.status, "summary": self.summary, "recent_activity": self.recent_activity}


@dataclass(slots=True)
class TranslatedCommit:
    """One per-commit entry as returned by the model."""

    original_message: str
    plain_english: str
    category: Optional[str]
    business_impact: str


@dataclass(slots=True)
class CommitRecord:
    sha: str
    message: str
    author: str
    date: str
    plain_english: str
    business_impact: str
    type: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "sha": self.sha,
            "message": self.message,
            "author": self.author,
            "date": self.date,
            "plain_english": self.plain_english,
            "business_impact": self.business_impact,
            "type": self.type,
        }


@dataclass(slots=True)
class OverviewPayload:
    overview: str
    activity_level: str = DEFAULT_ACTIVITY_LEVEL
    lifecycle_stage: str = DEFAULT_LIFECYCLE_STAGE
    quality_score: int = DEFAULT_QUALITY_SCORE
    collaboration_health: str = DEFAULT_COLLABORATION_HEALTH
    key_insights: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)
    commit_patterns: str = FALLBACK_COMMIT_PATTERNS
    degraded: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "overview": self.overview,
            "activity_level": self.activity_level,
            "lifecycle_stage": self.lifecycle_stage,
            "quality_score": self.quality_score,
            "collaboration_health": self.collaboration_health,
            "key_insights": list(self.key_insights),
            "recommendations": list(self.recommendations),
            "commit_patterns": self.commit_patterns,
            "degraded": self.degraded,
        }


@dataclass(slots=True)
class CommitAnalysisPayload:
    total_commits: int
    recent_commits: list[CommitRecord]
    project_health: Optional[ProjectHealth]

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_commits": self.total_commits,
            "recent_commits": [record.to_dict() for record in self.recent_commits],
            "project_health": self.project_health.to_dict() if self.project_health else None,
        }


@dataclass(slots=True)
class ParsedAnalysis:
    """Tagged parse result: `ok` carries validated model output, `degraded` the fallback."""

    status: ParseStatus
    overview: OverviewPayload
    commits: list[TranslatedCommit] = field(default_factory=list)
    project_health: Optional[ProjectHealth] = None

    @property
    def is_degraded(self) -> bool:
        return self.status == ParseStatus.DEGRADED


def degraded_analysis(raw_text: str, *, overview_chars: int = 500) -> ParsedAnalysis:
    """Fallback record used whenever the model output is not valid JSON."""

    return ParsedAnalysis(
        status=ParseStatus.DEGRADED,
        overview=OverviewPayload(
            overview=(raw_text or "")[:overview_chars],
            key_insights=list(FALLBACK_INSIGHTS),
            recommendations=list(FALLBACK_RECOMMENDATIONS),
            degraded=True,
        ),
    )


def extract_json_object(text: str) -> Any:
    """Decode the JSON object embedded in a model reply.

    Raises:
        ValueError: when no JSON object can be decoded
    """
    content = (text or "").strip()

    # Remove markdown code blocks if present
    if content.startswith("```"):
        parts = content.split("```")
        content = parts[1] if len(parts) > 1 else ""
        if content.startswith("json"):
            content = content[4:]
        content = content.strip()

    try:
        return json.loads(content)
    except json.JSONDecodeError:
        start = content.find("{")
        end = content.rfind("}")
        if start == -1 or end <= start:
            raise ValueError("no JSON object in model response")
        return json.loads(content[start : end + 1])


def parse_analysis_response(raw_text: str, *, overview_chars: int = 500) -> ParsedAnalysis:
    """Validate a model reply against the analysis schema; never raises."""

    try:
        data = extract_json_object(raw_text)
    except ValueError as exc:
        # json.JSONDecodeError is a ValueError subclass
        logger.warning(f"Model response is not valid JSON, using degraded analysis: {exc}")
        return degraded_analysis(raw_text, overview_chars=overview_chars)

    if not isinstance(data, dict):
        logger.warning("Model response JSON is not an object, using degraded analysis")
        return degraded_analysis(raw_text, overview_chars=overview_chars)

    project_health = _parse_project_health(data.get("project_health"))
    commits = [
        entry
        for entry in (_parse_translated_commit(item) for item in _as_list(data.get("commits")))
        if entry is not None
    ]
    overview = _parse_overview(data.get("overview"), project_health)

    return ParsedAnalysis(
        status=ParseStatus.OK,
        overview=overview,
        commits=commits,
        project_health=project_health,
    )


def normalize_category(value: Any) -> Optional[str]:
    text = str(value or "").strip().lower()
    try:
        return CommitCategory(text).value
    except ValueError:
        return None


def clamp_quality_score(value: Any) -> int:
    try:
        score = int(round(float(value)))
    except (TypeError, ValueError):
        return DEFAULT_QUALITY_SCORE
    return min(10, max(1, score))


def _as_list(value: Any) -> list[Any]:
    return value if isinstance(value, list) else []


def _as_text(value: Any, default: str = "") -> str:
    if value is None:
        return default
    text = str(value).strip()
    return text or default


def _as_text_list(value: Any) -> list[str]:
    if isinstance(value, str):
        value = [value]
    return [text for text in (_as_text(item) for item in _as_list(value)) if text]


def _parse_project_health(value: Any) -> Optional[ProjectHealth]:
    if not isinstance(value, dict):
        return None

    status = _as_text(value.get("status")).lower().replace("-", "_").replace(" ", "_")
    if status not in {member.value for member in HealthStatus}:
        status = HealthStatus.WARNING.value

    return ProjectHealth(
        status=status,
        summary=_as_text(value.get("summary")),
        recent_activity=_as_text(value.get("recent_activity")),
    )


def _parse_translated_commit(value: Any) -> Optional[TranslatedCommit]:
    if not isinstance(value, dict):
        return None

    return TranslatedCommit(
        original_message=_as_text(value.get("original_message") or value.get("message")),
        plain_english=_as_text(value.get("plain_english")),
        category=normalize_category(value.get("type") or value.get("category")),
        business_impact=_as_text(value.get("business_impact")),
    )


def _parse_overview(value: Any, project_health: Optional[ProjectHealth]) -> OverviewPayload:
    block = value if isinstance(value, dict) else {}
    summary = _as_text(block.get("summary") or block.get("overview"))
    if not summary and isinstance(value, str):
        summary = value.strip()
    if not summary and project_health is not None:
        summary = project_health.summary

    activity = _as_text(block.get("activity_level")).lower()
    if activity not in {member.value for member in ActivityLevel}:
        activity = DEFAULT_ACTIVITY_LEVEL

    insights = _as_text_list(block.get("key_insights"))
    recommendations = _as_text_list(block.get("recommendations"))

    return OverviewPayload(
        overview=summary,
        activity_level=activity,
        lifecycle_stage=_as_text(block.get("lifecycle_stage"), DEFAULT_LIFECYCLE_STAGE),
        quality_score=clamp_quality_score(block.get("quality_score", DEFAULT_QUALITY_SCORE)),
        collaboration_health=_as_text(block.get("collaboration_health"), DEFAULT_COLLABORATION_HEALTH),
        key_insights=insights or list(FALLBACK_INSIGHTS),
        recommendations=recommendations or list(FALLBACK_RECOMMENDATIONS),
        commit_patterns=_as_text(block.get("commit_patterns"), FALLBACK_COMMIT_PATTERNS),
    )
