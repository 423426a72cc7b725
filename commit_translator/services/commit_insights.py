"""Keyword heuristics over commit messages.

Used for local classification when the model gives no usable category, for
degraded plain-English text, and for the pattern dashboard and timeline.
"""

from __future__ import annotations

import re
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Iterable, Sequence

from commit_translator.services.change_detector import parse_github_datetime

FEATURE_PATTERN = re.compile(r"\b(feature|feat|add|new|implement|create|build)\b", re.IGNORECASE)
FIX_PATTERN = re.compile(r"\b(fix|bug|patch|error|resolve|hotfix)\b", re.IGNORECASE)
UI_PATTERN = re.compile(r"\b(ui|ux|design|style|layout|component|interface)\b", re.IGNORECASE)
DOC_PATTERN = re.compile(r"\b(doc|docs|readme|documentation|guide|tutorial)\b", re.IGNORECASE)
RELEASE_PATTERN = re.compile(r"\b(release|version|v\d[\w.]*|deploy|launch|publish)\b", re.IGNORECASE)

# Conventional-commit prefixes, checked in order.
_PREFIX_TRANSLATIONS = (
    ("fix", "Fixed a bug"),
    ("feat", "Added a new feature"),
    ("chore", "Performed maintenance tasks"),
    ("docs", "Updated documentation"),
    ("style", "Improved code formatting"),
    ("refactor", "Reorganized code structure"),
    ("test", "Added or updated tests"),
    ("build", "Updated build configuration"),
    ("ci", "Updated continuous integration"),
)

MILESTONE_MIN_COMMITS = 5


def first_line(message: str) -> str:
    return (message or "").strip().split("\n", 1)[0].strip()


def classify_commit_message(message: str) -> str:
    """Return `fix`, `feature` or `improvement` for a raw commit message."""

    subject = first_line(message)
    if FIX_PATTERN.search(subject):
        return "fix"
    if FEATURE_PATTERN.search(subject):
        return "feature"
    return "improvement"


def translate_commit_message(message: str) -> str:
    subject = first_line(message)
    lowered = subject.lower()
    for prefix, translation in _PREFIX_TRANSLATIONS:
        if re.match(rf"{prefix}\b", lowered):
            detail = re.sub(rf"^{prefix}(\([^)]*\))?!?:?\s*", "", subject, flags=re.IGNORECASE)
            return f"{translation}: {detail}" if detail else translation
    return subject


@dataclass(slots=True)
class InsightMetric:
    id: str
    title: str
    value: int
    trend: str
    impact: str


@dataclass(slots=True)
class CommitInsights:
    total_commits: int
    feature_commits: int
    bug_fix_commits: int
    ui_commits: int
    doc_commits: int
    metrics: list[InsightMetric] = field(default_factory=list)
    health_score: int = 0
    health_status: str = "excellent"

    @property
    def other_commits(self) -> int:
        return max(
            self.total_commits - (self.feature_commits + self.bug_fix_commits + self.ui_commits + self.doc_commits),
            0,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_commits": self.total_commits,
            "distribution": {
                "features": self.feature_commits,
                "bug_fixes": self.bug_fix_commits,
                "ui_ux": self.ui_commits,
                "documentation": self.doc_commits,
                "other": self.other_commits,
            },
            "metrics": [
                {"id": m.id, "title": m.title, "value": m.value, "trend": m.trend, "impact": m.impact}
                for m in self.metrics
            ],
            "health_score": self.health_score,
            "health_status": self.health_status,
        }


def _percent(part: int, total: int) -> int:
    # Half-up, so 12.5% reads as 13 rather than 12.
    return int(part * 100 / total + 0.5) if total else 0


def _rate(value: int, high: int, low: int) -> tuple[str, str]:
    if value > high:
        return "up", "positive"
    if value > low:
        return "stable", "neutral"
    return "down", "negative"


def summarize_commit_patterns(messages: Sequence[str]) -> CommitInsights:
    """Keyword distribution and a coarse 0-100 health score for a commit list."""

    total = len(messages)
    features = sum(1 for m in messages if FEATURE_PATTERN.search(m or ""))
    fixes = sum(1 for m in messages if FIX_PATTERN.search(m or ""))
    ui = sum(1 for m in messages if UI_PATTERN.search(m or ""))
    docs = sum(1 for m in messages if DOC_PATTERN.search(m or ""))

    velocity = _percent(features, total)
    quality = _percent(total - fixes, total) if total else 100
    ux_focus = _percent(ui, total)
    doc_health = _percent(docs, total)

    metrics = [
        InsightMetric("velocity", "Development Velocity", velocity, *_rate(velocity, 60, 30)),
        InsightMetric("quality", "Code Quality", quality, *_rate(quality, 80, 60)),
        InsightMetric("ux-focus", "UX Focus", ux_focus, *_rate(ux_focus, 20, 10)),
        InsightMetric("documentation", "Documentation Health", doc_health, *_rate(doc_health, 15, 5)),
    ]
    score = sum(m.value for m in metrics) / len(metrics)

    if score < 40:
        status = "needs-attention"
    elif score < 65:
        status = "good"
    else:
        status = "excellent"

    return CommitInsights(
        total_commits=total,
        feature_commits=features,
        bug_fix_commits=fixes,
        ui_commits=ui,
        doc_commits=docs,
        metrics=metrics,
        health_score=int(score + 0.5),
        health_status=status,
    )


@dataclass(slots=True)
class TimelineEvent:
    id: str
    type: str
    title: str
    description: str
    date: str
    impact: str
    commit_shas: list[str]

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "title": self.title,
            "description": self.description,
            "date": self.date,
            "impact": self.impact,
            "commit_shas": list(self.commit_shas),
        }


def build_timeline(commits: Iterable[dict[str, Any]]) -> list[TimelineEvent]:
    """Group commit records by month and turn busy months into milestones.

    Each record needs `message` and `date`; records without a parseable date
    are ignored. Events are returned newest first.
    """

    months: "OrderedDict[str, list[tuple[Any, dict[str, Any]]]]" = OrderedDict()
    for commit in commits:
        when = parse_github_datetime(commit.get("date"))
        if when is None:
            continue
        months.setdefault(when.strftime("%Y-%m"), []).append((when, commit))

    events: list[TimelineEvent] = []
    for month_key, entries in months.items():
        if len(entries) < MILESTONE_MIN_COMMITS:
            continue

        messages = [str(commit.get("message") or "") for _, commit in entries]
        if any(RELEASE_PATTERN.search(m) for m in messages):
            event_type, impact = "release", "high"
        elif any(FEATURE_PATTERN.search(m) for m in messages):
            event_type, impact = "feature", "medium"
        elif any(FIX_PATTERN.search(m) for m in messages):
            event_type, impact = "hotfix", "low"
        else:
            event_type, impact = "milestone", "medium"

        earliest = min(when for when, _ in entries)
        events.append(
            TimelineEvent(
                id=f"{event_type}-{month_key}",
                type=event_type,
                title=f"{event_type.capitalize()} Sprint",
                description=f"{len(entries)} commits with focus on {event_type}",
                date=earliest.isoformat(),
                impact=impact,
                commit_shas=[str(commit.get("sha") or "") for _, commit in entries],
            )
        )

    return sorted(events, key=lambda event: event.date, reverse=True)
