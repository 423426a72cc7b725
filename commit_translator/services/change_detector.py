"""Metadata change detection between stored and freshly fetched repositories."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Optional

from dateutil import parser as date_parser

COUNTER_FIELDS = ("stargazers_count", "forks_count", "open_issues_count")
TEXT_FIELDS = ("description", "language")


def parse_github_datetime(raw: Any) -> Optional[datetime]:
    """Parse a GitHub ISO timestamp into a naive UTC datetime."""

    if isinstance(raw, datetime):
        value = raw
    elif isinstance(raw, str) and raw.strip():
        try:
            value = date_parser.isoparse(raw.strip())
        except ValueError:
            return None
    else:
        return None

    if value.tzinfo is not None:
        value = value.astimezone(UTC).replace(tzinfo=None)
    return value


@dataclass(slots=True)
class ChangeSet:
    """Result of one comparison; `updates` holds the new scalar values."""

    updates: dict[str, Any] = field(default_factory=dict)

    @property
    def has_changes(self) -> bool:
        return bool(self.updates)


class ChangeDetector:
    """Decides whether fetched GitHub metadata differs from what is stored."""

    def detect(self, stored: Any, fetched: dict[str, Any]) -> ChangeSet:
        updates: dict[str, Any] = {}

        for name in COUNTER_FIELDS:
            value = int(fetched.get(name) or 0)
            if value != int(getattr(stored, name, 0) or 0):
                updates[name] = value

        for name in TEXT_FIELDS:
            value = fetched.get(name)
            if value != getattr(stored, name, None):
                updates[name] = value

        upstream_updated_at = parse_github_datetime(fetched.get("updated_at"))
        known_updated_at = getattr(stored, "github_updated_at", None)
        if upstream_updated_at is not None and (known_updated_at is None or upstream_updated_at > known_updated_at):
            updates["github_updated_at"] = upstream_updated_at

        return ChangeSet(updates=updates)

    def has_changed(self, stored: Any, fetched: dict[str, Any]) -> bool:
        return self.detect(stored, fetched).has_changes
