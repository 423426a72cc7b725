"""In-process change notifications for repository and analysis rows.

The analysis store is the only publisher. Listeners are passive readers
notified after each committed write. A failing listener is logged and
skipped.
"""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class RepositoryUpdated:
    repository_id: int
    user_id: str
    fields: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class AnalysisRecorded:
    repository_id: int
    user_id: str
    analysis_id: int
    analysis_type: str


@dataclass(slots=True, frozen=True)
class RepositoryDeleted:
    repository_id: int
    user_id: str


Listener = Callable[[Any], None]


@dataclass(slots=True)
class _Subscription:
    listener: Listener
    event_type: Optional[type]
    user_id: Optional[str]

    def matches(self, event: Any) -> bool:
        if self.event_type is not None and not isinstance(event, self.event_type):
            return False
        if self.user_id is not None and getattr(event, "user_id", None) != self.user_id:
            return False
        return True


class EventBus:
    """Publish/subscribe hub filtered by event type and owner."""

    def __init__(self) -> None:
        self._subscriptions: dict[int, _Subscription] = {}
        self._ids = itertools.count(1)

    def subscribe(
        self,
        listener: Listener,
        *,
        event_type: Optional[type] = None,
        user_id: Optional[str] = None,
    ) -> Callable[[], None]:
        """Register a listener and return a callable that removes it."""

        subscription_id = next(self._ids)
        self._subscriptions[subscription_id] = _Subscription(listener, event_type, user_id)

        def unsubscribe() -> None:
            self._subscriptions.pop(subscription_id, None)

        return unsubscribe

    def publish(self, event: Any) -> int:
        """Deliver an event to matching listeners; returns the delivery count."""

        delivered = 0
        for subscription in list(self._subscriptions.values()):
            if not subscription.matches(event):
                continue
            try:
                subscription.listener(event)
                delivered += 1
            except Exception:
                logger.exception(
                    "Event listener failed",
                    extra={"event": type(event).__name__, "repository_id": getattr(event, "repository_id", None)},
                )
        return delivered

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)
