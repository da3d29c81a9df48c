"""In-process change notifications.

Dashboards and trackers used to re-fetch everything whenever any row of the
queue table changed. Here every mutation publishes a typed ``ChangeEvent``
keyed by entity type and carrying the ids it touched, so a subscriber can
decide whether the change concerns it at all.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from enum import Enum

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

QUEUE_ENTITY = "fuel_queue"


class ChangeAction(str, Enum):
    created = "created"
    updated = "updated"
    deleted = "deleted"
    renumbered = "renumbered"


class ChangeEvent(BaseModel):
    """A mutation of one entity, or of a station's whole pending set."""

    entity: str = QUEUE_ENTITY
    action: ChangeAction
    entry_id: int | None = None
    station_user_id: str | None = None
    car_user_id: str | None = None
    status: str | None = None
    timestamp: int = Field(default_factory=lambda: int(time.time() * 1000))


ChangeHandler = Callable[[ChangeEvent], None]


class Subscription:
    """Handle returned by EventBus.subscribe."""

    def __init__(self, bus: EventBus, entity: str, handler: ChangeHandler) -> None:
        self.entity = entity
        self.handler = handler
        self._bus = bus
        self.active = True

    def cancel(self) -> None:
        if self.active:
            self._bus._remove(self)
            self.active = False


class EventBus:
    """Synchronous publish/subscribe keyed by entity type."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscriptions: dict[str, list[Subscription]] = {}

    def subscribe(self, entity: str, handler: ChangeHandler) -> Subscription:
        subscription = Subscription(self, entity, handler)
        with self._lock:
            self._subscriptions.setdefault(entity, []).append(subscription)
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        with self._lock:
            subs = self._subscriptions.get(subscription.entity, [])
            if subscription in subs:
                subs.remove(subscription)

    def publish(self, event: ChangeEvent) -> int:
        """Deliver an event to the subscribers of its entity.

        A failing handler is logged and skipped; it never affects the other
        handlers or the caller that produced the change.

        Returns:
            Number of handlers that ran without raising
        """
        with self._lock:
            subs = list(self._subscriptions.get(event.entity, []))

        delivered = 0
        for sub in subs:
            try:
                sub.handler(event)
                delivered += 1
            except Exception:
                logger.exception(
                    f"Change handler failed for {event.entity} {event.action.value} "
                    f"(entry_id={event.entry_id})"
                )
        return delivered
