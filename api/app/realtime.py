"""
In-process realtime event source.

Mirrors the hosted backend's "postgres changes" channels: every committed
write is published as an insert/update/delete event for its collection, and
subscribers register per collection with an optional field-equality filter.
"""

import logging
import threading
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable

logger = logging.getLogger(__name__)

INSERT = "INSERT"
UPDATE = "UPDATE"
DELETE = "DELETE"


@dataclass(frozen=True)
class RealtimeEvent:
    event_type: str
    collection: str
    new: dict[str, Any] = field(default_factory=dict)
    old: dict[str, Any] = field(default_factory=dict)

    @property
    def record(self) -> dict[str, Any]:
        return self.new if self.event_type != DELETE else self.old


EventHandler = Callable[[RealtimeEvent], None]


class Subscription:
    def __init__(
        self,
        hub: "RealtimeHub",
        collection: str,
        handler: EventHandler,
        filters: dict[str, Any] | None = None,
        event_types: set[str] | None = None,
    ) -> None:
        self.id = str(uuid.uuid4())
        self.hub = hub
        self.collection = collection
        self.handler = handler
        self.filters = dict(filters or {})
        self.event_types = set(event_types) if event_types else None
        self.active = True

    def matches(self, event: RealtimeEvent) -> bool:
        if event.collection != self.collection:
            return False
        if self.event_types is not None and event.event_type not in self.event_types:
            return False
        record = event.record
        return all(str(record.get(k)) == str(v) for k, v in self.filters.items())

    def unsubscribe(self) -> None:
        if self.active:
            self.active = False
            self.hub._remove(self)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.unsubscribe()
        return False


class RealtimeHub:
    def __init__(self) -> None:
        self._subs: dict[str, list[Subscription]] = {}
        self._lock = threading.Lock()

    def subscribe(
        self,
        collection: str,
        handler: EventHandler,
        *,
        filters: dict[str, Any] | None = None,
        event_types: set[str] | None = None,
    ) -> Subscription:
        sub = Subscription(self, collection, handler, filters=filters, event_types=event_types)
        with self._lock:
            self._subs.setdefault(collection, []).append(sub)
        logger.debug("[REALTIME] subscribed %s to %s filters=%s", sub.id, collection, sub.filters)
        return sub

    def _remove(self, sub: Subscription) -> None:
        with self._lock:
            subs = self._subs.get(sub.collection, [])
            self._subs[sub.collection] = [s for s in subs if s.id != sub.id]
        logger.debug("[REALTIME] unsubscribed %s from %s", sub.id, sub.collection)

    def subscriber_count(self, collection: str | None = None) -> int:
        with self._lock:
            if collection is not None:
                return len(self._subs.get(collection, []))
            return sum(len(v) for v in self._subs.values())

    def publish(self, event: RealtimeEvent) -> None:
        with self._lock:
            targets = [s for s in self._subs.get(event.collection, []) if s.active and s.matches(event)]
        for sub in targets:
            try:
                sub.handler(event)
            except Exception:
                logger.exception("[REALTIME] handler %s failed for %s %s", sub.id, event.event_type, event.collection)
