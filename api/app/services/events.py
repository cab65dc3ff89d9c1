import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

logger = logging.getLogger(__name__)

MATCH_REQUESTED = "match_requested"
MATCH_ACCEPTED = "match_accepted"
MATCH_DECLINED = "match_declined"
MATCH_LIKED = "match_liked"
REVEAL_REQUESTED = "reveal_requested"
REVEAL_COMPLETED = "reveal_completed"
MESSAGE_SENT = "message_sent"
LETTER_SENT = "letter_sent"
LETTER_LIKED = "letter_liked"
LETTER_DECLINED = "letter_declined"
LETTERS_MATCHED = "letters_matched"
CHAT_STARTED = "chat_started"
SWIPE_RECORDED = "swipe_recorded"


@dataclass(frozen=True)
class LifecycleEvent:
    kind: str
    actor_id: str
    recipient_id: str | None = None
    entity_id: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


EventListener = Callable[[LifecycleEvent], None]


class EventBus:
    """Post-commit hook list. Engines emit only after their writes succeeded."""

    def __init__(self, keep_history: bool = False) -> None:
        self._listeners: list[EventListener] = []
        self.keep_history = keep_history
        self.history: list[LifecycleEvent] = []

    def add_listener(self, listener: EventListener) -> None:
        self._listeners.append(listener)

    def emit(self, event: LifecycleEvent) -> None:
        if self.keep_history:
            self.history.append(event)
        logger.info(
            "[EVENT] %s actor=%s recipient=%s entity=%s",
            event.kind,
            event.actor_id,
            event.recipient_id,
            event.entity_id,
        )
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("[EVENT] listener failed for %s", event.kind)

    def kinds(self) -> list[str]:
        return [e.kind for e in self.history]
