"""
Live view-state driven by realtime events.

Each class owns the subscriptions for one viewer and one screen and releases
them on ``close()``. Handlers are idempotent per entity id: replaying an
event that is already reflected locally changes nothing.
"""

import logging
import threading
from datetime import datetime, timezone
from typing import Any, Callable

from ..gateway import In
from ..realtime import DELETE, INSERT, UPDATE, RealtimeEvent, RealtimeHub, Subscription
from .letters import INBOX, SENT, LetterEngine, project_letter, search_letters
from .matches import MatchEngine, MatchView, project_match
from .state_machine import MESSAGING_STATUSES, LetterStatus, MatchStatus, parse_match_status
from .unread import UnreadAggregator, load_initial_counts

logger = logging.getLogger(__name__)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


class _LiveView:
    def __init__(self, hub: RealtimeHub, viewer_id: str) -> None:
        self.hub = hub
        self.viewer_id = str(viewer_id)
        self._subs: list[Subscription] = []
        self._lock = threading.RLock()

    def _subscribe(self, collection: str, handler, *, filters: dict[str, Any], event_types: set[str] | None = None) -> None:
        self._subs.append(self.hub.subscribe(collection, handler, filters=filters, event_types=event_types))

    @property
    def is_open(self) -> bool:
        return bool(self._subs)

    def close(self) -> None:
        for sub in self._subs:
            sub.unsubscribe()
        self._subs = []

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.close()
        return False


class InboxBridge(_LiveView):
    """Feeds the unread aggregator from match-request, message and letter inserts aimed at the viewer."""

    def __init__(self, hub: RealtimeHub, gateway, aggregator: UnreadAggregator) -> None:
        super().__init__(hub, aggregator.viewer_id)
        self.gateway = gateway
        self.aggregator = aggregator
        self.focused_chat: str | None = None
        self._seen: dict[str, set[str]] = {"chat_matches": set(), "chat_messages": set(), "letters": set()}

    def start(self) -> "InboxBridge":
        load_initial_counts(self.gateway, self.aggregator)
        self._subscribe("chat_matches", self._on_match, filters={"user2_id": self.viewer_id}, event_types={INSERT})
        self._subscribe("chat_messages", self._on_message, filters={"receiver_id": self.viewer_id}, event_types={INSERT})
        self._subscribe("letters", self._on_letter, filters={"recipient_id": self.viewer_id}, event_types={INSERT})
        logger.info("[REALTIME] inbox bridge open for %s", self.viewer_id)
        return self

    def _first_sighting(self, collection: str, record: dict[str, Any]) -> bool:
        entity_id = str(record.get("id"))
        with self._lock:
            if entity_id in self._seen[collection]:
                return False
            self._seen[collection].add(entity_id)
            return True

    def _on_match(self, event: RealtimeEvent) -> None:
        if event.new.get("status") != MatchStatus.PENDING_REQUEST.value:
            return
        if self._first_sighting("chat_matches", event.new):
            self.aggregator.increment_matches()

    def _on_message(self, event: RealtimeEvent) -> None:
        if not self._first_sighting("chat_messages", event.new):
            return
        match_id = str(event.new.get("match_id"))
        if self.focused_chat is not None and match_id == self.focused_chat:
            return
        self.aggregator.increment_messages(match_id)

    def _on_letter(self, event: RealtimeEvent) -> None:
        if self._first_sighting("letters", event.new):
            self.aggregator.increment_letters()

    def focus_chat(self, match_id: str | None) -> None:
        self.focused_chat = str(match_id) if match_id else None
        if self.focused_chat:
            self.aggregator.reset_chat(self.focused_chat)


class ChatRoom(_LiveView):
    """Chat list with last-message previews plus the selected thread."""

    def __init__(
        self,
        hub: RealtimeHub,
        engine: MatchEngine,
        viewer_id: str,
        *,
        bridge: InboxBridge | None = None,
        on_partner_liked: Callable[[MatchView], None] | None = None,
    ) -> None:
        super().__init__(hub, viewer_id)
        self.engine = engine
        self.bridge = bridge
        self.on_partner_liked = on_partner_liked
        self.chats: dict[str, MatchView] = {}
        self.selected_id: str | None = None
        self.messages: list[dict[str, Any]] = []
        self._message_ids: set[str] = set()

    def open(self) -> "ChatRoom":
        self.refresh()
        for side in ("sender_id", "receiver_id"):
            self._subscribe("chat_messages", self._on_message, filters={side: self.viewer_id}, event_types={INSERT})
        for side in ("user1_id", "user2_id"):
            self._subscribe("chat_matches", self._on_match_update, filters={side: self.viewer_id}, event_types={UPDATE})
        return self

    def refresh(self) -> list[MatchView]:
        views = self.engine.list_chats(self.viewer_id)
        with self._lock:
            self.chats = {v.id: v for v in views}
        return views

    def chat_list(self) -> list[MatchView]:
        with self._lock:
            return sorted(
                self.chats.values(),
                key=lambda v: (v.last_message or {}).get("created_at") or v.created_at or _EPOCH,
                reverse=True,
            )

    def select(self, match_id: str) -> dict[str, Any]:
        thread = self.engine.open_thread(match_id, self.viewer_id)
        with self._lock:
            self.selected_id = str(match_id)
            self.messages = list(thread["messages"])
            self._message_ids = {str(m["id"]) for m in self.messages}
        if self.bridge is not None:
            self.bridge.focus_chat(match_id)
        return thread

    def deselect(self) -> None:
        with self._lock:
            self.selected_id = None
            self.messages = []
            self._message_ids = set()
        if self.bridge is not None:
            self.bridge.focus_chat(None)

    def _on_message(self, event: RealtimeEvent) -> None:
        msg = event.new
        match_id = str(msg.get("match_id"))
        mark_read = False
        with self._lock:
            view = self.chats.get(match_id)
            if view is not None:
                current = view.last_message or {}
                if not current or (msg.get("created_at") and msg["created_at"] >= current.get("created_at", msg["created_at"])):
                    view.last_message = msg
            if match_id != self.selected_id or str(msg.get("id")) in self._message_ids:
                return
            self._message_ids.add(str(msg["id"]))
            self.messages.append(msg)
            mark_read = str(msg.get("receiver_id")) == self.viewer_id
        if mark_read:
            self.engine.mark_thread_read(match_id, self.viewer_id)

    def _on_match_update(self, event: RealtimeEvent) -> None:
        row = event.new
        match_id = str(row.get("id"))
        with self._lock:
            previous = self.chats.get(match_id)
            if previous is None:
                return
            if parse_match_status(row["status"]) not in MESSAGING_STATUSES:
                self.chats.pop(match_id, None)
                return
            fresh = project_match(
                row,
                self.viewer_id,
                self.engine.clock(),
                partner_profile=previous.partner_profile or {},
                last_message=previous.last_message,
            )
            self.chats[match_id] = fresh
        if fresh.partner_has_liked and not previous.partner_has_liked:
            logger.info("[REALTIME] partner liked chat %s for %s", match_id, self.viewer_id)
            if self.on_partner_liked is not None:
                self.on_partner_liked(fresh)


class LetterBox(_LiveView):
    """Inbox and sent tabs kept current from letter insert/update/delete events."""

    def __init__(self, hub: RealtimeHub, engine: LetterEngine, viewer_id: str) -> None:
        super().__init__(hub, viewer_id)
        self.engine = engine
        self._letters: dict[str, dict[str, Any]] = {}

    def open(self) -> "LetterBox":
        with self._lock:
            self._letters = {}
            for box in (INBOX, SENT):
                for letter in self.engine.list_letters(self.viewer_id, box):
                    self._letters[letter["id"]] = letter
        self._subscribe("letters", self._on_event, filters={"recipient_id": self.viewer_id})
        self._subscribe("letters", self._on_event, filters={"sender_id": self.viewer_id})
        return self

    def _names_for(self, row: dict[str, Any]) -> dict[str, Any]:
        ids = [str(row["sender_id"]), str(row["recipient_id"])]
        profiles = self.engine.gateway.select("profiles", [In("id", ids)])
        by_id = {str(p["id"]): p for p in profiles}
        return {
            "sender_profile": by_id.get(ids[0]),
            "recipient_profile": by_id.get(ids[1]),
        }

    def _on_event(self, event: RealtimeEvent) -> None:
        record = event.record
        letter_id = str(record.get("id"))
        if event.event_type == DELETE or record.get("status") == LetterStatus.STARTED_CHAT.value:
            with self._lock:
                self._letters.pop(letter_id, None)
            return
        with self._lock:
            known = self._letters.get(letter_id)
        if known is not None:
            names = {"sender_profile": {"first_name": known["sender_name"]}, "recipient_profile": {"first_name": known["recipient_name"]}}
        else:
            names = self._names_for(record)
        projected = project_letter({**record, **names}, self.viewer_id)
        with self._lock:
            self._letters[letter_id] = projected

    def letters(self, box: str = INBOX, search: str | None = None) -> list[dict[str, Any]]:
        incoming = box == INBOX
        with self._lock:
            rows = [l for l in self._letters.values() if l["is_incoming"] == incoming]
        rows.sort(key=lambda l: l.get("created_at") or _EPOCH, reverse=True)
        return search_letters(rows, search)

    def unread_count(self) -> int:
        with self._lock:
            return sum(1 for l in self._letters.values() if l["is_incoming"] and not l.get("read_at"))

    def get(self, letter_id: str) -> dict[str, Any] | None:
        with self._lock:
            return self._letters.get(str(letter_id))
