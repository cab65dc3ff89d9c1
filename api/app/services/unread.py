"""
Unread counters for one viewer.

Counts are derived state: loaded once from storage, then moved by realtime
increments and view resets. ``total`` is never stored, it is summed from the
parts on every read, so it cannot drift from them.
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable

from ..gateway import Eq, IsNull, PersistenceGateway
from .state_machine import MatchStatus

logger = logging.getLogger(__name__)

MATCHES = "matches"
MESSAGES = "messages"
LETTERS = "letters"


@dataclass(frozen=True)
class UnreadSnapshot:
    matches: int = 0
    messages: int = 0
    letters: int = 0
    per_chat: dict[str, int] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return self.matches + self.messages + self.letters

    def as_dict(self) -> dict[str, Any]:
        return {
            "unread_matches": self.matches,
            "unread_messages": self.messages,
            "unread_letters": self.letters,
            "total_unread": self.total,
            "per_chat": dict(self.per_chat),
        }


SnapshotListener = Callable[[UnreadSnapshot], None]


class UnreadAggregator:
    """Per-field serialized counters. Every mutation holds the lock, so a reset
    cannot interleave with an increment of the same field and never touches the
    other fields."""

    def __init__(self, viewer_id: str) -> None:
        self.viewer_id = str(viewer_id)
        self._lock = threading.Lock()
        self._matches = 0
        self._letters = 0
        # messages are tracked per chat; the global count is their sum
        self._per_chat: dict[str, int] = {}
        self._loose_messages = 0
        self._listeners: list[SnapshotListener] = []

    def add_listener(self, listener: SnapshotListener) -> None:
        self._listeners.append(listener)

    def _snapshot_locked(self) -> UnreadSnapshot:
        return UnreadSnapshot(
            matches=self._matches,
            messages=self._loose_messages + sum(self._per_chat.values()),
            letters=self._letters,
            per_chat={k: v for k, v in self._per_chat.items() if v},
        )

    def snapshot(self) -> UnreadSnapshot:
        with self._lock:
            return self._snapshot_locked()

    def _notify(self, snap: UnreadSnapshot) -> None:
        for listener in list(self._listeners):
            try:
                listener(snap)
            except Exception:
                logger.exception("[UNREAD] listener failed for %s", self.viewer_id)

    def _mutate(self, fn: Callable[[], None]) -> UnreadSnapshot:
        with self._lock:
            fn()
            snap = self._snapshot_locked()
        self._notify(snap)
        return snap

    # -- load -------------------------------------------------------------

    def load(self, matches: int, letters: int, messages: int = 0) -> UnreadSnapshot:
        def apply() -> None:
            self._matches = max(0, int(matches))
            self._letters = max(0, int(letters))
            self._loose_messages = max(0, int(messages))
            self._per_chat.clear()

        return self._mutate(apply)

    # -- increments -------------------------------------------------------

    def increment_matches(self, by: int = 1) -> UnreadSnapshot:
        def apply() -> None:
            self._matches += by

        return self._mutate(apply)

    def increment_letters(self, by: int = 1) -> UnreadSnapshot:
        def apply() -> None:
            self._letters += by

        return self._mutate(apply)

    def increment_messages(self, chat_id: str | None = None, by: int = 1) -> UnreadSnapshot:
        def apply() -> None:
            if chat_id is None:
                self._loose_messages += by
            else:
                key = str(chat_id)
                self._per_chat[key] = self._per_chat.get(key, 0) + by

        return self._mutate(apply)

    # -- resets -----------------------------------------------------------

    def reset_matches(self) -> UnreadSnapshot:
        def apply() -> None:
            self._matches = 0

        return self._mutate(apply)

    def reset_letters(self) -> UnreadSnapshot:
        def apply() -> None:
            self._letters = 0

        return self._mutate(apply)

    def reset_chat(self, chat_id: str) -> UnreadSnapshot:
        def apply() -> None:
            self._per_chat.pop(str(chat_id), None)

        return self._mutate(apply)

    def reset_messages(self) -> UnreadSnapshot:
        def apply() -> None:
            self._loose_messages = 0
            self._per_chat.clear()

        return self._mutate(apply)

    def apply_command(self, command: str) -> UnreadSnapshot:
        """``matches`` | ``letters`` | ``messages`` | ``chat:<match_id>``"""
        command = (command or "").strip()
        if command == MATCHES:
            return self.reset_matches()
        if command == LETTERS:
            return self.reset_letters()
        if command == MESSAGES:
            return self.reset_messages()
        if command.startswith("chat:") and len(command) > len("chat:"):
            return self.reset_chat(command[len("chat:"):])
        raise ValueError(f"Unknown reset command: {command!r}")


def count_initial_unread(gateway: PersistenceGateway, viewer_id: str) -> dict[str, int]:
    """Messages stay 0: there is no per-user read receipt to count them from at load time."""
    requests = gateway.select(
        "chat_matches",
        [Eq("user2_id", viewer_id), Eq("status", MatchStatus.PENDING_REQUEST.value), Eq("viewed", False)],
    )
    letters = gateway.select("letters", [Eq("recipient_id", viewer_id), IsNull("read_at")])
    return {MATCHES: len(requests), LETTERS: len(letters), MESSAGES: 0}


def load_initial_counts(gateway: PersistenceGateway, aggregator: UnreadAggregator) -> UnreadSnapshot:
    counts = count_initial_unread(gateway, aggregator.viewer_id)
    logger.info("[UNREAD] initial counts for %s: %s", aggregator.viewer_id, counts)
    return aggregator.load(matches=counts[MATCHES], letters=counts[LETTERS], messages=counts[MESSAGES])
