import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable

from ..config import LETTER_MAX_LENGTH
from ..gateway import Embed, Eq, In, IsNull, PersistenceGateway
from ..http_helpers import validate_text_body
from . import events as ev
from .errors import ForbiddenError, LifecycleError, NotFoundError, ValidationError
from .matches import MatchEngine, MatchView, _now_utc
from .profiles import ANONYMOUS, display_name
from .state_machine import LetterStatus, parse_letter_status, status_values, transition_letter

logger = logging.getLogger(__name__)

INBOX = "inbox"
SENT = "sent"

# letters that already turned into a chat leave the active list
_HIDDEN_FROM_LIST = {LetterStatus.STARTED_CHAT.value}
_NAME_ONLY = ("first_name",)


class NoRecipientAvailable(LifecycleError):
    status_code = 404

    def __init__(self) -> None:
        super().__init__("No one is available to receive a letter right now, please try again later")


@dataclass
class LetterDecision:
    letter: dict[str, Any]
    matched: bool = False
    match: MatchView | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "letter": self.letter,
            "matched": self.matched,
            "match": self.match.as_dict() if self.match else None,
        }


def project_letter(row: dict[str, Any], viewer_id: str) -> dict[str, Any]:
    sender = row.get("sender_profile")
    recipient = row.get("recipient_profile")
    return {
        "id": str(row["id"]),
        "sender_id": str(row["sender_id"]),
        "recipient_id": str(row["recipient_id"]),
        "content": row["content"],
        "status": parse_letter_status(row["status"]).value,
        "matched": bool(row.get("matched")),
        "created_at": row.get("created_at"),
        "read_at": row.get("read_at"),
        "sender_name": display_name(sender, ANONYMOUS),
        "recipient_name": display_name(recipient, ANONYMOUS),
        "is_incoming": str(row["recipient_id"]) == str(viewer_id),
    }


def search_letters(letters: list[dict[str, Any]], term: str | None) -> list[dict[str, Any]]:
    needle = (term or "").strip().lower()
    if not needle:
        return letters
    return [
        letter
        for letter in letters
        if needle in (letter.get("content") or "").lower()
        or needle in (letter.get("sender_name") or "").lower()
        or needle in (letter.get("recipient_name") or "").lower()
    ]


class LetterEngine:
    def __init__(
        self,
        gateway: PersistenceGateway,
        matches: MatchEngine,
        events: ev.EventBus | None = None,
        *,
        clock: Callable[[], datetime] = _now_utc,
    ) -> None:
        self.gateway = gateway
        self.matches = matches
        self.events = events or matches.events
        self.clock = clock

    def get_letter(self, letter_id: str) -> dict[str, Any]:
        rows = self.gateway.select("letters", [Eq("id", letter_id)], limit=1)
        if not rows:
            raise NotFoundError("letter", letter_id)
        return rows[0]

    def _recipient_letter(self, letter_id: str, actor_id: str) -> dict[str, Any]:
        letter = self.get_letter(letter_id)
        if str(letter["recipient_id"]) != str(actor_id):
            raise ForbiddenError("Only the recipient can answer this letter")
        return letter

    def send_letter(self, sender_id: str, content: Any) -> dict[str, Any]:
        body = validate_text_body(content, field="letter", max_length=LETTER_MAX_LENGTH)
        recipient_id = self.gateway.rpc("get_random_recipient", sender_id=str(sender_id))
        if not recipient_id:
            logger.info("[LETTER] no eligible recipient for %s", sender_id)
            raise NoRecipientAvailable()
        letter = self.gateway.insert(
            "letters",
            {
                "sender_id": str(sender_id),
                "recipient_id": str(recipient_id),
                "content": body,
                "status": LetterStatus.PENDING.value,
                "matched": False,
                "created_at": self.clock(),
            },
        )
        logger.info("[LETTER] %s sent %s", sender_id, letter["id"])
        self.events.emit(ev.LifecycleEvent(ev.LETTER_SENT, actor_id=str(sender_id), recipient_id=str(recipient_id), entity_id=str(letter["id"])))
        return letter

    def list_letters(self, viewer_id: str, box: str = INBOX, search: str | None = None) -> list[dict[str, Any]]:
        if box not in (INBOX, SENT):
            raise ValidationError("box must be 'inbox' or 'sent'")
        owner = "recipient_id" if box == INBOX else "sender_id"
        rows = self.gateway.select(
            "letters",
            [Eq(owner, viewer_id)],
            order_by="created_at",
            descending=True,
            embed=[
                Embed("sender_profile", "sender_id", columns=_NAME_ONLY),
                Embed("recipient_profile", "recipient_id", columns=_NAME_ONLY),
            ],
        )
        letters = [project_letter(r, viewer_id) for r in rows if r["status"] not in _HIDDEN_FROM_LIST]
        return search_letters(letters, search)

    def mark_read(self, letter_id: str, viewer_id: str) -> dict[str, Any]:
        letter = self._recipient_letter(letter_id, viewer_id)
        if letter.get("read_at"):
            return letter
        rows = self.gateway.update("letters", [Eq("id", letter_id), IsNull("read_at")], {"read_at": self.clock()})
        return rows[0] if rows else self.get_letter(letter_id)

    def like_letter(self, letter_id: str, actor_id: str) -> LetterDecision:
        letter = self._recipient_letter(letter_id, actor_id)
        status = parse_letter_status(letter["status"])
        if status == LetterStatus.PENDING:
            transition_letter(status, "like")
            rows = self.gateway.update(
                "letters",
                [Eq("id", letter_id), Eq("status", LetterStatus.PENDING.value)],
                {"status": LetterStatus.LIKED.value},
            )
            letter = rows[0] if rows else self.get_letter(letter_id)
            if rows:
                self.events.emit(
                    ev.LifecycleEvent(ev.LETTER_LIKED, actor_id=str(actor_id), recipient_id=str(letter["sender_id"]), entity_id=str(letter_id))
                )
        elif status == LetterStatus.DECLINED:
            transition_letter(status, "like")

        return self._promote_if_mutual(letter, actor_id)

    def _promote_if_mutual(self, letter: dict[str, Any], actor_id: str) -> LetterDecision:
        sender_id = str(letter["sender_id"])
        recipient_id = str(letter["recipient_id"])
        reciprocal = self.gateway.select(
            "letters",
            [
                Eq("sender_id", recipient_id),
                Eq("recipient_id", sender_id),
                In("status", status_values({LetterStatus.LIKED, LetterStatus.MATCHED, LetterStatus.STARTED_CHAT})),
            ],
            order_by="created_at",
            limit=1,
        )
        if not reciprocal:
            return LetterDecision(letter)

        other = reciprocal[0]
        self.gateway.update(
            "letters",
            [In("id", [str(letter["id"]), str(other["id"])]), Eq("status", LetterStatus.LIKED.value)],
            {"status": LetterStatus.MATCHED.value, "matched": True},
        )
        outcome = self.matches.ensure_mutual_match(sender_id, recipient_id)
        view = self.matches.get_match_view(str(outcome.match["id"]), actor_id)
        fresh = self.get_letter(str(letter["id"]))
        logger.info("[LETTER] %s and %s matched through letters, match %s (created=%s)", sender_id, recipient_id, view.id, outcome.created)
        if outcome.created or outcome.changed:
            self.events.emit(
                ev.LifecycleEvent(
                    ev.LETTERS_MATCHED,
                    actor_id=str(actor_id),
                    recipient_id=view.partner_id,
                    entity_id=str(letter["id"]),
                    payload={"match_id": view.id},
                )
            )
        return LetterDecision(fresh, matched=True, match=view)

    def decline_letter(self, letter_id: str, actor_id: str) -> dict[str, Any]:
        letter = self._recipient_letter(letter_id, actor_id)
        transition_letter(letter["status"], "decline")
        if parse_letter_status(letter["status"]) == LetterStatus.DECLINED:
            return letter
        rows = self.gateway.update(
            "letters",
            [Eq("id", letter_id), Eq("status", LetterStatus.PENDING.value)],
            {"status": LetterStatus.DECLINED.value},
        )
        if not rows:
            fresh = self.get_letter(letter_id)
            transition_letter(fresh["status"], "decline")
            return fresh
        logger.info("[LETTER] %s declined by %s", letter_id, actor_id)
        self.events.emit(ev.LifecycleEvent(ev.LETTER_DECLINED, actor_id=str(actor_id), recipient_id=str(letter["sender_id"]), entity_id=str(letter_id)))
        return rows[0]

    def start_chat(self, letter_id: str, actor_id: str) -> LetterDecision:
        letter = self.get_letter(letter_id)
        sender_id = str(letter["sender_id"])
        recipient_id = str(letter["recipient_id"])
        if str(actor_id) not in (sender_id, recipient_id):
            raise ForbiddenError("You are not part of this letter")
        status = transition_letter(letter["status"], "start_chat")
        if str(actor_id) == recipient_id and not letter.get("matched"):
            raise ValidationError("You can start a chat once the letter is matched")

        outcome = self.matches.ensure_mutual_match(sender_id, recipient_id)
        view = self.matches.get_match_view(str(outcome.match["id"]), actor_id)
        rows = self.gateway.update(
            "letters",
            [Eq("id", letter_id), In("status", status_values({LetterStatus.LIKED, LetterStatus.MATCHED}))],
            {"status": status.value},
        )
        fresh = rows[0] if rows else self.get_letter(letter_id)
        if rows:
            logger.info("[LETTER] chat %s started from letter %s by %s", view.id, letter_id, actor_id)
            self.events.emit(
                ev.LifecycleEvent(
                    ev.CHAT_STARTED,
                    actor_id=str(actor_id),
                    recipient_id=view.partner_id,
                    entity_id=str(letter_id),
                    payload={"match_id": view.id},
                )
            )
        return LetterDecision(fresh, matched=bool(fresh.get("matched")), match=view)
