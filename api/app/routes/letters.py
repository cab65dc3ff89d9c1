from typing import Any

from fastapi import APIRouter, Depends, Query

from ..auth.deps import get_current_user
from ..deps import get_letter_engine
from ..schemas import SendLetterRequest
from ..services.letters import INBOX, LetterEngine
from ..services.rate_limit import rate_limited

router = APIRouter()

RL_LETTER_SEND = rate_limited("letter_send")


@router.post("/letters", dependencies=[RL_LETTER_SEND])
def send_letter(
    payload: SendLetterRequest,
    current_user: dict[str, Any] = Depends(get_current_user),
    engine: LetterEngine = Depends(get_letter_engine),
) -> dict[str, Any]:
    letter = engine.send_letter(str(current_user["id"]), payload.content)
    # the recipient stays anonymous to the sender
    return {"letter": {k: letter[k] for k in ("id", "content", "status", "matched", "created_at")}}


@router.get("/letters")
def list_letters(
    box: str = Query(default=INBOX),
    q: str | None = Query(default=None, max_length=200),
    current_user: dict[str, Any] = Depends(get_current_user),
    engine: LetterEngine = Depends(get_letter_engine),
) -> dict[str, Any]:
    return {"letters": engine.list_letters(str(current_user["id"]), box, q)}


@router.post("/letters/{letter_id}/read")
def mark_letter_read(
    letter_id: str,
    current_user: dict[str, Any] = Depends(get_current_user),
    engine: LetterEngine = Depends(get_letter_engine),
) -> dict[str, Any]:
    return {"letter": engine.mark_read(letter_id, str(current_user["id"]))}


@router.post("/letters/{letter_id}/like")
def like_letter(
    letter_id: str,
    current_user: dict[str, Any] = Depends(get_current_user),
    engine: LetterEngine = Depends(get_letter_engine),
) -> dict[str, Any]:
    return engine.like_letter(letter_id, str(current_user["id"])).as_dict()


@router.post("/letters/{letter_id}/decline")
def decline_letter(
    letter_id: str,
    current_user: dict[str, Any] = Depends(get_current_user),
    engine: LetterEngine = Depends(get_letter_engine),
) -> dict[str, Any]:
    return {"letter": engine.decline_letter(letter_id, str(current_user["id"]))}


@router.post("/letters/{letter_id}/start-chat")
def start_chat_from_letter(
    letter_id: str,
    current_user: dict[str, Any] = Depends(get_current_user),
    engine: LetterEngine = Depends(get_letter_engine),
) -> dict[str, Any]:
    return engine.start_chat(letter_id, str(current_user["id"])).as_dict()
