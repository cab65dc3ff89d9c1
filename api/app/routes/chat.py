from typing import Any

from fastapi import APIRouter, Depends

from ..auth.deps import get_current_user
from ..deps import get_match_engine
from ..schemas import SendMessageRequest
from ..services.matches import MatchEngine
from ..services.rate_limit import rate_limited

router = APIRouter()

RL_MESSAGE_SEND = rate_limited("message_send")


@router.get("/chats")
def list_chats(
    current_user: dict[str, Any] = Depends(get_current_user),
    engine: MatchEngine = Depends(get_match_engine),
) -> dict[str, Any]:
    return {"chats": [view.as_dict() for view in engine.list_chats(str(current_user["id"]))]}


@router.get("/chats/{match_id}/messages")
def open_chat(
    match_id: str,
    current_user: dict[str, Any] = Depends(get_current_user),
    engine: MatchEngine = Depends(get_match_engine),
) -> dict[str, Any]:
    return engine.open_thread(match_id, str(current_user["id"]))


@router.post("/chats/{match_id}/messages", dependencies=[RL_MESSAGE_SEND])
def send_message(
    match_id: str,
    payload: SendMessageRequest,
    current_user: dict[str, Any] = Depends(get_current_user),
    engine: MatchEngine = Depends(get_match_engine),
) -> dict[str, Any]:
    return {"message": engine.send_message(match_id, str(current_user["id"]), payload.content)}
