from typing import Any

from fastapi import APIRouter, Depends

from ..auth.deps import get_current_user
from ..deps import get_match_engine
from ..schemas import ToggleRequest
from ..services.matches import MatchEngine, project_match
from ..services.rate_limit import rate_limited

router = APIRouter()

RL_MATCH_ACTION = rate_limited("match_action")


@router.get("/matches/requests")
def list_match_requests(
    current_user: dict[str, Any] = Depends(get_current_user),
    engine: MatchEngine = Depends(get_match_engine),
) -> dict[str, Any]:
    return {"requests": engine.list_requests(str(current_user["id"]))}


@router.get("/matches/{match_id}")
def get_match(
    match_id: str,
    current_user: dict[str, Any] = Depends(get_current_user),
    engine: MatchEngine = Depends(get_match_engine),
) -> dict[str, Any]:
    return {"match": engine.get_match_view(match_id, str(current_user["id"])).as_dict()}


@router.post("/matches/{match_id}/accept", dependencies=[RL_MATCH_ACTION])
def accept_match(
    match_id: str,
    current_user: dict[str, Any] = Depends(get_current_user),
    engine: MatchEngine = Depends(get_match_engine),
) -> dict[str, Any]:
    user_id = str(current_user["id"])
    outcome = engine.accept_request(match_id, user_id)
    return {"match": project_match(outcome.match, user_id, engine.clock()).as_dict(), "changed": outcome.changed}


@router.post("/matches/{match_id}/decline", dependencies=[RL_MATCH_ACTION])
def decline_match(
    match_id: str,
    current_user: dict[str, Any] = Depends(get_current_user),
    engine: MatchEngine = Depends(get_match_engine),
) -> dict[str, Any]:
    user_id = str(current_user["id"])
    outcome = engine.decline_request(match_id, user_id)
    return {"match": project_match(outcome.match, user_id, engine.clock()).as_dict(), "changed": outcome.changed}


@router.post("/matches/{match_id}/like", dependencies=[RL_MATCH_ACTION])
def like_match(
    match_id: str,
    payload: ToggleRequest | None = None,
    current_user: dict[str, Any] = Depends(get_current_user),
    engine: MatchEngine = Depends(get_match_engine),
) -> dict[str, Any]:
    value = payload.value if payload else None
    return {"match": engine.toggle_like(match_id, str(current_user["id"]), value).as_dict()}


@router.post("/matches/{match_id}/reveal", dependencies=[RL_MATCH_ACTION])
def reveal_match(
    match_id: str,
    payload: ToggleRequest | None = None,
    current_user: dict[str, Any] = Depends(get_current_user),
    engine: MatchEngine = Depends(get_match_engine),
) -> dict[str, Any]:
    value = payload.value if payload else None
    return {"match": engine.toggle_reveal(match_id, str(current_user["id"]), value).as_dict()}
