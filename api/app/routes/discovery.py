from typing import Any

from fastapi import APIRouter, Depends, HTTPException

from ..auth.deps import get_current_user
from ..deps import get_discovery
from ..schemas import PreferencesUpdate, SwipeRequest
from ..services.discovery import DiscoverySelector

router = APIRouter()


@router.get("/discovery/preferences")
def get_preferences(
    current_user: dict[str, Any] = Depends(get_current_user),
    selector: DiscoverySelector = Depends(get_discovery),
) -> dict[str, Any]:
    return {"preferences": selector.get_preferences(str(current_user["id"]))}


@router.put("/discovery/preferences")
def update_preferences(
    payload: PreferencesUpdate,
    current_user: dict[str, Any] = Depends(get_current_user),
    selector: DiscoverySelector = Depends(get_discovery),
) -> dict[str, Any]:
    prefs = selector.update_preferences(str(current_user["id"]), payload.model_dump(exclude_unset=True))
    return {"preferences": prefs}


@router.get("/discovery/next")
def next_candidate(
    current_user: dict[str, Any] = Depends(get_current_user),
    selector: DiscoverySelector = Depends(get_discovery),
) -> dict[str, Any]:
    return selector.fetch_next_candidate(str(current_user["id"])).as_dict()


@router.post("/discovery/swipes")
def record_swipe(
    payload: SwipeRequest,
    current_user: dict[str, Any] = Depends(get_current_user),
    selector: DiscoverySelector = Depends(get_discovery),
) -> dict[str, Any]:
    outcome = selector.record_swipe(str(current_user["id"]), payload.target_id, payload.action)
    if outcome.rate_limited:
        raise HTTPException(status_code=429, detail="You've reached today's swipe limit. Come back tomorrow!")
    return outcome.as_dict()
