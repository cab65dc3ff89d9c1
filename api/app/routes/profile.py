from typing import Any

from fastapi import APIRouter, Depends

from ..auth.deps import get_current_user
from ..deps import get_gateway
from ..http_helpers import instagram_url
from ..schemas import CouponRequest, ProfileUpdate
from ..services.profiles import activate_with_coupon, ensure_profile, get_profile, is_onboarded, public_card, update_profile
from ..services.rate_limit import rate_limited

router = APIRouter()

RL_COUPON = rate_limited("coupon")


def _own_profile(profile: dict[str, Any]) -> dict[str, Any]:
    return {**profile, "instagram_url": instagram_url(profile.get("instagram_id")), "onboarded": is_onboarded(profile)}


@router.get("/profile/me")
def get_my_profile(current_user: dict[str, Any] = Depends(get_current_user), gateway=Depends(get_gateway)) -> dict[str, Any]:
    return {"profile": _own_profile(ensure_profile(gateway, str(current_user["id"])))}


@router.put("/profile/me")
def update_my_profile(
    payload: ProfileUpdate,
    current_user: dict[str, Any] = Depends(get_current_user),
    gateway=Depends(get_gateway),
) -> dict[str, Any]:
    profile = update_profile(gateway, str(current_user["id"]), payload.model_dump(exclude_unset=True))
    return {"profile": _own_profile(profile)}


@router.get("/profiles/{profile_id}")
def get_public_profile(profile_id: str, current_user: dict[str, Any] = Depends(get_current_user), gateway=Depends(get_gateway)) -> dict[str, Any]:
    return {"profile": public_card(get_profile(gateway, profile_id))}


@router.post("/profile/coupon", dependencies=[RL_COUPON])
def redeem_coupon(
    payload: CouponRequest,
    current_user: dict[str, Any] = Depends(get_current_user),
    gateway=Depends(get_gateway),
) -> dict[str, Any]:
    return {"activated": activate_with_coupon(gateway, str(current_user["id"]), payload.code)}
