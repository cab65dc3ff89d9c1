from typing import Any

from fastapi import APIRouter, Depends

from ..auth.deps import get_current_user
from ..deps import get_match_engine
from ..schemas import ReportRequest
from ..services.matches import MatchEngine
from ..services.rate_limit import rate_limited
from ..services.reports import reportable_partners, submit_report

router = APIRouter()

RL_REPORT = rate_limited("report")


@router.get("/safety/reportable")
def list_reportable(
    current_user: dict[str, Any] = Depends(get_current_user),
    engine: MatchEngine = Depends(get_match_engine),
) -> dict[str, Any]:
    return {"partners": reportable_partners(engine.gateway, str(current_user["id"]), engine.clock())}


@router.post("/safety/reports", dependencies=[RL_REPORT])
def create_report(
    payload: ReportRequest,
    current_user: dict[str, Any] = Depends(get_current_user),
    engine: MatchEngine = Depends(get_match_engine),
) -> dict[str, Any]:
    report = submit_report(engine.gateway, str(current_user["id"]), payload.reported_user_id, payload.message, engine.clock())
    return {"status": "submitted", "report_id": report["id"], "reported_user_id": report["reported_user_id"]}
