# classroom_realtime/api/routes/leaderboard.py

from typing import Optional

from fastapi import APIRouter, Depends, Query

from classroom_realtime.core import state
from classroom_realtime.core.errors import InfrastructureDegraded
from classroom_realtime.models.models import Identity, ScoreEventRequest
from classroom_realtime.services.auth_service import get_current_user, require_elevated

router = APIRouter(prefix="/leaderboard", tags=["leaderboard"])


@router.post("/scores", status_code=202)
async def record_score(request: ScoreEventRequest, current_user: Identity = Depends(require_elevated)):
    """
    Record a scoring event (quiz submission, assignment grade, ...).

    The point delta is added to today's counter and the admin dashboard
    receives a fresh `top_performers_update`.

    Raises:
        InfrastructureDegraded: 503 when no counter store is configured
    """
    if not state.scores.enabled:
        raise InfrastructureDegraded("Leaderboard store is not configured")

    await state.scores.update_score(request.user_id, request.points, request.reason)
    return {"status": "accepted"}


@router.get("/top")
async def get_top(
    limit: Optional[int] = Query(None, ge=1, le=100),
    current_user: Identity = Depends(get_current_user),
):
    """Today's top performers, highest score first."""
    top = await state.scores.get_top_performers(limit)
    return {"topPerformers": [p.payload() for p in top]}
