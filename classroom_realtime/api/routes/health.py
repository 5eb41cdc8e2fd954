# classroom_realtime/api/routes/health.py

from fastapi import APIRouter

from classroom_realtime.core import state

router = APIRouter()

@router.get("/health")
async def health():
    """
    Health check endpoint.

    Returns current system status, connection counts and room counts.
    A bus that lost its shared channel reports "degraded": the process still
    serves its own sockets but other instances no longer see its events.

    Returns:
        dict: Status, connection count, active room count, bus mode
    """
    degraded = getattr(state.bus, "degraded", False)
    return {
        "status": "degraded" if degraded else "healthy",
        "connections": state.connection_manager.connection_count,
        "active_rooms_with_members": len(state.connection_manager.rooms),
        "bus": state.bus.mode,
        "leaderboard": state.scores.enabled,
    }
