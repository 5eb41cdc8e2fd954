# classroom_realtime/api/routes/metrics.py
from fastapi import APIRouter
from datetime import datetime, timezone

from classroom_realtime.core import state

router = APIRouter()

@router.get("/metrics")
async def get_metrics():
    """
    Usage metrics for this process.

    Example Response:
        {
            "total_messages": 120,
            "uptime_hours": 1.5,
            "messages_per_second": 0.02,
            "concurrent_connections": 35,
            "active_rooms_with_members": 12,
            "rooms": {"classroom:abc": {"member_count": 3}},
            "bus": "redis"
        }
    """
    uptime_seconds = (datetime.now(timezone.utc) - state.app_start_time).total_seconds()
    total = state.chat_service.accepted_count

    if uptime_seconds > 0:
        messages_per_second = total / uptime_seconds
    else:
        messages_per_second = 0

    return {
        # Statistics
        "total_messages": total,
        "uptime_hours": round(uptime_seconds / 3600, 2) if uptime_seconds > 0 else 0,
        "messages_per_second": round(messages_per_second, 2),

        # Capacity
        "concurrent_connections": state.connection_manager.connection_count,
        "active_rooms_with_members": len(state.connection_manager.rooms),
        "rooms": state.connection_manager.get_rooms_info(),

        # Fan-out
        "bus": state.bus.mode,
        "bus_degraded": getattr(state.bus, "degraded", False),
    }
