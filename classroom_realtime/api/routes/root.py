# classroom_realtime/api/routes/root.py

from fastapi import APIRouter

router = APIRouter()


@router.get("/")
async def root():
    """
    Root endpoint - API information.

    Returns basic info about the API and its features.
    """
    return {
        "message": "Classroom Realtime Service",
        "version": "1.0",
        "architecture": "room registry per process + shared fan-out channel",
        "features": ["discussions", "threads", "reactions", "group_chat", "whiteboard", "leaderboard", "notifications"],
        "endpoints": {
            "websocket": "/ws",
            "discussions": "/discussions/{classroom_id}",
            "replies": "/discussions/{message_id}/reply",
            "reactions": "/discussions/{message_id}/react",
            "groups": "/groups/{group_id}/messages",
            "messages": "/messages/{message_id}",
            "leaderboard": "/leaderboard/top",
            "notifications": "/notifications",
            "announcements": "/announcements",
            "health": "/health",
            "metrics": "/metrics",
        },
    }
