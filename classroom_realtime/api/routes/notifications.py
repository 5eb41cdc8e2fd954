# classroom_realtime/api/routes/notifications.py

from fastapi import APIRouter, Depends

from classroom_realtime.core import state
from classroom_realtime.models.models import AnnouncementRequest, Identity, NotificationRequest
from classroom_realtime.services.auth_service import require_elevated

router = APIRouter(tags=["notifications"])


@router.post("/notifications", status_code=202)
async def send_notification(request: NotificationRequest, current_user: Identity = Depends(require_elevated)):
    """Push a notification record to every open connection of one user."""
    await state.notifier.notify_user(request.user_id, request.notification)
    return {"status": "accepted"}


@router.post("/announcements", status_code=202)
async def send_announcement(request: AnnouncementRequest, current_user: Identity = Depends(require_elevated)):
    """
    Push an announcement to a list of users.

    Returns:
        dict: Number of distinct users targeted
    """
    count = await state.notifier.announce(request.user_ids, request.announcement)
    return {"status": "accepted", "recipients": count}
