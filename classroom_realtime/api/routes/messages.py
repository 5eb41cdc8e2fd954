# classroom_realtime/api/routes/messages.py

from typing import Optional

from fastapi import APIRouter, Depends

from classroom_realtime.core import state
from classroom_realtime.models.models import Identity, ModerationRequest
from classroom_realtime.services.auth_service import get_current_user

router = APIRouter(prefix="/messages", tags=["moderation"])


@router.delete("/{message_id}")
async def delete_message(
    message_id: str,
    reason: str = "",
    current_user: Identity = Depends(get_current_user),
):
    """
    Soft-delete a message (moderators, teachers and admins).

    The record is kept with its deletion metadata and the room receives
    `messageDeleted {messageId, room}`.

    Raises:
        AuthorizationError: 403 for any other role
        NotFound: 404 if the message does not exist
    """
    message = await state.chat_service.delete_message(current_user, message_id, reason)
    return {"status": "deleted", "message": message.payload()}


@router.post("/{message_id}/report")
async def report_message(
    message_id: str,
    request: Optional[ModerationRequest] = None,
    current_user: Identity = Depends(get_current_user),
):
    """Flag a message for review. Any member of the message's room may report it."""
    reason = request.reason if request else ""
    message = await state.chat_service.report_message(current_user, message_id, reason)
    return {"status": "reported", "message": message.payload()}
