# classroom_realtime/api/routes/discussions.py

from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile

from classroom_realtime.core import state
from classroom_realtime.models.models import Identity, ReactionRequest, ReplyRequest
from classroom_realtime.services.auth_service import get_current_user

router = APIRouter(prefix="/discussions", tags=["discussions"])

# ============================================================================
# CLASSROOM DISCUSSION ENDPOINTS
# ============================================================================

@router.get("/{classroom_id}")
async def get_discussions(
    classroom_id: str,
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1, le=100),
    parent_id: Optional[str] = Query(None, alias="parentId"),
    current_user: Identity = Depends(get_current_user),
):
    """
    Page through a classroom discussion, oldest message first.

    Top-level messages by default; pass `parentId` for the replies to one message.

    Raises:
        AuthorizationError: 403 if the caller is not a member of the classroom
    """
    history = await state.chat_service.history(
        current_user, "discussion", classroom_id, page=page, limit=limit, parent_id=parent_id
    )
    return history.payload()


@router.post("/{classroom_id}", status_code=201)
async def create_discussion(
    classroom_id: str,
    content: Optional[str] = Form(None),
    mentions: Optional[List[str]] = Form(None),
    files: Optional[List[UploadFile]] = File(None),
    current_user: Identity = Depends(get_current_user),
):
    """
    Post a message to a classroom discussion.

    Flow:
        1. Authorization, mute/ban, spam and rate limit checks
        2. Attachments uploaded and the message persisted
        3. `newMessage` published to `classroom:<id>` on every instance

    Returns:
        dict: The stored message

    Raises:
        ContentRejected: 400 on empty or spam content
        AuthorizationError: 403 if not allowed to post here
        RateLimited: 429 with retryAfter
        PersistenceFailure: 500 if the message could not be stored
    """
    message = await state.chat_service.post_message(
        current_user, "discussion", classroom_id, content, files or [], mentions=mentions
    )
    return message.payload()


# ============================================================================
# THREADS AND REACTIONS
# ============================================================================

@router.post("/{message_id}/reply", status_code=201)
async def reply_to_discussion(
    message_id: str,
    request: ReplyRequest,
    current_user: Identity = Depends(get_current_user),
):
    """
    Reply to a discussion message. Members of its classroom receive `newReply`.

    Raises:
        NotFound: 404 if the parent message does not exist or was deleted
    """
    reply = await state.chat_service.reply_to_message(
        current_user, message_id, request.content, mentions=request.mentions
    )
    return reply.payload()


@router.post("/{message_id}/react")
async def react_to_discussion(
    message_id: str,
    request: ReactionRequest,
    current_user: Identity = Depends(get_current_user),
):
    """Toggle an emoji reaction; the classroom receives `messageReaction`."""
    message = await state.chat_service.react_to_message(current_user, message_id, request.emoji)
    return message.payload()
