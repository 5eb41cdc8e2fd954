# classroom_realtime/api/routes/groups.py

from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile

from classroom_realtime.core import state
from classroom_realtime.models.models import Identity
from classroom_realtime.services.auth_service import get_current_user

router = APIRouter(prefix="/groups", tags=["groups"])


@router.get("/{group_id}/messages")
async def get_group_messages(
    group_id: str,
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1, le=100),
    current_user: Identity = Depends(get_current_user),
):
    """Page through a group chat, oldest message first."""
    history = await state.chat_service.history(current_user, "group", group_id, page=page, limit=limit)
    return history.payload()


@router.post("/{group_id}/messages", status_code=201)
async def send_group_message(
    group_id: str,
    content: Optional[str] = Form(None),
    files: Optional[List[UploadFile]] = File(None),
    current_user: Identity = Depends(get_current_user),
):
    """Post to a group chat; subscribers of `group:<id>` receive `newGroupMessage`."""
    message = await state.chat_service.post_message(current_user, "group", group_id, content, files or [])
    return message.payload()
