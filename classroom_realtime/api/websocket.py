# classroom_realtime/api/websocket.py

from __future__ import annotations

from fastapi import APIRouter, WebSocket

from classroom_realtime.core import state

router = APIRouter()

# ============================================================================
# WEBSOCKET ENDPOINT
# ============================================================================

@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """
    WebSocket endpoint for real-time classroom events.

    Protocol:
    =========

    Handshake (first frame, within AUTH_TIMEOUT_SECONDS):
        {"token": "<jwt>"}
        Response: {"event": "connected", "data": {"userId": ..., "role": ..., "connectionId": ...}}
        Invalid or missing token: socket closed with code 4401

    Client -> Server Events:
    ------------------------
    Rooms:
        {"event": "joinClassroom", "data": "<classroomId>"}
        {"event": "leaveClassroom", "data": "<classroomId>"}
        {"event": "joinGroup", "data": "<groupId>"}
        {"event": "leaveGroup", "data": "<groupId>"}
        {"event": "join_admin_dashboard"}
        Response: {"event": "room_joined" | "room_left", "data": {"room": "classroom:<id>"}}

    Typing indicators:
        {"event": "typing", "data": {"classroomId": "...", "username": "..."}}
        {"event": "stopTyping", "data": {"classroomId": "..."}}

    Whiteboard:
        {"event": "joinWhiteboard", "data": "<sessionId>"}
        {"event": "draw", "data": {"sessionId": "...", "drawData": {...}}}
        {"event": "cursorMove", "data": {"sessionId": "...", "position": {...}}}
        {"event": "clearCanvas", "data": "<sessionId>"}

    Server -> Client Events:
    ------------------------
        newMessage, newGroupMessage, newReply, messageReaction,
        messageDeleted, notification,
        announcement, top_performers_update, userTyping, userStoppedTyping,
        drawing, cursorPosition, canvasCleared, userJoinedWhiteboard,
        userLeftWhiteboard

    Error:
        {"event": "error", "data": {"message": "...", "reason": "forbidden", "command": "joinGroup"}}

    Messages are posted over REST (see api/routes/discussions.py and
    api/routes/groups.py); the socket only receives them.
    """
    await state.gateway.handle(websocket)
