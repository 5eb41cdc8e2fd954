# classroom_realtime/models/events.py
"""
Socket protocol.

Every frame in either direction is a JSON object {"event": <name>, "data": <payload>}.
Client frames form a closed set: each event name maps to exactly one model
below and anything else is rejected before it reaches a handler.
"""
from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import Field, TypeAdapter, ValidationError

from classroom_realtime.core.errors import ContentRejected
from classroom_realtime.models.models import WireModel

RoomId = Annotated[str, Field(min_length=1, max_length=128)]


class ServerEvent:
    """Names of server -> client events."""

    CONNECTED = "connected"
    ROOM_JOINED = "room_joined"
    ROOM_LEFT = "room_left"
    ERROR = "error"

    NEW_MESSAGE = "newMessage"
    NEW_GROUP_MESSAGE = "newGroupMessage"
    NEW_REPLY = "newReply"
    MESSAGE_REACTION = "messageReaction"
    MESSAGE_DELETED = "messageDeleted"
    NOTIFICATION = "notification"
    ANNOUNCEMENT = "announcement"
    TOP_PERFORMERS_UPDATE = "top_performers_update"

    USER_TYPING = "userTyping"
    USER_STOPPED_TYPING = "userStoppedTyping"
    DRAWING = "drawing"
    CURSOR_POSITION = "cursorPosition"
    CANVAS_CLEARED = "canvasCleared"
    USER_JOINED_WHITEBOARD = "userJoinedWhiteboard"
    USER_LEFT_WHITEBOARD = "userLeftWhiteboard"


def frame(event: str, data: Any = None) -> dict:
    return {"event": event, "data": data}


# ============================================================================
# CLIENT -> SERVER PAYLOADS
# ============================================================================

class TypingPayload(WireModel):
    classroom_id: RoomId
    username: str = ""


class StopTypingPayload(WireModel):
    classroom_id: RoomId


class DrawPayload(WireModel):
    session_id: RoomId
    draw_data: Any = None


class CursorPayload(WireModel):
    session_id: RoomId
    position: Any = None


# ============================================================================
# CLIENT -> SERVER EVENTS
# ============================================================================

class JoinClassroom(WireModel):
    event: Literal["joinClassroom"]
    data: RoomId


class LeaveClassroom(WireModel):
    event: Literal["leaveClassroom"]
    data: RoomId


class JoinGroup(WireModel):
    event: Literal["joinGroup"]
    data: RoomId


class LeaveGroup(WireModel):
    event: Literal["leaveGroup"]
    data: RoomId


class JoinWhiteboard(WireModel):
    event: Literal["joinWhiteboard"]
    data: RoomId


class LeaveWhiteboard(WireModel):
    event: Literal["leaveWhiteboard"]
    data: RoomId


class Typing(WireModel):
    event: Literal["typing"]
    data: TypingPayload


class StopTyping(WireModel):
    event: Literal["stopTyping"]
    data: StopTypingPayload


class Draw(WireModel):
    event: Literal["draw"]
    data: DrawPayload


class CursorMove(WireModel):
    event: Literal["cursorMove"]
    data: CursorPayload


class ClearCanvas(WireModel):
    event: Literal["clearCanvas"]
    data: RoomId


class JoinAdminDashboard(WireModel):
    event: Literal["join_admin_dashboard"]
    data: Any = None


class LeaveAdminDashboard(WireModel):
    event: Literal["leave_admin_dashboard"]
    data: Any = None


ClientEvent = Annotated[
    Union[
        JoinClassroom,
        LeaveClassroom,
        JoinGroup,
        LeaveGroup,
        JoinWhiteboard,
        LeaveWhiteboard,
        Typing,
        StopTyping,
        Draw,
        CursorMove,
        ClearCanvas,
        JoinAdminDashboard,
        LeaveAdminDashboard,
    ],
    Field(discriminator="event"),
]

_client_event_adapter: TypeAdapter = TypeAdapter(ClientEvent)


def parse_client_event(raw: str) -> ClientEvent:
    """
    Decode one client frame.

    Raises:
        ContentRejected: invalid JSON, unknown event name or bad payload shape
    """
    try:
        return _client_event_adapter.validate_json(raw)
    except ValidationError as e:
        first = e.errors()[0] if e.errors() else {}
        raise ContentRejected(f"Invalid event: {first.get('msg', 'malformed frame')}") from e
