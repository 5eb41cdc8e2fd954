# classroom_realtime/services/gateway.py

from __future__ import annotations

import asyncio
import json
from typing import Any, List, Optional, Set

from fastapi import WebSocket, WebSocketDisconnect
import logging

from classroom_realtime.core.errors import AuthError, RealtimeError
from classroom_realtime.models.events import (
    ClearCanvas,
    ClientEvent,
    CursorMove,
    Draw,
    JoinAdminDashboard,
    JoinClassroom,
    JoinGroup,
    JoinWhiteboard,
    LeaveAdminDashboard,
    LeaveClassroom,
    LeaveGroup,
    LeaveWhiteboard,
    ServerEvent,
    StopTyping,
    Typing,
    parse_client_event,
)
from classroom_realtime.models.models import Identity
from classroom_realtime.services.auth_service import authenticate
from classroom_realtime.services.connection_manager import Connection, ConnectionManager
from classroom_realtime.services.directory import Directory
from classroom_realtime.services.fanout import FanOutBus
from classroom_realtime.services.rooms import (
    ADMIN_DASHBOARD,
    RoomKind,
    classroom_room,
    group_room,
    parse_room,
    whiteboard_room,
)
from classroom_realtime.services.score_aggregator import ScoreAggregator

logger = logging.getLogger(__name__)

AUTH_FAILED_CLOSE_CODE = 4401


class Gateway:
    """
    Turns an inbound websocket into an authenticated participant and
    dispatches its commands to the registry and the bus.

    Lifecycle:
        1. Transport accepted
        2. First frame {"token": "<jwt>"} must arrive within auth_timeout;
           anything else closes the socket with 4401 before room logic runs
        3. Identity stored on the Connection, `user:<id>` joined, `connected` sent
        4. Commands processed in arrival order until the socket closes
        5. On close: removed from every room, whiteboard presence cleared
    """

    def __init__(
        self,
        connections: ConnectionManager,
        bus: FanOutBus,
        scores: ScoreAggregator,
        directory: Directory,
        auth_timeout: float = 10.0,
    ) -> None:
        self.connections = connections
        self.bus = bus
        self.scores = scores
        self.directory = directory
        self.auth_timeout = auth_timeout
        connections.add_disconnect_hook(self._on_disconnect)

    async def handle(self, websocket: WebSocket) -> None:
        await websocket.accept()

        try:
            identity = await self.authenticate(websocket)
        except AuthError as e:
            logger.info("Handshake refused: %s", e.message)
            await websocket.close(code=AUTH_FAILED_CLOSE_CODE, reason=e.message)
            return
        except WebSocketDisconnect:
            return

        connection = self.connections.connect(websocket, identity)
        try:
            await connection.send(
                ServerEvent.CONNECTED,
                {"userId": identity.user_id, "role": identity.role, "connectionId": connection.connection_id},
            )
            while not connection.closed:
                raw = await websocket.receive_text()
                await self.dispatch_raw(connection, raw)
        except WebSocketDisconnect:
            pass
        except Exception as e:
            logger.error("WebSocket error for %r: %s", connection, e)
        finally:
            await self.connections.disconnect(connection)

    async def authenticate(self, websocket: WebSocket) -> Identity:
        """
        Read and verify the auth payload.

        Raises:
            AuthError: no frame in time, not JSON, or invalid token
        """
        try:
            raw = await asyncio.wait_for(websocket.receive_text(), timeout=self.auth_timeout)
        except asyncio.TimeoutError:
            raise AuthError("Authentication error: handshake timed out")

        try:
            payload = json.loads(raw)
        except json.JSONDecodeError:
            raise AuthError("Authentication error: invalid handshake")

        token = payload.get("token") if isinstance(payload, dict) else None
        return authenticate(token)

    async def dispatch_raw(self, connection: Connection, raw: str) -> None:
        """Parse and run one command; failures become an `error` event, never a closed socket."""
        command: Optional[str] = None
        try:
            command = _event_name(raw)
            event = parse_client_event(raw)
            await self.dispatch(connection, event)
        except RealtimeError as e:
            await connection.send(ServerEvent.ERROR, {**e.to_dict(), "command": command})
        except Exception:
            logger.exception("Command %s failed for %r", command, connection)
            await connection.send(
                ServerEvent.ERROR,
                {"message": "Internal error", "reason": "internal", "command": command},
            )

    async def dispatch(self, connection: Connection, event: ClientEvent) -> None:
        user_id = connection.user_id

        if isinstance(event, JoinClassroom):
            await self._join(connection, classroom_room(event.data))

        elif isinstance(event, LeaveClassroom):
            await self._leave(connection, classroom_room(event.data))

        elif isinstance(event, JoinGroup):
            await self._join(connection, group_room(event.data))

        elif isinstance(event, LeaveGroup):
            await self._leave(connection, group_room(event.data))

        elif isinstance(event, JoinWhiteboard):
            room = whiteboard_room(event.data)
            if not await self._join(connection, room):
                return
            await self.directory.add_whiteboard_user(event.data, user_id)
            await self._relay(connection, room, ServerEvent.USER_JOINED_WHITEBOARD, {"userId": user_id})

        elif isinstance(event, LeaveWhiteboard):
            room = whiteboard_room(event.data)
            was_member = self.connections.is_member(connection, room)
            await self._leave(connection, room)
            if was_member:
                await self.directory.remove_whiteboard_user(event.data, user_id)
                await self.bus.publish(room, ServerEvent.USER_LEFT_WHITEBOARD, {"userId": user_id})

        elif isinstance(event, Typing):
            await self._relay(
                connection,
                classroom_room(event.data.classroom_id),
                ServerEvent.USER_TYPING,
                {"userId": user_id, "username": event.data.username},
            )

        elif isinstance(event, StopTyping):
            await self._relay(
                connection,
                classroom_room(event.data.classroom_id),
                ServerEvent.USER_STOPPED_TYPING,
                {"userId": user_id},
            )

        elif isinstance(event, Draw):
            await self._relay(
                connection,
                whiteboard_room(event.data.session_id),
                ServerEvent.DRAWING,
                {"userId": user_id, "drawData": event.data.draw_data},
            )

        elif isinstance(event, CursorMove):
            await self._relay(
                connection,
                whiteboard_room(event.data.session_id),
                ServerEvent.CURSOR_POSITION,
                {"userId": user_id, "position": event.data.position},
            )

        elif isinstance(event, ClearCanvas):
            await self._relay(connection, whiteboard_room(event.data), ServerEvent.CANVAS_CLEARED, {"userId": user_id})

        elif isinstance(event, JoinAdminDashboard):
            if not await self._join(connection, ADMIN_DASHBOARD):
                return
            logger.info("📡 Admin connected to dashboard: %s", user_id)
            top = await self.scores.get_top_performers()
            await connection.send(
                ServerEvent.TOP_PERFORMERS_UPDATE,
                {"topPerformers": [p.payload() for p in top]},
            )

        elif isinstance(event, LeaveAdminDashboard):
            await self._leave(connection, ADMIN_DASHBOARD)
            logger.info("🔌 Admin left dashboard: %s", user_id)

    # ------------------------------------------------------------------

    async def _join(self, connection: Connection, room: str) -> bool:
        # A connection dropped mid-join is never acknowledged
        if not await self.connections.join(connection, room):
            return False
        await connection.send(ServerEvent.ROOM_JOINED, {"room": room})
        return True

    async def _leave(self, connection: Connection, room: str) -> None:
        self.connections.leave(connection, room)
        await connection.send(ServerEvent.ROOM_LEFT, {"room": room})

    async def _relay(self, connection: Connection, room: str, event: str, data: Any) -> None:
        """Broadcast to a room the sender has joined, excluding the sender."""
        if not self.connections.is_member(connection, room):
            await connection.send(
                ServerEvent.ERROR,
                {"message": f"Not joined to {room}", "reason": "forbidden", "command": event},
            )
            return
        await self.bus.publish(room, event, data, exclude=connection.connection_id)

    async def _on_disconnect(self, connection: Connection, rooms: Set[str]) -> None:
        for session_id in _whiteboard_sessions(rooms):
            await self.directory.remove_whiteboard_user(session_id, connection.user_id)
            await self.bus.publish(
                whiteboard_room(session_id), ServerEvent.USER_LEFT_WHITEBOARD, {"userId": connection.user_id}
            )


def _whiteboard_sessions(rooms: Set[str]) -> List[str]:
    sessions = []
    for room in rooms:
        try:
            kind, target = parse_room(room)
        except RealtimeError:
            continue
        if kind is RoomKind.WHITEBOARD:
            sessions.append(target)
    return sessions


def _event_name(raw: str) -> Optional[str]:
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError:
        return None
    return payload.get("event") if isinstance(payload, dict) else None
