# classroom_realtime/services/connection_manager.py

from __future__ import annotations

import asyncio
import uuid
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from fastapi import WebSocket
import logging

from classroom_realtime.models.events import frame
from classroom_realtime.models.models import Identity
from classroom_realtime.services.rooms import RoomAuthorizer, user_room

logger = logging.getLogger(__name__)

DisconnectHook = Callable[["Connection", Set[str]], Awaitable[None]]

# Close code sent to a client whose connection was dropped by the server
DROPPED_CLOSE_CODE = 1011


class Connection:
    """
    One authenticated transport session.

    The identity is fixed at handshake time and is the only identity any
    downstream check trusts for this connection.
    """

    def __init__(self, websocket: WebSocket, identity: Identity, connection_id: Optional[str] = None) -> None:
        self.connection_id = connection_id or uuid.uuid4().hex
        self.websocket = websocket
        self.identity = identity
        self.rooms: Set[str] = set()
        self.closed = False

    @property
    def user_id(self) -> str:
        return self.identity.user_id

    async def send(self, event: str, data: Any = None) -> None:
        await self.websocket.send_json(frame(event, data))

    async def close(self, code: int = 1000, reason: Optional[str] = None) -> None:
        """Close the transport once. A socket that is already broken may refuse the close frame."""
        if self.closed:
            return
        self.closed = True
        try:
            await self.websocket.close(code=code, reason=reason)
        except Exception as e:
            logger.debug("Close of %r after failure raised %s", self, type(e).__name__)

    def __repr__(self) -> str:
        return f"<Connection {self.connection_id[:8]} user={self.user_id}>"


# ============================================================================
# PRESENCE / ROOM REGISTRY
# ============================================================================

class ConnectionManager:
    """
    Tracks live connections of this process and which rooms each one is in.

    Data Structures:
        rooms: Maps room key -> Set of Connections joined to it
               Example: {"classroom:abc": {conn1, conn2}}

        connections: Maps connection_id -> Connection

    Delivery through this class is local to the process. Reaching connections
    held by other processes is the fan-out bus's job; the bus calls `deliver`
    on every process that receives an envelope.

    All mutation happens on the event loop thread, so no locking is needed.
    """

    def __init__(self, authorizer: RoomAuthorizer, send_timeout: float = 5.0) -> None:
        # Map: room key -> Set[Connection]
        self.rooms: Dict[str, Set[Connection]] = {}

        # Map: connection_id -> Connection
        self.connections: Dict[str, Connection] = {}

        self.authorizer = authorizer
        self.send_timeout = send_timeout
        self._disconnect_hooks: List[DisconnectHook] = []

    def add_disconnect_hook(self, hook: DisconnectHook) -> None:
        """Register a coroutine run with each connection, and the rooms it was in, as it is torn down."""
        self._disconnect_hooks.append(hook)

    @property
    def connection_count(self) -> int:
        return len(self.connections)

    def connect(self, websocket: WebSocket, identity: Identity) -> Connection:
        """
        Register an authenticated websocket.

        The connection is placed into its personal `user:<id>` room so
        notifications can target it without the client asking.
        """
        connection = Connection(websocket, identity)
        self.connections[connection.connection_id] = connection
        self._add(connection, user_room(identity.user_id))

        logger.info("✓ User %s connected. Total: %d", identity.user_id, len(self.connections))
        return connection

    async def disconnect(self, connection: Connection) -> None:
        """
        Remove a connection from every room and run the disconnect hooks.

        Safe to call more than once and from the delivery path.
        """
        if self.connections.pop(connection.connection_id, None) is None:
            return

        rooms = set(connection.rooms)
        for room in rooms:
            self._remove(connection, room)

        for hook in self._disconnect_hooks:
            try:
                await hook(connection, rooms)
            except Exception:
                logger.exception("Disconnect hook failed for %r", connection)

        logger.info("✗ User %s disconnected. Total: %d", connection.user_id, len(self.connections))

    async def join(self, connection: Connection, room: str) -> bool:
        """
        Add a connection to a room after checking it is allowed in.

        Returns:
            False if the connection was torn down before it could be added

        Raises:
            AuthorizationError: the identity is not authorized for the room
            ContentRejected: the room key is malformed
        """
        await self.authorizer.authorize(connection.identity, room)

        # The connection may have closed while authorization was awaited
        if connection.connection_id not in self.connections:
            return False

        self._add(connection, room)
        logger.info("→ %s joined '%s' (%d members)", connection.user_id, room, len(self.rooms[room]))
        return True

    def leave(self, connection: Connection, room: str) -> None:
        """Remove a connection from a room. No-op if it was not a member."""
        if room not in connection.rooms:
            return
        self._remove(connection, room)
        logger.info("← %s left '%s'", connection.user_id, room)

    def is_member(self, connection: Connection, room: str) -> bool:
        return connection in self.rooms.get(room, ())

    def members(self, room: str) -> Set[Connection]:
        return set(self.rooms.get(room, ()))

    async def deliver(self, room: str, event: str, data: Any = None, exclude: Optional[str] = None) -> int:
        """
        Send an event to every local connection joined to `room`.

        Args:
            room: Target room key
            event: Server event name
            data: JSON-serializable payload
            exclude: connection_id to skip (the sender of a relay event)

        Returns:
            Number of connections the event was written to

        Sends run concurrently and each is bounded by `send_timeout`; a slow
        or broken connection is dropped without holding up the others.
        """
        targets = [c for c in self.rooms.get(room, ()) if c.connection_id != exclude]
        if not targets:
            logger.debug("[routing] Skipped %s: room=%s has 0 local subscribers", event, room)
            return 0

        logger.info("📨 Delivering %s to room %s: %d clients", event, room, len(targets))

        results = await asyncio.gather(
            *(self._send(connection, event, data) for connection in targets),
            return_exceptions=True,
        )

        delivered = 0
        for connection, result in zip(targets, results):
            if isinstance(result, BaseException):
                logger.warning("Send to %r failed (%s); dropping connection", connection, type(result).__name__)
                await self.drop(connection)
            else:
                delivered += 1
        return delivered

    async def drop(self, connection: Connection, code: int = DROPPED_CLOSE_CODE) -> None:
        """Unregister a connection the server gave up on and close its socket."""
        await self.disconnect(connection)
        await connection.close(code=code)

    def get_rooms_info(self) -> Dict[str, dict]:
        """
        Get information about all active rooms with members.

        Used by the /metrics endpoint and for debugging.
        """
        return {room: {"member_count": len(members)} for room, members in self.rooms.items()}

    # ------------------------------------------------------------------

    async def _send(self, connection: Connection, event: str, data: Any) -> None:
        await asyncio.wait_for(connection.send(event, data), timeout=self.send_timeout)

    def _add(self, connection: Connection, room: str) -> None:
        self.rooms.setdefault(room, set()).add(connection)
        connection.rooms.add(room)

    def _remove(self, connection: Connection, room: str) -> None:
        connection.rooms.discard(room)
        members = self.rooms.get(room)
        if members is None:
            return
        members.discard(connection)
        # Clean up empty rooms from memory
        if not members:
            del self.rooms[room]
