# classroom_realtime/services/rooms.py

from __future__ import annotations

from enum import Enum
from typing import Tuple

from classroom_realtime.core.errors import AuthorizationError, ContentRejected
from classroom_realtime.models.models import Identity
from classroom_realtime.services.directory import Directory

import logging

logger = logging.getLogger(__name__)

ADMIN_DASHBOARD = "admin:dashboard"


class RoomKind(str, Enum):
    CLASSROOM = "classroom"
    GROUP = "group"
    WHITEBOARD = "whiteboard"
    USER = "user"
    ADMIN = "admin"


def classroom_room(classroom_id: str) -> str:
    return f"classroom:{classroom_id}"


def group_room(group_id: str) -> str:
    return f"group:{group_id}"


def whiteboard_room(session_id: str) -> str:
    return f"whiteboard:{session_id}"


def user_room(user_id: str) -> str:
    return f"user:{user_id}"


def parse_room(room: str) -> Tuple[RoomKind, str]:
    """
    Split a room key into its kind and target id.

    Raises:
        ContentRejected: unknown prefix or empty id
    """
    if room == ADMIN_DASHBOARD:
        return RoomKind.ADMIN, "dashboard"

    prefix, sep, target = room.partition(":")
    if not sep or not target:
        raise ContentRejected(f"Malformed room id: {room!r}")
    try:
        kind = RoomKind(prefix)
    except ValueError:
        raise ContentRejected(f"Unknown room kind: {prefix!r}")
    if kind is RoomKind.ADMIN:
        raise ContentRejected(f"Unknown admin room: {room!r}")
    return kind, target


# ============================================================================
# ROOM AUTHORIZATION
# ============================================================================

class RoomAuthorizer:
    """
    Decides whether an identity may join (or post into) a room.

    Membership is looked up in the directory on every call. Nothing is cached,
    so a user removed from a classroom loses access on their next join or post.
    """

    def __init__(self, directory: Directory) -> None:
        self.directory = directory

    async def authorize(self, identity: Identity, room: str) -> None:
        kind, target = parse_room(room)

        if kind is RoomKind.WHITEBOARD:
            return

        if kind is RoomKind.USER:
            if target != identity.user_id:
                raise AuthorizationError("Cannot join another user's channel")
            return

        if kind is RoomKind.ADMIN:
            if not identity.is_elevated:
                raise AuthorizationError("Admin dashboard requires an admin or teacher role")
            return

        if kind is RoomKind.CLASSROOM:
            if not await self.directory.is_classroom_member(target, identity.user_id):
                logger.info("Denied classroom %s to user %s", target, identity.user_id)
                raise AuthorizationError("Not a member of this classroom")
            return

        if kind is RoomKind.GROUP:
            if not await self.can_access_group(identity, target):
                logger.info("Denied group %s to user %s", target, identity.user_id)
                raise AuthorizationError("Not authorized to access this group")
            return

    async def can_access_group(self, identity: Identity, group_id: str) -> bool:
        group = await self.directory.get_group(group_id)
        if group is None or group.deleted:
            return False
        if identity.is_elevated:
            return True
        if group.created_by == identity.user_id:
            return True
        if group.all_students and identity.role == "student":
            return True
        return identity.user_id in group.members
