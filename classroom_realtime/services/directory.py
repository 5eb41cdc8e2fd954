# classroom_realtime/services/directory.py

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Dict, Iterable, Optional

from pymongo.errors import PyMongoError

from classroom_realtime.core.database import to_object_id
from classroom_realtime.models.models import GroupRecord, UserRecord

import logging

logger = logging.getLogger(__name__)


class Directory(ABC):
    """
    Read access to users, classrooms and groups owned by the main application,
    plus the whiteboard "active users" side records.
    """

    @abstractmethod
    async def is_classroom_member(self, classroom_id: str, user_id: str) -> bool: ...

    @abstractmethod
    async def get_group(self, group_id: str) -> Optional[GroupRecord]: ...

    @abstractmethod
    async def get_user(self, user_id: str) -> Optional[UserRecord]: ...

    @abstractmethod
    async def get_users(self, user_ids: Iterable[str]) -> Dict[str, UserRecord]: ...

    @abstractmethod
    async def clear_mute(self, user_id: str) -> None: ...

    @abstractmethod
    async def add_whiteboard_user(self, session_id: str, user_id: str) -> None: ...

    @abstractmethod
    async def remove_whiteboard_user(self, session_id: str, user_id: str) -> None: ...


# ============================================================================
# MONGO DIRECTORY
# ============================================================================

class MongoDirectory(Directory):
    """
    Directory backed by the application's Mongo collections.

    Collections (as written by the main application):
        users              {_id, username, avatar, role, isActive, isBanned, isMuted, mutedUntil}
        classrooms         {_id, createdBy, members: [{user, role}], deletedAt}
        groups             {_id, name, createdBy, allStudents, members: [userId], deletedAt}
        whiteboardsessions {_id, activeUsers: [{user, joinedAt}]}
    """

    def __init__(self, db) -> None:
        self.db = db

    async def is_classroom_member(self, classroom_id: str, user_id: str) -> bool:
        uid = to_object_id(user_id)
        doc = await self.db.classrooms.find_one(
            {
                "_id": to_object_id(classroom_id),
                "deletedAt": None,
                "$or": [{"members.user": uid}, {"createdBy": uid}],
            },
            {"_id": 1},
        )
        return doc is not None

    async def get_group(self, group_id: str) -> Optional[GroupRecord]:
        doc = await self.db.groups.find_one(
            {"_id": to_object_id(group_id)},
            {"name": 1, "createdBy": 1, "allStudents": 1, "members": 1, "deletedAt": 1},
        )
        if doc is None:
            return None
        return GroupRecord(
            id=str(doc["_id"]),
            name=doc.get("name", ""),
            created_by=str(doc["createdBy"]) if doc.get("createdBy") else None,
            all_students=bool(doc.get("allStudents", False)),
            members=[str(m) for m in doc.get("members", [])],
            deleted=doc.get("deletedAt") is not None,
        )

    async def get_user(self, user_id: str) -> Optional[UserRecord]:
        users = await self.get_users([user_id])
        return users.get(str(user_id))

    async def get_users(self, user_ids: Iterable[str]) -> Dict[str, UserRecord]:
        ids = [to_object_id(u) for u in user_ids]
        if not ids:
            return {}
        cursor = self.db.users.find(
            {"_id": {"$in": ids}},
            {"username": 1, "avatar": 1, "role": 1, "isActive": 1, "isBanned": 1, "isMuted": 1, "mutedUntil": 1},
        )
        result: Dict[str, UserRecord] = {}
        async for doc in cursor:
            user = UserRecord(
                id=str(doc["_id"]),
                username=doc.get("username") or "Unknown",
                avatar=doc.get("avatar") or "",
                role=doc.get("role", "student"),
                is_active=doc.get("isActive", True),
                is_banned=doc.get("isBanned", False),
                is_muted=doc.get("isMuted", False),
                muted_until=doc.get("mutedUntil"),
            )
            result[user.id] = user
        return result

    async def clear_mute(self, user_id: str) -> None:
        await self.db.users.update_one(
            {"_id": to_object_id(user_id)},
            {"$set": {"isMuted": False, "mutedUntil": None}},
        )

    async def add_whiteboard_user(self, session_id: str, user_id: str) -> None:
        uid = to_object_id(user_id)
        try:
            await self.db.whiteboardsessions.update_one(
                {"_id": to_object_id(session_id), "activeUsers.user": {"$ne": uid}},
                {"$push": {"activeUsers": {"user": uid, "joinedAt": datetime.now(timezone.utc)}}},
            )
        except PyMongoError as e:
            logger.warning("Could not record whiteboard %s for user %s: %s", session_id, user_id, e)

    async def remove_whiteboard_user(self, session_id: str, user_id: str) -> None:
        try:
            await self.db.whiteboardsessions.update_one(
                {"_id": to_object_id(session_id)},
                {"$pull": {"activeUsers": {"user": to_object_id(user_id)}}},
            )
        except PyMongoError as e:
            logger.warning("Could not clear whiteboard %s for user %s: %s", session_id, user_id, e)
