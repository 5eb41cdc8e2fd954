# classroom_realtime/services/message_store.py

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from bson import ObjectId
from pymongo import DESCENDING, ReturnDocument
from pymongo.errors import PyMongoError
import logging

from classroom_realtime.core.database import to_object_id
from classroom_realtime.core.errors import NotFound, PersistenceFailure
from classroom_realtime.models.models import Attachment, HistoryPage, Message, MessageKind, Reaction
from classroom_realtime.services.rooms import classroom_room, group_room

logger = logging.getLogger(__name__)


def room_for(kind: MessageKind, room_ref: str) -> str:
    return classroom_room(room_ref) if kind == "discussion" else group_room(room_ref)


class MessageStore(ABC):
    """
    Append/query access to the durable message log.

    Messages are immutable after creation except for the soft-delete,
    moderation and reaction fields. Canonical order is creation time, ties broken by
    insertion order.
    """

    @abstractmethod
    async def create(
        self,
        kind: MessageKind,
        room_ref: str,
        author_id: str,
        content: str,
        attachments: List[Attachment],
        parent_id: Optional[str] = None,
        mentions: Sequence[str] = (),
    ) -> Message: ...

    @abstractmethod
    async def find(
        self,
        kind: MessageKind,
        room_ref: str,
        page: int = 1,
        limit: int = 50,
        parent_id: Optional[str] = None,
    ) -> HistoryPage:
        """
        A page of non-deleted history, oldest first. Page 1 is the most recent window.

        Without `parent_id` only top-level messages are returned; with it, the
        replies to that message.
        """

    @abstractmethod
    async def get(self, message_id: str) -> Optional[Message]: ...

    @abstractmethod
    async def soft_delete(self, message_id: str, deleted_by: str, reason: str = "") -> Message: ...

    @abstractmethod
    async def flag(self, message_id: str, user_id: str, reason: str = "") -> Message: ...

    @abstractmethod
    async def toggle_reaction(self, message_id: str, user_id: str, emoji: str) -> Message:
        """Add the user's `emoji` reaction, or remove it if already present."""


# ============================================================================
# MONGO MESSAGE STORE
# ============================================================================

class MongoMessageStore(MessageStore):
    """
    Message log in the application's `discussions` and `groupmessages`
    collections. Every driver error becomes PersistenceFailure so the post
    path can surface it.
    """

    COLLECTIONS: Dict[str, str] = {"discussion": "discussions", "group": "groupmessages"}
    ROOM_FIELDS: Dict[str, str] = {"discussion": "classroom", "group": "group"}

    def __init__(self, db) -> None:
        self.db = db

    def _collection(self, kind: MessageKind):
        return self.db[self.COLLECTIONS[kind]]

    async def create(self, kind, room_ref, author_id, content, attachments, parent_id=None, mentions=()) -> Message:
        now = datetime.now(timezone.utc)
        doc: Dict[str, Any] = {
            self.ROOM_FIELDS[kind]: to_object_id(room_ref),
            "author": to_object_id(author_id),
            "content": content,
            "attachments": [
                {"url": a.url, "fileName": a.file_name, "fileType": a.file_type, "publicId": a.public_id}
                for a in attachments
            ],
            "isDeleted": False,
            "flagged": False,
            "createdAt": now,
            "updatedAt": now,
        }
        if kind == "discussion":
            doc["parentId"] = to_object_id(parent_id) if parent_id else None
            doc["mentions"] = [to_object_id(m) for m in mentions]
            doc["reactions"] = []
        try:
            result = await self._collection(kind).insert_one(doc)
        except PyMongoError as e:
            logger.error("Failed to persist %s message in %s: %s", kind, room_ref, e)
            raise PersistenceFailure("Message could not be saved") from e

        doc["_id"] = result.inserted_id
        return self._to_message(kind, doc)

    async def find(self, kind, room_ref, page=1, limit=50, parent_id=None) -> HistoryPage:
        page = max(1, int(page))
        limit = max(1, int(limit))
        query = {self.ROOM_FIELDS[kind]: to_object_id(room_ref), "isDeleted": False}
        if kind == "discussion":
            # null also matches documents written before threading existed
            query["parentId"] = to_object_id(parent_id) if parent_id else None

        try:
            collection = self._collection(kind)
            cursor = (
                collection.find(query)
                .sort([("createdAt", DESCENDING), ("_id", DESCENDING)])
                .skip((page - 1) * limit)
                .limit(limit)
            )
            docs = await cursor.to_list(length=limit)
            total = await collection.count_documents(query)
        except PyMongoError as e:
            logger.error("Failed to load %s history for %s: %s", kind, room_ref, e)
            raise PersistenceFailure("Message history unavailable") from e

        docs.reverse()  # oldest first
        return HistoryPage(
            messages=[self._to_message(kind, d) for d in docs],
            total=total,
            total_pages=math.ceil(total / limit) if total else 0,
            current_page=page,
        )

    async def get(self, message_id: str) -> Optional[Message]:
        if not ObjectId.is_valid(message_id):
            return None
        for kind in self.COLLECTIONS:
            try:
                doc = await self._collection(kind).find_one({"_id": ObjectId(message_id)})
            except PyMongoError as e:
                raise PersistenceFailure("Message lookup failed") from e
            if doc is not None:
                return self._to_message(kind, doc)
        return None

    async def soft_delete(self, message_id, deleted_by, reason="") -> Message:
        return await self._update(
            message_id,
            {
                "$set": {
                    "isDeleted": True,
                    "deletedBy": to_object_id(deleted_by),
                    "deletionReason": reason,
                    "deletedAt": datetime.now(timezone.utc),
                }
            },
        )

    async def flag(self, message_id, user_id, reason="") -> Message:
        return await self._update(
            message_id,
            {
                "$set": {"flagged": True},
                "$push": {
                    "flaggedBy": {
                        "user": to_object_id(user_id),
                        "reason": reason,
                        "flaggedAt": datetime.now(timezone.utc),
                    }
                },
            },
        )

    async def toggle_reaction(self, message_id, user_id, emoji) -> Message:
        message = await self.get(message_id)
        if message is None:
            raise NotFound("Message not found")

        collection = self._collection(message.kind)
        oid = ObjectId(message_id)
        match = {"user": to_object_id(user_id), "emoji": emoji}
        try:
            # Remove if this user already reacted with this emoji
            doc = await collection.find_one_and_update(
                {"_id": oid, "reactions": {"$elemMatch": match}},
                {"$pull": {"reactions": match}},
                return_document=ReturnDocument.AFTER,
            )
            if doc is None:
                doc = await collection.find_one_and_update(
                    {"_id": oid, "reactions": {"$not": {"$elemMatch": match}}},
                    {"$push": {"reactions": {**match, "createdAt": datetime.now(timezone.utc)}}},
                    return_document=ReturnDocument.AFTER,
                )
            if doc is None:
                # A concurrent toggle added the same reaction first
                doc = await collection.find_one({"_id": oid})
        except PyMongoError as e:
            raise PersistenceFailure("Reaction update failed") from e

        if doc is None:
            raise NotFound("Message not found")
        return self._to_message(message.kind, doc)

    async def _update(self, message_id: str, update: dict) -> Message:
        message = await self.get(message_id)
        if message is None:
            raise NotFound("Message not found")
        try:
            doc = await self._collection(message.kind).find_one_and_update(
                {"_id": ObjectId(message_id)}, update, return_document=ReturnDocument.AFTER
            )
        except PyMongoError as e:
            raise PersistenceFailure("Message update failed") from e
        return self._to_message(message.kind, doc)

    def _to_message(self, kind: MessageKind, doc: dict) -> Message:
        room_ref = str(doc[self.ROOM_FIELDS[kind]])
        author = doc.get("author")
        author_name = None
        # author may be populated by the main application
        if isinstance(author, dict):
            author_name = author.get("username")
            author = author.get("_id")

        parent = doc.get("parentId")
        if isinstance(parent, dict):
            parent = parent.get("_id")

        return Message(
            id=str(doc["_id"]),
            room=room_for(kind, room_ref),
            kind=kind,
            room_ref=room_ref,
            author=str(author),
            author_name=author_name,
            content=doc.get("content", ""),
            attachments=[
                Attachment(
                    url=a.get("url", ""),
                    file_name=a.get("fileName", ""),
                    file_type=a.get("fileType") or "application/octet-stream",
                    public_id=a.get("publicId"),
                )
                for a in doc.get("attachments", [])
            ],
            parent_id=str(parent) if parent else None,
            mentions=[str(m.get("_id") if isinstance(m, dict) else m) for m in doc.get("mentions", [])],
            reactions=[
                Reaction(user=str(r.get("user")), emoji=r.get("emoji", ""), created_at=r.get("createdAt"))
                for r in doc.get("reactions", [])
            ],
            created_at=doc.get("createdAt") or datetime.now(timezone.utc),
            is_deleted=doc.get("isDeleted", False),
            flagged=doc.get("flagged", False),
            deleted_by=str(doc["deletedBy"]) if doc.get("deletedBy") else None,
            deletion_reason=doc.get("deletionReason"),
            deleted_at=doc.get("deletedAt"),
        )
