# classroom_realtime/services/chat_service.py

from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional, Sequence, Tuple

from fastapi import UploadFile
import logging

from classroom_realtime.core.errors import AuthorizationError, ContentRejected, NotFound, PersistenceFailure, RateLimited
from classroom_realtime.models.events import ServerEvent
from classroom_realtime.models.models import HistoryPage, Identity, Message, MessageKind, RateLimitResult
from classroom_realtime.services.directory import Directory
from classroom_realtime.services.fanout import FanOutBus
from classroom_realtime.services.message_store import MessageStore, room_for
from classroom_realtime.services.rate_limiter import RateLimiter
from classroom_realtime.services.rooms import RoomAuthorizer
from classroom_realtime.services.spam_filter import SpamFilter
from classroom_realtime.services.uploads import AttachmentUploader

logger = logging.getLogger(__name__)

MODERATOR_ROLES = ("admin", "teacher", "moderator")

NEW_MESSAGE_EVENTS = {
    "discussion": ServerEvent.NEW_MESSAGE,
    "group": ServerEvent.NEW_GROUP_MESSAGE,
}

UPLOAD_FOLDERS = {
    "discussion": "discussions",
    "group": "groups",
}


class ChatService:
    """
    Room-scoped message API: admission control, persistence, then fan-out.

    Post pipeline:
        1. Re-check room authorization (never cached between posts)
        2. Reject muted / banned authors
        3. Require text or at least one attachment
        4. Spam score check            -> ContentRejected(reason="spam")
        5. Sliding window rate limit   -> RateLimited(retry_after_ms)
        6. Upload attachments, persist -> PersistenceFailure propagates, rate slot released
        7. Publish newMessage / newGroupMessage / newReply; bus errors are absorbed

    Replies run the same pipeline inside the parent's classroom. Reactions
    are toggles on an existing discussion message and skip steps 2-6.
    """

    def __init__(
        self,
        authorizer: RoomAuthorizer,
        directory: Directory,
        store: MessageStore,
        spam_filter: SpamFilter,
        rate_limiter: RateLimiter,
        bus: FanOutBus,
        uploader: Optional[AttachmentUploader] = None,
        page_size: int = 50,
    ) -> None:
        self.authorizer = authorizer
        self.directory = directory
        self.store = store
        self.spam_filter = spam_filter
        self.rate_limiter = rate_limiter
        self.bus = bus
        self.uploader = uploader
        self.page_size = page_size
        self.accepted_count = 0

    async def post_message(
        self,
        identity: Identity,
        kind: MessageKind,
        room_ref: str,
        content: Optional[str],
        files: Sequence[UploadFile] = (),
        mentions: Optional[Sequence[str]] = None,
    ) -> Message:
        room = room_for(kind, room_ref)
        text, files, rate = await self._admit(identity, room, content, files)
        message = await self._persist(identity, kind, room_ref, text, files, rate, mentions=mentions)
        await self._publish(room, NEW_MESSAGE_EVENTS[kind], message)
        return message

    async def reply_to_message(
        self,
        identity: Identity,
        parent_id: str,
        content: Optional[str],
        mentions: Optional[Sequence[str]] = None,
    ) -> Message:
        """
        Post a threaded reply to a classroom discussion message.

        The reply lives in the parent's classroom and goes through the same
        admission checks as a top-level post; members receive `newReply`.
        """
        parent = await self._get_discussion(parent_id)
        text, _, rate = await self._admit(identity, parent.room, content)
        message = await self._persist(
            identity, "discussion", parent.room_ref, text, [], rate, parent_id=parent.id, mentions=mentions
        )
        await self._publish(parent.room, ServerEvent.NEW_REPLY, message)
        return message

    async def react_to_message(self, identity: Identity, message_id: str, emoji: str) -> Message:
        """Toggle the caller's `emoji` reaction and push the new reaction list to the classroom."""
        message = await self._get_discussion(message_id)
        await self.authorizer.authorize(identity, message.room)

        message = await self.store.toggle_reaction(message.id, identity.user_id, emoji)
        try:
            await self.bus.publish(
                message.room,
                ServerEvent.MESSAGE_REACTION,
                {"messageId": message.id, "reactions": [r.payload() for r in message.reactions]},
            )
        except Exception as e:
            logger.error("Fan-out of reaction on %s failed: %s", message.id, e)
        return message

    async def history(
        self,
        identity: Identity,
        kind: MessageKind,
        room_ref: str,
        page: int = 1,
        limit: Optional[int] = None,
        parent_id: Optional[str] = None,
    ) -> HistoryPage:
        await self.authorizer.authorize(identity, room_for(kind, room_ref))
        limit = self.page_size if limit is None else limit
        return await self.store.find(kind, room_ref, page=page, limit=limit, parent_id=parent_id)

    async def delete_message(self, identity: Identity, message_id: str, reason: str = "") -> Message:
        """Soft-delete (moderation). The record stays in the store with its deletion metadata."""
        if identity.role not in MODERATOR_ROLES:
            raise AuthorizationError("Only moderators can delete messages")

        message = await self.store.soft_delete(message_id, identity.user_id, reason)
        logger.info("🗑 Message %s deleted by %s", message_id, identity.user_id)

        try:
            await self.bus.publish(message.room, ServerEvent.MESSAGE_DELETED, {"messageId": message.id, "room": message.room})
        except Exception as e:
            logger.error("Fan-out of deletion %s failed: %s", message_id, e)
        return message

    async def report_message(self, identity: Identity, message_id: str, reason: str = "") -> Message:
        message = await self.store.get(message_id)
        if message is None or message.is_deleted:
            raise NotFound("Message not found")
        await self.authorizer.authorize(identity, message.room)
        return await self.store.flag(message_id, identity.user_id, reason)

    # ------------------------------------------------------------------

    async def _admit(
        self,
        identity: Identity,
        room: str,
        content: Optional[str],
        files: Sequence[UploadFile] = (),
    ) -> Tuple[str, List[UploadFile], RateLimitResult]:
        """Steps 1-5 of the post pipeline. Returns the trimmed text, the files and the rate slot taken."""
        await self.authorizer.authorize(identity, room)
        await self._check_can_post(identity)

        text = (content or "").strip()
        files = list(files or [])
        if not text and not files:
            raise ContentRejected("Message content or attachment is required")
        if files and self.uploader is None:
            raise ContentRejected("Attachments are not supported")

        if text:
            spam = self.spam_filter.check_content_spam(text)
            if spam.is_spam:
                logger.info("🚫 Spam from %s in %s (score=%d)", identity.user_id, room, spam.score)
                raise ContentRejected("Message flagged as spam", reason="spam")
            suspicious = self.spam_filter.detect_suspicious_content(text)
            if suspicious.is_suspicious:
                logger.info("Suspicious content from %s in %s: %s", identity.user_id, room, suspicious.reasons.payload())

        rate = await self.rate_limiter.check_rate_limit(identity.user_id)
        if rate.limited:
            logger.info("⏳ Rate limited %s for %sms", identity.user_id, rate.retry_after_ms)
            raise RateLimited(rate.retry_after_ms)
        return text, files, rate

    async def _persist(
        self,
        identity: Identity,
        kind: MessageKind,
        room_ref: str,
        text: str,
        files: List[UploadFile],
        rate: RateLimitResult,
        parent_id: Optional[str] = None,
        mentions: Optional[Sequence[str]] = None,
    ) -> Message:
        try:
            attachments = await self.uploader.upload(files, UPLOAD_FOLDERS[kind]) if files else []
            message = await self.store.create(
                kind,
                room_ref,
                identity.user_id,
                text,
                attachments,
                parent_id=parent_id,
                mentions=_clean_mentions(mentions),
            )
        except PersistenceFailure:
            # Nothing was stored, so the attempt does not count against the sender
            await self.rate_limiter.release(identity.user_id, rate.attempt_id)
            raise

        message.author_name = await self._username(identity.user_id)
        self.accepted_count += 1
        return message

    async def _publish(self, room: str, event: str, message: Message) -> None:
        try:
            await self.bus.publish(room, event, message.payload())
        except Exception as e:
            # Already persisted: clients reconcile from history
            logger.error("Fan-out of message %s failed: %s", message.id, e)

    async def _get_discussion(self, message_id: str) -> Message:
        message = await self.store.get(message_id)
        if message is None or message.is_deleted or message.kind != "discussion":
            raise NotFound("Message not found")
        return message

    async def _check_can_post(self, identity: Identity) -> None:
        user = await self.directory.get_user(identity.user_id)
        if user is None:
            return

        if user.is_banned:
            raise AuthorizationError("Your account has been banned")

        if user.is_muted:
            now = datetime.now(timezone.utc)
            if user.muted_until is None:
                raise AuthorizationError("You are muted")
            if now < user.muted_until:
                raise AuthorizationError(f"You are muted until {user.muted_until.isoformat()}")
            # Mute period has expired
            await self.directory.clear_mute(identity.user_id)

    async def _username(self, user_id: str) -> Optional[str]:
        try:
            user = await self.directory.get_user(user_id)
        except Exception as e:
            logger.warning("Username lookup failed for %s: %s", user_id, e)
            return None
        return user.username if user else None


def _clean_mentions(mentions: Optional[Sequence[str]]) -> List[str]:
    """Mentioned user ids, blanks dropped, first occurrence kept."""
    seen: List[str] = []
    for user_id in mentions or ():
        user_id = str(user_id).strip()
        if user_id and user_id not in seen:
            seen.append(user_id)
    return seen
