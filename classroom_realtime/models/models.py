# classroom_realtime/models/models.py
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

Role = Literal["student", "teacher", "admin", "moderator"]
MessageKind = Literal["discussion", "group"]

ELEVATED_ROLES = ("admin", "teacher")


class WireModel(BaseModel):
    """Snake case in Python, camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def payload(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class Identity(WireModel):
    user_id: str
    role: Role

    @property
    def is_elevated(self) -> bool:
        return self.role in ELEVATED_ROLES


class Attachment(WireModel):
    url: str
    file_name: str
    file_type: str = "application/octet-stream"
    public_id: Optional[str] = None


class Reaction(WireModel):
    user: str
    emoji: str
    created_at: Optional[datetime] = None


class Message(WireModel):
    id: str
    room: str
    kind: MessageKind
    room_ref: str
    author: str
    author_name: Optional[str] = None
    content: str = ""
    attachments: List[Attachment] = Field(default_factory=list)
    # Discussion threading: id of the message this one replies to
    parent_id: Optional[str] = None
    mentions: List[str] = Field(default_factory=list)
    reactions: List[Reaction] = Field(default_factory=list)
    created_at: datetime
    is_deleted: bool = False
    flagged: bool = False
    deleted_by: Optional[str] = None
    deletion_reason: Optional[str] = None
    deleted_at: Optional[datetime] = None


class HistoryPage(WireModel):
    messages: List[Message]
    total: int
    total_pages: int
    current_page: int


class GroupRecord(WireModel):
    id: str
    name: str = ""
    created_by: Optional[str] = None
    all_students: bool = False
    members: List[str] = Field(default_factory=list)
    deleted: bool = False


class UserRecord(WireModel):
    id: str
    username: str = "Unknown"
    avatar: str = ""
    role: Role = "student"
    is_active: bool = True
    is_banned: bool = False
    is_muted: bool = False
    muted_until: Optional[datetime] = None


class SpamReasons(WireModel):
    spam_keywords: bool = False
    excessive_caps: bool = False
    excessive_links: bool = False
    excessive_emojis: bool = False


class SpamCheckResult(WireModel):
    is_spam: bool
    score: int
    reasons: SpamReasons


class SuspiciousReasons(WireModel):
    repeated_chars: bool = False
    too_short: bool = False
    only_special_chars: bool = False


class SuspiciousCheckResult(WireModel):
    is_suspicious: bool
    reasons: SuspiciousReasons


class RateLimitResult(WireModel):
    limited: bool
    retry_after_ms: Optional[int] = None
    # Handle for RateLimiter.release; never sent to clients
    attempt_id: Optional[str] = Field(default=None, exclude=True)


class TopPerformer(WireModel):
    user_id: str
    username: str
    avatar: str = ""
    score: float


class RecentActivity(WireModel):
    username: str
    points: float
    reason: str


class TopPerformersUpdate(WireModel):
    top_performers: List[TopPerformer]
    recent_activity: Optional[RecentActivity] = None


class Envelope(BaseModel):
    """Unit published on the fan-out bus: a room-scoped event, never a diff."""

    origin: str
    room: str
    event: str
    data: Any = None
    exclude: Optional[str] = None


# ============================================================================
# REST REQUEST BODIES
# ============================================================================

class ScoreEventRequest(WireModel):
    user_id: str
    points: float = Field(gt=0)
    reason: str = ""


class NotificationRequest(WireModel):
    user_id: str
    notification: Dict[str, Any]


class AnnouncementRequest(WireModel):
    user_ids: List[str]
    announcement: Dict[str, Any]


class ModerationRequest(WireModel):
    reason: str = ""


class ReplyRequest(WireModel):
    content: str
    mentions: List[str] = Field(default_factory=list)


class ReactionRequest(WireModel):
    emoji: str = Field(min_length=1, max_length=32)
