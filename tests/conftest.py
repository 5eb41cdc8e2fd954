"""
Classroom Realtime - Test Fixtures
==================================

Shared fakes and fixtures for all tests.
"""

import asyncio
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from classroom_realtime.core import state
from classroom_realtime.core.config import Settings
from classroom_realtime.core.errors import NotFound, PersistenceFailure
from classroom_realtime.models.models import GroupRecord, HistoryPage, Identity, Message, Reaction, UserRecord
from classroom_realtime.services.auth_service import create_token
from classroom_realtime.services.connection_manager import ConnectionManager
from classroom_realtime.services.directory import Directory
from classroom_realtime.services.message_store import MessageStore, room_for
from classroom_realtime.services.rooms import RoomAuthorizer


# =============================================================================
# Fakes
# =============================================================================

class FakeWebSocket:
    """Records every frame sent to it. Set `fail` to make sends raise."""

    def __init__(self, fail: bool = False):
        self.sent: List[dict] = []
        self.fail = fail
        self.closed_with: Optional[int] = None

    async def send_json(self, data):
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(data)

    async def close(self, code=1000, reason=None):
        self.closed_with = code

    def events(self, name: Optional[str] = None) -> List[dict]:
        return [f for f in self.sent if name is None or f["event"] == name]


class FakeRedis:
    """Sorted sets, TTLs and publish, enough for the leaderboard and bus paths."""

    def __init__(self):
        self.zsets: Dict[str, Dict[str, float]] = {}
        self.ttls: Dict[str, int] = {}
        self.published: List[tuple] = []
        self.fail = False

    def _check(self):
        if self.fail:
            raise RedisConnectionError("redis down")

    async def zincrby(self, key, amount, member):
        self._check()
        zset = self.zsets.setdefault(key, {})
        zset[member] = zset.get(member, 0.0) + float(amount)
        return zset[member]

    async def expire(self, key, seconds):
        self._check()
        self.ttls[key] = seconds
        return True

    async def zrevrange(self, key, start, end, withscores=False):
        self._check()
        items = sorted(self.zsets.get(key, {}).items(), key=lambda kv: (kv[1], kv[0]), reverse=True)
        stop = None if end == -1 else end + 1
        items = items[start:stop]
        return items if withscores else [member for member, _ in items]

    async def publish(self, channel, payload):
        self._check()
        self.published.append((channel, payload))
        return 1


class FakeDirectory(Directory):
    def __init__(self):
        self.classrooms: Dict[str, set] = {}
        self.groups: Dict[str, GroupRecord] = {}
        self.users: Dict[str, UserRecord] = {}
        self.whiteboards: Dict[str, set] = {}
        self.cleared_mutes: List[str] = []

    def add_user(self, user_id: str, username: str, **fields) -> UserRecord:
        user = UserRecord(id=user_id, username=username, **fields)
        self.users[user_id] = user
        return user

    async def is_classroom_member(self, classroom_id: str, user_id: str) -> bool:
        return user_id in self.classrooms.get(classroom_id, set())

    async def get_group(self, group_id: str) -> Optional[GroupRecord]:
        return self.groups.get(group_id)

    async def get_user(self, user_id: str) -> Optional[UserRecord]:
        return self.users.get(user_id)

    async def get_users(self, user_ids: Iterable[str]) -> Dict[str, UserRecord]:
        return {u: self.users[u] for u in user_ids if u in self.users}

    async def clear_mute(self, user_id: str) -> None:
        self.cleared_mutes.append(user_id)
        user = self.users[user_id]
        self.users[user_id] = user.model_copy(update={"is_muted": False, "muted_until": None})

    async def add_whiteboard_user(self, session_id: str, user_id: str) -> None:
        self.whiteboards.setdefault(session_id, set()).add(user_id)

    async def remove_whiteboard_user(self, session_id: str, user_id: str) -> None:
        self.whiteboards.get(session_id, set()).discard(user_id)


class InMemoryMessageStore(MessageStore):
    def __init__(self):
        self.messages: List[Message] = []
        self.fail = False

    async def create(self, kind, room_ref, author_id, content, attachments, parent_id=None, mentions=()) -> Message:
        if self.fail:
            raise PersistenceFailure("Message could not be saved")
        message = Message(
            id=f"{len(self.messages) + 1:024x}",
            room=room_for(kind, room_ref),
            kind=kind,
            room_ref=room_ref,
            author=author_id,
            content=content,
            attachments=attachments,
            parent_id=parent_id,
            mentions=list(mentions),
            created_at=datetime.now(timezone.utc),
        )
        self.messages.append(message)
        return message

    async def find(self, kind, room_ref, page=1, limit=50, parent_id=None) -> HistoryPage:
        matching = [
            m for m in self.messages
            if m.kind == kind and m.room_ref == room_ref and not m.is_deleted and m.parent_id == parent_id
        ]
        newest_first = list(reversed(matching))
        window = newest_first[(page - 1) * limit:page * limit]
        window.reverse()
        total = len(matching)
        return HistoryPage(
            messages=window,
            total=total,
            total_pages=-(-total // limit) if total else 0,
            current_page=page,
        )

    async def get(self, message_id: str) -> Optional[Message]:
        return next((m for m in self.messages if m.id == message_id), None)

    async def soft_delete(self, message_id, deleted_by, reason="") -> Message:
        return self._update(
            message_id,
            is_deleted=True,
            deleted_by=deleted_by,
            deletion_reason=reason,
            deleted_at=datetime.now(timezone.utc),
        )

    async def flag(self, message_id, user_id, reason="") -> Message:
        return self._update(message_id, flagged=True)

    async def toggle_reaction(self, message_id, user_id, emoji) -> Message:
        message = await self.get(message_id)
        if message is None:
            raise NotFound("Message not found")
        mine = [r for r in message.reactions if r.user == user_id and r.emoji == emoji]
        if mine:
            reactions = [r for r in message.reactions if r not in mine]
        else:
            reactions = message.reactions + [Reaction(user=user_id, emoji=emoji)]
        return self._update(message_id, reactions=reactions)

    def _update(self, message_id: str, **fields) -> Message:
        for i, message in enumerate(self.messages):
            if message.id == message_id:
                self.messages[i] = message.model_copy(update=fields)
                return self.messages[i]
        raise NotFound("Message not found")


# =============================================================================
# Identity Fixtures
# =============================================================================

@pytest.fixture
def student():
    return Identity(user_id="student-1", role="student")


@pytest.fixture
def other_student():
    return Identity(user_id="student-2", role="student")


@pytest.fixture
def teacher():
    return Identity(user_id="teacher-1", role="teacher")


@pytest.fixture
def directory(student, other_student, teacher):
    """Classroom c1 holds both students and the teacher; group g1 holds student-1 only."""
    d = FakeDirectory()
    d.classrooms["c1"] = {student.user_id, other_student.user_id, teacher.user_id}
    d.groups["g1"] = GroupRecord(id="g1", name="Lab group", created_by=teacher.user_id, members=[student.user_id])
    d.add_user(student.user_id, "alice")
    d.add_user(other_student.user_id, "bob")
    d.add_user(teacher.user_id, "mrs-smith", role="teacher")
    return d


@pytest.fixture
def store():
    return InMemoryMessageStore()


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def connections(directory):
    return ConnectionManager(RoomAuthorizer(directory), send_timeout=1.0)


# =============================================================================
# Application Fixtures
# =============================================================================

@pytest.fixture
def test_settings(tmp_path):
    s = Settings()
    s.PUB_SUB_SERVICE = "local"
    s.RATE_LIMIT_BACKEND = "memory"
    s.UPLOAD_DIR = str(tmp_path / "uploads")
    s.AUTH_TIMEOUT_SECONDS = 2.0
    return s


@pytest.fixture
def app_state(test_settings, directory, store, fake_redis):
    """Wire the process-wide components around the in-memory fakes."""
    asyncio.run(state.init_state(test_settings, directory, store, redis=fake_redis))
    return state


@pytest.fixture
def client(app_state):
    from fastapi.testclient import TestClient

    from classroom_realtime.main import app

    # Not used as a context manager: startup hooks (Mongo, Redis) stay off
    return TestClient(app)


@pytest.fixture
def auth_headers():
    def make(identity: Identity) -> dict:
        return {"Authorization": f"Bearer {create_token(identity.user_id, identity.role)}"}

    return make


@pytest.fixture
def make_socket():
    return FakeWebSocket
