# classroom_realtime/core/state.py
from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from classroom_realtime.services.chat_service import ChatService
from classroom_realtime.services.connection_manager import ConnectionManager
from classroom_realtime.services.directory import Directory
from classroom_realtime.services.fanout import FanOutBus, create_bus
from classroom_realtime.services.gateway import Gateway
from classroom_realtime.services.message_store import MessageStore
from classroom_realtime.services.notifier import Notifier
from classroom_realtime.services.rate_limiter import RateLimiter, RedisRateLimiter, SlidingWindowRateLimiter
from classroom_realtime.services.rooms import RoomAuthorizer
from classroom_realtime.services.score_aggregator import ScoreAggregator
from classroom_realtime.services.spam_filter import SpamFilter
from classroom_realtime.services.uploads import AttachmentUploader

# Per-process components, wired once by init_state(). Components receive
# their collaborators through their constructors; only the HTTP and
# websocket routes read them from here.
mongo_client = None
redis_client = None
directory: Optional[Directory] = None
message_store: Optional[MessageStore] = None
connection_manager: Optional[ConnectionManager] = None
bus: Optional[FanOutBus] = None
rate_limiter: Optional[RateLimiter] = None
spam_filter: Optional[SpamFilter] = None
scores: Optional[ScoreAggregator] = None
notifier: Optional[Notifier] = None
chat_service: Optional[ChatService] = None
gateway: Optional[Gateway] = None

# Metrics
app_start_time: datetime = datetime.now(timezone.utc)


async def init_state(settings, directory_impl: Directory, store: MessageStore, redis=None) -> None:
    """Build every component for this process and publish them on this module."""
    global directory, message_store, redis_client, connection_manager, bus, rate_limiter
    global spam_filter, scores, notifier, chat_service, gateway

    directory = directory_impl
    message_store = store
    redis_client = redis

    authorizer = RoomAuthorizer(directory)
    connection_manager = ConnectionManager(authorizer, send_timeout=settings.SEND_TIMEOUT_SECONDS)
    bus = await create_bus(settings, connection_manager, redis_client=redis)

    if settings.RATE_LIMIT_BACKEND == "redis" and redis is not None:
        rate_limiter = RedisRateLimiter(redis, settings.RATE_LIMIT_MAX_MESSAGES, settings.RATE_LIMIT_WINDOW_MS)
    else:
        rate_limiter = SlidingWindowRateLimiter(settings.RATE_LIMIT_MAX_MESSAGES, settings.RATE_LIMIT_WINDOW_MS)

    spam_filter = SpamFilter()
    scores = ScoreAggregator(
        redis,
        directory,
        bus,
        ttl_seconds=settings.LEADERBOARD_TTL_SECONDS,
        top_n=settings.LEADERBOARD_TOP_N,
    )
    notifier = Notifier(bus)
    chat_service = ChatService(
        authorizer,
        directory,
        message_store,
        spam_filter,
        rate_limiter,
        bus,
        uploader=AttachmentUploader(settings.UPLOAD_DIR, settings.UPLOAD_BASE_URL),
        page_size=settings.HISTORY_PAGE_SIZE,
    )
    gateway = Gateway(
        connection_manager,
        bus,
        scores,
        directory,
        auth_timeout=settings.AUTH_TIMEOUT_SECONDS,
    )
