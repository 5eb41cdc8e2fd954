# classroom_realtime/services/score_aggregator.py

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Callable, List, Optional

from redis.exceptions import RedisError
import logging

from classroom_realtime.models.events import ServerEvent
from classroom_realtime.models.models import RecentActivity, TopPerformer, TopPerformersUpdate
from classroom_realtime.services.directory import Directory
from classroom_realtime.services.fanout import FanOutBus
from classroom_realtime.services.rooms import ADMIN_DASHBOARD

logger = logging.getLogger(__name__)

KEY_PREFIX = "leaderboard:daily:"
DEFAULT_TTL_SECONDS = 172_800  # 48 hours


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


def daily_key(day: date) -> str:
    return f"{KEY_PREFIX}{day.isoformat()}"


class ScoreAggregator:
    """
    Daily leaderboard kept in one Redis sorted set per UTC day.

    Yesterday's key is never read or merged: a new day starts at zero and old
    keys expire after `ttl_seconds`. Every increment pushes a fresh top list to
    the admin dashboard room.

    Scoring is a side effect of other actions (quiz submission, ...), so no
    method here raises into its caller when Redis or the bus is down.
    """

    def __init__(
        self,
        redis_client,
        directory: Directory,
        bus: FanOutBus,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        top_n: int = 3,
        today: Callable[[], date] = utc_today,
    ) -> None:
        self.redis = redis_client
        self.directory = directory
        self.bus = bus
        self.ttl_seconds = ttl_seconds
        self.top_n = top_n
        self.today = today

    @property
    def enabled(self) -> bool:
        return self.redis is not None

    async def update_score(self, user_id: str, points: float, reason: str = "") -> None:
        """
        Add `points` to today's total for `user_id` and notify dashboards.

        Totals only grow within a day; zero or negative deltas are ignored.
        """
        if points <= 0:
            logger.warning("Ignoring non-positive score %s for %s", points, user_id)
            return

        if not self.enabled:
            logger.debug("Leaderboard disabled (no Redis); skipping score for %s", user_id)
            return

        key = daily_key(self.today())
        try:
            await self.redis.zincrby(key, points, str(user_id))
            await self.redis.expire(key, self.ttl_seconds)
        except (RedisError, OSError) as e:
            logger.warning("⚠ Error updating performance score for %s: %s", user_id, e)
            return

        recent_activity = None
        if reason:
            username = "Student"
            try:
                user = await self.directory.get_user(str(user_id))
                if user is not None:
                    username = user.username
            except Exception as e:
                logger.warning("Username lookup failed for %s: %s", user_id, e)
            recent_activity = RecentActivity(username=username, points=points, reason=reason)

        await self.broadcast_top_performers(recent_activity)

    async def get_top_performers(self, limit: Optional[int] = None) -> List[TopPerformer]:
        """
        Today's top entries, highest score first.

        Equal scores keep Redis's ZREVRANGE order (member descending).
        """
        if not self.enabled:
            return []

        limit = self.top_n if limit is None else limit
        if limit <= 0:
            return []
        key = daily_key(self.today())
        try:
            raw = await self.redis.zrevrange(key, 0, limit - 1, withscores=True)
        except (RedisError, OSError) as e:
            logger.warning("⚠ Error fetching top performers: %s", e)
            return []

        if not raw:
            return []

        user_ids = [str(member) for member, _ in raw]
        try:
            users = await self.directory.get_users(user_ids)
        except Exception as e:
            logger.warning("User lookup for leaderboard failed: %s", e)
            users = {}

        performers = []
        for member, score in raw:
            user = users.get(str(member))
            performers.append(
                TopPerformer(
                    user_id=str(member),
                    username=user.username if user else "Unknown",
                    avatar=user.avatar if user else "",
                    score=score,
                )
            )
        return performers

    async def broadcast_top_performers(self, recent_activity: Optional[RecentActivity] = None) -> None:
        """Push the current top list to every admin dashboard on every process."""
        try:
            update = TopPerformersUpdate(
                top_performers=await self.get_top_performers(),
                recent_activity=recent_activity,
            )
            await self.bus.publish(ADMIN_DASHBOARD, ServerEvent.TOP_PERFORMERS_UPDATE, update.payload())
        except Exception as e:
            logger.warning("Could not broadcast top performers: %s", e)
