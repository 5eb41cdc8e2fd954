# classroom_realtime/services/notifier.py

from __future__ import annotations

from typing import Any, Dict, Iterable
import logging

from classroom_realtime.models.events import ServerEvent
from classroom_realtime.services.fanout import FanOutBus
from classroom_realtime.services.rooms import user_room

logger = logging.getLogger(__name__)


class Notifier:
    """Targeted delivery into personal `user:<id>` rooms."""

    def __init__(self, bus: FanOutBus) -> None:
        self.bus = bus

    async def notify_user(self, user_id: str, record: Dict[str, Any]) -> None:
        await self._emit(user_id, ServerEvent.NOTIFICATION, record)

    async def announce(self, user_ids: Iterable[str], record: Dict[str, Any]) -> int:
        """Send an announcement to each distinct user. Returns the number of users targeted."""
        targets = list(dict.fromkeys(str(u) for u in user_ids))
        for user_id in targets:
            await self._emit(user_id, ServerEvent.ANNOUNCEMENT, record)
        logger.info("📣 Announcement sent to %d users", len(targets))
        return len(targets)

    async def _emit(self, user_id: str, event: str, record: Dict[str, Any]) -> None:
        try:
            await self.bus.publish(user_room(user_id), event, record)
        except Exception as e:
            logger.error("Could not deliver %s to user %s: %s", event, user_id, e)
