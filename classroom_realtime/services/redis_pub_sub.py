# classroom_realtime/services/redis_pub_sub.py
import asyncio
import logging

import redis.asyncio as redis
from redis.exceptions import RedisError

from classroom_realtime.services.connection_manager import ConnectionManager
from classroom_realtime.services.fanout import SharedBus

logger = logging.getLogger(__name__)


async def connect_redis(url: str) -> "redis.Redis | None":
    """
    Establish the shared async Redis client.

    Returns None (and logs) when no URL is configured or the server cannot be
    reached; callers treat that as "redis features disabled".
    """
    if not url:
        logger.warning("REDIS_URL is not set. Redis features are disabled.")
        return None

    client = redis.from_url(url, decode_responses=True)
    try:
        await client.ping()
    except (RedisError, OSError) as e:
        logger.error("Failed to connect to Redis: %s", e)
        await client.aclose()
        return None

    logger.info("✓ Connected to Redis")
    return client


class RedisBus(SharedBus):
    """
    Fan-out over a single Redis pub/sub channel.

    Every process publishes envelopes to the same channel and every process
    listens to it, filtering by room through its own registry. One channel
    keeps subscription bookkeeping constant no matter how many rooms exist.
    """

    mode = "redis"

    def __init__(
        self,
        connections: ConnectionManager,
        client: "redis.Redis",
        instance_id: str,
        channel: str = "realtime:events",
        retry_delay: float = 2.0,
    ):
        super().__init__(connections, instance_id)
        self.client = client
        self.channel = channel
        self.retry_delay = retry_delay
        self.pubsub = None
        self._listener: asyncio.Task | None = None

    async def start(self):
        """Subscribe and start the background listener."""
        await self._subscribe()
        self._listener = asyncio.create_task(self.listen())

    async def _subscribe(self):
        self.pubsub = self.client.pubsub()
        await self.pubsub.subscribe(self.channel)
        logger.info("✓ Subscribed to Redis channel '%s'", self.channel)

    async def _publish_remote(self, payload: str) -> None:
        await self.client.publish(self.channel, payload)

    async def listen(self):
        """
        Consume envelopes from the channel and deliver them locally.

        A dropped Redis connection is retried forever; until it comes back
        only locally originated events reach this process's sockets.
        """
        while True:
            try:
                if self.pubsub is None:
                    await self._subscribe()
                async for message in self.pubsub.listen():
                    if message.get("type") != "message":
                        continue
                    try:
                        await self.handle_envelope(message["data"])
                    except Exception:
                        logger.exception("Error processing Redis message")
                logger.warning("Redis subscription ended, resubscribing")
                self.pubsub = None
                await asyncio.sleep(self.retry_delay)
            except asyncio.CancelledError:
                raise
            except (RedisError, OSError) as e:
                logger.warning("⚠ Redis listener lost connection: %s (retrying in %.1fs)", e, self.retry_delay)
                self.pubsub = None
                await asyncio.sleep(self.retry_delay)

    async def close(self):
        """Stop listening. The shared client itself is closed by its owner."""
        if self._listener:
            self._listener.cancel()
            try:
                await self._listener
            except asyncio.CancelledError:
                pass
            self._listener = None
        if self.pubsub:
            try:
                await self.pubsub.unsubscribe()
                await self.pubsub.aclose()
            except (RedisError, OSError) as e:
                logger.warning("Error closing Redis pub/sub: %s", e)
            self.pubsub = None
        logger.info("Redis bus closed")
