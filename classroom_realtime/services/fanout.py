# classroom_realtime/services/fanout.py

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Optional

from pydantic import ValidationError
import logging

from classroom_realtime.models.models import Envelope
from classroom_realtime.services.connection_manager import ConnectionManager

logger = logging.getLogger(__name__)

# ============================================================================
# FAN-OUT BUS
# ============================================================================

class FanOutBus(ABC):
    """
    Makes room delivery reach every process that holds connections.

    Events are published whole (room + event + payload). Ordering is only
    guaranteed per originating process; the durable store stays the source of
    truth for canonical message order.
    """

    mode: str = "abstract"

    def __init__(self, connections: ConnectionManager) -> None:
        self.connections = connections

    async def start(self) -> None:
        """Connect to the backend and begin consuming. Default: nothing to do."""

    @abstractmethod
    async def publish(self, room: str, event: str, data: Any = None, exclude: Optional[str] = None) -> None: ...

    async def close(self) -> None:
        """Release backend resources. Default: nothing to do."""


class LocalOnlyBus(FanOutBus):
    """Single-process deployment, or the degraded mode when no broker is reachable."""

    mode = "local"

    async def publish(self, room: str, event: str, data: Any = None, exclude: Optional[str] = None) -> None:
        await self.connections.deliver(room, event, data, exclude=exclude)


class SharedBus(FanOutBus):
    """
    Broker-backed bus.

    `publish` delivers to this process's connections first, then hands the
    envelope to the broker for every other process. Envelopes that come back
    from the broker with our own origin are skipped, so each connection sees
    an event exactly once.

    Broker failures on publish are logged and absorbed: local delivery has
    already happened and the post that triggered the event must not fail.
    """

    mode = "shared"

    def __init__(self, connections: ConnectionManager, instance_id: str) -> None:
        super().__init__(connections)
        self.instance_id = instance_id
        self.degraded = False

    @abstractmethod
    async def _publish_remote(self, payload: str) -> None:
        """Send one serialized envelope to the broker."""

    async def publish(self, room: str, event: str, data: Any = None, exclude: Optional[str] = None) -> None:
        await self.connections.deliver(room, event, data, exclude=exclude)

        envelope = Envelope(origin=self.instance_id, room=room, event=event, data=data, exclude=exclude)
        try:
            await self._publish_remote(envelope.model_dump_json())
        except Exception as e:
            if not self.degraded:
                logger.warning("⚠ Fan-out broker unavailable, delivering locally only: %s", e)
            self.degraded = True
            return

        if self.degraded:
            logger.info("✓ Fan-out broker reachable again")
            self.degraded = False

    async def handle_envelope(self, raw: str | bytes) -> int:
        """
        Deliver an envelope received from the broker to local connections.

        Returns:
            Number of local connections written to (0 for our own or bad envelopes)
        """
        try:
            envelope = Envelope.model_validate_json(raw)
        except ValidationError as e:
            logger.warning("Dropping malformed envelope: %s", e.errors()[:1])
            return 0

        if envelope.origin == self.instance_id:
            return 0

        logger.debug(
            "➡ Bus: routing %s to room=%s from origin=%s", envelope.event, envelope.room, envelope.origin
        )
        return await self.connections.deliver(envelope.room, envelope.event, envelope.data, exclude=envelope.exclude)


async def create_bus(settings, connections: ConnectionManager, redis_client=None) -> FanOutBus:
    """
    Build and start the bus selected by PUB_SUB_SERVICE.

    A backend that fails to start is logged and replaced by LocalOnlyBus so
    chat keeps working for users on this process.
    """
    bus: FanOutBus
    if settings.PUB_SUB_SERVICE == "redis" and redis_client is not None:
        from classroom_realtime.services.redis_pub_sub import RedisBus

        bus = RedisBus(connections, redis_client, settings.INSTANCE_ID, channel=settings.FANOUT_CHANNEL)
    elif settings.PUB_SUB_SERVICE == "google_pub_sub":
        from classroom_realtime.services.gcloud_pub_sub import GooglePubSubBus

        bus = GooglePubSubBus(
            connections,
            settings.INSTANCE_ID,
            project_id=settings.PROJECT_ID,
            topic_id=settings.TOPIC_ID,
            subscription_id=settings.SUBSCRIPTION_ID,
        )
    else:
        if settings.PUB_SUB_SERVICE != "local":
            logger.warning("PUB_SUB_SERVICE=%s but its backend is not configured", settings.PUB_SUB_SERVICE)
        bus = LocalOnlyBus(connections)

    try:
        await bus.start()
    except Exception as e:
        logger.error("Could not start %s bus, falling back to local delivery: %s", bus.mode, e)
        await bus.close()
        bus = LocalOnlyBus(connections)

    logger.info("✓ Fan-out bus ready (mode=%s)", bus.mode)
    return bus
