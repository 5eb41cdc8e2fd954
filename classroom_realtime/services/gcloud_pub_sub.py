# classroom_realtime/services/gcloud_pub_sub.py
import asyncio
import logging
from typing import Optional

from google.cloud import pubsub_v1

from classroom_realtime.services.connection_manager import ConnectionManager
from classroom_realtime.services.fanout import SharedBus

logger = logging.getLogger(__name__)


class GooglePubSubBus(SharedBus):
    """
    Fan-out over one Google Pub/Sub topic.

    Each process needs its own subscription on the topic so that every
    process receives every envelope. The subscriber callback runs on a
    client thread; decoded envelopes are scheduled onto the event loop.
    """

    mode = "google_pub_sub"

    def __init__(
        self,
        connections: ConnectionManager,
        instance_id: str,
        project_id: str,
        topic_id: str,
        subscription_id: str,
        publisher: Optional[pubsub_v1.PublisherClient] = None,
        subscriber: Optional[pubsub_v1.SubscriberClient] = None,
    ) -> None:
        super().__init__(connections, instance_id)
        self.project_id = project_id
        self.topic_id = topic_id
        self.subscription_id = subscription_id
        self.publisher = publisher
        self.subscriber = subscriber
        self.topic_path: Optional[str] = None
        self.subscription_path: Optional[str] = None
        self._streaming_future = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    async def start(self) -> None:
        """
        Call this once on app startup, from the event loop that owns the sockets.
        """
        if not (self.project_id and self.topic_id and self.subscription_id):
            raise RuntimeError("PROJECT_ID, TOPIC_ID and SUBSCRIPTION_ID must be set for google_pub_sub")

        self._loop = asyncio.get_running_loop()
        if self.publisher is None:
            self.publisher = pubsub_v1.PublisherClient()
        if self.subscriber is None:
            self.subscriber = pubsub_v1.SubscriberClient()

        self.topic_path = self.publisher.topic_path(self.project_id, self.topic_id)
        self.subscription_path = self.subscriber.subscription_path(self.project_id, self.subscription_id)

        self._streaming_future = self.subscriber.subscribe(self.subscription_path, callback=self._callback)
        logger.info("✓ Listening for envelopes on %s", self.subscription_path)

    def _callback(self, message) -> None:
        try:
            payload = message.data.decode("utf-8")
            if self._loop is not None:
                # Schedule the async handler on the app's event loop
                asyncio.run_coroutine_threadsafe(self.handle_envelope(payload), self._loop)
            message.ack()
        except Exception as exc:
            logger.error("Error processing Pub/Sub message: %s", exc)
            message.nack()

    async def _publish_remote(self, payload: str) -> None:
        future = self.publisher.publish(self.topic_path, data=payload.encode("utf-8"))
        # future.result() blocks until the broker acknowledges
        await asyncio.to_thread(future.result)

    async def close(self) -> None:
        """Call this once on app shutdown."""
        if self._streaming_future is not None:
            self._streaming_future.cancel()
            self._streaming_future = None
        if self.subscriber is not None:
            self.subscriber.close()
        logger.info("Pub/Sub bus closed")
