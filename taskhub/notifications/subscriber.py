"""Redis pub/sub listener feeding the WebSocket broadcaster.

Lifecycle:
    DISCONNECTED -> CONNECTING -> SUBSCRIBED -> DISCONNECTED

Delivery is at-most-once: events published while the subscriber is
down are lost, and clients that attach later never see earlier events.
"""

import asyncio
import logging
from enum import Enum

from redis.asyncio import Redis, RedisError
from redis.asyncio.client import PubSub

from taskhub.core.errors import MalformedEventError
from taskhub.events.schemas import ChangeEvent
from taskhub.notifications.broadcaster import Broadcaster

logger = logging.getLogger(__name__)


class SubscriberState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    SUBSCRIBED = "subscribed"


class EventSubscriber:
    def __init__(
        self,
        redis: Redis,
        broadcaster: Broadcaster,
        channel: str = "task-updates",
        event_name: str = "task-update",
    ):
        self.redis = redis
        self.broadcaster = broadcaster
        self.channel = channel
        self.event_name = event_name
        self.state = SubscriberState.DISCONNECTED
        self._pubsub: PubSub | None = None
        self._task: asyncio.Task[None] | None = None
        self.stats = {"received": 0, "broadcast": 0, "dropped": 0}

    async def start(self) -> None:
        """Subscribe to the channel and spawn the listen loop."""
        if self.state is not SubscriberState.DISCONNECTED:
            return

        self.state = SubscriberState.CONNECTING
        try:
            self._pubsub = self.redis.pubsub()
            await self._pubsub.subscribe(self.channel)
        except (RedisError, OSError):
            self.state = SubscriberState.DISCONNECTED
            self._pubsub = None
            raise

        self.state = SubscriberState.SUBSCRIBED
        self._task = asyncio.create_task(self._listen_loop())
        logger.info(f"Subscribed to {self.channel}")

    async def stop(self) -> None:
        """Stop listening and release the pub/sub handle."""
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        if self._pubsub:
            try:
                await self._pubsub.unsubscribe(self.channel)
                await self._pubsub.aclose()
            except (RedisError, OSError) as e:
                logger.warning(f"Error closing subscription: {e}")
            self._pubsub = None

        self.state = SubscriberState.DISCONNECTED
        logger.info(f"Unsubscribed from {self.channel}")

    async def _listen_loop(self) -> None:
        try:
            while self.state is SubscriberState.SUBSCRIBED and self._pubsub:
                try:
                    message = await self._pubsub.get_message(
                        ignore_subscribe_messages=True, timeout=1.0
                    )
                except (RedisError, OSError) as e:
                    logger.error(f"Subscription to {self.channel} lost: {e}")
                    return
                except Exception as e:
                    # e.g. a payload the client cannot decode; the message is consumed
                    self.stats["dropped"] += 1
                    logger.error(f"Unreadable message on {self.channel}: {e}")
                    continue

                if message is None or message["type"] != "message":
                    continue

                try:
                    await self.handle_message(message["data"])
                except Exception as e:
                    logger.error(f"Failed to broadcast event from {self.channel}: {e}")
        finally:
            self.state = SubscriberState.DISCONNECTED

    async def handle_message(self, data: str | bytes) -> bool:
        """
        Decode one channel payload and broadcast it.

        Returns False when the payload was malformed and dropped.
        """
        self.stats["received"] += 1
        try:
            event = ChangeEvent.parse(data)
        except MalformedEventError as e:
            self.stats["dropped"] += 1
            logger.warning(f"Dropping malformed event on {self.channel}: {e}")
            return False

        await self.broadcaster.emit(self.event_name, event.to_wire())
        self.stats["broadcast"] += 1
        return True
