import asyncio
import json
import logging
from enum import Enum
from typing import Any, Callable

from pydantic import BaseModel
from redis.asyncio import Redis, RedisError

from taskhub.core.config import Settings
from taskhub.core.errors import PublishConnectionError

logger = logging.getLogger(__name__)


class PublisherState(str, Enum):
    UNINITIALIZED = "uninitialized"
    CONNECTING = "connecting"
    READY = "ready"


class EventPublisher:
    """
    Publishes change events on a Redis pub/sub channel.

    The connection is opened lazily on the first publish. While an attempt
    is in flight every caller awaits the same task, so concurrent publishes
    never open duplicate connections. A failed attempt resets the state to
    UNINITIALIZED and the next publish starts over.
    """

    def __init__(self, client_factory: Callable[[], Redis]):
        self._client_factory = client_factory
        self._client: Redis | None = None
        self._connecting: asyncio.Task | None = None
        self.state = PublisherState.UNINITIALIZED

    @classmethod
    def from_settings(cls, settings: Settings) -> "EventPublisher":
        def factory() -> Redis:
            return Redis.from_url(
                settings.redis_dsn,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5,
            )

        return cls(factory)

    async def _connect(self) -> Redis:
        client = None
        try:
            # from_url raises ValueError on a malformed DSN
            client = self._client_factory()
            await client.ping()
        except (RedisError, OSError, ValueError) as e:
            logger.error(f"Failed to connect Redis publisher: {e}")
            self.state = PublisherState.UNINITIALIZED
            if client is not None:
                await self._discard(client)
            raise PublishConnectionError(f"Redis publisher unavailable: {e}") from e

        self._client = client
        self.state = PublisherState.READY
        logger.info("Redis publisher connected")
        return client

    async def _ensure_connected(self) -> Redis:
        if self.state is PublisherState.READY and self._client is not None:
            return self._client

        if self._connecting is None:
            self.state = PublisherState.CONNECTING
            self._connecting = asyncio.ensure_future(self._connect())

        attempt = self._connecting
        try:
            # shield: one caller being cancelled must not abort the shared attempt
            return await asyncio.shield(attempt)
        finally:
            if attempt.done() and self._connecting is attempt:
                self._connecting = None

    def _serialize(self, message: Any) -> str:
        if isinstance(message, str):
            return message
        if isinstance(message, BaseModel):
            return message.model_dump_json(by_alias=True)
        return json.dumps(message, default=str)

    async def publish(self, channel: str, message: Any) -> int:
        """
        Send one message on ``channel``.

        Returns:
            Number of subscribers that received it, as reported by Redis

        Raises:
            PublishConnectionError: backend unreachable or send failed
        """
        client = await self._ensure_connected()
        payload = self._serialize(message)

        try:
            receivers = await client.publish(channel, payload)
        except (RedisError, OSError) as e:
            logger.error(f"Failed to publish to {channel}: {e}")
            await self._reset()
            raise PublishConnectionError(f"Publish to {channel} failed: {e}") from e

        logger.debug(f"Published to {channel} ({receivers} receivers): {payload}")
        return receivers

    async def _reset(self):
        client, self._client = self._client, None
        self.state = PublisherState.UNINITIALIZED
        if client is not None:
            await self._discard(client)

    async def _discard(self, client: Redis):
        try:
            await client.aclose()
        except (RedisError, OSError) as e:
            logger.debug(f"Ignoring error while closing publisher client: {e}")

    async def close(self):
        """Release the publisher connection."""
        if self._connecting is not None and not self._connecting.done():
            self._connecting.cancel()
        self._connecting = None
        if self._client is not None:
            await self._reset()
            logger.info("Redis publisher connection closed")
        self.state = PublisherState.UNINITIALIZED
