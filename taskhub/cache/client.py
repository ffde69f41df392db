import logging

from redis.asyncio import Redis, RedisError

from taskhub.core.config import Settings
from taskhub.core.errors import CacheUnavailableError

logger = logging.getLogger(__name__)


class KeyValueCache:
    """
    Remote key-value store used as the cache tier.

    Wraps a single redis.asyncio client owned by the service process.
    Every backend failure surfaces as CacheUnavailableError so callers can
    treat the cache as an optimization and recover locally.
    """

    def __init__(self, client: Redis, namespace: str = "taskhub:"):
        self._redis = client
        self.namespace = namespace

    @classmethod
    def from_settings(cls, settings: Settings) -> "KeyValueCache":
        client = Redis.from_url(
            settings.redis_dsn,
            encoding="utf-8",
            decode_responses=True,
            max_connections=settings.redis_pool_size,
            socket_connect_timeout=5,
            socket_keepalive=True,
            health_check_interval=30,
        )
        return cls(client, namespace=settings.cache_namespace)

    def _key(self, key: str) -> str:
        """Build namespaced cache key."""
        return f"{self.namespace}{key}"

    async def get(self, key: str) -> str | None:
        try:
            return await self._redis.get(self._key(key))
        except (RedisError, OSError) as e:
            raise CacheUnavailableError(f"Redis GET failed for {key!r}: {e}") from e

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        try:
            await self._redis.set(self._key(key), value, ex=ttl_seconds)
        except (RedisError, OSError) as e:
            raise CacheUnavailableError(f"Redis SET failed for {key!r}: {e}") from e

    async def delete(self, key: str) -> None:
        try:
            await self._redis.delete(self._key(key))
        except (RedisError, OSError) as e:
            raise CacheUnavailableError(f"Redis DELETE failed for {key!r}: {e}") from e

    async def ping(self) -> bool:
        """Report whether the backend answers; never raises."""
        try:
            return bool(await self._redis.ping())
        except (RedisError, OSError) as e:
            logger.warning(f"Redis ping failed: {e}")
            return False

    async def close(self):
        """Graceful shutdown of the cache connection."""
        try:
            await self._redis.aclose()
            logger.info("Redis cache connection closed")
        except (RedisError, OSError) as e:
            logger.error(f"Error closing Redis: {e}")
