import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Optional

from cachetools import TTLCache

from taskhub.cache.client import KeyValueCache
from taskhub.core.config import Settings
from taskhub.core.errors import CacheUnavailableError

logger = logging.getLogger(__name__)

_MISSING = object()


class ReadThroughCache:
    """
    Read-through cache over a KeyValueCache.

    On a hit the decoded value is returned without calling the producer.
    On a miss (or an undecodable entry, or an unreachable backend) the
    producer is awaited, its result is stored with a TTL and returned even
    if the store fails.

    Concurrent misses on the same key each call the producer unless
    ``single_flight`` is enabled, in which case callers queue on a per-key
    lock and re-check the cache once they hold it.
    """

    def __init__(
        self,
        kv: KeyValueCache,
        default_ttl: int = 300,
        single_flight: bool = False,
        lock_maxsize: int = 10_000,
        lock_ttl: int = 300,
    ):
        self._kv = kv
        self.default_ttl = default_ttl
        self.single_flight = single_flight
        # Lock TTL exceeds worst-case producer time so a held lock never expires.
        self._locks: TTLCache = TTLCache(maxsize=lock_maxsize, ttl=lock_ttl)

        self.stats = {
            "hits": 0,
            "misses": 0,
            "errors": 0,
            "decode_failures": 0,
        }

    @classmethod
    def from_settings(cls, kv: KeyValueCache, settings: Settings) -> "ReadThroughCache":
        return cls(
            kv,
            default_ttl=settings.cache_ttl_seconds,
            single_flight=settings.cache_single_flight,
            lock_maxsize=settings.single_flight_max_keys,
            lock_ttl=settings.single_flight_lock_ttl,
        )

    def _serialize(self, value: Any) -> str:
        return json.dumps(value, default=str)

    def _deserialize(self, raw: str) -> Any:
        return json.loads(raw)

    async def _lookup(self, key: str) -> Any:
        """Return the cached value or _MISSING."""
        try:
            raw = await self._kv.get(key)
        except CacheUnavailableError as e:
            logger.warning(f"Cache read failed, falling back to producer: {e}")
            self.stats["errors"] += 1
            return _MISSING

        if raw is None:
            return _MISSING

        try:
            value = self._deserialize(raw)
        except ValueError as e:
            logger.warning(f"Discarding undecodable cache entry {key!r}: {e}")
            self.stats["decode_failures"] += 1
            return _MISSING

        self.stats["hits"] += 1
        logger.debug(f"Cache hit: {key}")
        return value

    async def _populate(self, key: str, value: Any, ttl: int) -> None:
        try:
            data = self._serialize(value)
        except (TypeError, ValueError) as e:
            logger.warning(f"Value for {key!r} is not serializable, not caching: {e}")
            self.stats["errors"] += 1
            return

        try:
            await self._kv.set(key, data, ttl)
            logger.debug(f"Cached {key} for {ttl}s")
        except CacheUnavailableError as e:
            logger.warning(f"Cache write failed, serving producer result: {e}")
            self.stats["errors"] += 1

    async def _load(
        self, key: str, producer: Callable[[], Awaitable[Any]], ttl: int
    ) -> Any:
        self.stats["misses"] += 1
        logger.debug(f"Cache miss: {key}, loading from source")
        value = await producer()
        await self._populate(key, value, ttl)
        return value

    async def fetch(
        self,
        key: str,
        producer: Callable[[], Awaitable[Any]],
        ttl_seconds: Optional[int] = None,
    ) -> Any:
        """
        Return the value cached under ``key``, computing it with ``producer``
        on a miss.

        Args:
            key: Cache key (namespaced by the KeyValueCache)
            producer: Async callable returning the authoritative value
            ttl_seconds: Expiry for a freshly populated entry

        Returns:
            The cached value, or the producer's value on a miss
        """
        ttl = self.default_ttl if ttl_seconds is None else ttl_seconds

        value = await self._lookup(key)
        if value is not _MISSING:
            return value

        if not self.single_flight:
            return await self._load(key, producer, ttl)

        lock = self._get_lock_for_key(key)
        async with lock:
            # Another caller may have populated the key while we waited
            value = await self._lookup(key)
            if value is not _MISSING:
                return value
            return await self._load(key, producer, ttl)

    def _get_lock_for_key(self, key: str) -> asyncio.Lock:
        """setdefault hands every concurrent caller the same lock object."""
        return self._locks.setdefault(key, asyncio.Lock())

    def get_stats(self) -> dict:
        total = self.stats["hits"] + self.stats["misses"]
        return {
            **self.stats,
            "hit_rate": self.stats["hits"] / total if total > 0 else 0,
        }
