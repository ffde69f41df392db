"""Tests for the read-through cache."""

import asyncio
import json

import pytest

from taskhub.cache.client import KeyValueCache
from taskhub.cache.layer import ReadThroughCache


class CountingProducer:
    def __init__(self, value, delay: float = 0.0) -> None:
        self.value = value
        self.delay = delay
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.value


class TestFetch:
    async def test_miss_returns_producer_value(self, read_cache: ReadThroughCache) -> None:
        producer = CountingProducer([{"id": "1", "title": "x"}])

        value = await read_cache.fetch("all_tasks", producer, 60)

        assert value == [{"id": "1", "title": "x"}]
        assert producer.calls == 1

    async def test_miss_populates_with_ttl(self, read_cache: ReadThroughCache, fake_redis) -> None:
        await read_cache.fetch("all_tasks", CountingProducer([1, 2]), 60)

        assert json.loads(fake_redis.store["test:all_tasks"]) == [1, 2]
        assert fake_redis.ttls["test:all_tasks"] == 60

    async def test_default_ttl_used_when_omitted(self, kv: KeyValueCache, fake_redis) -> None:
        cache = ReadThroughCache(kv, default_ttl=123)

        await cache.fetch("k", CountingProducer("v"))

        assert fake_redis.ttls["test:k"] == 123

    async def test_explicit_zero_ttl_not_replaced_by_default(
        self, kv: KeyValueCache, fake_redis
    ) -> None:
        cache = ReadThroughCache(kv, default_ttl=300)

        assert await cache.fetch("k", CountingProducer("v"), 0) == "v"

        assert fake_redis.ttls["test:k"] == 0

    async def test_second_fetch_hits_cache(self, read_cache: ReadThroughCache) -> None:
        """Two reads with no intervening write call the producer once."""
        first = CountingProducer(["a"])
        second = CountingProducer(["b"])

        assert await read_cache.fetch("all_tasks", first, 60) == ["a"]
        assert await read_cache.fetch("all_tasks", second, 60) == ["a"]

        assert first.calls == 1
        assert second.calls == 0
        assert read_cache.stats["hits"] == 1
        assert read_cache.stats["misses"] == 1

    async def test_empty_result_is_cached(self, read_cache: ReadThroughCache) -> None:
        first = CountingProducer([])
        second = CountingProducer(["late"])

        await read_cache.fetch("all_tasks", first, 60)
        assert await read_cache.fetch("all_tasks", second, 60) == []
        assert second.calls == 0

    async def test_refetch_after_delete_calls_producer(
        self, read_cache: ReadThroughCache, kv: KeyValueCache
    ) -> None:
        await read_cache.fetch("all_tasks", CountingProducer(["old"]), 60)
        await kv.delete("all_tasks")

        fresh = CountingProducer(["new"])
        assert await read_cache.fetch("all_tasks", fresh, 60) == ["new"]
        assert fresh.calls == 1

    async def test_undecodable_entry_treated_as_miss(
        self, read_cache: ReadThroughCache, fake_redis
    ) -> None:
        fake_redis.store["test:all_tasks"] = "{not json"
        producer = CountingProducer(["fresh"])

        assert await read_cache.fetch("all_tasks", producer, 60) == ["fresh"]
        assert producer.calls == 1
        assert read_cache.stats["decode_failures"] == 1
        assert json.loads(fake_redis.store["test:all_tasks"]) == ["fresh"]


class TestDegradedBackend:
    async def test_unreachable_cache_still_returns_data(
        self, read_cache: ReadThroughCache, fake_redis
    ) -> None:
        fake_redis.fail = True
        producer = CountingProducer({"ok": True})

        assert await read_cache.fetch("k", producer, 60) == {"ok": True}
        assert producer.calls == 1
        # read failure and write failure both recorded
        assert read_cache.stats["errors"] == 2

    async def test_store_failure_is_not_fatal(
        self, read_cache: ReadThroughCache, fake_redis
    ) -> None:
        async def failing_set(key, value, ex=None):
            raise ConnectionError("write refused")

        fake_redis.set = failing_set

        assert await read_cache.fetch("k", CountingProducer([1]), 60) == [1]
        assert read_cache.stats["errors"] == 1

    async def test_unserializable_value_is_returned_uncached(
        self, read_cache: ReadThroughCache, fake_redis
    ) -> None:
        circular: list = []
        circular.append(circular)

        assert await read_cache.fetch("k", CountingProducer(circular), 60) is circular
        assert "test:k" not in fake_redis.store


class TestConcurrentMisses:
    async def test_concurrent_misses_may_call_producer_twice(
        self, read_cache: ReadThroughCache
    ) -> None:
        producer = CountingProducer(["v"], delay=0.05)

        results = await asyncio.gather(
            read_cache.fetch("k", producer, 60),
            read_cache.fetch("k", producer, 60),
        )

        assert results == [["v"], ["v"]]
        assert producer.calls == 2

    async def test_single_flight_coalesces_misses(self, kv: KeyValueCache) -> None:
        cache = ReadThroughCache(kv, single_flight=True)
        producer = CountingProducer(["v"], delay=0.05)

        results = await asyncio.gather(*(cache.fetch("k", producer, 60) for _ in range(5)))

        assert results == [["v"]] * 5
        assert producer.calls == 1


def test_stats_hit_rate(read_cache: ReadThroughCache) -> None:
    assert read_cache.get_stats()["hit_rate"] == 0

    read_cache.stats["hits"] = 3
    read_cache.stats["misses"] = 1

    assert read_cache.get_stats()["hit_rate"] == pytest.approx(0.75)
