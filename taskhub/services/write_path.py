import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, TypeVar

from taskhub.cache.client import KeyValueCache
from taskhub.core.errors import CacheUnavailableError, PublishConnectionError
from taskhub.events.publisher import EventPublisher
from taskhub.events.schemas import ChangeEvent

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class StepResult:
    """Outcome of a recoverable side effect (cache bust or publish)."""

    ok: bool
    error: Exception | None = None

    @classmethod
    def success(cls) -> "StepResult":
        return cls(ok=True)

    @classmethod
    def failed(cls, error: Exception) -> "StepResult":
        return cls(ok=False, error=error)


@dataclass(frozen=True)
class WriteOutcome(Generic[T]):
    value: T
    invalidation: StepResult
    publication: StepResult


class WriteInvalidationPath:
    """
    Mutation pipeline for a cached collection: persist, bust the collection
    cache key, publish a change event.

    The store mutation decides the outcome. If it raises (NotFoundError
    included) nothing else runs. Cache and publish failures are logged and
    reported on the returned WriteOutcome, never raised.
    """

    def __init__(
        self,
        cache: KeyValueCache,
        publisher: EventPublisher,
        collection_key: str,
        channel: str,
    ):
        self.cache = cache
        self.publisher = publisher
        self.collection_key = collection_key
        self.channel = channel

    async def execute(
        self,
        mutate: Callable[[], Awaitable[T]],
        to_event: Callable[[T], ChangeEvent],
    ) -> WriteOutcome[T]:
        value = await mutate()
        invalidation = await self._invalidate()
        publication = await self._publish(to_event(value))
        return WriteOutcome(value, invalidation, publication)

    async def _invalidate(self) -> StepResult:
        try:
            await self.cache.delete(self.collection_key)
        except CacheUnavailableError as e:
            logger.warning(f"Cache invalidation of {self.collection_key} failed: {e}")
            return StepResult.failed(e)
        logger.debug(f"Invalidated {self.collection_key}")
        return StepResult.success()

    async def _publish(self, event: ChangeEvent) -> StepResult:
        message: dict[str, Any] = event.to_wire()
        try:
            await self.publisher.publish(self.channel, message)
        except PublishConnectionError as e:
            logger.warning(f"Publishing {event.action} event to {self.channel} failed: {e}")
            return StepResult.failed(e)
        return StepResult.success()
