"""
Live result-set feeds (pending bookings per mentor, messages per conversation).

DELIVERY MODEL
==============

Writers call `publish(topic)` after their transaction commits. Readers use
`watch(topic, snapshot)`: they receive the full matching result set once on
subscription and again after every change notification, so a subscriber can
never miss a row or observe a partially applied write.

Ordering:
  Notifications for a topic are delivered to each subscriber through a FIFO
  queue in the order they were published, and publishes happen after commit,
  so consecutive snapshots reflect commits in commit order.

Transport:
  - In-process (default): publish fans out to local subscriber queues.
  - Redis (REDIS_ENABLED=true): publish goes to a Redis channel and a single
    listener task per worker fans incoming notifications out locally. This
    keeps one ordering source when several workers serve the same topic.
"""

import asyncio
from collections import defaultdict
from typing import AsyncIterator, Awaitable, Callable, Dict, Optional, Set, TypeVar

import redis.asyncio as redis

from rankup.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

CHANNEL_PREFIX = "rankup:feed:"


def pending_bookings_topic(mentor_id: str) -> str:
    return f"bookings:pending:{mentor_id}"


def conversation_topic(conversation_id: str) -> str:
    return f"conversation:{conversation_id}"


class ChangeFeed:
    def __init__(self):
        self._subscribers: Dict[str, Set[asyncio.Queue]] = defaultdict(set)
        self._redis: Optional[redis.Redis] = None
        self._listener: Optional[asyncio.Task] = None

    async def start(self, client: Optional[redis.Redis]) -> None:
        """Attach a Redis relay. With no client the feed stays in-process."""
        if client is None or self._listener is not None:
            return
        self._redis = client
        pubsub = client.pubsub()
        await pubsub.psubscribe(f"{CHANNEL_PREFIX}*")
        self._listener = asyncio.create_task(self._relay(pubsub))
        logger.info("live_feed_relay_started")

    async def stop(self) -> None:
        if self._listener is not None:
            self._listener.cancel()
            try:
                await self._listener
            except asyncio.CancelledError:
                pass
            self._listener = None
        self._redis = None

    async def _relay(self, pubsub) -> None:
        try:
            async for message in pubsub.listen():
                if message.get("type") != "pmessage":
                    continue
                channel = message["channel"]
                self._dispatch(channel[len(CHANNEL_PREFIX):])
        finally:
            await pubsub.aclose()

    def _dispatch(self, topic: str) -> None:
        for queue in tuple(self._subscribers.get(topic, ())):
            queue.put_nowait(topic)

    async def publish(self, topic: str) -> None:
        if self._redis is not None:
            try:
                await self._redis.publish(f"{CHANNEL_PREFIX}{topic}", topic)
                return
            except redis.RedisError as e:
                logger.warning("live_feed_publish_failed", topic=topic, error=str(e))
        self._dispatch(topic)

    def subscriber_count(self, topic: str) -> int:
        return len(self._subscribers.get(topic, ()))

    async def watch(
        self,
        topic: str,
        snapshot: Callable[[], Awaitable[T]],
    ) -> AsyncIterator[T]:
        """
        Yield `await snapshot()` now and after every notification on `topic`.
        Notifications queued while a snapshot is being read are coalesced,
        since the next snapshot already includes them.
        """
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers[topic].add(queue)
        try:
            yield await snapshot()
            while True:
                await queue.get()
                while not queue.empty():
                    queue.get_nowait()
                yield await snapshot()
        finally:
            self._subscribers[topic].discard(queue)
            if not self._subscribers[topic]:
                del self._subscribers[topic]


feed = ChangeFeed()
