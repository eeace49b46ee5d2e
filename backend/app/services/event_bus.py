"""
Publish/subscribe for live pipeline events.

Each subscriber owns a bounded asyncio.Queue. ``publish`` never blocks: a
subscriber whose queue is full simply misses the event. No replay, no
back-pressure to publishers.

With the Celery backend, stages run in worker processes that share nothing
with the API process. There ``RedisEventRelay`` carries events over Redis
pub/sub, and the API process forwards them into its local EventBus, which
feeds the SSE subscribers.
"""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

import redis
import redis.asyncio as aioredis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

DEFAULT_SUBSCRIBER_QUEUE_SIZE = 100
DEFAULT_MAX_SUBSCRIBERS = 64
EVENTS_CHANNEL = "pipeline:events"


class TooManySubscribers(Exception):
    pass


class Subscription:
    def __init__(self, bus: "EventBus", maxsize: int):
        self._bus = bus
        self.queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0

    async def get(self) -> dict[str, Any]:
        return await self.queue.get()

    def close(self) -> None:
        self._bus.unsubscribe(self)


class EventBus:
    def __init__(self, max_subscribers: int = DEFAULT_MAX_SUBSCRIBERS):
        self.max_subscribers = max_subscribers
        self._subscribers: set[Subscription] = set()

    def subscribe(self, maxsize: int = DEFAULT_SUBSCRIBER_QUEUE_SIZE) -> Subscription:
        if len(self._subscribers) >= self.max_subscribers:
            raise TooManySubscribers(f"event bus is limited to {self.max_subscribers} subscribers")
        sub = Subscription(self, maxsize)
        self._subscribers.add(sub)
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        self._subscribers.discard(sub)

    def publish(self, event: dict[str, Any]) -> int:
        """Fan ``event`` out; returns how many subscribers received it."""
        delivered = 0
        for sub in list(self._subscribers):
            try:
                sub.queue.put_nowait(event)
                delivered += 1
            except asyncio.QueueFull:
                sub.dropped += 1
                logger.debug(f"[events] subscriber full, dropped {event.get('type')}")
        return delivered

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)


_bus = EventBus()


def get_event_bus() -> EventBus:
    return _bus


def set_event_bus(bus: EventBus) -> None:
    global _bus
    _bus = bus


def _decode(data: Any) -> dict[str, Any] | None:
    if isinstance(data, bytes):
        data = data.decode()
    try:
        event = json.loads(data)
    except (TypeError, ValueError):
        logger.warning(f"[events] ignoring malformed relay message: {data!r}")
        return None
    return event if isinstance(event, dict) else None


class RedisEventRelay:
    def __init__(
        self,
        url: str,
        channel: str = EVENTS_CHANNEL,
        *,
        client: redis.Redis | None = None,
        async_client: aioredis.Redis | None = None,
        reconnect_delay_s: float = 5.0,
    ):
        self.url = url
        self.channel = channel
        self.reconnect_delay_s = reconnect_delay_s
        self._client = client
        self._async_client = async_client
        self._task: asyncio.Task | None = None

    def _sync_client(self) -> redis.Redis:
        if self._client is None:
            self._client = redis.Redis.from_url(self.url, socket_connect_timeout=1.0, socket_timeout=1.0)
        return self._client

    def publish(self, event: dict[str, Any]) -> int:
        """Send ``event`` to every listening process; returns Redis' receiver count."""
        # Celery tasks each run in their own event loop; the sync client is loop-independent
        return int(self._sync_client().publish(self.channel, json.dumps(event, default=str)))

    async def forward(self, bus: EventBus) -> None:
        """Feed relay messages into ``bus`` until cancelled, reconnecting on Redis errors."""
        while True:
            client = self._async_client or aioredis.Redis.from_url(self.url)
            pubsub = client.pubsub()
            try:
                await pubsub.subscribe(self.channel)
                logger.info(f"[events] forwarding {self.channel} to local subscribers")
                while True:
                    message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                    if message is None:
                        continue
                    event = _decode(message.get("data"))
                    if event is not None:
                        bus.publish(event)
            except RedisError as exc:
                logger.warning(f"[events] relay connection lost ({exc}), retrying in {self.reconnect_delay_s:g}s")
            finally:
                await pubsub.aclose()
                if self._async_client is None:
                    await client.aclose()
            await asyncio.sleep(self.reconnect_delay_s)

    def start(self, bus: EventBus) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.forward(bus))
        return self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None


# None means events stay in this process (direct backend)
_relay: RedisEventRelay | None = None


def get_event_relay() -> RedisEventRelay | None:
    return _relay


def set_event_relay(relay: RedisEventRelay | None) -> None:
    global _relay
    _relay = relay


def enable_redis_relay(url: str) -> RedisEventRelay:
    global _relay
    if _relay is None or _relay.url != url:
        _relay = RedisEventRelay(url)
        logger.info("[events] cross-process event relay enabled (Redis pub/sub)")
    return _relay
