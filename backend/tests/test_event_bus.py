import asyncio
import json

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy import select

from app.models import ActivityLog
from app.routes_events import sse_events
from app.services import activity
from app.services.event_bus import (
    EVENTS_CHANNEL,
    EventBus,
    RedisEventRelay,
    TooManySubscribers,
    get_event_bus,
    set_event_relay,
)


def test_full_subscriber_misses_events_without_blocking_others():
    bus = EventBus()
    slow = bus.subscribe(maxsize=1)
    fast = bus.subscribe(maxsize=10)

    assert bus.publish({"type": "a"}) == 2
    assert bus.publish({"type": "b"}) == 1

    assert slow.dropped == 1
    assert slow.queue.qsize() == 1
    assert fast.queue.qsize() == 2


def test_subscriber_limit_and_unsubscribe():
    bus = EventBus(max_subscribers=1)
    sub = bus.subscribe()
    with pytest.raises(TooManySubscribers):
        bus.subscribe()
    sub.close()
    assert bus.subscriber_count == 0
    bus.subscribe()


async def test_activity_is_persisted_and_broadcast(session):
    sub = get_event_bus().subscribe()

    await activity.record(
        session, activity.POST_VIRAL, "Post ABC flagged as viral", entity_type="post", entity_id=7,
        metadata={"viral_score": 4.2},
    )

    row = (await session.execute(select(ActivityLog))).scalar_one()
    assert row.event_type == "post_viral"
    assert row.meta == {"viral_score": 4.2}

    event = sub.queue.get_nowait()
    assert event["type"] == "post_viral"
    assert event["data"]["entity_id"] == 7
    assert event["data"]["message"] == "Post ABC flagged as viral"
    assert "timestamp" in event


async def test_sse_stream_frames_and_cleanup():
    bus = get_event_bus()
    sub = bus.subscribe()
    stream = sse_events(sub, keepalive_s=0.05)

    first = await stream.__anext__()
    assert first.startswith("data: ") and '"connected"' in first

    assert await stream.__anext__() == ": keep-alive\n\n"

    bus.publish({"type": "slide_generated", "data": {}})
    frame = await asyncio.wait_for(stream.__anext__(), timeout=1)
    assert '"slide_generated"' in frame
    assert frame.endswith("\n\n")

    await stream.aclose()
    assert bus.subscriber_count == 0


class FakeRedis:
    def __init__(self, error: Exception | None = None):
        self.published: list[tuple[str, str]] = []
        self.error = error

    def publish(self, channel, data):
        if self.error is not None:
            raise self.error
        self.published.append((channel, data))
        return 1


class FakePubSub:
    def __init__(self, messages):
        self.messages = list(messages)
        self.channels: list[str] = []
        self.closed = False

    async def subscribe(self, channel):
        self.channels.append(channel)

    async def get_message(self, ignore_subscribe_messages=False, timeout=None):
        if self.messages:
            return self.messages.pop(0)
        await asyncio.sleep(0.01)
        return None

    async def aclose(self):
        self.closed = True


class FakeAsyncRedis:
    def __init__(self, pubsub):
        self._pubsub = pubsub

    def pubsub(self):
        return self._pubsub


async def test_worker_events_go_through_the_relay(session):
    fake = FakeRedis()
    set_event_relay(RedisEventRelay("redis://broker:6379/0", client=fake))
    local = get_event_bus().subscribe()

    await activity.record(session, activity.SLIDE_GENERATED, "Slide 1/3 generated for ABC", entity_id=4)

    assert len(fake.published) == 1
    channel, data = fake.published[0]
    assert channel == EVENTS_CHANNEL
    event = json.loads(data)
    assert event["type"] == "slide_generated"
    assert event["data"]["entity_id"] == 4
    # the API process's forwarder delivers it, not this process
    assert local.queue.empty()


async def test_relay_outage_falls_back_to_local_delivery(session):
    set_event_relay(RedisEventRelay("redis://broker:6379/0", client=FakeRedis(error=RedisConnectionError("down"))))
    local = get_event_bus().subscribe()

    await activity.record(session, activity.PUBLISH_FAILED, "Publishing failed")

    assert local.queue.get_nowait()["type"] == "publish_failed"
    assert (await session.execute(select(ActivityLog))).scalar_one().event_type == "publish_failed"


async def test_forwarder_feeds_local_subscribers():
    event = {"type": "post_viral", "data": {"entity_id": 9}, "timestamp": "2026-10-19T10:00:00+00:00"}
    pubsub = FakePubSub([
        {"type": "message", "data": b"not json"},
        {"type": "message", "data": json.dumps(event).encode()},
    ])
    relay = RedisEventRelay("redis://broker:6379/0", async_client=FakeAsyncRedis(pubsub))
    bus = EventBus()
    sub = bus.subscribe()

    relay.start(bus)
    received = await asyncio.wait_for(sub.get(), timeout=1)
    await relay.stop()

    assert received == event
    assert sub.queue.empty()
    assert pubsub.channels == [EVENTS_CHANNEL]
    assert pubsub.closed
