"""
Unit tests for realtime import event delivery
"""
import asyncio
import uuid
from datetime import datetime, timezone

import pytest

from poi_share.config.settings import RealtimeSettings
from poi_share.core.exceptions import EventsMissedError, TransientNetworkError
from poi_share.schemas.shared_link import ImportEventMessage, ImportEventRead
from poi_share.services.realtime_notifier import (
    BrokerListener,
    ImportEventBroker,
    MemoryBroker,
    RealtimeNotifier,
    RedisBroker,
)

FAST = RealtimeSettings(reconnect_initial_delay=0.01, reconnect_max_delay=0.05)


def message(link_id, event_id=None, count=1):
    event = ImportEventRead(
        id=event_id or str(uuid.uuid4()),
        shared_link_id=link_id,
        imported_count=count,
        created_at=datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc),
    )
    return ImportEventMessage(event=event, share_code=f"CODE-{link_id}", link_import_count=count)


class OwnedLinks:
    def __init__(self, *link_ids):
        self.link_ids = set(link_ids)
        self.loads = 0

    async def __call__(self, owner_id):
        self.loads += 1
        return set(self.link_ids)


async def next_message(subscription, timeout=1.0):
    return await asyncio.wait_for(subscription.__anext__(), timeout)


@pytest.mark.asyncio
async def test_subscription_receives_only_owned_links():
    broker = MemoryBroker()
    notifier = RealtimeNotifier(broker, OwnedLinks("link-1"), FAST)

    async with await notifier.subscribe("owner-1") as subscription:
        await notifier.publish(message("other-link"))
        await notifier.publish(message("link-1", event_id="evt-1"))

        received = await next_message(subscription)
        assert received.event.id == "evt-1"


@pytest.mark.asyncio
async def test_filter_refreshes_for_links_created_after_subscribing():
    """A link created later is picked up without resubscribing"""
    owned = OwnedLinks("link-1")
    notifier = RealtimeNotifier(MemoryBroker(), owned, FAST)
    subscription = await notifier.subscribe("owner-1")

    owned.link_ids.add("link-2")
    await notifier.publish(message("link-2", event_id="evt-new"))

    received = await next_message(subscription)
    assert received.event.id == "evt-new"
    assert "link-2" in subscription.owned_link_ids
    await subscription.unsubscribe()


@pytest.mark.asyncio
async def test_foreign_links_are_not_reloaded_every_time():
    owned = OwnedLinks("link-1")
    notifier = RealtimeNotifier(MemoryBroker(), owned, FAST)
    subscription = await notifier.subscribe("owner-1")

    for _ in range(3):
        await notifier.publish(message("foreign"))
    await notifier.publish(message("link-1", event_id="evt-1"))
    await next_message(subscription)

    # One load on open, one refresh for the first foreign event.
    assert owned.loads == 2
    await subscription.unsubscribe()


@pytest.mark.asyncio
async def test_duplicate_event_ids_are_dropped():
    notifier = RealtimeNotifier(MemoryBroker(), OwnedLinks("link-1"), FAST)
    subscription = await notifier.subscribe("owner-1")

    await notifier.publish(message("link-1", event_id="evt-1"))
    await notifier.publish(message("link-1", event_id="evt-1"))
    await notifier.publish(message("link-1", event_id="evt-2"))

    assert (await next_message(subscription)).event.id == "evt-1"
    assert (await next_message(subscription)).event.id == "evt-2"
    await subscription.unsubscribe()


@pytest.mark.asyncio
async def test_unsubscribe_releases_listener_and_ends_iteration():
    broker = MemoryBroker()
    notifier = RealtimeNotifier(broker, OwnedLinks("link-1"), FAST)
    subscription = await notifier.subscribe("owner-1")
    assert broker.listener_count == 1

    await subscription.unsubscribe()

    assert broker.listener_count == 0
    assert subscription.closed
    with pytest.raises(StopAsyncIteration):
        await next_message(subscription)


@pytest.mark.asyncio
async def test_failed_owner_lookup_releases_listener():
    async def failing_loader(owner_id):
        raise TransientNetworkError("database")

    broker = MemoryBroker()
    notifier = RealtimeNotifier(broker, failing_loader, FAST)

    with pytest.raises(TransientNetworkError):
        await notifier.subscribe("owner-1")
    assert broker.listener_count == 0


class _ScriptedListener(BrokerListener):
    def __init__(self, items):
        self.items = list(items)
        self.closed = False

    async def __anext__(self):
        if not self.items:
            await asyncio.Event().wait()
        item = self.items.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    async def aclose(self):
        self.closed = True


class FlakyBroker(ImportEventBroker):
    """First listener drops after one event; later listeners stay healthy."""

    def __init__(self, scripts):
        self.scripts = list(scripts)
        self.listeners = []

    async def publish(self, message):
        raise NotImplementedError

    async def listen(self):
        listener = _ScriptedListener(self.scripts.pop(0))
        self.listeners.append(listener)
        return listener


@pytest.mark.asyncio
async def test_broker_failure_reconnects_with_backoff():
    """A dropped stream reconnects, reports the gap once and deduplicates redelivered events"""
    first = message("link-1", event_id="evt-1")
    second = message("link-1", event_id="evt-2")
    broker = FlakyBroker([
        [first, TransientNetworkError("redis")],
        [first, second],
    ])
    notifier = RealtimeNotifier(broker, OwnedLinks("link-1"), FAST)
    subscription = await notifier.subscribe("owner-1")

    assert (await next_message(subscription)).event.id == "evt-1"
    with pytest.raises(EventsMissedError):
        await next_message(subscription)
    assert (await next_message(subscription)).event.id == "evt-2"
    assert subscription.reconnects == 1
    assert broker.listeners[0].closed

    await subscription.unsubscribe()
    assert broker.listeners[1].closed


class FakePubSub:
    def __init__(self, client):
        self.client = client
        self.queue = asyncio.Queue()
        self.channels = set()
        self.closed = False

    async def subscribe(self, channel):
        self.channels.add(channel)
        self.client.pubsubs.append(self)

    async def unsubscribe(self, channel):
        self.channels.discard(channel)

    async def get_message(self, ignore_subscribe_messages=True, timeout=1.0):
        try:
            return await asyncio.wait_for(self.queue.get(), timeout)
        except asyncio.TimeoutError:
            return None

    async def aclose(self):
        self.closed = True
        self.client.pubsubs.remove(self)


class FakeRedis:
    """Just enough of redis.asyncio.Redis for pub/sub."""

    def __init__(self):
        self.pubsubs = []
        self.closed = False

    def pubsub(self):
        return FakePubSub(self)

    async def publish(self, channel, data):
        for pubsub in self.pubsubs:
            if channel in pubsub.channels:
                pubsub.queue.put_nowait({"type": "message", "channel": channel, "data": data})
        return len(self.pubsubs)

    async def aclose(self):
        self.closed = True


@pytest.mark.asyncio
async def test_redis_broker_round_trips_messages():
    client = FakeRedis()
    broker = RedisBroker("redis://unused", "poi-import-events", client=client)
    notifier = RealtimeNotifier(broker, OwnedLinks("link-1"), FAST)
    await notifier.start()
    subscription = await notifier.subscribe("owner-1")

    sent = message("link-1", event_id="evt-redis", count=4)
    await notifier.publish(sent)

    received = await next_message(subscription, timeout=3.0)
    assert received == sent

    await subscription.unsubscribe()
    assert client.pubsubs == []
    await notifier.close()
    assert client.closed


@pytest.mark.asyncio
async def test_memory_broker_drops_oldest_when_listener_is_full():
    broker = MemoryBroker(queue_size=2)
    listener = await broker.listen()

    for event_id in ("a", "b", "c"):
        await broker.publish(message("link-1", event_id=event_id))

    assert (await listener.__anext__()).event.id == "b"
    assert (await listener.__anext__()).event.id == "c"
    assert listener.take_missed() == 1
    assert listener.take_missed() == 0
    await listener.aclose()


@pytest.mark.asyncio
async def test_unexpected_listener_error_ends_stream_and_releases_listener():
    """A non-transient broker failure ends iteration instead of hanging consumers"""
    broker = FlakyBroker([[RuntimeError("unexpected broker reply")]])
    notifier = RealtimeNotifier(broker, OwnedLinks("link-1"), FAST)
    subscription = await notifier.subscribe("owner-1")

    with pytest.raises(StopAsyncIteration):
        await next_message(subscription)
    assert subscription.ended

    await subscription.unsubscribe()
    assert broker.listeners[0].closed
    assert subscription.closed


@pytest.mark.asyncio
async def test_unsubscribe_closes_listener_when_pump_failed():
    async def flaky_loader(owner_id):
        flaky_loader.calls += 1
        if flaky_loader.calls > 1:
            raise RuntimeError("database driver crashed")
        return {"link-1"}

    flaky_loader.calls = 0
    broker = MemoryBroker()
    notifier = RealtimeNotifier(broker, flaky_loader, FAST)
    subscription = await notifier.subscribe("owner-1")

    # Unknown link forces a reload, which fails unexpectedly.
    await notifier.publish(message("link-2"))
    with pytest.raises(StopAsyncIteration):
        await next_message(subscription)

    await subscription.unsubscribe()
    assert broker.listener_count == 0


@pytest.mark.asyncio
async def test_overflowed_listener_reports_missed_events():
    """Events dropped for a slow consumer surface as a gap before the next event"""
    broker = MemoryBroker(queue_size=1)
    notifier = RealtimeNotifier(broker, OwnedLinks("link-1"), FAST)
    subscription = await notifier.subscribe("owner-1")

    # Publishing never yields, so the pump cannot drain in between.
    for event_id in ("evt-1", "evt-2", "evt-3"):
        await notifier.publish(message("link-1", event_id=event_id))

    with pytest.raises(EventsMissedError):
        await next_message(subscription)
    assert (await next_message(subscription)).event.id == "evt-3"
    await subscription.unsubscribe()
