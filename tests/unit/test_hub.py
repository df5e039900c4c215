import asyncio

import pytest
from redis.exceptions import ResponseError

from app.core.errors import TransientNetworkError
from app.modules.realtime.hub import ChangeHub, RowFilter, Subscription, topic_for
from app.modules.realtime.schemas import ChangeEvent
from app.platform.adapters.bus_memory import InMemoryEventBus


class _BrokenListener:
    def __init__(self, error: Exception):
        self.error = error

    async def start(self):
        pass

    def __aiter__(self):
        return self

    async def __anext__(self):
        raise self.error

    async def aclose(self):
        pass


class FlakyBus(InMemoryEventBus):
    def __init__(self, failures: int = 1, error: Exception | None = None):
        super().__init__()
        self.failures = failures
        self.error = error or TransientNetworkError("feed dropped")

    def listen(self, topic):
        if self.failures:
            self.failures -= 1
            return _BrokenListener(self.error)
        return super().listen(topic)


def test_row_filter_passes_events_without_a_record():
    f = RowFilter("conversation_id", "c1")
    assert f.matches(None)
    assert f.matches({"id": "m1"})
    assert f.matches({"conversation_id": "c1"})
    assert not f.matches({"conversation_id": "c2"})


def test_subscription_event_filter_and_resync():
    sub = Subscription(table="messages", handler=lambda e: None, events=frozenset({"INSERT"}))
    assert sub.wants(ChangeEvent(table="messages", type="INSERT"))
    assert not sub.wants(ChangeEvent(table="messages", type="UPDATE"))
    assert sub.wants(ChangeEvent(table="messages", type="RESYNC"))


@pytest.mark.asyncio
async def test_one_listener_per_table_reference_counted(bus, hub, settle):
    a = hub.subscribe("messages", lambda e: None)
    b = hub.subscribe("messages", lambda e: None)
    await settle()
    assert hub.refcount("messages") == 2
    assert bus.listener_count(topic_for("messages")) == 1

    await hub.unsubscribe(a)
    assert hub.refcount("messages") == 1
    assert bus.listener_count(topic_for("messages")) == 1

    await hub.unsubscribe(b)
    await hub.unsubscribe(b)  # idempotent
    await settle()
    assert hub.refcount("messages") == 0
    assert hub.channel("messages") is None
    assert bus.listener_count(topic_for("messages")) == 0


@pytest.mark.asyncio
async def test_events_are_filtered_per_subscriber(bus, hub, settle):
    mine, everything = [], []
    hub.subscribe("messages", mine.append, events={"INSERT"}, row_filter=RowFilter("conversation_id", "c1"))
    hub.subscribe("messages", everything.append)

    for conv, kind in [("c1", "INSERT"), ("c2", "INSERT"), ("c1", "UPDATE")]:
        event = ChangeEvent(table="messages", type=kind, record={"conversation_id": conv})
        await bus.publish(topic_for("messages"), key=conv, value=event.model_dump(mode="json"))
    await settle()

    assert [(e.type, e.record["conversation_id"]) for e in mine] == [("INSERT", "c1")]
    assert len(everything) == 3


@pytest.mark.asyncio
async def test_malformed_events_are_dropped(bus, hub, settle):
    seen = []
    hub.subscribe("messages", seen.append)
    await bus.publish(topic_for("messages"), key="x", value={"table": "messages", "type": "TRUNCATE"})
    await settle()
    assert seen == []


@pytest.mark.asyncio
async def test_failing_handler_does_not_stop_delivery(bus, hub, settle):
    seen = []

    def boom(event):
        raise RuntimeError("handler bug")

    hub.subscribe("conversations", boom)
    hub.subscribe("conversations", seen.append)
    await bus.publish(topic_for("conversations"), key="c1", value={"table": "conversations", "type": "INSERT"})
    await settle()
    assert len(seen) == 1


@pytest.mark.asyncio
async def test_lost_feed_reconnects_and_requests_resync(settle):
    bus = FlakyBus(failures=1)
    hub = ChangeHub(bus)
    seen = []
    try:
        hub.subscribe("messages", seen.append, events={"INSERT"})
        await settle()
        assert [e.type for e in seen] == ["RESYNC"]
        assert hub.channel("messages").reconnects == 1

        await bus.publish(topic_for("messages"), key="m1", value={"table": "messages", "type": "INSERT"})
        await settle()
        assert [e.type for e in seen] == ["RESYNC", "INSERT"]
    finally:
        await hub.close()


@pytest.mark.asyncio
async def test_server_error_on_feed_reconnects_for_every_subscriber(settle):
    bus = FlakyBus(failures=1, error=ResponseError("WRONGTYPE Operation against a key holding the wrong kind of value"))
    hub = ChangeHub(bus)
    first, second = [], []
    try:
        hub.subscribe("messages", first.append)
        await settle()
        channel = hub.channel("messages")
        assert channel.alive and channel.reconnects == 1

        hub.subscribe("messages", second.append)
        await bus.publish(topic_for("messages"), key="m1", value={"table": "messages", "type": "INSERT"})
        await settle()
        assert [e.type for e in first] == ["RESYNC", "INSERT"]
        assert [e.type for e in second] == ["INSERT"]
    finally:
        await hub.close()


@pytest.mark.asyncio
async def test_stopped_channel_restarts_on_next_subscribe(bus, hub, settle):
    seen = []
    hub.subscribe("conversations", seen.append)
    await settle()
    channel = hub.channel("conversations")
    channel.task.cancel()
    await settle()
    assert not channel.alive

    later = []
    hub.subscribe("conversations", later.append)
    await hub.ready("conversations")
    assert channel.alive
    await bus.publish(topic_for("conversations"), key="c1", value={"table": "conversations", "type": "UPDATE"})
    await settle()
    assert [e.type for e in seen] == ["RESYNC", "UPDATE"]
    assert [e.type for e in later] == ["RESYNC", "UPDATE"]


@pytest.mark.asyncio
async def test_ready_returns_when_the_feed_cannot_attach(settle):
    class DeadListener(_BrokenListener):
        async def start(self):
            raise self.error

    class DeadBus(InMemoryEventBus):
        def listen(self, topic):
            return DeadListener(TransientNetworkError("bus unreachable"))

    hub = ChangeHub(DeadBus())
    try:
        hub.subscribe("messages", lambda e: None)
        await asyncio.wait_for(hub.ready("messages"), timeout=1)
    finally:
        await hub.close()
