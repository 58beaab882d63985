"""Tests for realtime fan-out and the client-side order tracker."""
import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from freshlocal.models.events import OrderEvent, OrderEventType
from freshlocal.models.order import Actor, OrderStatus
from freshlocal.services.realtime import (
    MemoryTransport,
    OrderTracker,
    PostgresTransport,
    RealtimeChannel,
    Subscription,
    order_topic,
    vendor_topic,
)


@pytest.fixture
async def confirmed(place_order):
    order = await place_order()
    return order.transition(OrderStatus.CONFIRMED, Actor.PROCESSOR)


class TestChannel:

    def test_topic_names(self):
        assert vendor_topic("v1") == "vendor:v1"
        assert order_topic("o1") == "order:o1"

    async def test_customer_only_sees_their_order(self, realtime, confirmed):
        feed = await realtime.subscribe_order(confirmed.order_id)
        other = await realtime.subscribe_order("another-order")

        await realtime.publish_order_updated(confirmed, OrderStatus.PENDING)

        event = await feed.get(timeout=1)
        assert event.order_id == confirmed.order_id
        with pytest.raises(asyncio.TimeoutError):
            await other.get(timeout=0.05)
        await feed.close()
        await other.close()

    async def test_new_order_only_to_vendor(self, realtime, confirmed):
        order_feed = await realtime.subscribe_order(confirmed.order_id)

        await realtime.publish_new_order(confirmed)

        with pytest.raises(asyncio.TimeoutError):
            await order_feed.get(timeout=0.05)
        await order_feed.close()

    async def test_closed_subscription_is_removed(self, transport, realtime):
        feed = await realtime.subscribe_vendor("v1")
        await feed.close()
        assert transport.subscribers == {}

    async def test_publish_failure_does_not_raise(self, confirmed, caplog):
        transport = MemoryTransport()
        transport.publish = AsyncMock(side_effect=ConnectionError("down"))
        channel = RealtimeChannel(transport)

        await channel.publish_order_updated(confirmed, OrderStatus.PENDING)

        assert "Failed to publish" in caplog.text

    async def test_async_iteration(self, realtime, confirmed):
        feed = await realtime.subscribe_vendor(confirmed.vendor_id)
        await realtime.publish_new_order(confirmed)
        await realtime.publish_order_updated(confirmed, OrderStatus.PENDING)

        received = []
        async for event in feed:
            received.append(event.type)
            if len(received) == 2:
                break
        assert received == [OrderEventType.NEW_ORDER, OrderEventType.ORDER_UPDATED]
        await feed.close()


class TestOrderTracker:
    """Duplicate and out-of-order events are harmless"""

    def _event(self, order, status, seconds):
        moved = order.model_copy(update={
            "status": status,
            "updated_at": order.updated_at + timedelta(seconds=seconds),
        })
        return OrderEvent.from_order(OrderEventType.ORDER_UPDATED, moved, order.status)

    async def test_applies_newer_event(self, confirmed):
        tracker = OrderTracker(confirmed)
        assert tracker.apply(self._event(confirmed, OrderStatus.PREPARING, 1))
        assert tracker.status == OrderStatus.PREPARING
        assert tracker.order.status == OrderStatus.PREPARING

    async def test_duplicate_ignored(self, confirmed):
        tracker = OrderTracker(confirmed)
        event = self._event(confirmed, OrderStatus.PREPARING, 1)
        tracker.apply(event)
        assert not tracker.apply(event)
        assert tracker.status == OrderStatus.PREPARING

    async def test_stale_event_ignored(self, confirmed):
        tracker = OrderTracker(confirmed)
        tracker.apply(self._event(confirmed, OrderStatus.READY, 2))
        assert not tracker.apply(self._event(confirmed, OrderStatus.PREPARING, 1))
        assert tracker.status == OrderStatus.READY

    async def test_first_event_without_snapshot(self, confirmed):
        tracker = OrderTracker()
        assert not tracker.apply(self._event(confirmed, OrderStatus.PREPARING, 1))
        assert tracker.status == OrderStatus.PREPARING

    async def test_refresh_after_gap(self, confirmed):
        tracker = OrderTracker(confirmed)
        fetched = confirmed.model_copy(update={
            "status": OrderStatus.READY,
            "updated_at": confirmed.updated_at + timedelta(seconds=5),
        })
        assert tracker.refresh(fetched)
        assert not tracker.apply(self._event(confirmed, OrderStatus.PREPARING, 1))


class TestSubscriptionBacklog:

    async def test_slow_reader_loses_oldest(self, caplog):
        subscription = Subscription("t", maxsize=2)
        for message in ("first", "second", "third"):
            subscription.put(message)

        assert await subscription.get(timeout=1) == "second"
        assert await subscription.get(timeout=1) == "third"
        assert subscription.dropped == 1
        assert "behind" in caplog.text

    async def test_closed_subscription_ignores_messages(self):
        subscription = Subscription("t")
        await subscription.close()
        subscription.put("late")
        assert subscription.queue.empty()


@pytest.fixture
def listener(monkeypatch):
    conn = MagicMock()
    conn.add_listener = AsyncMock()
    conn.remove_listener = AsyncMock()
    conn.close = AsyncMock()
    conn.is_closed = MagicMock(return_value=False)
    connect = AsyncMock(return_value=conn)
    monkeypatch.setattr("freshlocal.services.realtime.asyncpg.connect", connect)
    return connect, conn


@pytest.fixture
def pg_transport():
    db = MagicMock()
    db.dsn = "postgresql://localhost/freshlocal"
    return PostgresTransport(db)


class TestPostgresTransport:

    async def test_subscribers_share_one_listener_connection(self, listener, pg_transport):
        connect, conn = listener

        feeds = [await pg_transport.subscribe("vendor:v1") for _ in range(5)]
        feeds.append(await pg_transport.subscribe("order:o1"))

        connect.assert_awaited_once_with("postgresql://localhost/freshlocal")
        pg_transport.db.pool.acquire.assert_not_called()
        topics = [call.args[0] for call in conn.add_listener.await_args_list]
        assert topics == ["vendor:v1", "order:o1"]
        for feed in feeds:
            await feed.close()

    async def test_notification_fans_out_to_topic(self, listener, pg_transport):
        first = await pg_transport.subscribe("vendor:v1")
        second = await pg_transport.subscribe("vendor:v1")
        other = await pg_transport.subscribe("vendor:v2")

        pg_transport._dispatch(None, 1, "vendor:v1", '{"n": 1}')

        assert await first.get(timeout=1) == '{"n": 1}'
        assert await second.get(timeout=1) == '{"n": 1}'
        assert other.queue.empty()

    async def test_unlisten_after_last_subscriber(self, listener, pg_transport):
        _, conn = listener
        first = await pg_transport.subscribe("order:o1")
        second = await pg_transport.subscribe("order:o1")

        await first.close()
        conn.remove_listener.assert_not_awaited()

        await second.close()
        conn.remove_listener.assert_awaited_once()
        assert conn.remove_listener.await_args.args[0] == "order:o1"
        assert pg_transport.subscribers == {}

    async def test_reconnect_relistens_existing_topics(self, listener, pg_transport):
        connect, conn = listener
        await pg_transport.subscribe("vendor:v1")
        conn.is_closed.return_value = True
        conn.add_listener.reset_mock()

        await pg_transport.subscribe("order:o1")

        assert connect.await_count == 2
        topics = [call.args[0] for call in conn.add_listener.await_args_list]
        assert topics == ["vendor:v1", "order:o1"]

    async def test_close_drops_listener(self, listener, pg_transport):
        _, conn = listener
        await pg_transport.subscribe("vendor:v1")

        await pg_transport.close()

        conn.close.assert_awaited_once()
        assert pg_transport.subscribers == {}
