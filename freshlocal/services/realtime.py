"""Realtime fan-out of order changes.

Topics are ``vendor:<vendor_id>`` (new orders and every mutation of that
vendor's orders) and ``order:<order_id>`` (the customer tracking one order).
Delivery is at-least-once and best-effort: subscribers reconcile by
``updated_at`` and refetch the order when they suspect a gap, the store stays
the source of truth.
"""
import asyncio
import logging
from datetime import datetime
from typing import Dict, Optional, Set

import asyncpg

from ..models.events import OrderEvent, OrderEventType
from ..models.order import Order, OrderStatus

logger = logging.getLogger(__name__)

# Per-subscriber backlog; the oldest message is dropped when a reader falls behind
MAX_QUEUED_MESSAGES = 100

def vendor_topic(vendor_id: str) -> str:
    return f"vendor:{vendor_id}"

def order_topic(order_id: str) -> str:
    return f"order:{order_id}"

class Subscription:
    """Async iterator over the raw messages of one topic"""

    def __init__(self, topic: str, on_close=None, maxsize: int = MAX_QUEUED_MESSAGES):
        self.topic = topic
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._on_close = on_close
        self.closed = False
        self.dropped = 0

    def put(self, message: str) -> None:
        if self.closed:
            return
        if self.queue.full():
            self.queue.get_nowait()
            self.dropped += 1
            if self.dropped == 1 or self.dropped % 100 == 0:
                logger.warning(f"Subscriber on {self.topic} is behind; {self.dropped} dropped")
        self.queue.put_nowait(message)

    async def get(self, timeout: Optional[float] = None) -> str:
        return await asyncio.wait_for(self.queue.get(), timeout)

    def __aiter__(self):
        return self

    async def __anext__(self) -> str:
        if self.closed:
            raise StopAsyncIteration
        return await self.queue.get()

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        if self._on_close:
            await self._on_close(self)

class MemoryTransport:
    """Single-process transport"""

    def __init__(self):
        self.subscribers: Dict[str, Set[Subscription]] = {}

    async def publish(self, topic: str, message: str) -> None:
        for subscription in list(self.subscribers.get(topic, ())):
            subscription.put(message)

    async def subscribe(self, topic: str) -> Subscription:
        subscription = Subscription(topic, on_close=self._unsubscribe)
        self.subscribers.setdefault(topic, set()).add(subscription)
        return subscription

    async def _unsubscribe(self, subscription: Subscription) -> None:
        subscribers = self.subscribers.get(subscription.topic)
        if subscribers is not None:
            subscribers.discard(subscription)
            if not subscribers:
                del self.subscribers[subscription.topic]

    async def close(self) -> None:
        self.subscribers.clear()

class PostgresTransport:
    """LISTEN/NOTIFY for every subscriber over one connection outside the pool.

    Each topic is LISTENed once while it has subscribers; notifications are
    fanned out to in-process queues. Publishing borrows a pooled connection
    for a single statement.
    """

    def __init__(self, db):
        self.db = db
        self.subscribers: Dict[str, Set[Subscription]] = {}
        self._conn: Optional[asyncpg.Connection] = None
        self._lock = asyncio.Lock()

    async def publish(self, topic: str, message: str) -> None:
        async with self.db.pool.acquire() as conn:
            await conn.execute("SELECT pg_notify($1, $2)", topic, message)

    async def _listener(self) -> asyncpg.Connection:
        """The shared LISTEN connection, reopened if it was lost"""
        if self._conn is None or self._conn.is_closed():
            self._conn = await asyncpg.connect(self.db.dsn)
            for topic in self.subscribers:
                await self._conn.add_listener(topic, self._dispatch)
            logger.info(f"Realtime listener connected ({len(self.subscribers)} topics)")
        return self._conn

    def _dispatch(self, connection, pid, channel, payload):
        for subscription in list(self.subscribers.get(channel, ())):
            subscription.put(payload)

    async def subscribe(self, topic: str) -> Subscription:
        async with self._lock:
            conn = await self._listener()
            if topic not in self.subscribers:
                await conn.add_listener(topic, self._dispatch)
                self.subscribers[topic] = set()
            subscription = Subscription(topic, on_close=self._unsubscribe)
            self.subscribers[topic].add(subscription)
            return subscription

    async def _unsubscribe(self, subscription: Subscription) -> None:
        async with self._lock:
            subscribers = self.subscribers.get(subscription.topic)
            if subscribers is None:
                return
            subscribers.discard(subscription)
            if subscribers:
                return
            del self.subscribers[subscription.topic]
            if self._conn is not None and not self._conn.is_closed():
                await self._conn.remove_listener(subscription.topic, self._dispatch)

    async def close(self) -> None:
        async with self._lock:
            self.subscribers.clear()
            if self._conn is not None and not self._conn.is_closed():
                await self._conn.close()
            self._conn = None

class RealtimeChannel:
    """Publishes order events and opens typed subscriptions"""

    def __init__(self, transport):
        self.transport = transport

    async def publish_new_order(self, order: Order) -> None:
        event = OrderEvent.from_order(OrderEventType.NEW_ORDER, order)
        await self._publish(vendor_topic(order.vendor_id), event)

    async def publish_order_updated(self, order: Order,
                                    previous_status: Optional[OrderStatus] = None) -> None:
        event = OrderEvent.from_order(OrderEventType.ORDER_UPDATED, order, previous_status)
        await self._publish(vendor_topic(order.vendor_id), event)
        await self._publish(order_topic(order.order_id), event)

    async def _publish(self, topic: str, event: OrderEvent) -> None:
        try:
            await self.transport.publish(topic, event.model_dump_json())
        except Exception as e:
            # Subscribers recover by refetching; a lost event must not fail the write
            logger.error(f"Failed to publish {event.type.value} on {topic}: {e}")

    async def subscribe_vendor(self, vendor_id: str) -> "EventSubscription":
        return EventSubscription(await self.transport.subscribe(vendor_topic(vendor_id)))

    async def subscribe_order(self, order_id: str) -> "EventSubscription":
        return EventSubscription(await self.transport.subscribe(order_topic(order_id)))

class EventSubscription:
    """Subscription that yields parsed ``OrderEvent``s"""

    def __init__(self, subscription: Subscription):
        self.subscription = subscription

    async def get(self, timeout: Optional[float] = None) -> OrderEvent:
        return OrderEvent.model_validate_json(await self.subscription.get(timeout))

    def __aiter__(self):
        return self

    async def __anext__(self) -> OrderEvent:
        return OrderEvent.model_validate_json(await self.subscription.__anext__())

    async def close(self) -> None:
        await self.subscription.close()

class OrderTracker:
    """Client-side view of one order that tolerates duplicate and stale events"""

    def __init__(self, order: Optional[Order] = None):
        self.order = order
        self.updated_at: Optional[datetime] = order.updated_at if order else None
        self.status: Optional[OrderStatus] = order.status if order else None

    def apply(self, event: OrderEvent) -> bool:
        """Apply ``event`` if it is newer than what we hold.

        Returns True when the tracked status changed.
        """
        if self.updated_at is not None and event.updated_at <= self.updated_at:
            return False
        previous = self.status
        self.order = Order.model_validate(event.order)
        self.updated_at = event.updated_at
        self.status = event.status
        return previous is not None and previous != event.status

    def refresh(self, order: Order) -> bool:
        """Replace the view with a refetched order; used after a suspected gap"""
        if self.updated_at is not None and order.updated_at < self.updated_at:
            return False
        previous = self.status
        self.order = order
        self.updated_at = order.updated_at
        self.status = order.status
        return previous is not None and previous != order.status
