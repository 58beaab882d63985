import asyncio
import logging
from typing import Dict, Optional, Set

import aiohttp

from ..config import Config
from ..database.store import Store
from ..models.order import Order, OrderStatus

STATUS_MESSAGES: Dict[OrderStatus, Dict[str, str]] = {
    OrderStatus.PENDING: {
        "title": "Order Received",
        "body": "Your order has been received and is awaiting confirmation.",
    },
    OrderStatus.CONFIRMED: {
        "title": "Order Confirmed! ✓",
        "body": "The vendor has confirmed your order.",
    },
    OrderStatus.PREPARING: {
        "title": "Now Preparing 👨‍🍳",
        "body": "Your order is being prepared with care.",
    },
    OrderStatus.READY: {
        "title": "Order Ready! 🔔",
        "body": "Your order is ready for collection!",
    },
    OrderStatus.COLLECTED: {
        "title": "Collected 🎉",
        "body": "You have collected your order. Enjoy!",
    },
    OrderStatus.DELIVERED: {
        "title": "Delivered 🎉",
        "body": "Your order has been delivered. Enjoy!",
    },
    OrderStatus.CANCELLED: {
        "title": "Order Cancelled",
        "body": "Your order has been cancelled.",
    },
}

class NotificationService:
    """Push notifications to the customer's device.

    Sends run as background tasks; a failure is logged and never reaches the
    status transition that triggered it.
    """

    def __init__(self, store: Store, push_url: Optional[str] = None):
        self.store = store
        self.push_url = push_url or Config.EXPO_PUSH_URL
        self.logger = logging.getLogger(__name__)
        self._tasks: Set[asyncio.Task] = set()

    def notify_status_change(self, order: Order) -> None:
        """Fire-and-forget push for the order's new status"""
        task = asyncio.create_task(self.send_status_notification(order))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def send_status_notification(self, order: Order) -> bool:
        try:
            profile = await self.store.get_profile(order.customer_id)
            if not profile or not profile.push_token:
                return False

            message = STATUS_MESSAGES[order.status]
            payload = {
                "to": profile.push_token,
                "title": message["title"],
                "body": message["body"],
                "sound": "default",
                "channelId": "orders",
                "data": {"orderId": order.order_id, "status": order.status.value},
            }
            return await self.push(payload)
        except Exception as e:
            self.logger.error(
                f"Failed to notify customer about order {order.order_id}: {e}",
                exc_info=True
            )
            return False

    async def push(self, payload: Dict) -> bool:
        async with aiohttp.ClientSession() as session:
            async with session.post(self.push_url, json=payload) as response:
                if response.status != 200:
                    self.logger.warning(f"Push service returned {response.status}")
                    return False
                return True

    async def drain(self) -> None:
        """Wait for in-flight sends; used on shutdown"""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
