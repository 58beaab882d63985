from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional
from pydantic import BaseModel
from .order import Order, OrderStatus

class OrderEventType(str, Enum):
    NEW_ORDER = "new_order"  # vendor-facing
    ORDER_UPDATED = "order_updated"  # vendor and customer

class OrderEvent(BaseModel):
    """Realtime message about one order"""
    type: OrderEventType
    order_id: str
    vendor_id: str
    customer_id: str
    status: OrderStatus
    previous_status: Optional[OrderStatus] = None
    updated_at: datetime
    order: Dict[str, Any]

    @classmethod
    def from_order(cls, event_type: OrderEventType, order: Order,
                   previous_status: Optional[OrderStatus] = None) -> "OrderEvent":
        return cls(
            type=event_type,
            order_id=order.order_id,
            vendor_id=order.vendor_id,
            customer_id=order.customer_id,
            status=order.status,
            previous_status=previous_status,
            updated_at=order.updated_at,
            order=order.model_dump(mode="json"),
        )
