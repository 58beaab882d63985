"""Order aggregate and its status transition table."""
from datetime import datetime
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Tuple
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from ..errors import InvalidTransition, TransitionForbidden
from .base import TimeStampedModel, utcnow

class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    READY = "ready"
    COLLECTED = "collected"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"

class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"

class FulfilmentType(str, Enum):
    COLLECTION = "collection"
    DELIVERY = "delivery"

class ClientPaymentOutcome(str, Enum):
    """What the paying device reported; advisory only"""
    SUCCEEDED = "succeeded"
    CANCELLED = "cancelled"
    FAILED = "failed"

class Actor(str, Enum):
    CUSTOMER = "customer"
    VENDOR = "vendor"
    ADMIN = "admin"
    PROCESSOR = "processor"

TERMINAL_STATUSES = frozenset({
    OrderStatus.COLLECTED,
    OrderStatus.DELIVERED,
    OrderStatus.CANCELLED,
})

# (from, to) -> (fulfilment types allowed or None for any, actors allowed)
TRANSITIONS: Dict[Tuple[OrderStatus, OrderStatus],
                  Tuple[Optional[FrozenSet[FulfilmentType]], FrozenSet[Actor]]] = {
    (OrderStatus.PENDING, OrderStatus.CONFIRMED): (
        None, frozenset({Actor.PROCESSOR})),
    (OrderStatus.PENDING, OrderStatus.CANCELLED): (
        None, frozenset({Actor.CUSTOMER, Actor.VENDOR, Actor.ADMIN})),
    (OrderStatus.CONFIRMED, OrderStatus.PREPARING): (
        None, frozenset({Actor.VENDOR})),
    (OrderStatus.CONFIRMED, OrderStatus.CANCELLED): (
        None, frozenset({Actor.VENDOR, Actor.ADMIN})),
    (OrderStatus.PREPARING, OrderStatus.READY): (
        None, frozenset({Actor.VENDOR})),
    (OrderStatus.READY, OrderStatus.COLLECTED): (
        frozenset({FulfilmentType.COLLECTION}), frozenset({Actor.VENDOR})),
    (OrderStatus.READY, OrderStatus.DELIVERED): (
        frozenset({FulfilmentType.DELIVERY}), frozenset({Actor.VENDOR})),
}

def is_legal(current: OrderStatus, target: OrderStatus,
             fulfilment_type: FulfilmentType) -> bool:
    """True if the table allows current -> target for this fulfilment type"""
    rule = TRANSITIONS.get((OrderStatus(current), OrderStatus(target)))
    if rule is None:
        return False
    fulfilments, _ = rule
    return fulfilments is None or FulfilmentType(fulfilment_type) in fulfilments

def allowed_targets(current: OrderStatus, fulfilment_type: FulfilmentType) -> List[OrderStatus]:
    return [
        target for (source, target) in TRANSITIONS
        if source == current and is_legal(source, target, fulfilment_type)
    ]

class DeliveryAddress(BaseModel):
    """Address snapshot taken at order time"""
    label: str = "Home"
    line1: str
    line2: Optional[str] = None
    city: str
    postcode: str

    model_config = ConfigDict(frozen=True)

class OrderItem(BaseModel):
    """Individual line of an order; immutable once created"""
    meal_id: str
    meal_name: str
    quantity: int = Field(ge=1)
    unit_price: int = Field(ge=0)

    model_config = ConfigDict(frozen=True, from_attributes=True)

    @property
    def total_price(self) -> int:
        return self.unit_price * self.quantity

class Order(TimeStampedModel):
    """One purchase from one vendor"""
    order_id: str = Field(default_factory=lambda: str(uuid4()))
    customer_id: str
    vendor_id: str
    fulfilment_type: FulfilmentType
    items: List[OrderItem]
    subtotal: int
    service_fee: int
    delivery_fee: int = 0
    discount_amount: int = 0
    total: int
    status: OrderStatus = OrderStatus.PENDING
    payment_status: PaymentStatus = PaymentStatus.PENDING
    payment_intent_id: Optional[str] = None
    client_payment_outcome: Optional[ClientPaymentOutcome] = None
    promo_code_id: Optional[str] = None
    collection_time: Optional[datetime] = None
    delivery_address: Optional[DeliveryAddress] = None
    notes: Optional[str] = None
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_completed(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_paid(self) -> bool:
        return self.payment_status == PaymentStatus.PAID

    def check_transition(self, target: OrderStatus, actor: Actor) -> None:
        """Raise unless ``actor`` may move this order to ``target``"""
        target = OrderStatus(target)
        if not is_legal(self.status, target, self.fulfilment_type):
            raise InvalidTransition(self.order_id, self.status.value, target.value)
        _, actors = TRANSITIONS[(self.status, target)]
        if Actor(actor) not in actors:
            raise TransitionForbidden(
                self.order_id, self.status.value, target.value, Actor(actor).value
            )

    def transition(self, target: OrderStatus, actor: Actor,
                   now: Optional[datetime] = None) -> "Order":
        """Return a copy of this order in ``target``; self is left unchanged"""
        self.check_transition(target, actor)
        return self.model_copy(update={
            "status": OrderStatus(target),
            "updated_at": now or utcnow(),
        })
