import logging
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from pydantic import BaseModel

from ..config import Config
from ..database.store import Store, StoreTransaction
from ..errors import (
    EmptyOrder,
    FulfilmentNotOffered,
    InsufficientStock,
    InvalidQuantity,
    InvalidTransition,
    MealNotFound,
    MissingDeliveryAddress,
    OrderNotDeletable,
    OrderNotFound,
    TransitionForbidden,
    VendorNotFound,
)
from ..models.order import (
    Actor,
    DeliveryAddress,
    FulfilmentType,
    Order,
    OrderItem,
    OrderStatus,
    PaymentStatus,
)
from .money import FeeRates, compute_subtotal, compute_totals
from .notification_service import NotificationService
from .promo_service import PromoService
from .realtime import RealtimeChannel

class OrderLine(BaseModel):
    """Requested line; name and price are re-read from the meal"""
    meal_id: str
    quantity: int
    meal_name: Optional[str] = None
    unit_price: Optional[int] = None

class OrderService:
    def __init__(self, store: Store, realtime: RealtimeChannel,
                 notifications: Optional[NotificationService] = None,
                 promo_service: Optional[PromoService] = None,
                 rates: Optional[FeeRates] = None):
        self.store = store
        self.realtime = realtime
        self.notifications = notifications
        self.promo_service = promo_service or PromoService(store)
        self.rates = rates or Config.fee_rates()
        self.logger = logging.getLogger(__name__)

    async def create_order(self, customer_id: str, vendor_id: str, items: Sequence[OrderLine],
                           fulfilment_type: FulfilmentType,
                           delivery_address: Optional[DeliveryAddress] = None,
                           collection_time: Optional[datetime] = None,
                           notes: Optional[str] = None,
                           promo_code: Optional[str] = None) -> Order:
        """Reserve stock, redeem the promo and persist a pending order atomically"""
        fulfilment_type = FulfilmentType(fulfilment_type)
        if not items:
            raise EmptyOrder()
        for line in items:
            if line.quantity < 1:
                raise InvalidQuantity(line.meal_id, line.quantity)
        if fulfilment_type == FulfilmentType.DELIVERY and delivery_address is None:
            raise MissingDeliveryAddress()

        vendor = await self.store.get_vendor(vendor_id)
        if not vendor or not vendor.is_active:
            raise VendorNotFound(vendor_id)

        # Any error inside the transaction rolls back stock and promo usage
        async with self.store.transaction() as tx:
            order_items = await self._reserve_stock(tx, vendor_id, items, fulfilment_type)

            promo_id = None
            discount = 0
            if promo_code:
                promo, discount = await self.promo_service.redeem(
                    tx, promo_code, compute_subtotal(order_items), vendor_id
                )
                promo_id = promo.promo_id

            totals = compute_totals(order_items, fulfilment_type, self.rates, discount)
            order = Order(
                customer_id=customer_id,
                vendor_id=vendor_id,
                fulfilment_type=fulfilment_type,
                items=order_items,
                subtotal=totals.subtotal,
                service_fee=totals.service_fee,
                delivery_fee=totals.delivery_fee,
                discount_amount=totals.discount_amount,
                total=totals.total,
                promo_code_id=promo_id,
                collection_time=collection_time,
                delivery_address=(
                    delivery_address if fulfilment_type == FulfilmentType.DELIVERY else None
                ),
                notes=notes,
            )
            await tx.insert_order(order)

        self.logger.info(
            f"Order {order.order_id} created for vendor {vendor_id}: total {order.total}"
        )
        await self.realtime.publish_new_order(order)
        return order

    async def _reserve_stock(self, tx: StoreTransaction, vendor_id: str,
                             items: Sequence[OrderLine],
                             fulfilment_type: FulfilmentType) -> List[OrderItem]:
        """Snapshot each line and take its stock.

        Rows are decremented in meal id order, whatever the line order, so two
        orders touching the same meals always lock them in the same sequence.
        """
        order_items = []
        wanted: Dict[str, int] = {}
        for line in items:
            meal = await tx.get_meal(line.meal_id)
            if not meal or meal.vendor_id != vendor_id or not meal.is_active:
                raise MealNotFound(line.meal_id)
            if not meal.fulfilment_type.offers(fulfilment_type):
                raise FulfilmentNotOffered(
                    f"{meal.name} is not available for {fulfilment_type.value}",
                    meal_id=meal.meal_id,
                )

            order_items.append(OrderItem(
                meal_id=meal.meal_id,
                meal_name=meal.name,
                quantity=line.quantity,
                unit_price=meal.price,
            ))
            wanted[meal.meal_id] = wanted.get(meal.meal_id, 0) + line.quantity

        for meal_id in sorted(wanted):
            if not await tx.decrement_stock(meal_id, wanted[meal_id]):
                current = await tx.get_meal(meal_id)
                raise InsufficientStock(
                    meal_id, wanted[meal_id], current.stock if current else None
                )
        return order_items

    async def get_order(self, order_id: str) -> Order:
        order = await self.store.get_order(order_id)
        if not order:
            raise OrderNotFound(order_id)
        return order

    async def list_customer_orders(self, customer_id: str,
                                   statuses: Optional[Sequence[OrderStatus]] = None,
                                   limit: Optional[int] = None) -> List[Order]:
        return await self.store.list_orders(
            customer_id=customer_id, statuses=statuses, limit=limit
        )

    async def list_vendor_orders(self, vendor_id: str,
                                 statuses: Optional[Sequence[OrderStatus]] = None,
                                 limit: Optional[int] = None) -> List[Order]:
        return await self.store.list_orders(
            vendor_id=vendor_id, statuses=statuses, limit=limit
        )

    async def transition_order(self, order_id: str, target: OrderStatus, actor: Actor,
                               actor_id: Optional[str] = None) -> Order:
        """Move an order along the transition table on behalf of ``actor``"""
        async with self.store.transaction() as tx:
            order = await tx.lock_order(order_id)
            if not order:
                raise OrderNotFound(order_id)
            await self._authorize(tx, order, target, actor, actor_id)
            updated = await self.apply_transition(tx, order, target, actor)

        await self.announce(updated, order.status)
        return updated

    async def cancel_order(self, order_id: str, actor: Actor,
                           actor_id: Optional[str] = None) -> Order:
        return await self.transition_order(order_id, OrderStatus.CANCELLED, actor, actor_id)

    async def apply_transition(self, tx: StoreTransaction, order: Order, target: OrderStatus,
                               actor: Actor, **fields) -> Order:
        """Check and persist one transition inside ``tx``.

        The write is compare-and-set on the status we read, so a concurrent
        transition makes this one fail instead of overwriting it.
        """
        target = OrderStatus(target)
        order.check_transition(target, actor)

        if target == OrderStatus.CANCELLED:
            await self._return_reservations(tx, order)

        updated = await tx.update_order(order.order_id, order.status, status=target, **fields)
        if updated is None:
            current = await tx.get_order(order.order_id)
            raise InvalidTransition(
                order.order_id,
                current.status.value if current else order.status.value,
                target.value,
            )

        self.logger.info(
            f"Order {order.order_id}: {order.status.value} -> {target.value} by {Actor(actor).value}"
        )
        return updated

    async def announce(self, order: Order, previous_status: Optional[OrderStatus] = None) -> None:
        """Post-commit side effects of a mutation; never raises"""
        if self.notifications and previous_status != order.status:
            self.notifications.notify_status_change(order)
        await self.realtime.publish_order_updated(order, previous_status)

    async def delete_abandoned_order(self, order_id: str, actor: Actor,
                                     actor_id: Optional[str] = None) -> bool:
        """Remove a pending order that was never paid, returning its reservations"""
        async with self.store.transaction() as tx:
            order = await tx.lock_order(order_id)
            if not order:
                raise OrderNotFound(order_id)
            if Actor(actor) not in (Actor.CUSTOMER, Actor.ADMIN):
                raise TransitionForbidden(order_id, order.status.value, "deleted", Actor(actor).value)
            if Actor(actor) == Actor.CUSTOMER and order.customer_id != actor_id:
                raise OrderNotFound(order_id)
            if order.status != OrderStatus.PENDING or order.payment_status == PaymentStatus.PAID:
                raise OrderNotDeletable(order_id)

            await self._return_reservations(tx, order)
            deleted = await tx.delete_order(order_id)

        self.logger.info(f"Abandoned order {order_id} deleted")
        return deleted

    async def _return_reservations(self, tx: StoreTransaction, order: Order) -> None:
        returned: Dict[str, int] = {}
        for item in order.items:
            returned[item.meal_id] = returned.get(item.meal_id, 0) + item.quantity
        for meal_id in sorted(returned):
            await tx.increment_stock(meal_id, returned[meal_id])
        if order.promo_code_id:
            await self.promo_service.release(tx, order.promo_code_id)

    async def _authorize(self, tx: StoreTransaction, order: Order, target: OrderStatus,
                         actor: Actor, actor_id: Optional[str]) -> None:
        """Check the caller is the order's customer or the vendor's owner"""
        actor = Actor(actor)
        if actor_id is None or actor in (Actor.ADMIN, Actor.PROCESSOR):
            return
        if actor == Actor.CUSTOMER and order.customer_id != actor_id:
            raise OrderNotFound(order.order_id)
        if actor == Actor.VENDOR:
            vendor = await tx.get_vendor(order.vendor_id)
            if not vendor or vendor.user_id != actor_id:
                raise TransitionForbidden(
                    order.order_id, order.status.value, OrderStatus(target).value, actor.value
                )
