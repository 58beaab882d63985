"""Storage interface used by the services.

A ``Store`` hands out ``StoreTransaction`` units of work. Everything a
transaction does commits together or not at all; an exception raised inside
``async with store.transaction()`` rolls every write back, which is how order
creation undoes stock reservations and promo redemptions on failure.

Writes that race (stock, promo usage, order status) are conditional: they
report whether the guarded condition held instead of overwriting blindly.
"""
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, List, Optional, Sequence

from ..models.order import Order, OrderStatus
from ..models.promo import PromoCode
from ..models.vendor import Meal, Profile, Vendor

class StoreReader:
    """Read operations shared by stores and their transactions"""

    async def get_order(self, order_id: str) -> Optional[Order]:
        raise NotImplementedError

    async def list_orders(self, customer_id: Optional[str] = None,
                          vendor_id: Optional[str] = None,
                          statuses: Optional[Sequence[OrderStatus]] = None,
                          created_from: Optional[datetime] = None,
                          created_to: Optional[datetime] = None,
                          limit: Optional[int] = None) -> List[Order]:
        """Orders newest first; window bounds are [created_from, created_to)"""
        raise NotImplementedError

    async def get_vendor(self, vendor_id: str) -> Optional[Vendor]:
        raise NotImplementedError

    async def get_vendor_by_account(self, stripe_account_id: str) -> Optional[Vendor]:
        raise NotImplementedError

    async def get_profile(self, user_id: str) -> Optional[Profile]:
        raise NotImplementedError

    async def get_meal(self, meal_id: str) -> Optional[Meal]:
        raise NotImplementedError

    async def get_promo_by_code(self, code: str) -> Optional[PromoCode]:
        """Case-insensitive lookup"""
        raise NotImplementedError

    async def get_promo(self, promo_id: str) -> Optional[PromoCode]:
        raise NotImplementedError

class StoreTransaction(StoreReader):
    """Writes; only valid inside ``Store.transaction()``"""

    async def lock_order(self, order_id: str) -> Optional[Order]:
        """Read an order and hold its row until the transaction ends"""
        raise NotImplementedError

    async def lock_promo_by_code(self, code: str) -> Optional[PromoCode]:
        raise NotImplementedError

    async def decrement_stock(self, meal_id: str, quantity: int) -> bool:
        """Take ``quantity`` from stock if at least that much remains"""
        raise NotImplementedError

    async def increment_stock(self, meal_id: str, quantity: int) -> None:
        raise NotImplementedError

    async def redeem_promo(self, promo_id: str) -> bool:
        """Bump used_count unless it has reached max_uses"""
        raise NotImplementedError

    async def release_promo(self, promo_id: str) -> None:
        raise NotImplementedError

    async def insert_order(self, order: Order) -> None:
        raise NotImplementedError

    async def update_order(self, order_id: str, expected_status: OrderStatus,
                           **fields) -> Optional[Order]:
        """Compare-and-set: apply ``fields`` only if status is still expected"""
        raise NotImplementedError

    async def delete_order(self, order_id: str) -> bool:
        raise NotImplementedError

    async def update_vendor(self, vendor_id: str, **fields) -> bool:
        raise NotImplementedError

    async def update_profile(self, user_id: str, **fields) -> bool:
        raise NotImplementedError

    async def mark_event_processed(self, event_id: str, event_type: str) -> bool:
        """Record a processor event id; False if it was already recorded"""
        raise NotImplementedError

class Store(StoreReader):

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[StoreTransaction]:
        raise NotImplementedError
        yield
