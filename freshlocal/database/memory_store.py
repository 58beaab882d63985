"""In-process store for tests and local runs.

Transactions are serialized by one asyncio lock, which gives the same
"row is held until commit" guarantee PostgresStore gets from row locks.
Models are replaced, never mutated, so a shallow copy of each table is a
complete snapshot for rollback.
"""
import asyncio
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Dict, List, Optional, Sequence

from ..models.base import utcnow
from ..models.order import Order, OrderStatus
from ..models.promo import PromoCode, normalize_code
from ..models.vendor import Meal, Profile, Vendor
from .store import Store, StoreReader, StoreTransaction

TABLES = ("orders", "vendors", "profiles", "meals", "promos", "events")

class _MemoryReader(StoreReader):
    """Reads against the tables of ``self.store``"""

    store: "MemoryStore"

    async def get_order(self, order_id: str) -> Optional[Order]:
        return self.store.orders.get(order_id)

    async def list_orders(self, customer_id: Optional[str] = None,
                          vendor_id: Optional[str] = None,
                          statuses: Optional[Sequence[OrderStatus]] = None,
                          created_from: Optional[datetime] = None,
                          created_to: Optional[datetime] = None,
                          limit: Optional[int] = None) -> List[Order]:
        wanted = {OrderStatus(s) for s in statuses} if statuses else None
        orders = [
            order for order in self.store.orders.values()
            if (customer_id is None or order.customer_id == customer_id)
            and (vendor_id is None or order.vendor_id == vendor_id)
            and (wanted is None or order.status in wanted)
            and (created_from is None or order.created_at >= created_from)
            and (created_to is None or order.created_at < created_to)
        ]
        orders.sort(key=lambda o: o.created_at, reverse=True)
        return orders[:limit] if limit else orders

    async def get_vendor(self, vendor_id: str) -> Optional[Vendor]:
        return self.store.vendors.get(vendor_id)

    async def get_vendor_by_account(self, stripe_account_id: str) -> Optional[Vendor]:
        for vendor in self.store.vendors.values():
            if vendor.stripe_account_id == stripe_account_id:
                return vendor
        return None

    async def get_profile(self, user_id: str) -> Optional[Profile]:
        return self.store.profiles.get(user_id)

    async def get_meal(self, meal_id: str) -> Optional[Meal]:
        return self.store.meals.get(meal_id)

    async def get_promo_by_code(self, code: str) -> Optional[PromoCode]:
        wanted = normalize_code(code)
        for promo in self.store.promos.values():
            if promo.normalized_code == wanted:
                return promo
        return None

    async def get_promo(self, promo_id: str) -> Optional[PromoCode]:
        return self.store.promos.get(promo_id)

class MemoryStore(_MemoryReader, Store):
    def __init__(self):
        self.orders: Dict[str, Order] = {}
        self.vendors: Dict[str, Vendor] = {}
        self.profiles: Dict[str, Profile] = {}
        self.meals: Dict[str, Meal] = {}
        self.promos: Dict[str, PromoCode] = {}
        self.events: Dict[str, str] = {}
        self._lock = asyncio.Lock()

    @property
    def store(self) -> "MemoryStore":
        return self

    # Seeding

    def add_vendor(self, vendor: Vendor) -> Vendor:
        self.vendors[vendor.vendor_id] = vendor
        return vendor

    def add_profile(self, profile: Profile) -> Profile:
        self.profiles[profile.user_id] = profile
        return profile

    def add_meal(self, meal: Meal) -> Meal:
        self.meals[meal.meal_id] = meal
        return meal

    def add_promo(self, promo: PromoCode) -> PromoCode:
        self.promos[promo.promo_id] = promo
        return promo

    def add_order(self, order: Order) -> Order:
        self.orders[order.order_id] = order
        return order

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[StoreTransaction]:
        async with self._lock:
            snapshot = {name: dict(getattr(self, name)) for name in TABLES}
            try:
                yield MemoryTransaction(self)
            except BaseException:
                for name, table in snapshot.items():
                    setattr(self, name, table)
                raise

class MemoryTransaction(_MemoryReader, StoreTransaction):
    def __init__(self, store: MemoryStore):
        self.store = store

    async def lock_order(self, order_id: str) -> Optional[Order]:
        return self.store.orders.get(order_id)

    async def lock_promo_by_code(self, code: str) -> Optional[PromoCode]:
        return await self.get_promo_by_code(code)

    async def decrement_stock(self, meal_id: str, quantity: int) -> bool:
        meal = self.store.meals.get(meal_id)
        if meal is None or meal.stock < quantity:
            return False
        self.store.meals[meal_id] = meal.model_copy(
            update={"stock": meal.stock - quantity, "updated_at": utcnow()}
        )
        return True

    async def increment_stock(self, meal_id: str, quantity: int) -> None:
        meal = self.store.meals.get(meal_id)
        if meal is not None:
            self.store.meals[meal_id] = meal.model_copy(
                update={"stock": meal.stock + quantity, "updated_at": utcnow()}
            )

    async def redeem_promo(self, promo_id: str) -> bool:
        promo = self.store.promos.get(promo_id)
        if promo is None:
            return False
        if promo.max_uses is not None and promo.used_count >= promo.max_uses:
            return False
        self.store.promos[promo_id] = promo.model_copy(
            update={"used_count": promo.used_count + 1, "updated_at": utcnow()}
        )
        return True

    async def release_promo(self, promo_id: str) -> None:
        promo = self.store.promos.get(promo_id)
        if promo is not None and promo.used_count > 0:
            self.store.promos[promo_id] = promo.model_copy(
                update={"used_count": promo.used_count - 1, "updated_at": utcnow()}
            )

    async def insert_order(self, order: Order) -> None:
        if order.order_id in self.store.orders:
            raise KeyError(f"Duplicate order id {order.order_id}")
        self.store.orders[order.order_id] = order

    async def update_order(self, order_id: str, expected_status: OrderStatus,
                           **fields) -> Optional[Order]:
        order = self.store.orders.get(order_id)
        if order is None or order.status != OrderStatus(expected_status):
            return None
        fields.setdefault("updated_at", utcnow())
        updated = order.model_copy(update=fields)
        self.store.orders[order_id] = updated
        return updated

    async def delete_order(self, order_id: str) -> bool:
        return self.store.orders.pop(order_id, None) is not None

    async def update_vendor(self, vendor_id: str, **fields) -> bool:
        vendor = self.store.vendors.get(vendor_id)
        if vendor is None:
            return False
        fields.setdefault("updated_at", utcnow())
        self.store.vendors[vendor_id] = vendor.model_copy(update=fields)
        return True

    async def update_profile(self, user_id: str, **fields) -> bool:
        profile = self.store.profiles.get(user_id)
        if profile is None:
            return False
        fields.setdefault("updated_at", utcnow())
        self.store.profiles[user_id] = profile.model_copy(update=fields)
        return True

    async def mark_event_processed(self, event_id: str, event_type: str) -> bool:
        if event_id in self.store.events:
            return False
        self.store.events[event_id] = event_type
        return True
