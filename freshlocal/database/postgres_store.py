import json
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

import asyncpg

from ..models.order import DeliveryAddress, Order, OrderItem, OrderStatus
from ..models.promo import PromoCode
from ..models.vendor import Meal, Profile, Vendor
from .database import Database
from .store import Store, StoreReader, StoreTransaction

ORDER_COLUMNS = (
    "order_id", "customer_id", "vendor_id", "fulfilment_type", "subtotal",
    "service_fee", "delivery_fee", "discount_amount", "total", "status",
    "payment_status", "payment_intent_id", "client_payment_outcome",
    "promo_code_id", "collection_time", "delivery_address", "notes",
    "created_at", "updated_at",
)

ORDER_SELECT = """
    SELECT o.*,
        (SELECT json_agg(json_build_object(
            'meal_id', oi.meal_id,
            'meal_name', oi.meal_name,
            'quantity', oi.quantity,
            'unit_price', oi.unit_price
        ) ORDER BY oi.position)
        FROM order_items oi
        WHERE oi.order_id = o.order_id
        ) as items
    FROM orders o
"""

def _db_value(value: Any) -> Any:
    """Convert model values to what asyncpg expects"""
    if isinstance(value, DeliveryAddress):
        return json.dumps(value.model_dump())
    if hasattr(value, "value"):
        return value.value
    return value

def _order_from_row(row: asyncpg.Record) -> Order:
    data = dict(row)
    items = data.pop("items") or []
    if isinstance(items, str):
        items = json.loads(items)
    address = data.get("delivery_address")
    if isinstance(address, str):
        data["delivery_address"] = json.loads(address)
    return Order(items=[OrderItem(**item) for item in items], **data)

class _PostgresReader(StoreReader):
    """Reads over ``self.conn``"""

    conn: asyncpg.Connection

    async def get_order(self, order_id: str) -> Optional[Order]:
        row = await self.conn.fetchrow(
            ORDER_SELECT + " WHERE o.order_id = $1", order_id
        )
        return _order_from_row(row) if row else None

    async def list_orders(self, customer_id: Optional[str] = None,
                          vendor_id: Optional[str] = None,
                          statuses: Optional[Sequence[OrderStatus]] = None,
                          created_from: Optional[datetime] = None,
                          created_to: Optional[datetime] = None,
                          limit: Optional[int] = None) -> List[Order]:
        query = ORDER_SELECT + " WHERE 1=1"
        params = []
        param_index = 1

        if customer_id is not None:
            query += f" AND o.customer_id = ${param_index}"
            params.append(customer_id)
            param_index += 1

        if vendor_id is not None:
            query += f" AND o.vendor_id = ${param_index}"
            params.append(vendor_id)
            param_index += 1

        if statuses:
            query += f" AND o.status = ANY(${param_index}::text[])"
            params.append([OrderStatus(s).value for s in statuses])
            param_index += 1

        if created_from is not None:
            query += f" AND o.created_at >= ${param_index}"
            params.append(created_from)
            param_index += 1

        if created_to is not None:
            query += f" AND o.created_at < ${param_index}"
            params.append(created_to)
            param_index += 1

        query += " ORDER BY o.created_at DESC"

        if limit:
            query += f" LIMIT ${param_index}"
            params.append(limit)

        rows = await self.conn.fetch(query, *params)
        return [_order_from_row(row) for row in rows]

    async def get_vendor(self, vendor_id: str) -> Optional[Vendor]:
        row = await self.conn.fetchrow(
            "SELECT * FROM vendors WHERE vendor_id = $1", vendor_id
        )
        return Vendor(**dict(row)) if row else None

    async def get_vendor_by_account(self, stripe_account_id: str) -> Optional[Vendor]:
        row = await self.conn.fetchrow(
            "SELECT * FROM vendors WHERE stripe_account_id = $1", stripe_account_id
        )
        return Vendor(**dict(row)) if row else None

    async def get_profile(self, user_id: str) -> Optional[Profile]:
        row = await self.conn.fetchrow(
            "SELECT * FROM profiles WHERE user_id = $1", user_id
        )
        return Profile(**dict(row)) if row else None

    async def get_meal(self, meal_id: str) -> Optional[Meal]:
        row = await self.conn.fetchrow(
            "SELECT * FROM meals WHERE meal_id = $1", meal_id
        )
        return Meal(**dict(row)) if row else None

    async def get_promo_by_code(self, code: str) -> Optional[PromoCode]:
        row = await self.conn.fetchrow(
            "SELECT * FROM promo_codes WHERE UPPER(code) = UPPER(TRIM($1))", code
        )
        return PromoCode(**dict(row)) if row else None

    async def get_promo(self, promo_id: str) -> Optional[PromoCode]:
        row = await self.conn.fetchrow(
            "SELECT * FROM promo_codes WHERE promo_id = $1", promo_id
        )
        return PromoCode(**dict(row)) if row else None

class PostgresTransaction(_PostgresReader, StoreTransaction):
    def __init__(self, conn: asyncpg.Connection):
        self.conn = conn

    async def lock_order(self, order_id: str) -> Optional[Order]:
        locked = await self.conn.fetchval(
            "SELECT order_id FROM orders WHERE order_id = $1 FOR UPDATE", order_id
        )
        return await self.get_order(order_id) if locked else None

    async def lock_promo_by_code(self, code: str) -> Optional[PromoCode]:
        row = await self.conn.fetchrow("""
            SELECT * FROM promo_codes
            WHERE UPPER(code) = UPPER(TRIM($1))
            FOR UPDATE
        """, code)
        return PromoCode(**dict(row)) if row else None

    async def decrement_stock(self, meal_id: str, quantity: int) -> bool:
        result = await self.conn.execute("""
            UPDATE meals
            SET stock = stock - $1, updated_at = NOW()
            WHERE meal_id = $2 AND stock >= $1
        """, quantity, meal_id)
        return result == "UPDATE 1"

    async def increment_stock(self, meal_id: str, quantity: int) -> None:
        await self.conn.execute("""
            UPDATE meals
            SET stock = stock + $1, updated_at = NOW()
            WHERE meal_id = $2
        """, quantity, meal_id)

    async def redeem_promo(self, promo_id: str) -> bool:
        result = await self.conn.execute("""
            UPDATE promo_codes
            SET used_count = used_count + 1, updated_at = NOW()
            WHERE promo_id = $1
            AND (max_uses IS NULL OR used_count < max_uses)
        """, promo_id)
        return result == "UPDATE 1"

    async def release_promo(self, promo_id: str) -> None:
        await self.conn.execute("""
            UPDATE promo_codes
            SET used_count = used_count - 1, updated_at = NOW()
            WHERE promo_id = $1 AND used_count > 0
        """, promo_id)

    async def insert_order(self, order: Order) -> None:
        values = [_db_value(getattr(order, column)) for column in ORDER_COLUMNS]
        placeholders = ", ".join(f"${i}" for i in range(1, len(ORDER_COLUMNS) + 1))
        await self.conn.execute(
            f"INSERT INTO orders ({', '.join(ORDER_COLUMNS)}) VALUES ({placeholders})",
            *values
        )

        await self.conn.executemany("""
            INSERT INTO order_items (
                order_id, position, meal_id, meal_name,
                quantity, unit_price, total_price
            ) VALUES ($1, $2, $3, $4, $5, $6, $7)
        """, [
            (order.order_id, position, item.meal_id, item.meal_name,
             item.quantity, item.unit_price, item.total_price)
            for position, item in enumerate(order.items)
        ])

    async def update_order(self, order_id: str, expected_status: OrderStatus,
                           **fields) -> Optional[Order]:
        fields.pop("updated_at", None)
        query_parts = []
        params = []
        param_count = 1

        for key, value in fields.items():
            if key not in ORDER_COLUMNS:
                raise ValueError(f"Unknown order column {key}")
            query_parts.append(f"{key} = ${param_count}")
            params.append(_db_value(value))
            param_count += 1

        query_parts.append("updated_at = NOW()")
        params.extend([order_id, OrderStatus(expected_status).value])
        result = await self.conn.execute(f"""
            UPDATE orders
            SET {', '.join(query_parts)}
            WHERE order_id = ${param_count} AND status = ${param_count + 1}
        """, *params)

        if result != "UPDATE 1":
            return None
        return await self.get_order(order_id)

    async def delete_order(self, order_id: str) -> bool:
        result = await self.conn.execute(
            "DELETE FROM orders WHERE order_id = $1", order_id
        )
        return result == "DELETE 1"

    async def update_vendor(self, vendor_id: str, **fields) -> bool:
        return await self._update("vendors", "vendor_id", vendor_id, fields)

    async def update_profile(self, user_id: str, **fields) -> bool:
        return await self._update("profiles", "user_id", user_id, fields)

    async def _update(self, table: str, key: str, key_value: str,
                      fields: Dict[str, Any]) -> bool:
        fields.pop("updated_at", None)
        if not fields:
            return False
        query_parts = [f"{column} = ${i}" for i, column in enumerate(fields, start=1)]
        params = [_db_value(value) for value in fields.values()]
        params.append(key_value)
        result = await self.conn.execute(f"""
            UPDATE {table}
            SET {', '.join(query_parts)}, updated_at = NOW()
            WHERE {key} = ${len(params)}
        """, *params)
        return result == "UPDATE 1"

    async def mark_event_processed(self, event_id: str, event_type: str) -> bool:
        result = await self.conn.execute("""
            INSERT INTO processed_events (event_id, event_type)
            VALUES ($1, $2)
            ON CONFLICT (event_id) DO NOTHING
        """, event_id, event_type)
        return result == "INSERT 0 1"

class PostgresStore(Store):
    """Store backed by the asyncpg pool of a connected ``Database``"""

    def __init__(self, db: Database):
        self.db = db

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[StoreTransaction]:
        async with self.db.pool.acquire() as conn:
            async with conn.transaction():
                yield PostgresTransaction(conn)

    @asynccontextmanager
    async def _connection(self) -> AsyncIterator["PostgresTransaction"]:
        async with self.db.pool.acquire() as conn:
            yield PostgresTransaction(conn)

    # Reads outside a transaction borrow a pooled connection per call

    async def get_order(self, order_id):
        async with self._connection() as reader:
            return await reader.get_order(order_id)

    async def list_orders(self, **filters):
        async with self._connection() as reader:
            return await reader.list_orders(**filters)

    async def get_vendor(self, vendor_id):
        async with self._connection() as reader:
            return await reader.get_vendor(vendor_id)

    async def get_vendor_by_account(self, stripe_account_id):
        async with self._connection() as reader:
            return await reader.get_vendor_by_account(stripe_account_id)

    async def get_profile(self, user_id):
        async with self._connection() as reader:
            return await reader.get_profile(user_id)

    async def get_meal(self, meal_id):
        async with self._connection() as reader:
            return await reader.get_meal(meal_id)

    async def get_promo_by_code(self, code):
        async with self._connection() as reader:
            return await reader.get_promo_by_code(code)

    async def get_promo(self, promo_id):
        async with self._connection() as reader:
            return await reader.get_promo(promo_id)
