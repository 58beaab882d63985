import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional, Tuple

from ..database.store import Store, StoreReader, StoreTransaction
from ..errors import (
    InvalidPromoInput,
    PromoBelowMinimum,
    PromoExpired,
    PromoInactive,
    PromoNotFound,
    RedemptionLimitReached,
)
from ..models.base import utcnow
from ..models.promo import DiscountType, PromoCode
from .money import round_minor

class PromoService:
    """Promo code validation, discount calculation and redemption"""

    def __init__(self, store: Store):
        self.store = store
        self.logger = logging.getLogger(__name__)

    async def validate(self, code: str, order_subtotal: int, vendor_id: Optional[str] = None,
                       reader: Optional[StoreReader] = None) -> PromoCode:
        """Look up ``code`` and check it against this order"""
        if not code or not code.strip():
            raise InvalidPromoInput("Enter a promo code")
        if order_subtotal < 0:
            raise InvalidPromoInput("Order subtotal cannot be negative")

        promo = await (reader or self.store).get_promo_by_code(code)
        return self.check(promo, code, order_subtotal, vendor_id)

    def check(self, promo: Optional[PromoCode], code: str, order_subtotal: int,
              vendor_id: Optional[str] = None, now: Optional[datetime] = None) -> PromoCode:
        """Raise the first reason ``promo`` cannot be used, else return it"""
        if promo is None:
            raise PromoNotFound(code)

        # Vendor-scoped codes do not exist for other vendors' orders
        if promo.vendor_id and vendor_id and promo.vendor_id != vendor_id:
            raise PromoNotFound(code)

        now = now or utcnow()
        if promo.expires_at and promo.expires_at < now:
            raise PromoExpired(promo.code)

        if not promo.is_active:
            raise PromoInactive(promo.code)

        if order_subtotal < promo.min_order:
            raise PromoBelowMinimum(promo.code, promo.min_order)

        if promo.max_uses is not None and promo.used_count >= promo.max_uses:
            raise RedemptionLimitReached(promo.code)

        return promo

    @staticmethod
    def calculate_discount(promo: PromoCode, subtotal: int) -> int:
        """Discount in minor units; never more than the subtotal"""
        if promo.discount_type == DiscountType.PERCENTAGE:
            discount = round_minor(Decimal(subtotal) * Decimal(promo.discount_value) / 100)
        else:
            discount = promo.discount_value
        return max(0, min(discount, subtotal))

    async def redeem(self, tx: StoreTransaction, code: str, order_subtotal: int,
                     vendor_id: str) -> Tuple[PromoCode, int]:
        """Validate and take one redemption inside the order's transaction.

        The promo row is locked and the increment is conditional, so two orders
        racing for the last redemption cannot both pass the limit.
        """
        promo = self.check(
            await tx.lock_promo_by_code(code), code, order_subtotal, vendor_id
        )
        if not await tx.redeem_promo(promo.promo_id):
            raise RedemptionLimitReached(promo.code)

        discount = self.calculate_discount(promo, order_subtotal)
        self.logger.info(f"Promo {promo.code} redeemed for {discount} off {order_subtotal}")
        return promo, discount

    async def release(self, tx: StoreTransaction, promo_id: str) -> None:
        """Give back a redemption taken by an order that will never complete"""
        await tx.release_promo(promo_id)
        self.logger.info(f"Promo {promo_id} redemption released")
