"""Money engine: order totals and the vendor/platform/processor split.

All amounts are integer minor currency units (pence). Rates are ``Decimal``
fractions and every rounding step is round-half-up to the nearest minor unit,
so a tie always rounds towards the customer-facing display value.
"""
import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional, Union

from pydantic import BaseModel, ConfigDict

from ..models.order import FulfilmentType

logger = logging.getLogger(__name__)

Rate = Union[Decimal, int, str]

class FeeRates(BaseModel):
    """Fee configuration for one currency"""
    service_fee_rate: Decimal = Decimal("0.05")
    platform_commission_rate: Decimal = Decimal("0.12")
    processor_percent_rate: Decimal = Decimal("0.014")
    processor_fixed_fee: int = 20
    delivery_fee: int = 250

    model_config = ConfigDict(frozen=True)

class OrderTotals(BaseModel):
    """Customer-facing breakdown, frozen on the order at creation"""
    subtotal: int
    service_fee: int
    delivery_fee: int
    discount_amount: int
    total: int

    model_config = ConfigDict(frozen=True)

class PayoutSplit(BaseModel):
    """Vendor-side deductions for a given subtotal"""
    gross: int
    platform_commission: int
    processor_fee: int
    net_payout: int

    model_config = ConfigDict(frozen=True)

def round_minor(value: Decimal) -> int:
    """Round half-up to a whole minor unit"""
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))

def apply_rate(amount: int, rate: Rate) -> int:
    return round_minor(Decimal(amount) * Decimal(str(rate)))

def compute_subtotal(items: Iterable) -> int:
    """Sum of unit price x quantity.

    Accepts OrderItem models or anything with ``unit_price``/``quantity``.
    """
    subtotal = 0
    for item in items:
        subtotal += int(item.unit_price) * int(item.quantity)
    return max(subtotal, 0)

def compute_service_fee(subtotal: int, rate: Rate) -> int:
    return apply_rate(subtotal, rate)

def compute_delivery_fee(fulfilment_type: FulfilmentType, flat_fee: int) -> int:
    return flat_fee if FulfilmentType(fulfilment_type) == FulfilmentType.DELIVERY else 0

def compute_total(subtotal: int, service_fee: int, delivery_fee: int,
                  discount_amount: int = 0) -> int:
    """Customer total, clamped at zero"""
    total = subtotal + service_fee + delivery_fee - discount_amount
    if total < 0:
        logger.warning(
            f"Discount {discount_amount} exceeds order value "
            f"{subtotal + service_fee + delivery_fee}; total clamped to 0"
        )
        return 0
    return total

def compute_platform_commission(subtotal: int, rate: Rate) -> int:
    return apply_rate(subtotal, rate)

def compute_processor_fee(subtotal: int, percent_rate: Rate, fixed_fee: int) -> int:
    return apply_rate(subtotal, percent_rate) + fixed_fee

def compute_net_payout(subtotal: int, platform_commission: int, processor_fee: int) -> int:
    """Vendor net. Not clamped: a negative result is an anomaly for the caller."""
    return subtotal - platform_commission - processor_fee

def compute_application_fee(service_fee: int, platform_commission: int) -> int:
    """Platform's share of a split charge; the remainder goes to the vendor"""
    return service_fee + platform_commission

def compute_totals(items: Iterable, fulfilment_type: FulfilmentType,
                   rates: FeeRates, discount_amount: int = 0) -> OrderTotals:
    subtotal = compute_subtotal(items)
    discount_amount = min(max(discount_amount, 0), subtotal)
    service_fee = compute_service_fee(subtotal, rates.service_fee_rate)
    delivery_fee = compute_delivery_fee(fulfilment_type, rates.delivery_fee)
    return OrderTotals(
        subtotal=subtotal,
        service_fee=service_fee,
        delivery_fee=delivery_fee,
        discount_amount=discount_amount,
        total=compute_total(subtotal, service_fee, delivery_fee, discount_amount),
    )

def compute_payout(subtotal: int, rates: FeeRates,
                   context: Optional[str] = None) -> PayoutSplit:
    """Split one charge's subtotal into commission, processor fee and net payout"""
    commission = compute_platform_commission(subtotal, rates.platform_commission_rate)
    processor_fee = compute_processor_fee(
        subtotal, rates.processor_percent_rate, rates.processor_fixed_fee
    )
    net = compute_net_payout(subtotal, commission, processor_fee)
    if net < 0:
        logger.warning(
            f"Negative net payout {net} for gross {subtotal}"
            + (f" ({context})" if context else "")
        )
    return PayoutSplit(
        gross=subtotal,
        platform_commission=commission,
        processor_fee=processor_fee,
        net_payout=net,
    )

def breakdown(items: Iterable, fulfilment_type: FulfilmentType, discount_amount: int,
              rates: FeeRates) -> OrderTotals:
    return compute_totals(items, fulfilment_type, rates, discount_amount)
