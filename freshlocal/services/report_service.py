import io
import logging
from collections import Counter, defaultdict
from datetime import datetime, timedelta
from typing import Dict, List, Optional

import pandas as pd
import pytz

from ..config import Config
from ..database.store import StoreReader
from ..errors import IntegrityAnomaly, VendorNotFound
from ..models.order import Order, OrderStatus
from ..models.payout import (
    MealPopularity,
    PayoutReport,
    PeakHour,
    PlatformAnalytics,
    TopSeller,
    VendorRevenue,
)
from ..utils.formatters import format_datetime, format_price
from .money import FeeRates, compute_payout

# Orders the processor has confirmed; pending and cancelled never count
SETTLED_STATUSES = [
    OrderStatus.CONFIRMED,
    OrderStatus.PREPARING,
    OrderStatus.READY,
    OrderStatus.COLLECTED,
    OrderStatus.DELIVERED,
]

class ReportService:
    """Vendor payout figures and platform analytics.

    Nothing here is stored: every figure is recomputed from the orders in
    the window with the current fee rates.
    """

    def __init__(self, store: StoreReader, rates: Optional[FeeRates] = None,
                 timezone: Optional[str] = None, top_n: int = 5):
        self.store = store
        self.rates = rates or Config.fee_rates()
        self.tz = pytz.timezone(timezone or Config.TIMEZONE)
        self.top_n = top_n
        self.logger = logging.getLogger(__name__)

    async def _settled_orders(self, vendor_id: Optional[str], start: datetime,
                              end: datetime) -> List[Order]:
        return await self.store.list_orders(
            vendor_id=vendor_id,
            statuses=SETTLED_STATUSES,
            created_from=start,
            created_to=end,
        )

    async def aggregate(self, vendor_id: str, window_start: datetime,
                        window_end: datetime, strict: bool = False) -> PayoutReport:
        """Payout report for ``vendor_id`` over [window_start, window_end).

        A negative net payout is logged and flagged on the report; with
        ``strict`` it raises IntegrityAnomaly instead.
        """
        vendor = await self.store.get_vendor(vendor_id)
        if not vendor:
            raise VendorNotFound(vendor_id)

        orders = await self._settled_orders(vendor_id, window_start, window_end)
        report = PayoutReport(
            vendor_id=vendor_id,
            window_start=window_start,
            window_end=window_end,
            order_count=len(orders),
        )

        quantities: Counter = Counter()
        revenue: Counter = Counter()
        names: Dict[str, str] = {}
        hours: Counter = Counter()
        orders_per_customer: Counter = Counter()

        for order in orders:
            # One charge per order, so one fixed processor fee per order
            split = compute_payout(order.subtotal, self.rates, context=f"order {order.order_id}")
            report.gross_sales += split.gross
            report.platform_commission += split.platform_commission
            report.processor_fees += split.processor_fee
            report.net_payout += split.net_payout

            for item in order.items:
                quantities[item.meal_id] += item.quantity
                revenue[item.meal_id] += item.total_price
                names[item.meal_id] = item.meal_name

            hours[self._local(order.created_at).hour] += 1
            orders_per_customer[order.customer_id] += 1

        report.top_sellers = [
            TopSeller(
                meal_id=meal_id,
                meal_name=names[meal_id],
                quantity=quantity,
                revenue=revenue[meal_id],
            )
            for meal_id, quantity in sorted(
                quantities.items(), key=lambda kv: (-kv[1], names[kv[0]])
            )[:self.top_n]
        ]
        report.peak_hours = [
            PeakHour(hour=hour, orders=count)
            for hour, count in sorted(hours.items(), key=lambda kv: (-kv[1], kv[0]))
        ]

        report.distinct_customers = len(orders_per_customer)
        report.repeat_customers = sum(1 for n in orders_per_customer.values() if n > 1)
        if report.distinct_customers:
            report.repeat_customer_rate = report.repeat_customers / report.distinct_customers

        if report.has_anomaly:
            self.logger.warning(
                f"Vendor {vendor_id} net payout is negative ({report.net_payout}) "
                f"for {window_start} - {window_end}"
            )
            if strict:
                raise IntegrityAnomaly(
                    f"Net payout for vendor {vendor_id} is negative",
                    vendor_id=vendor_id, net_payout=report.net_payout,
                )
        return report

    def _local(self, dt: datetime) -> datetime:
        if dt.tzinfo is None:
            dt = pytz.utc.localize(dt)
        return dt.astimezone(self.tz)

    def _day_start(self, day) -> datetime:
        return self.tz.localize(datetime(day.year, day.month, day.day))

    async def daily_report(self, vendor_id: str, now: Optional[datetime] = None) -> PayoutReport:
        today = self._local(now or datetime.now(pytz.utc)).date()
        start = self._day_start(today)
        return await self.aggregate(vendor_id, start, self._day_start(today + timedelta(days=1)))

    async def weekly_report(self, vendor_id: str, now: Optional[datetime] = None) -> PayoutReport:
        """The last seven days, today included"""
        today = self._local(now or datetime.now(pytz.utc)).date()
        start = self._day_start(today - timedelta(days=6))
        return await self.aggregate(vendor_id, start, self._day_start(today + timedelta(days=1)))

    async def monthly_report(self, vendor_id: str, now: Optional[datetime] = None) -> PayoutReport:
        """Month to date"""
        today = self._local(now or datetime.now(pytz.utc)).date()
        start = self._day_start(today.replace(day=1))
        return await self.aggregate(vendor_id, start, self._day_start(today + timedelta(days=1)))

    async def export_excel(self, vendor_id: str, window_start: datetime,
                           window_end: datetime) -> bytes:
        """Payout report as an .xlsx workbook"""
        report = await self.aggregate(vendor_id, window_start, window_end)

        output = io.BytesIO()
        with pd.ExcelWriter(output, engine="xlsxwriter") as writer:
            summary = {
                "Metric": [
                    "Period start",
                    "Period end",
                    "Orders",
                    "Gross sales",
                    "Platform commission",
                    "Processing fees",
                    "Net payout",
                    "Repeat customer rate",
                ],
                "Value": [
                    format_datetime(report.window_start),
                    format_datetime(report.window_end),
                    report.order_count,
                    format_price(report.gross_sales),
                    format_price(report.platform_commission),
                    format_price(report.processor_fees),
                    format_price(report.net_payout),
                    f"{report.repeat_customer_rate:.0%}",
                ],
            }
            pd.DataFrame(summary).to_excel(writer, sheet_name="Summary", index=False)

            top_sellers = pd.DataFrame(
                [s.model_dump() for s in report.top_sellers],
                columns=["meal_id", "meal_name", "quantity", "revenue"],
            )
            top_sellers.to_excel(writer, sheet_name="Top sellers", index=False)

            peak_hours = pd.DataFrame(
                [h.model_dump() for h in report.peak_hours],
                columns=["hour", "orders"],
            )
            peak_hours.to_excel(writer, sheet_name="Peak hours", index=False)

        return output.getvalue()

    async def platform_analytics(self, window_start: datetime,
                                 window_end: datetime) -> PlatformAnalytics:
        """Admin figures across every vendor"""
        orders = await self._settled_orders(None, window_start, window_end)
        analytics = PlatformAnalytics(
            window_start=window_start,
            window_end=window_end,
            total_orders=len(orders),
        )

        vendor_revenue: Counter = Counter()
        meal_orders: Dict[str, set] = defaultdict(set)
        names: Dict[str, str] = {}
        for order in orders:
            split = compute_payout(order.subtotal, self.rates)
            analytics.gross_sales += order.subtotal
            analytics.platform_commission += split.platform_commission
            analytics.service_fees += order.service_fee
            vendor_revenue[order.vendor_id] += order.subtotal
            for item in order.items:
                meal_orders[item.meal_id].add(order.order_id)
                names[item.meal_id] = item.meal_name

        for vendor_id, amount in vendor_revenue.most_common(self.top_n):
            vendor = await self.store.get_vendor(vendor_id)
            analytics.top_vendors.append(VendorRevenue(
                vendor_id=vendor_id,
                business_name=vendor.business_name if vendor else "Unknown",
                revenue=amount,
            ))

        ranked = sorted(meal_orders.items(), key=lambda kv: (-len(kv[1]), names[kv[0]]))
        analytics.top_meals = [
            MealPopularity(meal_id=meal_id, meal_name=names[meal_id], order_count=len(ids))
            for meal_id, ids in ranked[:self.top_n]
        ]
        return analytics
