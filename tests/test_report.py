"""Tests for vendor payout reports and platform analytics."""
from datetime import datetime, timezone
from decimal import Decimal

import pytest
import pytz

from freshlocal.errors import IntegrityAnomaly, VendorNotFound
from freshlocal.models.order import (
    FulfilmentType,
    Order,
    OrderItem,
    OrderStatus,
    PaymentStatus,
)
from freshlocal.services.money import FeeRates, compute_payout, compute_service_fee
from freshlocal.services.report_service import ReportService

from conftest import UNPAYABLE_VENDOR_ID, VENDOR_ID

LONDON = pytz.timezone("Europe/London")
WINDOW = (LONDON.localize(datetime(2026, 3, 2)), LONDON.localize(datetime(2026, 3, 9)))

LASAGNE = ("meal-lasagne", "Lasagne", 1000)
PASTA = ("meal-pasta", "Pasta Bake", 750)
SOUP = ("meal-soup", "Leek Soup", 400)


def _order(customer, lines, status, created_at, vendor_id=VENDOR_ID) -> Order:
    items = [
        OrderItem(meal_id=meal_id, meal_name=name, quantity=quantity, unit_price=price)
        for (meal_id, name, price), quantity in lines
    ]
    subtotal = sum(item.total_price for item in items)
    service_fee = compute_service_fee(subtotal, Decimal("0.05"))
    paid = status not in (OrderStatus.PENDING, OrderStatus.CANCELLED)
    return Order(
        customer_id=customer,
        vendor_id=vendor_id,
        fulfilment_type=FulfilmentType.COLLECTION,
        items=items,
        subtotal=subtotal,
        service_fee=service_fee,
        total=subtotal + service_fee,
        status=status,
        payment_status=PaymentStatus.PAID if paid else PaymentStatus.PENDING,
        created_at=created_at,
        updated_at=created_at,
    )


def _utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


@pytest.fixture
def week(store):
    orders = [
        _order("a", [(LASAGNE, 10)], OrderStatus.CONFIRMED, _utc(2026, 3, 3, 12, 15)),
        _order("a", [(PASTA, 2)], OrderStatus.COLLECTED, _utc(2026, 3, 4, 12, 40)),
        _order("b", [(LASAGNE, 1)], OrderStatus.DELIVERED, _utc(2026, 3, 5, 18, 5)),
        # Never counted
        _order("c", [(LASAGNE, 5)], OrderStatus.PENDING, _utc(2026, 3, 5, 9, 0)),
        _order("c", [(PASTA, 5)], OrderStatus.CANCELLED, _utc(2026, 3, 6, 9, 0)),
        _order("b", [(LASAGNE, 3)], OrderStatus.CONFIRMED, _utc(2026, 3, 10, 9, 0)),
    ]
    for order in orders:
        store.add_order(order)
    return orders


class TestAggregate:

    async def test_single_order_split(self, store, report_service):
        store.add_order(_order("a", [(LASAGNE, 10)], OrderStatus.CONFIRMED,
                               _utc(2026, 3, 3, 12, 0)))

        report = await report_service.aggregate(VENDOR_ID, *WINDOW)

        assert report.gross_sales == 10000
        assert report.platform_commission == 1200
        assert report.processor_fees == 160
        assert report.net_payout == 8640

    async def test_week_figures(self, report_service, week):
        report = await report_service.aggregate(VENDOR_ID, *WINDOW)

        assert report.order_count == 3
        assert report.gross_sales == 12500
        assert report.platform_commission == 1200 + 180 + 120
        assert report.processor_fees == 160 + 41 + 34
        assert report.net_payout == 10765
        assert not report.has_anomaly

    async def test_reconciles_with_per_order_split(self, report_service, rates, week):
        report = await report_service.aggregate(VENDOR_ID, *WINDOW)

        expected = sum(
            compute_payout(o.subtotal, rates).net_payout
            for o in week[:3]
        )
        assert report.net_payout == expected

    async def test_top_sellers_by_quantity(self, report_service, week):
        report = await report_service.aggregate(VENDOR_ID, *WINDOW)

        assert [(s.meal_name, s.quantity, s.revenue) for s in report.top_sellers] == [
            ("Lasagne", 11, 11000),
            ("Pasta Bake", 2, 1500),
        ]

    async def test_peak_hours_in_local_time(self, report_service, week):
        report = await report_service.aggregate(VENDOR_ID, *WINDOW)
        assert [(h.hour, h.orders) for h in report.peak_hours] == [(12, 2), (18, 1)]

    async def test_summer_time_hours(self, store, report_service):
        store.add_order(_order("a", [(LASAGNE, 1)], OrderStatus.CONFIRMED,
                               _utc(2026, 7, 1, 11, 30)))

        report = await report_service.aggregate(
            VENDOR_ID, _utc(2026, 7, 1, 0, 0), _utc(2026, 7, 2, 0, 0)
        )

        assert report.peak_hours[0].hour == 12

    async def test_repeat_customer_rate(self, report_service, week):
        report = await report_service.aggregate(VENDOR_ID, *WINDOW)

        assert report.distinct_customers == 2
        assert report.repeat_customers == 1
        assert report.repeat_customer_rate == 0.5

    async def test_empty_window(self, report_service):
        report = await report_service.aggregate(VENDOR_ID, *WINDOW)

        assert report.order_count == 0
        assert report.net_payout == 0
        assert report.repeat_customer_rate == 0.0

    async def test_unknown_vendor(self, report_service):
        with pytest.raises(VendorNotFound):
            await report_service.aggregate("nobody", *WINDOW)

    async def test_negative_net_flagged(self, store, week):
        rates = FeeRates(platform_commission_rate=Decimal("0.9"), processor_fixed_fee=500)
        service = ReportService(store, rates, timezone="Europe/London")

        report = await service.aggregate(VENDOR_ID, *WINDOW)
        assert report.has_anomaly

        with pytest.raises(IntegrityAnomaly):
            await service.aggregate(VENDOR_ID, *WINDOW, strict=True)


class TestPeriods:

    async def test_daily_report(self, report_service, week):
        report = await report_service.daily_report(VENDOR_ID, now=_utc(2026, 3, 4, 20, 0))

        assert report.order_count == 1
        assert report.gross_sales == 1500

    async def test_weekly_report(self, report_service, week):
        report = await report_service.weekly_report(VENDOR_ID, now=_utc(2026, 3, 8, 10, 0))
        assert report.order_count == 3

    async def test_monthly_report(self, report_service, week):
        report = await report_service.monthly_report(VENDOR_ID, now=_utc(2026, 3, 31, 10, 0))
        assert report.order_count == 4


class TestExport:

    async def test_workbook_bytes(self, report_service, week):
        content = await report_service.export_excel(VENDOR_ID, *WINDOW)
        # .xlsx is a zip container
        assert content[:2] == b"PK"


class TestPlatformAnalytics:

    async def test_figures_across_vendors(self, store, report_service, week):
        store.add_order(_order("d", [(SOUP, 2)], OrderStatus.CONFIRMED,
                               _utc(2026, 3, 6, 13, 0), vendor_id=UNPAYABLE_VENDOR_ID))

        analytics = await report_service.platform_analytics(*WINDOW)

        assert analytics.total_orders == 4
        assert analytics.gross_sales == 13300
        assert analytics.platform_commission == 1200 + 180 + 120 + 96
        assert analytics.service_fees == 500 + 75 + 50 + 40
        assert [(v.vendor_id, v.revenue) for v in analytics.top_vendors] == [
            (VENDOR_ID, 12500), (UNPAYABLE_VENDOR_ID, 800),
        ]
        assert analytics.top_vendors[0].business_name == "Nonna's Kitchen"
        assert [(m.meal_name, m.order_count) for m in analytics.top_meals] == [
            ("Lasagne", 2), ("Leek Soup", 1), ("Pasta Bake", 1),
        ]
