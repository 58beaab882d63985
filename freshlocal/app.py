import asyncio
import logging
from typing import Optional

from aiohttp import web

from .config import Config
from .database.store import Store
from .handlers import (
    OrderHandler,
    PaymentHandler,
    RealtimeHandler,
    ReportHandler,
    error_middleware,
)
from .services.money import FeeRates
from .services.notification_service import NotificationService
from .services.order_service import OrderService
from .services.payment_service import PaymentService
from .services.promo_service import PromoService
from .services.realtime import RealtimeChannel
from .services.report_service import ReportService
from .services.stripe_client import StripeClient

class MarketplaceApp:
    def __init__(self, store: Store, transport, stripe: Optional[StripeClient] = None,
                 rates: Optional[FeeRates] = None, webhook_secret: Optional[str] = None,
                 push_url: Optional[str] = None):
        """Wire services to the HTTP application"""
        self.logger = logging.getLogger(__name__)
        self.store = store
        self.realtime = RealtimeChannel(transport)
        self.notifications = NotificationService(store, push_url)
        self.promo_service = PromoService(store)
        self.order_service = OrderService(
            store, self.realtime, self.notifications, self.promo_service, rates
        )
        self.payment_service = PaymentService(
            store, self.order_service, stripe, rates, webhook_secret
        )
        self.report_service = ReportService(store, rates)

        self.application = web.Application(middlewares=[error_middleware])
        self.application.on_cleanup.append(self._on_cleanup)
        self.setup_handlers()

    def setup_handlers(self):
        """Register the routes"""
        orders = OrderHandler(self.order_service, self.promo_service)
        payments = PaymentHandler(self.payment_service)
        reports = ReportHandler(self.report_service)
        realtime = RealtimeHandler(self.store, self.realtime)

        self.application.add_routes([
            web.get("/health", self.health),

            # Orders
            web.post("/orders", orders.create_order),
            web.get("/orders/{order_id}", orders.get_order),
            web.post("/orders/{order_id}/status", orders.update_status),
            web.post("/orders/{order_id}/cancel", orders.cancel_order),
            web.delete("/orders/{order_id}", orders.delete_order),
            web.get("/customers/me/orders", orders.list_my_orders),
            web.get("/vendors/{vendor_id}/orders", orders.list_vendor_orders),
            web.post("/promo/validate", orders.validate_promo),

            # Payments
            web.post("/orders/{order_id}/payment", payments.initiate_payment),
            web.post("/orders/{order_id}/payment/outcome", payments.record_outcome),
            web.post("/webhooks/stripe", payments.stripe_webhook),
            web.get("/vendors/{vendor_id}/connect", payments.connect_status),
            web.post("/vendors/{vendor_id}/connect", payments.create_connect_account),
            web.post("/vendors/{vendor_id}/connect/link", payments.create_account_link),

            # Reports
            web.get("/vendors/{vendor_id}/payouts", reports.vendor_payouts),
            web.get("/vendors/{vendor_id}/payouts/export", reports.export_payouts),
            web.get("/admin/analytics", reports.platform_analytics),

            # Realtime
            web.get("/vendors/{vendor_id}/events", realtime.vendor_events),
            web.get("/orders/{order_id}/events", realtime.order_events),
        ])

    async def health(self, request: web.Request) -> web.Response:
        return web.json_response({"status": "ok"})

    async def _on_cleanup(self, app: web.Application):
        await self.notifications.drain()
        await self.realtime.transport.close()

    async def start(self, host: Optional[str] = None, port: Optional[int] = None):
        """Serve until cancelled"""
        runner = web.AppRunner(self.application)
        await runner.setup()
        site = web.TCPSite(runner, host or Config.HOST, port or Config.PORT)
        await site.start()
        self.logger.info(f"Listening on {host or Config.HOST}:{port or Config.PORT}")
        try:
            await asyncio.Event().wait()
        finally:
            await runner.cleanup()
