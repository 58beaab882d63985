from aiohttp import web
from pydantic import BaseModel

from ..models.order import ClientPaymentOutcome
from ..services.payment_service import PaymentService
from .base_handler import BaseHandler

SIGNATURE_HEADER = "Stripe-Signature"

class OutcomeRequest(BaseModel):
    outcome: ClientPaymentOutcome

class ConnectRequest(BaseModel):
    email: str

class PaymentHandler(BaseHandler):
    """Payment sheet setup, processor webhooks and vendor onboarding"""

    def __init__(self, payment_service: PaymentService):
        super().__init__(payment_service.store)
        self.payment_service = payment_service

    async def initiate_payment(self, request: web.Request) -> web.Response:
        sheet = await self.payment_service.initiate(
            request.match_info["order_id"], self.user_id(request)
        )
        return self.ok({
            "paymentIntent": sheet.payment_intent,
            "ephemeralKey": sheet.ephemeral_key,
            "customer": sheet.customer,
            "publishableKey": sheet.publishable_key,
            "paymentIntentId": sheet.payment_intent_id,
            "amount": sheet.amount,
        })

    async def record_outcome(self, request: web.Request) -> web.Response:
        body = await self.parse_body(request, OutcomeRequest)
        order = await self.payment_service.record_client_outcome(
            request.match_info["order_id"], self.user_id(request), body.outcome
        )
        return self.ok({"order": order.model_dump(mode="json")})

    async def stripe_webhook(self, request: web.Request) -> web.Response:
        # Verified against the raw bytes; do not parse before this call
        payload = await request.read()
        result = await self.payment_service.handle_confirmation_webhook(
            payload, request.headers.get(SIGNATURE_HEADER)
        )
        return web.json_response(result)

    async def create_connect_account(self, request: web.Request) -> web.Response:
        vendor = await self.require_vendor_access(request, request.match_info["vendor_id"])
        body = await self.parse_body(request, ConnectRequest)
        result = await self.payment_service.create_connect_account(vendor.vendor_id, body.email)
        return self.ok(result, status=201 if result["created"] else 200)

    async def create_account_link(self, request: web.Request) -> web.Response:
        vendor = await self.require_vendor_access(request, request.match_info["vendor_id"])
        link = await self.payment_service.create_account_link(vendor.vendor_id)
        return self.ok(link)

    async def connect_status(self, request: web.Request) -> web.Response:
        vendor = await self.require_vendor_access(request, request.match_info["vendor_id"])
        refresh = request.query.get("refresh", "").lower() in ("1", "true", "yes")
        status = await self.payment_service.connect_status(vendor.vendor_id, refresh=refresh)
        return self.ok(status)
