import logging
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel

from ..config import Config
from ..database.store import Store
from ..errors import (
    OrderNotFound,
    OrderNotPayable,
    ProfileNotFound,
    VendorNotFound,
    VendorNotPayable,
)
from ..models.order import (
    Actor,
    ClientPaymentOutcome,
    Order,
    OrderStatus,
    PaymentStatus,
)
from ..models.vendor import Vendor
from ..utils.security import construct_event
from .money import FeeRates, compute_application_fee, compute_platform_commission
from .order_service import OrderService
from .stripe_client import StripeClient

PAYMENT_SUCCEEDED = "payment_intent.succeeded"
PAYMENT_FAILED = "payment_intent.payment_failed"
ACCOUNT_UPDATED = "account.updated"

class PaymentSheet(BaseModel):
    """What the paying device needs to complete the charge with the processor"""
    order_id: str
    payment_intent_id: str
    payment_intent: str  # client secret
    ephemeral_key: str
    customer: str
    publishable_key: str
    amount: int
    application_fee: int

class PaymentService:
    """Payment intents with a vendor/platform split, and the processor's webhooks"""

    def __init__(self, store: Store, order_service: OrderService,
                 stripe: Optional[StripeClient] = None,
                 rates: Optional[FeeRates] = None,
                 webhook_secret: Optional[str] = None):
        self.store = store
        self.order_service = order_service
        self.stripe = stripe or StripeClient()
        self.rates = rates or Config.fee_rates()
        self.webhook_secret = webhook_secret or Config.STRIPE_WEBHOOK_SECRET
        self.logger = logging.getLogger(__name__)

    async def initiate(self, order_id: str, customer_id: str) -> PaymentSheet:
        """Create a payment intent for a pending order; the order stays pending"""
        order = await self.store.get_order(order_id)
        if not order or order.customer_id != customer_id:
            raise OrderNotFound(order_id)
        if order.status != OrderStatus.PENDING or order.payment_status == PaymentStatus.PAID:
            raise OrderNotPayable(order_id, order.status.value)

        vendor = await self.store.get_vendor(order.vendor_id)
        if not vendor:
            raise VendorNotFound(order.vendor_id)
        if not vendor.stripe_account_id:
            raise VendorNotPayable(vendor.vendor_id, "Vendor has not completed payment setup")
        if not vendor.charges_enabled:
            raise VendorNotPayable(vendor.vendor_id)

        stripe_customer = await self._get_or_create_customer(customer_id)
        ephemeral_key = await self.stripe.create_ephemeral_key(stripe_customer)

        application_fee = self.application_fee(order)
        intent = await self.stripe.create_payment_intent(
            amount=order.total,
            currency=Config.CURRENCY,
            customer_id=stripe_customer,
            application_fee_amount=application_fee,
            destination=vendor.stripe_account_id,
            metadata={
                "order_id": order.order_id,
                "vendor_id": order.vendor_id,
                "user_id": customer_id,
            },
            idempotency_key=f"payment-intent-{order.order_id}",
        )

        async with self.store.transaction() as tx:
            updated = await tx.update_order(
                order.order_id, OrderStatus.PENDING,
                payment_intent_id=intent["id"],
                client_payment_outcome=None,
            )
        if updated is None:
            # Cancelled or confirmed while we were talking to the processor
            current = await self.store.get_order(order.order_id)
            raise OrderNotPayable(order.order_id, current.status.value if current else "deleted")

        self.logger.info(
            f"Payment intent {intent['id']} created for order {order.order_id}: "
            f"amount {order.total}, application fee {application_fee}"
        )
        return PaymentSheet(
            order_id=order.order_id,
            payment_intent_id=intent["id"],
            payment_intent=intent["client_secret"],
            ephemeral_key=ephemeral_key["secret"],
            customer=stripe_customer,
            publishable_key=Config.STRIPE_PUBLISHABLE_KEY,
            amount=order.total,
            application_fee=application_fee,
        )

    def application_fee(self, order: Order) -> int:
        """Service fee plus commission on the subtotal, capped at the charge"""
        commission = compute_platform_commission(order.subtotal, self.rates.platform_commission_rate)
        fee = compute_application_fee(order.service_fee, commission)
        if fee > order.total:
            self.logger.warning(
                f"Application fee {fee} exceeds charge {order.total} on order "
                f"{order.order_id}; capped, the platform absorbs the discount"
            )
            return order.total
        return fee

    async def _get_or_create_customer(self, user_id: str) -> str:
        profile = await self.store.get_profile(user_id)
        if not profile:
            raise ProfileNotFound(user_id)
        if profile.stripe_customer_id:
            return profile.stripe_customer_id

        customer = await self.stripe.create_customer(profile.email, profile.name, user_id)
        async with self.store.transaction() as tx:
            await tx.update_profile(user_id, stripe_customer_id=customer["id"])
        return customer["id"]

    async def handle_confirmation_webhook(self, payload: Union[bytes, str],
                                          signature_header: Optional[str]) -> Dict[str, Any]:
        """Verify and apply one processor event. Safe to replay."""
        event = construct_event(
            payload, signature_header, self.webhook_secret,
            tolerance=Config.WEBHOOK_TOLERANCE_SECONDS
        )
        event_type = event["type"]
        event_id = event.get("id") or ""
        data = event.get("data", {}).get("object", {}) or {}

        self.logger.info(f"Received event {event_id}: {event_type}")

        if event_type == PAYMENT_SUCCEEDED:
            result = await self._payment_succeeded(event_id, data)
        elif event_type == PAYMENT_FAILED:
            result = await self._payment_failed(event_id, data)
        elif event_type == ACCOUNT_UPDATED:
            result = await self._account_updated(data)
        else:
            self.logger.info(f"Unhandled event type: {event_type}")
            result = "ignored"

        return {"received": True, "type": event_type, "result": result}

    async def _payment_succeeded(self, event_id: str, intent: Dict[str, Any]) -> str:
        order_id = (intent.get("metadata") or {}).get("order_id")
        if not order_id:
            self.logger.warning(f"Payment intent {intent.get('id')} has no order_id")
            return "ignored"

        async with self.store.transaction() as tx:
            if event_id and not await tx.mark_event_processed(event_id, PAYMENT_SUCCEEDED):
                return "duplicate"

            order = await tx.lock_order(order_id)
            if not order:
                self.logger.warning(f"Payment succeeded for unknown order {order_id}")
                return "ignored"

            if order.status != OrderStatus.PENDING:
                if order.status == OrderStatus.CANCELLED:
                    self.logger.warning(
                        f"Payment {intent.get('id')} captured for cancelled order {order_id}; "
                        "needs a refund"
                    )
                    return "cancelled_needs_refund"
                return "already_confirmed"

            if intent.get("amount") is not None and intent["amount"] != order.total:
                self.logger.warning(
                    f"Captured amount {intent['amount']} differs from order {order_id} "
                    f"total {order.total}"
                )

            updated = await self.order_service.apply_transition(
                tx, order, OrderStatus.CONFIRMED, Actor.PROCESSOR,
                payment_status=PaymentStatus.PAID,
                payment_intent_id=intent.get("id") or order.payment_intent_id,
            )

        self.logger.info(f"Order {order_id} confirmed")
        await self.order_service.announce(updated, OrderStatus.PENDING)
        return "confirmed"

    async def _payment_failed(self, event_id: str, intent: Dict[str, Any]) -> str:
        order_id = (intent.get("metadata") or {}).get("order_id")
        if not order_id:
            return "ignored"

        async with self.store.transaction() as tx:
            if event_id and not await tx.mark_event_processed(event_id, PAYMENT_FAILED):
                return "duplicate"

            order = await tx.lock_order(order_id)
            if not order or order.status != OrderStatus.PENDING or order.is_paid:
                return "ignored"

            # The customer may retry; the order is not cancelled
            updated = await tx.update_order(
                order_id, OrderStatus.PENDING, payment_status=PaymentStatus.FAILED
            )

        if updated is None:
            return "ignored"
        self.logger.info(f"Order {order_id} payment failed")
        await self.order_service.announce(updated, OrderStatus.PENDING)
        return "payment_failed"

    async def _account_updated(self, account: Dict[str, Any]) -> str:
        vendor_id = (account.get("metadata") or {}).get("vendor_id")
        if not vendor_id and account.get("id"):
            vendor = await self.store.get_vendor_by_account(account["id"])
            vendor_id = vendor.vendor_id if vendor else None
        if not vendor_id:
            self.logger.warning(f"No vendor for account {account.get('id')}")
            return "ignored"

        async with self.store.transaction() as tx:
            updated = await tx.update_vendor(
                vendor_id,
                charges_enabled=bool(account.get("charges_enabled")),
                payouts_enabled=bool(account.get("payouts_enabled")),
                onboarding_complete=bool(account.get("details_submitted")),
            )
        if not updated:
            self.logger.warning(f"Vendor {vendor_id} not found for account update")
            return "ignored"

        self.logger.info(f"Vendor {vendor_id} payment account status updated")
        return "vendor_updated"

    async def record_client_outcome(self, order_id: str, customer_id: str,
                                    outcome: ClientPaymentOutcome) -> Order:
        """Store what the device reported. Advisory: status never changes here."""
        outcome = ClientPaymentOutcome(outcome)
        async with self.store.transaction() as tx:
            order = await tx.lock_order(order_id)
            if not order or order.customer_id != customer_id:
                raise OrderNotFound(order_id)
            updated = await tx.update_order(
                order_id, order.status, client_payment_outcome=outcome
            )
        return updated or order

    async def create_connect_account(self, vendor_id: str, email: str) -> Dict[str, Any]:
        """Give a vendor a connected account; returns the existing one if present"""
        vendor = await self.store.get_vendor(vendor_id)
        if not vendor:
            raise VendorNotFound(vendor_id)
        if vendor.stripe_account_id:
            return {"account_id": vendor.stripe_account_id, "created": False}

        account = await self.stripe.create_account(vendor_id, email, vendor.business_name)
        try:
            async with self.store.transaction() as tx:
                saved = await tx.update_vendor(vendor_id, stripe_account_id=account["id"])
            if not saved:
                raise VendorNotFound(vendor_id)
        except Exception:
            # Do not leave an orphan account at the processor
            await self.stripe.delete_account(account["id"])
            raise

        self.logger.info(f"Connected account {account['id']} created for vendor {vendor_id}")
        return {"account_id": account["id"], "created": True}

    async def create_account_link(self, vendor_id: str) -> Dict[str, Any]:
        vendor = await self._vendor_with_account(vendor_id)
        link = await self.stripe.create_account_link(
            vendor.stripe_account_id, Config.CONNECT_REFRESH_URL, Config.CONNECT_RETURN_URL
        )
        return {"url": link["url"], "expires_at": link.get("expires_at")}

    async def connect_status(self, vendor_id: str, refresh: bool = False) -> Dict[str, Any]:
        vendor = await self.store.get_vendor(vendor_id)
        if not vendor:
            raise VendorNotFound(vendor_id)
        if refresh and vendor.stripe_account_id:
            account = await self.stripe.retrieve_account(vendor.stripe_account_id)
            await self._account_updated({**account, "metadata": {"vendor_id": vendor_id}})
            vendor = await self.store.get_vendor(vendor_id)
        return {
            "stripe_account_id": vendor.stripe_account_id,
            "charges_enabled": vendor.charges_enabled,
            "payouts_enabled": vendor.payouts_enabled,
            "onboarding_complete": vendor.onboarding_complete,
        }

    async def _vendor_with_account(self, vendor_id: str) -> Vendor:
        vendor = await self.store.get_vendor(vendor_id)
        if not vendor:
            raise VendorNotFound(vendor_id)
        if not vendor.stripe_account_id:
            raise VendorNotPayable(
                vendor_id, "Vendor does not have a payment account. Create one first."
            )
        return vendor
