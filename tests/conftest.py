"""Shared fixtures: a seeded in-memory store, a fake processor and the services."""
import hashlib
import hmac
import json
import time
from typing import Any, Dict, List, Optional

import pytest

from freshlocal.database import MemoryStore
from freshlocal.models.order import FulfilmentType, Order
from freshlocal.models.promo import DiscountType, PromoCode
from freshlocal.models.vendor import Meal, MealFulfilment, Profile, Vendor
from freshlocal.services.money import FeeRates
from freshlocal.services.order_service import OrderLine, OrderService
from freshlocal.services.payment_service import PaymentService
from freshlocal.services.promo_service import PromoService
from freshlocal.services.realtime import MemoryTransport, RealtimeChannel
from freshlocal.services.report_service import ReportService

WEBHOOK_SECRET = "whsec_test_secret"

CUSTOMER_ID = "customer-1"
OTHER_CUSTOMER_ID = "customer-2"
VENDOR_ID = "vendor-1"
VENDOR_USER_ID = "vendor-owner-1"
UNPAYABLE_VENDOR_ID = "vendor-2"
ACCOUNT_ID = "acct_vendor1"

LASAGNE = "meal-lasagne"  # 850, stock 10, collection or delivery
CURRY = "meal-curry"  # 1200, stock 1, collection only
SOUP = "meal-soup"  # 400, belongs to the unpayable vendor


class FakeStripeClient:
    """Records calls and answers like the processor would"""

    def __init__(self):
        self.calls: List[tuple] = []
        self.intents: Dict[str, Dict[str, Any]] = {}
        self.accounts: Dict[str, Dict[str, Any]] = {}
        self.deleted_accounts: List[str] = []

    async def create_customer(self, email, name, user_id):
        self.calls.append(("create_customer", user_id))
        return {"id": f"cus_{user_id}", "email": email}

    async def create_ephemeral_key(self, customer_id):
        self.calls.append(("create_ephemeral_key", customer_id))
        return {"id": "ephkey_1", "secret": f"ek_secret_{customer_id}"}

    async def create_payment_intent(self, amount, currency, customer_id,
                                    application_fee_amount, destination, metadata,
                                    idempotency_key=None):
        self.calls.append(("create_payment_intent", idempotency_key))
        intent_id = f"pi_{len(self.intents) + 1}"
        intent = {
            "id": intent_id,
            "client_secret": f"{intent_id}_secret",
            "amount": amount,
            "currency": currency,
            "customer": customer_id,
            "application_fee_amount": application_fee_amount,
            "transfer_data": {"destination": destination},
            "metadata": metadata,
        }
        self.intents[intent_id] = intent
        return intent

    async def create_account(self, vendor_id, email, business_name, country="GB"):
        self.calls.append(("create_account", vendor_id))
        account = {
            "id": f"acct_new_{vendor_id}",
            "email": email,
            "charges_enabled": False,
            "payouts_enabled": False,
            "details_submitted": False,
            "metadata": {"vendor_id": vendor_id},
        }
        self.accounts[account["id"]] = account
        return account

    async def delete_account(self, account_id):
        self.deleted_accounts.append(account_id)
        return {"id": account_id, "deleted": True}

    async def retrieve_account(self, account_id):
        return self.accounts.get(account_id, {
            "id": account_id,
            "charges_enabled": True,
            "payouts_enabled": True,
            "details_submitted": True,
        })

    async def create_account_link(self, account_id, refresh_url, return_url):
        return {
            "url": f"https://connect.example.test/setup/{account_id}",
            "expires_at": 1767225600,
        }


def webhook_event(event_type: str, obj: Dict[str, Any],
                  event_id: Optional[str] = None) -> str:
    return json.dumps({
        "id": event_id or f"evt_{event_type}_{obj.get('id')}",
        "type": event_type,
        "data": {"object": obj},
    })


def sign_payload(payload: str, secret: str, timestamp: Optional[int] = None) -> str:
    """Stripe-Signature header value: t=<unix time>,v1=<hex HMAC-SHA256 of "t.payload">"""
    timestamp = int(time.time()) if timestamp is None else timestamp
    signature = hmac.new(
        secret.encode(), f"{timestamp}.{payload}".encode(), hashlib.sha256
    ).hexdigest()
    return f"t={timestamp},v1={signature}"


def signed(payload: str, secret: str = WEBHOOK_SECRET) -> str:
    return sign_payload(payload, secret)


def succeeded_intent(order: Order, intent_id: str = "pi_1") -> Dict[str, Any]:
    return {
        "id": intent_id,
        "amount": order.total,
        "metadata": {"order_id": order.order_id, "vendor_id": order.vendor_id},
    }


@pytest.fixture
def rates():
    return FeeRates()


@pytest.fixture
def store():
    store = MemoryStore()
    store.add_vendor(Vendor(
        vendor_id=VENDOR_ID,
        user_id=VENDOR_USER_ID,
        business_name="Nonna's Kitchen",
        stripe_account_id=ACCOUNT_ID,
        charges_enabled=True,
        payouts_enabled=True,
        onboarding_complete=True,
    ))
    store.add_vendor(Vendor(
        vendor_id=UNPAYABLE_VENDOR_ID,
        user_id="vendor-owner-2",
        business_name="Soup Shack",
    ))
    store.add_meal(Meal(
        meal_id=LASAGNE, vendor_id=VENDOR_ID, name="Lasagne", price=850, stock=10,
    ))
    store.add_meal(Meal(
        meal_id=CURRY, vendor_id=VENDOR_ID, name="Goan Curry", price=1200, stock=1,
        fulfilment_type=MealFulfilment.COLLECTION,
    ))
    store.add_meal(Meal(
        meal_id=SOUP, vendor_id=UNPAYABLE_VENDOR_ID, name="Leek Soup", price=400, stock=5,
    ))
    store.add_profile(Profile(user_id=CUSTOMER_ID, email="sam@example.com", name="Sam"))
    store.add_profile(Profile(user_id=OTHER_CUSTOMER_ID, email="alex@example.com", name="Alex"))
    store.add_promo(PromoCode(
        promo_id="promo-save10", code="SAVE10",
        discount_type=DiscountType.PERCENTAGE, discount_value=10,
    ))
    store.add_promo(PromoCode(
        promo_id="promo-fiver", code="FIVER",
        discount_type=DiscountType.FIXED, discount_value=500,
        min_order=2000, max_uses=1,
    ))
    return store


@pytest.fixture
def transport():
    return MemoryTransport()


@pytest.fixture
def realtime(transport):
    return RealtimeChannel(transport)


@pytest.fixture
def promo_service(store):
    return PromoService(store)


@pytest.fixture
def order_service(store, realtime, promo_service, rates):
    return OrderService(store, realtime, promo_service=promo_service, rates=rates)


@pytest.fixture
def stripe():
    return FakeStripeClient()


@pytest.fixture
def payment_service(store, order_service, stripe, rates):
    return PaymentService(store, order_service, stripe, rates, WEBHOOK_SECRET)


@pytest.fixture
def report_service(store, rates):
    return ReportService(store, rates, timezone="Europe/London")


@pytest.fixture
def place_order(order_service):
    """Create a collection order for CUSTOMER_ID with VENDOR_ID"""
    async def place(*lines, customer_id=CUSTOMER_ID, fulfilment=FulfilmentType.COLLECTION,
                    **kwargs) -> Order:
        items = [OrderLine(meal_id=meal_id, quantity=qty) for meal_id, qty in (lines or [(LASAGNE, 2)])]
        return await order_service.create_order(
            customer_id, VENDOR_ID, items, fulfilment, **kwargs
        )
    return place
