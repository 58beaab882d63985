from typing import Any, Awaitable, Dict, Optional
import logging
import stripe
from ..config import Config
from ..errors import ProcessorError

class StripeClient:
    """Async calls to the payment processor through the Stripe SDK.

    Results are returned as plain dicts so services never depend on SDK types.
    """

    def __init__(self, secret_key: Optional[str] = None, api_base: Optional[str] = None,
                 api_version: Optional[str] = None, client: Optional[stripe.StripeClient] = None):
        self.api_version = api_version or Config.STRIPE_API_VERSION
        self.client = client or stripe.StripeClient(
            secret_key or Config.STRIPE_SECRET_KEY,
            stripe_version=self.api_version,
            base_addresses={"api": api_base or Config.STRIPE_API_BASE},
            http_client=stripe.AIOHTTPClient(),
        )
        self.logger = logging.getLogger(__name__)

    async def _call(self, action: str, request: Awaitable[Any]) -> Dict[str, Any]:
        try:
            result = await request
        except stripe.StripeError as e:
            self.logger.error(f"Payment processor {action} failed: {e}")
            raise ProcessorError(
                e.user_message or f"Payment processor error during {action}",
                status=e.http_status,
                processor_code=e.code,
            )
        return result.to_dict()

    async def create_customer(self, email: Optional[str], name: Optional[str],
                              user_id: str) -> Dict[str, Any]:
        params = {"metadata": {"user_id": user_id}}
        if email:
            params["email"] = email
        if name:
            params["name"] = name
        return await self._call("create customer", self.client.customers.create_async(
            params=params,
            options={"idempotency_key": f"customer-{user_id}"},
        ))

    async def create_ephemeral_key(self, customer_id: str) -> Dict[str, Any]:
        return await self._call("create ephemeral key", self.client.ephemeral_keys.create_async(
            params={"customer": customer_id},
            options={"stripe_version": self.api_version},
        ))

    async def create_payment_intent(self, amount: int, currency: str, customer_id: str,
                                    application_fee_amount: int, destination: str,
                                    metadata: Dict[str, str],
                                    idempotency_key: Optional[str] = None) -> Dict[str, Any]:
        options = {"idempotency_key": idempotency_key} if idempotency_key else {}
        return await self._call("create payment intent", self.client.payment_intents.create_async(
            params={
                "amount": amount,
                "currency": currency,
                "customer": customer_id,
                "application_fee_amount": application_fee_amount,
                "transfer_data": {"destination": destination},
                "metadata": metadata,
                "automatic_payment_methods": {"enabled": True},
            },
            options=options,
        ))

    async def create_account(self, vendor_id: str, email: str, business_name: str,
                             country: str = "GB") -> Dict[str, Any]:
        return await self._call("create account", self.client.accounts.create_async(
            params={
                "type": "express",
                "country": country,
                "email": email,
                "business_type": "individual",
                "capabilities": {
                    "card_payments": {"requested": True},
                    "transfers": {"requested": True},
                },
                "business_profile": {
                    "name": business_name,
                    "mcc": "5812",  # eating places and restaurants
                },
                "settings": {
                    "payouts": {
                        "schedule": {
                            "delay_days": "minimum",
                            "interval": "weekly",
                            "weekly_anchor": "tuesday",
                        },
                    },
                },
                "metadata": {"vendor_id": vendor_id},
            },
            options={"idempotency_key": f"account-{vendor_id}"},
        ))

    async def delete_account(self, account_id: str) -> Dict[str, Any]:
        return await self._call("delete account", self.client.accounts.delete_async(account_id))

    async def retrieve_account(self, account_id: str) -> Dict[str, Any]:
        return await self._call(
            "retrieve account", self.client.accounts.retrieve_async(account_id)
        )

    async def create_account_link(self, account_id: str, refresh_url: str,
                                  return_url: str) -> Dict[str, Any]:
        return await self._call("create account link", self.client.account_links.create_async(
            params={
                "account": account_id,
                "refresh_url": refresh_url,
                "return_url": return_url,
                "type": "account_onboarding",
            },
        ))
