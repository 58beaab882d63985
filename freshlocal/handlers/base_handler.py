import json
import logging
from datetime import datetime
from typing import Any, Dict, Optional, Type, TypeVar

import pydantic
import pytz
from aiohttp import web

from ..config import Config
from ..database.store import StoreReader
from ..errors import (
    AccessDenied,
    InvalidRequest,
    MarketplaceError,
    OrderNotFound,
    TransitionForbidden,
    VendorNotFound,
    WebhookSignatureInvalid,
)
from ..models.order import Actor, Order
from ..models.vendor import Vendor

logger = logging.getLogger(__name__)

Model = TypeVar("Model", bound=pydantic.BaseModel)

STATUS_BY_KIND = {
    "validation": 400,
    "forbidden": 403,
    "not_found": 404,
    "conflict": 409,
    "external": 502,
    "integrity": 500,
}

USER_HEADER = "X-User-Id"
ROLE_HEADER = "X-User-Role"

def status_for(error: MarketplaceError) -> int:
    if isinstance(error, WebhookSignatureInvalid):
        return 400
    if isinstance(error, TransitionForbidden):
        return 403
    return STATUS_BY_KIND.get(error.kind, 500)

@web.middleware
async def error_middleware(request: web.Request, handler):
    """Turn domain errors into ``{"success": false, ...}`` JSON responses"""
    try:
        return await handler(request)
    except MarketplaceError as e:
        status = status_for(e)
        if status >= 500 or isinstance(e, WebhookSignatureInvalid):
            logger.warning(f"{request.method} {request.path} failed: {e.code}: {e.message}")
        else:
            logger.info(f"{request.method} {request.path} rejected: {e.code}")
        return web.json_response(e.to_dict(), status=status)

class BaseHandler:
    """Shared request helpers for the HTTP handlers"""

    def __init__(self, store: StoreReader):
        self.store = store
        self.logger = logging.getLogger(self.__class__.__module__)

    @staticmethod
    def user_id(request: web.Request) -> str:
        """Caller identity, asserted by the upstream identity provider"""
        user_id = request.headers.get(USER_HEADER)
        if not user_id:
            raise web.HTTPUnauthorized(
                text=json.dumps({
                    "success": False,
                    "error": "Missing user identity",
                    "code": "unauthenticated",
                    "kind": "forbidden",
                }),
                content_type="application/json",
            )
        return user_id

    @staticmethod
    def role(request: web.Request) -> Actor:
        value = request.headers.get(ROLE_HEADER, Actor.CUSTOMER.value).lower()
        # The processor only acts through signed webhooks
        if value not in (Actor.CUSTOMER.value, Actor.VENDOR.value, Actor.ADMIN.value):
            raise InvalidRequest(f"Unknown role: {value}")
        return Actor(value)

    @staticmethod
    async def parse_body(request: web.Request, model: Type[Model]) -> Model:
        try:
            data = await request.json()
        except ValueError:
            raise InvalidRequest("Request body must be JSON")
        try:
            return model.model_validate(data)
        except pydantic.ValidationError as e:
            raise InvalidRequest(
                "Invalid request body",
                errors=json.loads(e.json(include_url=False)),
            )

    @staticmethod
    def parse_datetime(value: Optional[str], name: str) -> Optional[datetime]:
        """ISO-8601 query value; naive values are read in the reporting timezone"""
        if not value:
            return None
        try:
            dt = datetime.fromisoformat(value)
        except ValueError:
            raise InvalidRequest(f"{name} must be an ISO-8601 date or datetime")
        if dt.tzinfo is None:
            dt = pytz.timezone(Config.TIMEZONE).localize(dt)
        return dt

    async def require_vendor_access(self, request: web.Request, vendor_id: str) -> Vendor:
        """The vendor's owner or an admin"""
        user_id = self.user_id(request)
        vendor = await self.store.get_vendor(vendor_id)
        if not vendor:
            raise VendorNotFound(vendor_id)
        role = self.role(request)
        if role == Actor.ADMIN:
            return vendor
        if role == Actor.VENDOR and vendor.user_id == user_id:
            return vendor
        raise AccessDenied()

    async def visible_order(self, request: web.Request) -> Order:
        """Load the path's order if the caller may see it; others get not-found"""
        order_id = request.match_info["order_id"]
        user_id = self.user_id(request)
        role = self.role(request)
        order = await self.store.get_order(order_id)
        if not order:
            raise OrderNotFound(order_id)

        if role == Actor.CUSTOMER and order.customer_id != user_id:
            raise OrderNotFound(order_id)
        if role == Actor.VENDOR:
            vendor = await self.store.get_vendor(order.vendor_id)
            if not vendor or vendor.user_id != user_id:
                raise OrderNotFound(order_id)
        return order

    def require_admin(self, request: web.Request) -> None:
        self.user_id(request)
        if self.role(request) != Actor.ADMIN:
            raise AccessDenied()

    @staticmethod
    def ok(data: Optional[Dict[str, Any]] = None, status: int = 200) -> web.Response:
        return web.json_response({"success": True, **(data or {})}, status=status)
