from datetime import datetime
from typing import List, Optional

from aiohttp import web
from pydantic import BaseModel

from ..errors import InvalidRequest
from ..models.order import DeliveryAddress, FulfilmentType, OrderStatus
from ..services.order_service import OrderLine, OrderService
from ..services.promo_service import PromoService
from .base_handler import BaseHandler

class CreateOrderRequest(BaseModel):
    vendor_id: str
    items: List[OrderLine]
    fulfilment_type: FulfilmentType
    delivery_address: Optional[DeliveryAddress] = None
    collection_time: Optional[datetime] = None
    notes: Optional[str] = None
    promo_code: Optional[str] = None

class StatusRequest(BaseModel):
    status: OrderStatus

class PromoValidateRequest(BaseModel):
    code: str
    subtotal: int
    vendor_id: Optional[str] = None

def _statuses(request: web.Request) -> Optional[List[OrderStatus]]:
    raw = request.query.get("status")
    if not raw:
        return None
    try:
        return [OrderStatus(value.strip()) for value in raw.split(",") if value.strip()]
    except ValueError:
        raise InvalidRequest(f"Unknown status filter: {raw}")

def _limit(request: web.Request) -> Optional[int]:
    raw = request.query.get("limit")
    if raw is None:
        return None
    if not raw.isdigit() or int(raw) < 1:
        raise InvalidRequest("limit must be a positive integer")
    return int(raw)

class OrderHandler(BaseHandler):
    """Order placement, lookups and status changes"""

    def __init__(self, order_service: OrderService, promo_service: PromoService):
        super().__init__(order_service.store)
        self.order_service = order_service
        self.promo_service = promo_service

    async def create_order(self, request: web.Request) -> web.Response:
        customer_id = self.user_id(request)
        body = await self.parse_body(request, CreateOrderRequest)

        order = await self.order_service.create_order(
            customer_id=customer_id,
            vendor_id=body.vendor_id,
            items=body.items,
            fulfilment_type=body.fulfilment_type,
            delivery_address=body.delivery_address,
            collection_time=body.collection_time,
            notes=body.notes,
            promo_code=body.promo_code,
        )
        return self.ok({"order": order.model_dump(mode="json")}, status=201)

    async def get_order(self, request: web.Request) -> web.Response:
        order = await self.visible_order(request)
        return self.ok({"order": order.model_dump(mode="json")})

    async def list_my_orders(self, request: web.Request) -> web.Response:
        orders = await self.order_service.list_customer_orders(
            self.user_id(request), statuses=_statuses(request), limit=_limit(request)
        )
        return self.ok({"orders": [o.model_dump(mode="json") for o in orders]})

    async def list_vendor_orders(self, request: web.Request) -> web.Response:
        vendor = await self.require_vendor_access(request, request.match_info["vendor_id"])
        orders = await self.order_service.list_vendor_orders(
            vendor.vendor_id, statuses=_statuses(request), limit=_limit(request)
        )
        return self.ok({"orders": [o.model_dump(mode="json") for o in orders]})

    async def update_status(self, request: web.Request) -> web.Response:
        body = await self.parse_body(request, StatusRequest)
        order = await self.order_service.transition_order(
            request.match_info["order_id"],
            body.status,
            self.role(request),
            self.user_id(request),
        )
        return self.ok({"order": order.model_dump(mode="json")})

    async def cancel_order(self, request: web.Request) -> web.Response:
        order = await self.order_service.cancel_order(
            request.match_info["order_id"], self.role(request), self.user_id(request)
        )
        return self.ok({"order": order.model_dump(mode="json")})

    async def delete_order(self, request: web.Request) -> web.Response:
        deleted = await self.order_service.delete_abandoned_order(
            request.match_info["order_id"], self.role(request), self.user_id(request)
        )
        return self.ok({"deleted": deleted})

    async def validate_promo(self, request: web.Request) -> web.Response:
        self.user_id(request)
        body = await self.parse_body(request, PromoValidateRequest)
        promo = await self.promo_service.validate(body.code, body.subtotal, body.vendor_id)
        discount = self.promo_service.calculate_discount(promo, body.subtotal)
        return self.ok({
            "promo": {
                "promo_id": promo.promo_id,
                "code": promo.code,
                "discount_type": promo.discount_type.value,
                "discount_value": promo.discount_value,
            },
            "discount_amount": discount,
        })
