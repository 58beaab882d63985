"""Error taxonomy shared by the order, promo and payment services.

Every failure carries a stable ``code`` and a ``kind`` so callers can pick a
recovery action: fix input (validation), refetch and retry (conflict), wait for
an outside party (external) or escalate (integrity).
"""
from typing import Any, Dict, Optional

class MarketplaceError(Exception):
    """Base class for all domain errors"""
    code = "error"
    kind = "error"

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "success": False,
            "error": self.message,
            "code": self.code,
            "kind": self.kind,
        }
        if self.details:
            data["details"] = self.details
        return data

# Validation

class ValidationError(MarketplaceError):
    kind = "validation"

class EmptyOrder(ValidationError):
    code = "empty_order"

    def __init__(self):
        super().__init__("An order needs at least one item")

class InvalidQuantity(ValidationError):
    code = "invalid_quantity"

    def __init__(self, meal_id: str, quantity: int):
        super().__init__(
            f"Quantity for meal {meal_id} must be at least 1",
            meal_id=meal_id, quantity=quantity,
        )

class InvalidRequest(ValidationError):
    code = "invalid_request"

class InvalidPromoInput(ValidationError):
    code = "invalid_promo_input"

class MissingDeliveryAddress(ValidationError):
    code = "missing_delivery_address"

    def __init__(self):
        super().__init__("Delivery orders need a delivery address")

class FulfilmentNotOffered(ValidationError):
    code = "fulfilment_not_offered"

# Not found

class NotFoundError(MarketplaceError):
    kind = "not_found"

class OrderNotFound(NotFoundError):
    code = "order_not_found"

    def __init__(self, order_id: str):
        super().__init__(f"Order {order_id} not found", order_id=order_id)

class MealNotFound(NotFoundError):
    code = "meal_not_found"

    def __init__(self, meal_id: str):
        super().__init__(f"Meal {meal_id} not found", meal_id=meal_id)

class VendorNotFound(NotFoundError):
    code = "vendor_not_found"

    def __init__(self, vendor_id: str):
        super().__init__(f"Vendor {vendor_id} not found", vendor_id=vendor_id)

class ProfileNotFound(NotFoundError):
    code = "profile_not_found"

    def __init__(self, user_id: str):
        super().__init__(f"User profile {user_id} not found", user_id=user_id)

# Access

class AccessDenied(MarketplaceError):
    code = "access_denied"
    kind = "forbidden"

    def __init__(self, message: str = "You do not have access to this resource"):
        super().__init__(message)

# Promo rejections

class PromoError(MarketplaceError):
    kind = "validation"

class PromoNotFound(PromoError):
    code = "promo_not_found"
    kind = "not_found"

    def __init__(self, code: str):
        super().__init__("Invalid promo code", promo_code=code)

class PromoExpired(PromoError):
    code = "promo_expired"

    def __init__(self, code: str):
        super().__init__("This promo code has expired", promo_code=code)

class PromoInactive(PromoError):
    code = "promo_inactive"

    def __init__(self, code: str):
        super().__init__("This promo code is no longer active", promo_code=code)

class PromoBelowMinimum(PromoError):
    code = "promo_below_minimum"

    def __init__(self, code: str, min_order: int):
        super().__init__(
            f"Minimum order of {min_order} required for this promo code",
            promo_code=code, min_order=min_order,
        )

# Conflicts

class ConflictError(MarketplaceError):
    kind = "conflict"

class RedemptionLimitReached(ConflictError, PromoError):
    code = "redemption_limit_reached"
    kind = "conflict"

    def __init__(self, code: str):
        super().__init__("This promo code has reached its usage limit", promo_code=code)

class InsufficientStock(ConflictError):
    code = "insufficient_stock"

    def __init__(self, meal_id: str, requested: int, available: Optional[int] = None):
        super().__init__(
            "Sorry, this meal is no longer available in the requested quantity",
            meal_id=meal_id, requested=requested, available=available,
        )

class InvalidTransition(ConflictError):
    code = "invalid_transition"

    def __init__(self, order_id: str, current: str, target: str, message: Optional[str] = None):
        super().__init__(
            message or f"Order {order_id} cannot move from {current} to {target}",
            order_id=order_id, current=current, target=target,
        )

class TransitionForbidden(InvalidTransition):
    code = "transition_forbidden"

    def __init__(self, order_id: str, current: str, target: str, actor: str):
        super().__init__(
            order_id, current, target,
            message=f"A {actor} may not move order {order_id} from {current} to {target}",
        )
        self.details["actor"] = actor

class OrderNotPayable(ConflictError):
    code = "order_not_payable"

    def __init__(self, order_id: str, status: str):
        super().__init__(
            f"Order {order_id} is {status} and cannot be paid",
            order_id=order_id, status=status,
        )

class OrderNotDeletable(ConflictError):
    code = "order_not_deletable"

    def __init__(self, order_id: str):
        super().__init__(
            f"Order {order_id} has been paid or progressed and must be retained",
            order_id=order_id,
        )

# External dependencies

class ExternalError(MarketplaceError):
    kind = "external"

class VendorNotPayable(ExternalError):
    code = "vendor_not_payable"

    def __init__(self, vendor_id: str, reason: str = "Vendor cannot accept payments yet"):
        super().__init__(reason, vendor_id=vendor_id)

class ProcessorError(ExternalError):
    code = "processor_error"

    def __init__(self, message: str, status: Optional[int] = None, **details: Any):
        super().__init__(message, status=status, **details)
        self.status = status

class WebhookSignatureInvalid(ExternalError):
    code = "webhook_signature_invalid"

    def __init__(self, reason: str = "Webhook signature verification failed"):
        super().__init__(reason)

# Integrity

class IntegrityAnomaly(MarketplaceError):
    """Reported for fee or data errors; raised only where a caller opts in"""
    code = "integrity_anomaly"
    kind = "integrity"
