from enum import Enum
from typing import Optional
from uuid import uuid4
from pydantic import Field
from .base import TimeStampedModel
from .order import FulfilmentType

class MealFulfilment(str, Enum):
    COLLECTION = "collection"
    DELIVERY = "delivery"
    BOTH = "both"

    def offers(self, fulfilment_type: FulfilmentType) -> bool:
        return self == MealFulfilment.BOTH or self.value == FulfilmentType(fulfilment_type).value

class Vendor(TimeStampedModel):
    """Vendor with its payment-processor connected account state"""
    vendor_id: str = Field(default_factory=lambda: str(uuid4()))
    user_id: str
    business_name: str
    stripe_account_id: Optional[str] = None
    charges_enabled: bool = False
    payouts_enabled: bool = False
    onboarding_complete: bool = False
    is_active: bool = True

    @property
    def is_payable(self) -> bool:
        return bool(self.stripe_account_id) and self.charges_enabled

class Meal(TimeStampedModel):
    """Meal listing; ``stock`` is the contended counter"""
    meal_id: str = Field(default_factory=lambda: str(uuid4()))
    vendor_id: str
    name: str
    price: int = Field(ge=0)
    stock: int = Field(default=0, ge=0)
    fulfilment_type: MealFulfilment = MealFulfilment.BOTH
    is_active: bool = True

class Profile(TimeStampedModel):
    """Customer profile as seen by the payment and notification flows"""
    user_id: str
    email: Optional[str] = None
    name: Optional[str] = None
    stripe_customer_id: Optional[str] = None
    push_token: Optional[str] = None
