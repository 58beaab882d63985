from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import uuid4
from pydantic import Field
from .base import TimeStampedModel

class DiscountType(str, Enum):
    """Discount kinds"""
    PERCENTAGE = "percentage"  # value is a whole percent
    FIXED = "fixed"  # value is minor units

class PromoCode(TimeStampedModel):
    """Promo code model"""
    promo_id: str = Field(default_factory=lambda: str(uuid4()))
    code: str
    discount_type: DiscountType
    discount_value: int = Field(ge=0)
    min_order: int = 0
    max_uses: Optional[int] = None
    used_count: int = 0
    expires_at: Optional[datetime] = None
    is_active: bool = True
    # Restricts the code to one vendor's orders when set
    vendor_id: Optional[str] = None

    @property
    def normalized_code(self) -> str:
        return normalize_code(self.code)

def normalize_code(code: str) -> str:
    return code.strip().upper()
