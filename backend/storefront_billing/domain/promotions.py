"""
Promotion Domain Models

Coupons, coupon redemptions, gift subscriptions and plan bundles.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from storefront_billing.domain.subscription import PlanInterval, PlanStatus


class DiscountType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED_AMOUNT = "fixed_amount"


class CouponDuration(str, Enum):
    ONCE = "once"
    REPEATING = "repeating"
    FOREVER = "forever"


class RedemptionStatus(str, Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    REVOKED = "revoked"


class GiftStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    REDEEMED = "redeemed"
    EXPIRED = "expired"
    REFUNDED = "refunded"


class Coupon(BaseModel):
    """A discount rule. ``redemption_count`` only ever goes up."""
    id: Optional[UUID] = None
    code: str
    name: str
    description: Optional[str] = None
    discount_type: DiscountType
    discount_value: int = Field(ge=0)
    currency_code: str = "USD"
    duration: CouponDuration = CouponDuration.ONCE
    duration_in_months: Optional[int] = Field(default=None, ge=1)
    max_redemptions: Optional[int] = Field(default=None, ge=1)
    redemption_count: int = Field(default=0, ge=0)
    min_order_amount: Optional[int] = Field(default=None, ge=0)
    applies_to_plans: list[UUID] = Field(default_factory=list)
    valid_from: datetime
    valid_until: Optional[datetime] = None
    is_active: bool = True
    stripe_coupon_id: Optional[str] = None
    coupon_metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True

    @field_validator("code")
    @classmethod
    def normalize_code(cls, value: str) -> str:
        return value.strip().upper()

    @field_validator("applies_to_plans", mode="before")
    @classmethod
    def default_plans(cls, value):
        return value or []


class CouponRedemption(BaseModel):
    """One successful use of a coupon."""
    id: Optional[UUID] = None
    coupon_id: UUID
    customer_id: str
    subscription_id: Optional[UUID] = None
    order_id: Optional[str] = None
    discount_amount: int = Field(ge=0)
    currency_code: str = "USD"
    redeemed_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    status: RedemptionStatus = RedemptionStatus.ACTIVE

    class Config:
        from_attributes = True


class GiftSubscription(BaseModel):
    """A prepaid subscription awaiting activation by its recipient."""
    id: Optional[UUID] = None
    sender_customer_id: Optional[str] = None
    sender_email: str
    sender_name: str
    recipient_email: str
    recipient_name: str
    plan_id: UUID
    gift_message: Optional[str] = None
    redeem_code: str
    expires_at: Optional[datetime] = None
    amount_paid: int = Field(default=0, ge=0)
    currency_code: str = "USD"
    stripe_payment_intent_id: Optional[str] = None
    status: GiftStatus = GiftStatus.PENDING
    redeemed_at: Optional[datetime] = None
    redeemed_by_customer_id: Optional[str] = None
    subscription_id: Optional[UUID] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class BundleItem(BaseModel):
    plan_id: UUID
    quantity: int = Field(default=1, ge=1)

    class Config:
        from_attributes = True


class SubscriptionBundle(BaseModel):
    """Several plans sold together at a blended price."""
    id: Optional[UUID] = None
    name: str
    description: Optional[str] = None
    price_amount: int = Field(ge=0)
    currency_code: str = "USD"
    interval: PlanInterval = PlanInterval.MONTH
    interval_count: int = Field(default=1, ge=1)
    savings_amount: int = 0
    savings_percentage: int = 0
    status: PlanStatus = PlanStatus.ACTIVE
    items: list[BundleItem] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True
