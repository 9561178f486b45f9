"""
Promotion Database Models

SQLModel tables for coupons, coupon redemptions, gift subscriptions and
plan bundles.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import Column, DateTime
from sqlalchemy.dialects.postgresql import JSONB
from sqlmodel import Field

from storefront_billing.infrastructure.db.models.base import TimestampMixin, UUIDMixin, utc_now


class CouponModel(UUIDMixin, TimestampMixin, table=True):
    """Maps to the 'coupons' table."""

    __tablename__ = "coupons"

    code: str = Field(max_length=50, unique=True, index=True)
    name: str = Field(max_length=255)
    description: Optional[str] = Field(default=None)
    discount_type: str = Field(max_length=20)
    discount_value: int
    currency_code: str = Field(default="USD", max_length=3)
    duration: str = Field(default="once", max_length=20)
    duration_in_months: Optional[int] = Field(default=None)
    max_redemptions: Optional[int] = Field(default=None)
    redemption_count: int = Field(default=0)
    min_order_amount: Optional[int] = Field(default=None)
    # Plan ids as strings; empty means every plan
    applies_to_plans: list = Field(default_factory=list, sa_column=Column(JSONB, nullable=False))
    valid_from: datetime = Field(default_factory=utc_now, sa_type=DateTime(timezone=True))
    valid_until: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))
    is_active: bool = Field(default=True, index=True)
    stripe_coupon_id: Optional[str] = Field(default=None, max_length=255)
    coupon_metadata: dict = Field(
        default_factory=dict,
        sa_column=Column("metadata", JSONB, nullable=False),
    )


class CouponRedemptionModel(UUIDMixin, table=True):
    """Maps to the 'coupon_redemptions' table."""

    __tablename__ = "coupon_redemptions"

    coupon_id: UUID = Field(foreign_key="coupons.id", index=True)
    customer_id: str = Field(max_length=255, index=True)
    subscription_id: Optional[UUID] = Field(default=None, foreign_key="subscriptions.id")
    order_id: Optional[str] = Field(default=None, max_length=255)
    discount_amount: int
    currency_code: str = Field(default="USD", max_length=3)
    redeemed_at: datetime = Field(default_factory=utc_now, sa_type=DateTime(timezone=True))
    expires_at: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))
    status: str = Field(default="active", max_length=20)


class GiftSubscriptionModel(UUIDMixin, TimestampMixin, table=True):
    """Maps to the 'gift_subscriptions' table."""

    __tablename__ = "gift_subscriptions"

    sender_customer_id: Optional[str] = Field(default=None, max_length=255)
    sender_email: str = Field(max_length=255)
    sender_name: str = Field(max_length=255)
    recipient_email: str = Field(max_length=255)
    recipient_name: str = Field(max_length=255)
    plan_id: UUID = Field(foreign_key="subscription_plans.id")
    gift_message: Optional[str] = Field(default=None)
    redeem_code: str = Field(max_length=20, unique=True, index=True)
    expires_at: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))
    amount_paid: int = Field(default=0)
    currency_code: str = Field(default="USD", max_length=3)
    stripe_payment_intent_id: Optional[str] = Field(default=None, max_length=255)
    status: str = Field(default="pending", max_length=20, index=True)
    redeemed_at: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))
    redeemed_by_customer_id: Optional[str] = Field(default=None, max_length=255)
    subscription_id: Optional[UUID] = Field(default=None, foreign_key="subscriptions.id")


class SubscriptionBundleModel(UUIDMixin, TimestampMixin, table=True):
    """Maps to the 'subscription_bundles' table."""

    __tablename__ = "subscription_bundles"

    name: str = Field(max_length=255)
    description: Optional[str] = Field(default=None)
    price_amount: int
    currency_code: str = Field(default="USD", max_length=3)
    interval: str = Field(default="month", max_length=10)
    interval_count: int = Field(default=1)
    savings_amount: int = Field(default=0)
    savings_percentage: int = Field(default=0)
    status: str = Field(default="active", max_length=20)


class SubscriptionBundleItemModel(UUIDMixin, table=True):
    """Maps to the 'subscription_bundle_items' table."""

    __tablename__ = "subscription_bundle_items"

    bundle_id: UUID = Field(foreign_key="subscription_bundles.id", index=True)
    plan_id: UUID = Field(foreign_key="subscription_plans.id")
    quantity: int = Field(default=1)
