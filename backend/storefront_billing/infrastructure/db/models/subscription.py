"""
Subscription Database Models

SQLModel tables for plans, subscriptions, their audit events and invoices.
Status and enum columns are stored as plain strings.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import Column, DateTime, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlmodel import Field

from storefront_billing.infrastructure.db.models.base import TimestampMixin, UUIDMixin, utc_now


class SubscriptionPlanModel(UUIDMixin, TimestampMixin, table=True):
    """Maps to the 'subscription_plans' table."""

    __tablename__ = "subscription_plans"

    name: str = Field(max_length=255)
    description: Optional[str] = Field(default=None)
    interval: str = Field(default="month", max_length=10)
    interval_count: int = Field(default=1)
    price_amount: int
    currency_code: str = Field(default="USD", max_length=3)
    trial_period_days: int = Field(default=0)
    setup_fee_amount: int = Field(default=0)
    status: str = Field(default="active", max_length=20, index=True)
    features: list = Field(default_factory=list, sa_column=Column(JSONB, nullable=False))
    plan_metadata: dict = Field(
        default_factory=dict,
        sa_column=Column("metadata", JSONB, nullable=False),
    )
    stripe_product_id: Optional[str] = Field(default=None, max_length=255)
    stripe_price_id: Optional[str] = Field(default=None, max_length=255)


class SubscriptionModel(UUIDMixin, TimestampMixin, table=True):
    """Maps to the 'subscriptions' table. Rows are never deleted."""

    __tablename__ = "subscriptions"

    customer_id: str = Field(max_length=255, index=True)
    customer_email: Optional[str] = Field(default=None, max_length=255)
    plan_id: UUID = Field(foreign_key="subscription_plans.id", index=True)

    # Stripe IDs
    stripe_customer_id: Optional[str] = Field(default=None, index=True)
    stripe_subscription_id: Optional[str] = Field(default=None, unique=True, index=True)

    status: str = Field(default="pending", max_length=20, index=True)
    quantity: int = Field(default=1)

    # Billing period dates
    current_period_start: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))
    current_period_end: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))
    trial_start: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))
    trial_end: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))

    # Cancellation and pause
    cancel_at_period_end: bool = Field(default=False)
    cancelled_at: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))
    cancel_reason: Optional[str] = Field(default=None)
    ended_at: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))
    paused_at: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))
    resume_at: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))

    shipping_address: Optional[dict] = Field(default=None, sa_column=Column(JSONB))


class SubscriptionEventModel(UUIDMixin, table=True):
    """Maps to the 'subscription_events' table. Append-only."""

    __tablename__ = "subscription_events"

    subscription_id: UUID = Field(foreign_key="subscriptions.id", index=True)
    event_type: str = Field(sa_column=Column(String(50), nullable=False))
    data: dict = Field(default_factory=dict, sa_column=Column(JSONB, nullable=False))
    previous_status: Optional[str] = Field(default=None, max_length=20)
    new_status: Optional[str] = Field(default=None, max_length=20)
    stripe_event_id: Optional[str] = Field(default=None, max_length=255)
    created_at: datetime = Field(
        default_factory=utc_now,
        sa_type=DateTime(timezone=True),
        nullable=False,
    )


class SubscriptionInvoiceModel(UUIDMixin, TimestampMixin, table=True):
    """Maps to the 'subscription_invoices' table."""

    __tablename__ = "subscription_invoices"

    subscription_id: UUID = Field(foreign_key="subscriptions.id", index=True)
    stripe_invoice_id: Optional[str] = Field(default=None, unique=True, index=True)
    subtotal_amount: int = Field(default=0)
    discount_amount: int = Field(default=0)
    tax_amount: int = Field(default=0)
    total_amount: int = Field(default=0)
    amount_paid: int = Field(default=0)
    amount_due: int = Field(default=0)
    currency_code: str = Field(default="USD", max_length=3)
    status: str = Field(default="open", max_length=20, index=True)
    period_start: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))
    period_end: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))
    paid_at: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))
    voided_at: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))
    order_id: Optional[str] = Field(default=None, max_length=255)
