"""
Subscription Domain Models

Domain models for the subscription bounded context following Clean Architecture.
Enums and entities for plans, subscriptions, audit events and invoices.
All monetary amounts are integers in minor currency units (cents).
"""

import calendar
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, Field, model_validator


class PlanInterval(str, Enum):
    """Billing cadence unit."""
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"


class PlanStatus(str, Enum):
    """Plan lifecycle status."""
    ACTIVE = "active"
    INACTIVE = "inactive"
    ARCHIVED = "archived"


class SubscriptionStatus(str, Enum):
    """Subscription lifecycle status."""
    PENDING = "pending"
    TRIALING = "trialing"
    ACTIVE = "active"
    PAUSED = "paused"
    PAST_DUE = "past_due"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class SubscriptionEventType(str, Enum):
    """Audit event types, one row per transition or lifecycle action."""
    CREATED = "created"
    ACTIVATED = "activated"
    TRIAL_STARTED = "trial_started"
    TRIAL_ENDED = "trial_ended"
    RENEWED = "renewed"
    PAYMENT_SUCCEEDED = "payment_succeeded"
    PAYMENT_FAILED = "payment_failed"
    PAUSED = "paused"
    RESUMED = "resumed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    PLAN_CHANGED = "plan_changed"
    QUANTITY_CHANGED = "quantity_changed"
    PRICE_CHANGED = "price_changed"


class InvoiceStatus(str, Enum):
    """Invoice status as tracked locally."""
    DRAFT = "draft"
    OPEN = "open"
    PAID = "paid"
    VOID = "void"
    UNCOLLECTIBLE = "uncollectible"


# =============================================================================
# Domain Entities
# =============================================================================

class SubscriptionPlan(BaseModel):
    """
    A billable offering.

    Price and cadence are permanent; changing them means creating a new plan.
    """
    id: Optional[UUID] = None
    name: str
    description: Optional[str] = None
    interval: PlanInterval = PlanInterval.MONTH
    interval_count: int = Field(default=1, ge=1)
    price_amount: int = Field(ge=0)
    currency_code: str = "USD"
    trial_period_days: int = Field(default=0, ge=0)
    setup_fee_amount: int = Field(default=0, ge=0)
    status: PlanStatus = PlanStatus.ACTIVE
    features: list[str] = Field(default_factory=list)
    plan_metadata: dict[str, Any] = Field(default_factory=dict)
    stripe_product_id: Optional[str] = None
    stripe_price_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True

    @property
    def accepts_subscribers(self) -> bool:
        """Only active plans can take new subscribers."""
        return self.status == PlanStatus.ACTIVE


class Subscription(BaseModel):
    """Core subscription domain entity."""
    id: Optional[UUID] = None
    customer_id: str
    customer_email: Optional[str] = None
    plan_id: UUID
    stripe_customer_id: Optional[str] = None
    stripe_subscription_id: Optional[str] = None
    status: SubscriptionStatus = SubscriptionStatus.PENDING
    quantity: int = Field(default=1, ge=1)
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    trial_start: Optional[datetime] = None
    trial_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    cancelled_at: Optional[datetime] = None
    cancel_reason: Optional[str] = None
    ended_at: Optional[datetime] = None
    paused_at: Optional[datetime] = None
    resume_at: Optional[datetime] = None
    shipping_address: Optional[dict[str, Any]] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True

    @model_validator(mode="after")
    def validate_period(self) -> "Subscription":
        """Billing period cannot end before it starts."""
        if (
            self.current_period_start is not None
            and self.current_period_end is not None
            and self.current_period_end < self.current_period_start
        ):
            raise ValueError("current_period_end must not be before current_period_start")
        return self

    @property
    def is_terminal(self) -> bool:
        return self.status in (SubscriptionStatus.CANCELLED, SubscriptionStatus.EXPIRED)


class SubscriptionEvent(BaseModel):
    """Immutable audit record. Append-only."""
    id: Optional[UUID] = None
    subscription_id: UUID
    event_type: SubscriptionEventType
    data: dict[str, Any] = Field(default_factory=dict)
    previous_status: Optional[SubscriptionStatus] = None
    new_status: Optional[SubscriptionStatus] = None
    stripe_event_id: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
        frozen = True


class SubscriptionInvoice(BaseModel):
    """A billing-period charge."""
    id: Optional[UUID] = None
    subscription_id: UUID
    stripe_invoice_id: Optional[str] = None
    subtotal_amount: int = 0
    discount_amount: int = 0
    tax_amount: int = 0
    total_amount: int = 0
    amount_paid: int = 0
    amount_due: int = 0
    currency_code: str = "USD"
    status: InvoiceStatus = InvoiceStatus.OPEN
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    voided_at: Optional[datetime] = None
    order_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# =============================================================================
# Billing Periods
# =============================================================================

def add_months(value: datetime, months: int) -> datetime:
    """Shift by whole months, clamping the day to the target month's length."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def advance_period(start: datetime, interval: PlanInterval, interval_count: int = 1) -> datetime:
    """End of a billing period that begins at ``start``."""
    if interval == PlanInterval.DAY:
        return start + timedelta(days=interval_count)
    if interval == PlanInterval.WEEK:
        return start + timedelta(weeks=interval_count)
    if interval == PlanInterval.MONTH:
        return add_months(start, interval_count)
    return add_months(start, 12 * interval_count)
