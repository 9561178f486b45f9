"""
Payment Retry Attempt Model

One row per scheduled or executed dunning retry.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import DateTime, Index
from sqlmodel import Field

from storefront_billing.infrastructure.db.models.base import UUIDMixin, utc_now


class PaymentRetryAttemptModel(UUIDMixin, table=True):
    """Maps to the 'payment_retry_attempts' table."""

    __tablename__ = "payment_retry_attempts"
    __table_args__ = (
        # Serves the "pending and due" batch query
        Index("ix_payment_retry_attempts_status_scheduled_at", "status", "scheduled_at"),
    )

    subscription_id: UUID = Field(foreign_key="subscriptions.id", index=True)
    invoice_id: Optional[UUID] = Field(default=None, foreign_key="subscription_invoices.id")
    attempt_number: int
    amount: int = Field(default=0)
    currency_code: str = Field(default="USD", max_length=3)
    status: str = Field(default="pending", max_length=20)
    failure_reason: Optional[str] = Field(default=None)
    stripe_payment_intent_id: Optional[str] = Field(default=None, max_length=255)
    episode_started_at: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))
    scheduled_at: datetime = Field(sa_type=DateTime(timezone=True), nullable=False)
    attempted_at: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))
    next_retry_at: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))
    created_at: datetime = Field(
        default_factory=utc_now,
        sa_type=DateTime(timezone=True),
        nullable=False,
    )
