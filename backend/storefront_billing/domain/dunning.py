"""
Dunning Domain Models

Retry policy, retry attempts and the pure scheduling rules of the dunning
engine. Retry offsets count from the original payment failure, not from
the previous attempt: with the default policy attempts fall on days
1, 3, 5 and 7 after the failure and the grace period ends on day 10.
"""

from datetime import datetime, timedelta
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field, model_validator


class RetryStatus(str, Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class DunningConfig(BaseModel):
    """Immutable retry policy, built once per process and injected."""
    max_attempts: int = Field(default=4, ge=1)
    retry_schedule: tuple[int, ...] = (1, 3, 5, 7)
    grace_period_days: int = Field(default=3, ge=0)

    class Config:
        frozen = True

    @model_validator(mode="after")
    def validate_schedule(self) -> "DunningConfig":
        if len(self.retry_schedule) != self.max_attempts:
            raise ValueError("retry_schedule must have exactly max_attempts entries")
        return self

    @classmethod
    def from_settings(cls, settings) -> "DunningConfig":
        return cls(
            max_attempts=settings.dunning_max_attempts,
            retry_schedule=tuple(settings.dunning_retry_schedule),
            grace_period_days=settings.dunning_grace_period_days,
        )


class PaymentRetryAttempt(BaseModel):
    """
    One scheduled or executed retry in a failure episode.

    ``episode_started_at`` is the time of the original failure; every
    attempt in the chain carries it so offsets can be computed from it.
    """
    id: Optional[UUID] = None
    subscription_id: UUID
    invoice_id: Optional[UUID] = None
    attempt_number: int = Field(ge=1)
    amount: int = Field(default=0, ge=0)
    currency_code: str = "USD"
    status: RetryStatus = RetryStatus.PENDING
    failure_reason: Optional[str] = None
    stripe_payment_intent_id: Optional[str] = None
    episode_started_at: Optional[datetime] = None
    scheduled_at: datetime
    attempted_at: Optional[datetime] = None
    next_retry_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class RetryBatchResult(BaseModel):
    """Counts returned by one batch run of the retry processor."""
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    cancelled: int = 0
    errors: list[str] = Field(default_factory=list)


# =============================================================================
# Scheduling rules
# =============================================================================

def get_next_retry_date(
    current_attempt_count: int,
    reference: datetime,
    config: Optional[DunningConfig] = None,
) -> Optional[datetime]:
    """
    When the next retry should run, or None once the policy is exhausted.

    ``current_attempt_count`` is zero-based: 0 schedules the first retry.
    ``reference`` is the original failure time of the episode.
    """
    config = config or DunningConfig()
    if current_attempt_count >= config.max_attempts:
        return None
    return reference + timedelta(days=config.retry_schedule[current_attempt_count])


def episode_anchor(
    attempt: PaymentRetryAttempt,
    config: Optional[DunningConfig] = None,
) -> datetime:
    """
    Original failure time for the attempt's episode.

    Attempts without ``episode_started_at`` get it back by subtracting the
    offset of their slot in the schedule. An attempt numbered past
    ``max_attempts`` (the policy was shortened after it was scheduled) is
    measured against the last slot, so its anchor is approximate; such an
    attempt is exhausted and schedules nothing from it.
    """
    if attempt.episode_started_at is not None:
        return attempt.episode_started_at

    config = config or DunningConfig()
    index = min(attempt.attempt_number, config.max_attempts) - 1
    return attempt.scheduled_at - timedelta(days=config.retry_schedule[index])


def grace_period_end(
    attempt: PaymentRetryAttempt,
    config: Optional[DunningConfig] = None,
) -> datetime:
    """End of the grace window that follows the final attempt."""
    config = config or DunningConfig()
    return attempt.scheduled_at + timedelta(days=config.grace_period_days)


def is_exhausted(attempt: PaymentRetryAttempt, config: Optional[DunningConfig] = None) -> bool:
    """True when no further attempt follows this one under the policy."""
    config = config or DunningConfig()
    return attempt.attempt_number >= config.max_attempts
