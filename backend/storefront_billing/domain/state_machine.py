"""
Subscription State Machine

The adjacency map below is the single authority on legal status changes.
Every status write goes through ``transition``, which validates against the
map before building the updated entity and its audit event.
"""

from datetime import datetime
from typing import Any, NamedTuple, Optional

from storefront_billing.domain.subscription import (
    Subscription,
    SubscriptionEvent,
    SubscriptionEventType,
    SubscriptionStatus,
)
from storefront_billing.infrastructure.exceptions import InvalidTransitionError


ALLOWED_TRANSITIONS: dict[SubscriptionStatus, frozenset[SubscriptionStatus]] = {
    SubscriptionStatus.PENDING: frozenset({
        SubscriptionStatus.ACTIVE,
        SubscriptionStatus.TRIALING,
        SubscriptionStatus.CANCELLED,
    }),
    SubscriptionStatus.TRIALING: frozenset({
        SubscriptionStatus.ACTIVE,
        SubscriptionStatus.CANCELLED,
        SubscriptionStatus.EXPIRED,
    }),
    SubscriptionStatus.ACTIVE: frozenset({
        SubscriptionStatus.PAUSED,
        SubscriptionStatus.PAST_DUE,
        SubscriptionStatus.CANCELLED,
    }),
    SubscriptionStatus.PAUSED: frozenset({
        SubscriptionStatus.ACTIVE,
        SubscriptionStatus.CANCELLED,
    }),
    SubscriptionStatus.PAST_DUE: frozenset({
        SubscriptionStatus.ACTIVE,
        SubscriptionStatus.CANCELLED,
    }),
    SubscriptionStatus.CANCELLED: frozenset({
        SubscriptionStatus.EXPIRED,
    }),
    SubscriptionStatus.EXPIRED: frozenset(),
}


class StatusChange(NamedTuple):
    """
    A validated status change.

    ``changes`` holds exactly the columns the transition writes.
    """
    subscription: Subscription
    event: SubscriptionEvent
    changes: dict[str, Any]


def can_transition(from_status: SubscriptionStatus, to_status: SubscriptionStatus) -> bool:
    return to_status in ALLOWED_TRANSITIONS.get(from_status, frozenset())


def transition(
    subscription: Subscription,
    to_status: SubscriptionStatus,
    event_type: SubscriptionEventType,
    data: Optional[dict[str, Any]] = None,
    changes: Optional[dict[str, Any]] = None,
    now: Optional[datetime] = None,
    stripe_event_id: Optional[str] = None,
) -> StatusChange:
    """
    Build the post-transition subscription and the event recording it.

    Nothing is persisted here. The input entity is left untouched; callers
    write ``changes`` (status, ``updated_at`` and the extra fields) with a
    compare-and-swap on the original status. Other columns are never part
    of the write.

    Args:
        subscription: Current state as read from the store
        to_status: Target status
        event_type: Audit event type describing the trigger
        data: Event payload
        changes: Extra field updates (timestamps, reasons) applied with the status
        now: Timestamp for ``updated_at`` and the event

    Raises:
        InvalidTransitionError: If the change is not in ALLOWED_TRANSITIONS
    """
    from_status = subscription.status
    if not can_transition(from_status, to_status):
        raise InvalidTransitionError(from_status.value, to_status.value)

    update = dict(changes or {})
    update["status"] = to_status
    if now is not None:
        update["updated_at"] = now

    updated = subscription.model_copy(update=update)
    event = SubscriptionEvent(
        subscription_id=subscription.id,
        event_type=event_type,
        data=data or {},
        previous_status=from_status,
        new_status=to_status,
        stripe_event_id=stripe_event_id,
        created_at=now,
    )
    return StatusChange(updated, event, update)


def record_event(
    subscription: Subscription,
    event_type: SubscriptionEventType,
    data: Optional[dict[str, Any]] = None,
    now: Optional[datetime] = None,
    stripe_event_id: Optional[str] = None,
) -> SubscriptionEvent:
    """Event for a lifecycle action that leaves the status where it is."""
    return SubscriptionEvent(
        subscription_id=subscription.id,
        event_type=event_type,
        data=data or {},
        previous_status=subscription.status,
        new_status=subscription.status,
        stripe_event_id=stripe_event_id,
        created_at=now,
    )
