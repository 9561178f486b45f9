"""
Subscription Lifecycle Service

Orchestrates user-initiated subscription actions: create, activate, pause,
resume, cancel, plan change and quantity change.

Each action reads current state, validates it, calls the billing gateway
first and writes locally second, so a gateway failure never leaves the
local record ahead of the remote one. Status writes go through the state
machine and a compare-and-swap on the previous status; every other write
names its columns and is guarded on the statuses the action allows.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Optional
from uuid import UUID, uuid4

from storefront_billing.domain.state_machine import record_event, transition
from storefront_billing.domain.subscription import (
    Subscription,
    SubscriptionEventType,
    SubscriptionPlan,
    SubscriptionStatus,
    advance_period,
)
from storefront_billing.infrastructure.db.models.base import utc_now
from storefront_billing.infrastructure.db.repositories import BillingRepositories
from storefront_billing.infrastructure.exceptions import NotFoundError, ValidationError
from storefront_billing.infrastructure.notifications.email_sender import EmailNotifier
from storefront_billing.infrastructure.payments.gateway import BillingGateway, GatewaySubscription
from storefront_billing.services.best_effort import best_effort


logger = logging.getLogger(__name__)

PAUSABLE_STATUSES = (SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING)
PLAN_CHANGE_STATUSES = (SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING)
OPEN_STATUSES = tuple(
    status for status in SubscriptionStatus
    if status not in (SubscriptionStatus.CANCELLED, SubscriptionStatus.EXPIRED)
)


class SubscriptionService:
    """
    Service for subscription lifecycle actions.

    Args:
        repos: Repositories sharing the caller's session
        gateway: Remote billing gateway
        notifier: Email sender for confirmations
        clock: Source of "now", injectable for tests
    """

    def __init__(
        self,
        repos: BillingRepositories,
        gateway: BillingGateway,
        notifier: EmailNotifier,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._repos = repos
        self._gateway = gateway
        self._notifier = notifier
        self._clock = clock

    # =========================================================================
    # Queries
    # =========================================================================

    async def get_subscription(self, subscription_id: UUID) -> Subscription:
        subscription = await self._repos.subscriptions.get_by_id(subscription_id)
        if subscription is None:
            raise NotFoundError(f"Subscription {subscription_id} not found", table="subscriptions")
        return subscription

    async def _get_plan(self, plan_id: UUID) -> SubscriptionPlan:
        plan = await self._repos.plans.get_by_id(plan_id)
        if plan is None:
            raise NotFoundError(f"Plan {plan_id} not found", table="subscription_plans")
        return plan

    # =========================================================================
    # Creation & Activation
    # =========================================================================

    async def create_subscription(
        self,
        customer_id: str,
        plan_id: UUID,
        quantity: int = 1,
        customer_email: Optional[str] = None,
        stripe_customer_id: Optional[str] = None,
        stripe_subscription_id: Optional[str] = None,
        shipping_address: Optional[dict[str, Any]] = None,
    ) -> Subscription:
        """
        Start a subscription to an active plan.

        Plans with a trial start in ``trialing``; others start ``pending``
        until activated.
        """
        if quantity < 1:
            raise ValidationError("Quantity must be at least 1", details={"quantity": quantity})

        plan = await self._get_plan(plan_id)
        if not plan.accepts_subscribers:
            raise ValidationError(
                f"Plan {plan.name} is not accepting new subscribers",
                details={"plan_status": plan.status.value},
            )

        now = self._clock()
        subscription = Subscription(
            id=uuid4(),
            customer_id=customer_id,
            customer_email=customer_email,
            plan_id=plan.id,
            stripe_customer_id=stripe_customer_id,
            stripe_subscription_id=stripe_subscription_id,
            quantity=quantity,
            shipping_address=shipping_address,
            created_at=now,
            updated_at=now,
        )

        if plan.trial_period_days > 0:
            trial_end = now + timedelta(days=plan.trial_period_days)
            subscription = subscription.model_copy(update={
                "status": SubscriptionStatus.TRIALING,
                "trial_start": now,
                "trial_end": trial_end,
                "current_period_start": now,
                "current_period_end": trial_end,
            })

        events = [
            record_event(
                subscription,
                SubscriptionEventType.CREATED,
                data={"plan_id": str(plan.id), "quantity": quantity},
                now=now,
            ).model_copy(update={"previous_status": None})
        ]
        if subscription.status == SubscriptionStatus.TRIALING:
            events.append(record_event(
                subscription,
                SubscriptionEventType.TRIAL_STARTED,
                data={"trial_end": subscription.trial_end.isoformat()},
                now=now,
            ))

        created = await self._repos.subscriptions.create_with_events(subscription, events)
        logger.info(
            f"Subscription {created.id} created for customer {customer_id} "
            f"on plan {plan.name} ({created.status.value})"
        )
        return created

    async def activate(self, subscription_id: UUID) -> Subscription:
        """Move a pending or trialing subscription to active and start its first paid period."""
        subscription = await self.get_subscription(subscription_id)
        plan = await self._get_plan(subscription.plan_id)
        now = self._clock()

        change = transition(
            subscription,
            SubscriptionStatus.ACTIVE,
            SubscriptionEventType.ACTIVATED,
            data={"from": subscription.status.value},
            changes={
                "current_period_start": now,
                "current_period_end": advance_period(now, plan.interval, plan.interval_count),
            },
            now=now,
        )
        saved = await self._repos.subscriptions.save_transition(change, subscription.status)

        if saved.customer_email:
            await best_effort(
                "subscription confirmation email",
                self._notifier.send_subscription_confirmation(
                    to=saved.customer_email,
                    plan_name=plan.name,
                    amount=plan.price_amount * saved.quantity,
                    currency=plan.currency_code,
                    interval=plan.interval.value,
                    next_billing_date=saved.current_period_end,
                ),
            )
        return saved

    # =========================================================================
    # Pause / Resume
    # =========================================================================

    async def pause(self, subscription_id: UUID, resume_at: Optional[datetime] = None) -> Subscription:
        subscription = await self.get_subscription(subscription_id)
        if subscription.status not in PAUSABLE_STATUSES:
            raise ValidationError(
                f"Cannot pause a {subscription.status.value} subscription",
                details={"status": subscription.status.value},
            )

        now = self._clock()
        # Validate before touching the gateway
        change = transition(
            subscription,
            SubscriptionStatus.PAUSED,
            SubscriptionEventType.PAUSED,
            data={"reason": "manual_pause", "resume_at": resume_at.isoformat() if resume_at else None},
            changes={"paused_at": now, "resume_at": resume_at},
            now=now,
        )

        if subscription.stripe_subscription_id:
            await self._gateway.pause_collection(subscription.stripe_subscription_id, resume_at)

        return await self._repos.subscriptions.save_transition(change, subscription.status)

    async def resume(self, subscription_id: UUID) -> Subscription:
        subscription = await self.get_subscription(subscription_id)
        if subscription.status != SubscriptionStatus.PAUSED:
            raise ValidationError(
                "Only paused subscriptions can be resumed",
                details={"status": subscription.status.value},
            )

        now = self._clock()
        change = transition(
            subscription,
            SubscriptionStatus.ACTIVE,
            SubscriptionEventType.RESUMED,
            data={"paused_at": subscription.paused_at.isoformat() if subscription.paused_at else None},
            changes={"paused_at": None, "resume_at": None},
            now=now,
        )

        if subscription.stripe_subscription_id:
            await self._gateway.resume_collection(subscription.stripe_subscription_id)

        return await self._repos.subscriptions.save_transition(change, subscription.status)

    # =========================================================================
    # Cancellation
    # =========================================================================

    async def cancel(
        self,
        subscription_id: UUID,
        immediate: bool = False,
        reason: Optional[str] = None,
    ) -> Subscription:
        """
        Cancel now, or flag the subscription to end with its current period.

        Cancelling at period end keeps the status unchanged; the period
        rollover applies it later.
        """
        subscription = await self.get_subscription(subscription_id)
        if subscription.is_terminal:
            raise ValidationError(
                f"Subscription is already {subscription.status.value}",
                details={"status": subscription.status.value},
            )

        now = self._clock()

        if immediate:
            change = transition(
                subscription,
                SubscriptionStatus.CANCELLED,
                SubscriptionEventType.CANCELLED,
                data={"reason": reason, "immediate": True},
                changes={"cancelled_at": now, "ended_at": now, "cancel_reason": reason},
                now=now,
            )
            if subscription.stripe_subscription_id:
                await self._gateway.cancel_subscription(subscription.stripe_subscription_id)
            return await self._repos.subscriptions.save_transition(change, subscription.status)

        if subscription.stripe_subscription_id:
            await self._gateway.cancel_at_period_end(subscription.stripe_subscription_id)

        saved = await self._repos.subscriptions.update_fields(
            subscription.id,
            {
                "cancel_at_period_end": True,
                "cancelled_at": now,
                "cancel_reason": reason,
                "updated_at": now,
            },
            allowed_statuses=OPEN_STATUSES,
        )
        await self._repos.events.append(record_event(
            saved,
            SubscriptionEventType.CANCELLED,
            data={
                "reason": reason,
                "immediate": False,
                "effective_at": saved.current_period_end.isoformat() if saved.current_period_end else None,
            },
            now=now,
        ))
        logger.info(f"Subscription {saved.id} will cancel at period end")
        return saved

    # =========================================================================
    # Plan & Quantity Changes
    # =========================================================================

    async def change_plan(
        self,
        subscription_id: UUID,
        new_plan_id: UUID,
        prorate: bool = True,
    ) -> Subscription:
        subscription = await self.get_subscription(subscription_id)
        if subscription.status not in PLAN_CHANGE_STATUSES:
            raise ValidationError(
                f"Cannot change plan of a {subscription.status.value} subscription",
                details={"status": subscription.status.value},
            )
        if subscription.plan_id == new_plan_id:
            raise ValidationError("Subscription is already on this plan")

        old_plan = await self._get_plan(subscription.plan_id)
        new_plan = await self._get_plan(new_plan_id)
        if not new_plan.accepts_subscribers:
            raise ValidationError(f"Plan {new_plan.name} is not accepting new subscribers")

        remote: Optional[GatewaySubscription] = None
        if subscription.stripe_subscription_id:
            if not new_plan.stripe_price_id:
                raise ValidationError(f"Plan {new_plan.name} has no payment provider price")
            remote = await self._gateway.change_price(
                subscription.stripe_subscription_id,
                new_plan.stripe_price_id,
                prorate=prorate,
            )

        now = self._clock()
        changes: dict[str, Any] = {"plan_id": new_plan.id, "updated_at": now}
        if remote is not None and remote.current_period_start and remote.current_period_end:
            changes["current_period_start"] = remote.current_period_start
            changes["current_period_end"] = remote.current_period_end

        saved = await self._repos.subscriptions.update_fields(
            subscription.id, changes, allowed_statuses=PLAN_CHANGE_STATUSES
        )
        await self._repos.events.append(record_event(
            saved,
            SubscriptionEventType.PLAN_CHANGED,
            data={
                "old_plan_id": str(old_plan.id),
                "new_plan_id": str(new_plan.id),
                "old_price": old_plan.price_amount,
                "new_price": new_plan.price_amount,
                "prorate": prorate,
            },
            now=now,
        ))
        logger.info(f"Subscription {saved.id} moved from plan {old_plan.name} to {new_plan.name}")

        if saved.customer_email:
            await best_effort(
                "plan change email",
                self._notifier.send_plan_changed(
                    to=saved.customer_email,
                    old_plan_name=old_plan.name,
                    new_plan_name=new_plan.name,
                    new_amount=new_plan.price_amount * saved.quantity,
                    currency=new_plan.currency_code,
                    effective_date=now,
                ),
            )
        return saved

    async def change_quantity(self, subscription_id: UUID, quantity: int) -> Subscription:
        if quantity < 1:
            raise ValidationError("Quantity must be at least 1", details={"quantity": quantity})

        subscription = await self.get_subscription(subscription_id)
        if subscription.is_terminal:
            raise ValidationError(
                f"Cannot change quantity of a {subscription.status.value} subscription",
                details={"status": subscription.status.value},
            )
        if subscription.quantity == quantity:
            return subscription

        if subscription.stripe_subscription_id:
            await self._gateway.change_quantity(subscription.stripe_subscription_id, quantity)

        now = self._clock()
        saved = await self._repos.subscriptions.update_fields(
            subscription.id,
            {"quantity": quantity, "updated_at": now},
            allowed_statuses=OPEN_STATUSES,
        )
        await self._repos.events.append(record_event(
            saved,
            SubscriptionEventType.QUANTITY_CHANGED,
            data={"old_quantity": subscription.quantity, "new_quantity": quantity},
            now=now,
        ))
        logger.info(f"Subscription {saved.id} quantity {subscription.quantity} -> {quantity}")
        return saved
