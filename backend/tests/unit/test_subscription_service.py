"""
Unit tests for SubscriptionService.

Covers lifecycle actions against in-memory repositories and a mocked
billing gateway, including the gateway-first ordering of writes.
"""

import pytest
from datetime import timedelta

from storefront_billing.domain.subscription import PlanStatus, SubscriptionStatus
from storefront_billing.infrastructure.exceptions import (
    ConcurrencyConflictError,
    GatewayUnavailableError,
    InvalidTransitionError,
    NotFoundError,
    NotificationError,
    ValidationError,
)
from storefront_billing.infrastructure.payments.gateway import GatewaySubscription
from storefront_billing.services.subscription_service import SubscriptionService


@pytest.fixture
def service(repos, gateway, notifier, clock):
    return SubscriptionService(repos, gateway, notifier, clock=clock)


# =============================================================================
# Creation & Activation
# =============================================================================

class TestCreateSubscription:

    @pytest.mark.asyncio
    async def test_plan_without_trial_starts_pending(self, service, repos, make_plan):
        plan = await make_plan()

        subscription = await service.create_subscription("cust_9", plan.id, quantity=2)

        assert subscription.status == SubscriptionStatus.PENDING
        assert subscription.quantity == 2
        assert repos.events.types_for(subscription.id) == ["created"]

    @pytest.mark.asyncio
    async def test_plan_with_trial_starts_trialing(self, service, repos, make_plan, clock):
        plan = await make_plan(trial_period_days=14)

        subscription = await service.create_subscription("cust_9", plan.id)

        assert subscription.status == SubscriptionStatus.TRIALING
        assert subscription.trial_end == clock.now + timedelta(days=14)
        assert subscription.current_period_end == subscription.trial_end
        assert repos.events.types_for(subscription.id) == ["created", "trial_started"]

    @pytest.mark.asyncio
    async def test_inactive_plan_is_rejected(self, service, make_plan):
        plan = await make_plan(status=PlanStatus.ARCHIVED)
        with pytest.raises(ValidationError):
            await service.create_subscription("cust_9", plan.id)

    @pytest.mark.asyncio
    async def test_unknown_plan(self, service):
        from uuid import uuid4
        with pytest.raises(NotFoundError):
            await service.create_subscription("cust_9", uuid4())

    @pytest.mark.asyncio
    async def test_zero_quantity_is_rejected(self, service, make_plan):
        plan = await make_plan()
        with pytest.raises(ValidationError):
            await service.create_subscription("cust_9", plan.id, quantity=0)


class TestActivate:

    @pytest.mark.asyncio
    async def test_pending_becomes_active_with_first_period(self, service, make_plan, make_subscription, notifier, clock):
        plan = await make_plan()
        pending = await make_subscription(plan, status=SubscriptionStatus.PENDING)

        active = await service.activate(pending.id)

        assert active.status == SubscriptionStatus.ACTIVE
        assert active.current_period_start == clock.now
        assert active.current_period_end == clock.now + timedelta(days=31)
        notifier.send_subscription_confirmation.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_email_failure_does_not_undo_activation(self, service, repos, make_plan, make_subscription, notifier):
        plan = await make_plan()
        pending = await make_subscription(plan, status=SubscriptionStatus.PENDING)
        notifier.send_subscription_confirmation.side_effect = NotificationError("bounce")

        active = await service.activate(pending.id)

        assert active.status == SubscriptionStatus.ACTIVE
        assert (await repos.subscriptions.get_by_id(pending.id)).status == SubscriptionStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_cancelled_cannot_be_activated(self, service, make_plan, make_subscription):
        plan = await make_plan()
        cancelled = await make_subscription(plan, status=SubscriptionStatus.CANCELLED)
        with pytest.raises(InvalidTransitionError):
            await service.activate(cancelled.id)


# =============================================================================
# Pause / Resume
# =============================================================================

class TestPauseResume:

    @pytest.mark.asyncio
    async def test_pause_then_resume(self, service, repos, make_plan, make_subscription, gateway, clock):
        plan = await make_plan()
        subscription = await make_subscription(plan)
        resume_at = clock.now + timedelta(days=30)

        paused = await service.pause(subscription.id, resume_at=resume_at)
        assert paused.status == SubscriptionStatus.PAUSED
        assert paused.paused_at == clock.now
        gateway.pause_collection.assert_awaited_once_with(subscription.stripe_subscription_id, resume_at)

        resumed = await service.resume(subscription.id)
        assert resumed.status == SubscriptionStatus.ACTIVE
        assert resumed.paused_at is None
        assert resumed.resume_at is None
        assert repos.events.types_for(subscription.id) == ["paused", "resumed"]

    @pytest.mark.asyncio
    async def test_trialing_cannot_be_paused(self, service, make_plan, make_subscription, gateway):
        plan = await make_plan()
        trialing = await make_subscription(plan, status=SubscriptionStatus.TRIALING)

        with pytest.raises(InvalidTransitionError):
            await service.pause(trialing.id)
        gateway.pause_collection.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_past_due_cannot_be_paused(self, service, make_plan, make_subscription):
        plan = await make_plan()
        past_due = await make_subscription(plan, status=SubscriptionStatus.PAST_DUE)
        with pytest.raises(ValidationError):
            await service.pause(past_due.id)

    @pytest.mark.asyncio
    async def test_gateway_failure_leaves_local_state_untouched(self, service, repos, make_plan, make_subscription, gateway):
        plan = await make_plan()
        subscription = await make_subscription(plan)
        gateway.pause_collection.side_effect = GatewayUnavailableError("timeout")

        with pytest.raises(GatewayUnavailableError):
            await service.pause(subscription.id)

        assert (await repos.subscriptions.get_by_id(subscription.id)).status == SubscriptionStatus.ACTIVE
        assert repos.events.types_for(subscription.id) == []

    @pytest.mark.asyncio
    async def test_resume_requires_paused(self, service, make_plan, make_subscription):
        plan = await make_plan()
        subscription = await make_subscription(plan)
        with pytest.raises(ValidationError):
            await service.resume(subscription.id)

    @pytest.mark.asyncio
    async def test_concurrent_status_change_is_a_conflict(self, service, repos, make_plan, make_subscription):
        plan = await make_plan()
        subscription = await make_subscription(plan)

        original_pause = service._gateway.pause_collection

        async def cancel_underneath(*args, **kwargs):
            repos.subscriptions.rows[subscription.id] = subscription.model_copy(
                update={"status": SubscriptionStatus.CANCELLED}
            )
            return await original_pause(*args, **kwargs)

        service._gateway.pause_collection = cancel_underneath

        with pytest.raises(ConcurrencyConflictError):
            await service.pause(subscription.id)


# =============================================================================
# Cancellation
# =============================================================================

class TestCancel:

    @pytest.mark.asyncio
    async def test_immediate_cancel(self, service, make_plan, make_subscription, gateway, clock):
        plan = await make_plan()
        subscription = await make_subscription(plan)

        cancelled = await service.cancel(subscription.id, immediate=True, reason="moving")

        assert cancelled.status == SubscriptionStatus.CANCELLED
        assert cancelled.ended_at == clock.now
        assert cancelled.cancel_reason == "moving"
        gateway.cancel_subscription.assert_awaited_once_with(subscription.stripe_subscription_id)

    @pytest.mark.asyncio
    async def test_cancel_at_period_end_keeps_status(self, service, repos, make_plan, make_subscription, gateway):
        plan = await make_plan()
        subscription = await make_subscription(plan)

        flagged = await service.cancel(subscription.id, reason="too much coffee")

        assert flagged.status == SubscriptionStatus.ACTIVE
        assert flagged.cancel_at_period_end is True
        gateway.cancel_at_period_end.assert_awaited_once()
        gateway.cancel_subscription.assert_not_awaited()
        assert repos.events.types_for(subscription.id) == ["cancelled"]

    @pytest.mark.asyncio
    async def test_cancelling_twice_is_rejected(self, service, make_plan, make_subscription):
        plan = await make_plan()
        subscription = await make_subscription(plan, status=SubscriptionStatus.CANCELLED)
        with pytest.raises(ValidationError):
            await service.cancel(subscription.id, immediate=True)

    @pytest.mark.asyncio
    async def test_local_only_subscription_skips_gateway(self, service, make_plan, make_subscription, gateway):
        plan = await make_plan()
        subscription = await make_subscription(plan, stripe_subscription_id=None)

        await service.cancel(subscription.id, immediate=True)
        gateway.cancel_subscription.assert_not_awaited()


# =============================================================================
# Plan & Quantity Changes
# =============================================================================

class TestChangePlan:

    @pytest.mark.asyncio
    async def test_change_plan_adopts_gateway_period(self, service, repos, make_plan, make_subscription, gateway, clock, notifier):
        basic = await make_plan()
        premium = await make_plan(name="Coffee Club Premium", price_amount=4999, stripe_price_id="price_premium")
        subscription = await make_subscription(basic)
        gateway.change_price.return_value = GatewaySubscription(
            id=subscription.stripe_subscription_id,
            status="active",
            current_period_start=clock.now,
            current_period_end=clock.now + timedelta(days=31),
        )

        changed = await service.change_plan(subscription.id, premium.id)

        assert changed.plan_id == premium.id
        assert changed.current_period_end == clock.now + timedelta(days=31)
        gateway.change_price.assert_awaited_once_with(
            subscription.stripe_subscription_id, "price_premium", prorate=True
        )
        events = await repos.events.list_for_subscription(subscription.id)
        assert events[0].data["old_price"] == 2999
        assert events[0].data["new_price"] == 4999
        notifier.send_plan_changed.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_same_plan_is_rejected(self, service, make_plan, make_subscription):
        plan = await make_plan()
        subscription = await make_subscription(plan)
        with pytest.raises(ValidationError):
            await service.change_plan(subscription.id, plan.id)

    @pytest.mark.asyncio
    async def test_plan_without_gateway_price_is_rejected(self, service, make_plan, make_subscription, gateway):
        basic = await make_plan()
        local_only = await make_plan(name="Local", stripe_price_id=None)
        subscription = await make_subscription(basic)

        with pytest.raises(ValidationError):
            await service.change_plan(subscription.id, local_only.id)
        gateway.change_price.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_paused_subscription_cannot_change_plan(self, service, make_plan, make_subscription):
        basic = await make_plan()
        premium = await make_plan(name="Premium", price_amount=4999)
        subscription = await make_subscription(basic, status=SubscriptionStatus.PAUSED)
        with pytest.raises(ValidationError):
            await service.change_plan(subscription.id, premium.id)


class TestChangeQuantity:

    @pytest.mark.asyncio
    async def test_quantity_change_is_recorded(self, service, repos, make_plan, make_subscription, gateway):
        plan = await make_plan()
        subscription = await make_subscription(plan)

        updated = await service.change_quantity(subscription.id, 3)

        assert updated.quantity == 3
        gateway.change_quantity.assert_awaited_once_with(subscription.stripe_subscription_id, 3)
        assert repos.events.types_for(subscription.id) == ["quantity_changed"]

    @pytest.mark.asyncio
    async def test_unchanged_quantity_is_a_no_op(self, service, repos, make_plan, make_subscription, gateway):
        plan = await make_plan()
        subscription = await make_subscription(plan)

        await service.change_quantity(subscription.id, 1)

        gateway.change_quantity.assert_not_awaited()
        assert repos.events.types_for(subscription.id) == []

    @pytest.mark.asyncio
    async def test_quantity_below_one_is_rejected(self, service, make_plan, make_subscription):
        plan = await make_plan()
        subscription = await make_subscription(plan)
        with pytest.raises(ValidationError):
            await service.change_quantity(subscription.id, 0)

    @pytest.mark.asyncio
    async def test_concurrent_plan_change_is_kept(self, service, repos, make_plan, make_subscription, gateway):
        basic = await make_plan()
        premium = await make_plan(name="Premium", price_amount=4999)
        subscription = await make_subscription(basic)

        def plan_changed_underneath(*args, **kwargs):
            repos.subscriptions.rows[subscription.id] = subscription.model_copy(
                update={"plan_id": premium.id}
            )

        gateway.change_quantity.side_effect = plan_changed_underneath

        updated = await service.change_quantity(subscription.id, 4)

        assert updated.quantity == 4
        assert updated.plan_id == premium.id


class TestConcurrentWrites:

    @pytest.mark.asyncio
    async def test_plan_change_on_cancelled_subscription_is_a_conflict(self, service, repos, make_plan, make_subscription, gateway):
        basic = await make_plan()
        premium = await make_plan(name="Premium", price_amount=4999, stripe_price_id="price_premium")
        subscription = await make_subscription(basic)

        def cancelled_underneath(*args, **kwargs):
            repos.subscriptions.rows[subscription.id] = subscription.model_copy(
                update={"status": SubscriptionStatus.CANCELLED}
            )
            return GatewaySubscription(id=subscription.stripe_subscription_id, status="active")

        gateway.change_price.side_effect = cancelled_underneath

        with pytest.raises(ConcurrencyConflictError):
            await service.change_plan(subscription.id, premium.id)

        stored = repos.subscriptions.rows[subscription.id]
        assert stored.plan_id == basic.id
        assert repos.events.types_for(subscription.id) == []

    @pytest.mark.asyncio
    async def test_cancel_at_period_end_keeps_concurrent_quantity(self, service, repos, make_plan, make_subscription, gateway):
        plan = await make_plan()
        subscription = await make_subscription(plan)

        def quantity_changed_underneath(*args, **kwargs):
            repos.subscriptions.rows[subscription.id] = subscription.model_copy(update={"quantity": 5})

        gateway.cancel_at_period_end.side_effect = quantity_changed_underneath

        flagged = await service.cancel(subscription.id)

        assert flagged.cancel_at_period_end is True
        assert flagged.quantity == 5
        assert flagged.status == SubscriptionStatus.ACTIVE
