"""
Test configuration and fixtures for Storefront Billing.

Provides in-memory repositories that behave like the SQL ones (including
the compare-and-swap status write and the guarded coupon counter), a
controllable clock, and mocks for the billing gateway and email notifier.
"""

import pytest
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Optional
from unittest.mock import AsyncMock, MagicMock
from uuid import UUID, uuid4

from fastapi.testclient import TestClient

from storefront_billing.domain.dunning import DunningConfig, RetryStatus
from storefront_billing.domain.promotions import GiftStatus
from storefront_billing.domain.subscription import (
    PlanInterval,
    Subscription,
    SubscriptionPlan,
    SubscriptionStatus,
)
from storefront_billing.infrastructure.exceptions import (
    ConcurrencyConflictError,
    DuplicateError,
    NotFoundError,
)
from storefront_billing.infrastructure.notifications.email_sender import EmailNotifier
from storefront_billing.infrastructure.payments.gateway import BillingGateway, PaymentCollection


# =============================================================================
# In-memory Repositories
# =============================================================================

class InMemoryRepository:
    """Dict-backed stand-in for BaseRepository."""

    immutable_fields = frozenset({"id", "created_at"})

    def __init__(self):
        self.rows: dict[UUID, Any] = {}

    async def get_by_id(self, id: UUID):
        return self.rows.get(id)

    async def get_all(self, skip: int = 0, limit: int = 100):
        return list(self.rows.values())[skip:skip + limit]

    async def create(self, entity):
        if entity.id is None:
            entity = entity.model_copy(update={"id": uuid4()})
        self.rows[entity.id] = entity
        return entity

    async def update(self, entity):
        current = self.rows.get(entity.id)
        if current is None:
            raise NotFoundError(f"{type(entity).__name__} {entity.id} not found", operation="update")
        kept = {key: getattr(current, key) for key in self.immutable_fields if hasattr(current, key)}
        entity = entity.model_copy(update=kept)
        self.rows[entity.id] = entity
        return entity

    async def update_columns(self, id: UUID, values: dict, *conditions):
        """Column-targeted write; guards are modelled by the subclasses."""
        current = self.rows.get(id)
        if current is None:
            return None
        self.rows[id] = current.model_copy(update=values)
        return self.rows[id]


class InMemoryPlans(InMemoryRepository):
    async def list_by_status(self, status=None):
        plans = [plan for plan in self.rows.values() if status is None or plan.status == status]
        return sorted(plans, key=lambda plan: plan.price_amount)

    async def get_many(self, ids):
        return [self.rows[plan_id] for plan_id in ids if plan_id in self.rows]


class InMemoryEvents(InMemoryRepository):
    async def append(self, event):
        return await self.create(event)

    async def list_for_subscription(self, subscription_id, limit=50):
        events = [event for event in self.rows.values() if event.subscription_id == subscription_id]
        return events[-limit:][::-1]

    def types_for(self, subscription_id):
        """Event types of a subscription in insertion order."""
        return [
            event.event_type.value
            for event in self.rows.values()
            if event.subscription_id == subscription_id
        ]


class InMemorySubscriptions(InMemoryRepository):
    immutable_fields = frozenset({"id", "created_at", "status"})

    def __init__(self, events: InMemoryEvents):
        super().__init__()
        self._events = events

    async def get_by_stripe_subscription_id(self, stripe_subscription_id):
        for subscription in self.rows.values():
            if subscription.stripe_subscription_id == stripe_subscription_id:
                return subscription
        return None

    async def list_by_status(self, status, limit=500):
        return [sub for sub in self.rows.values() if sub.status == status][:limit]

    async def create_with_events(self, subscription, events):
        created = await self.create(subscription)
        for event in events:
            await self._events.append(event.model_copy(update={"subscription_id": created.id}))
        return created

    async def list_filtered(self, customer_id=None, status=None, limit=100):
        subscriptions = [
            sub for sub in self.rows.values()
            if (customer_id is None or sub.customer_id == customer_id)
            and (status is None or sub.status == status)
        ]
        return subscriptions[::-1][:limit]

    async def save_transition(self, change, expected_status):
        subscription_id = change.subscription.id
        current = self.rows.get(subscription_id)
        if current is None or current.status != expected_status:
            raise ConcurrencyConflictError(
                f"Subscription {subscription_id} is no longer {expected_status.value}",
                operation="save_transition",
                table="subscriptions",
            )
        # Only the transition's own columns change, like the SQL write
        self.rows[subscription_id] = current.model_copy(update=change.changes)
        await self._events.append(change.event)
        return self.rows[subscription_id]

    async def update_fields(self, subscription_id, changes, allowed_statuses=None):
        current = self.rows.get(subscription_id)
        if current is None:
            raise NotFoundError(f"Subscription {subscription_id} not found", operation="update_fields")
        if allowed_statuses is not None and current.status not in tuple(allowed_statuses):
            raise ConcurrencyConflictError(
                f"Subscription {subscription_id} changed status concurrently",
                operation="update_fields",
                table="subscriptions",
            )
        self.rows[subscription_id] = current.model_copy(update=changes)
        return self.rows[subscription_id]


class InMemoryInvoices(InMemoryRepository):
    def __init__(self, subscriptions: "InMemorySubscriptions"):
        super().__init__()
        self._subscriptions = subscriptions

    async def list_for_customer(self, customer_id, limit=100):
        owned = {
            sub.id for sub in self._subscriptions.rows.values() if sub.customer_id == customer_id
        }
        return [inv for inv in self.rows.values() if inv.subscription_id in owned][::-1][:limit]

    async def get_by_stripe_invoice_id(self, stripe_invoice_id):
        for invoice in self.rows.values():
            if invoice.stripe_invoice_id == stripe_invoice_id:
                return invoice
        return None

    async def list_for_subscription(self, subscription_id, limit=12):
        return [inv for inv in self.rows.values() if inv.subscription_id == subscription_id][:limit]

    async def upsert_by_stripe_id(self, invoice):
        existing = None
        if invoice.stripe_invoice_id:
            existing = await self.get_by_stripe_invoice_id(invoice.stripe_invoice_id)
        if existing is None:
            return await self.create(invoice)
        return await self.update(invoice.model_copy(update={"id": existing.id}))


class InMemoryRetries(InMemoryRepository):
    async def list_due(self, now, limit=100):
        due = [
            attempt for attempt in self.rows.values()
            if attempt.status == RetryStatus.PENDING and attempt.scheduled_at <= now
        ]
        return sorted(due, key=lambda attempt: attempt.scheduled_at)[:limit]

    async def get_latest_for_subscription(self, subscription_id):
        attempts = [a for a in self.rows.values() if a.subscription_id == subscription_id]
        if not attempts:
            return None
        return max(attempts, key=lambda a: (a.created_at, a.attempt_number))

    async def has_pending(self, subscription_id):
        return any(
            a.subscription_id == subscription_id and a.status == RetryStatus.PENDING
            for a in self.rows.values()
        )

    def for_subscription(self, subscription_id):
        attempts = [a for a in self.rows.values() if a.subscription_id == subscription_id]
        return sorted(attempts, key=lambda a: a.attempt_number)


class InMemoryCoupons(InMemoryRepository):
    async def get_by_code(self, code):
        for coupon in self.rows.values():
            if coupon.code == code.strip().upper():
                return coupon
        return None

    async def create(self, entity):
        if await self.get_by_code(entity.code) is not None:
            raise DuplicateError(f"Coupon code {entity.code} already exists", table="coupons")
        return await super().create(entity)

    async def list_coupons(self, active_only=True, limit=200):
        coupons = [c for c in self.rows.values() if c.is_active or not active_only]
        return coupons[::-1][:limit]

    async def increment_redemption_count(self, coupon_id):
        coupon = self.rows[coupon_id]
        if coupon.max_redemptions is not None and coupon.redemption_count >= coupon.max_redemptions:
            return False
        self.rows[coupon_id] = coupon.model_copy(update={"redemption_count": coupon.redemption_count + 1})
        return True

    async def list_expired_active(self, now):
        return [
            coupon for coupon in self.rows.values()
            if coupon.is_active and coupon.valid_until is not None and coupon.valid_until < now
        ]


class InMemoryGifts(InMemoryRepository):
    async def get_by_code(self, redeem_code):
        for gift in self.rows.values():
            if gift.redeem_code == redeem_code.strip().upper():
                return gift
        return None

    async def code_exists(self, redeem_code):
        return await self.get_by_code(redeem_code) is not None

    async def change_status(self, gift_id, expected_status, new_status, **changes):
        current = self.rows.get(gift_id)
        if current is None or current.status != expected_status:
            raise ConcurrencyConflictError(
                f"Gift {gift_id} is no longer {expected_status.value}",
                operation="change_status",
                table="gift_subscriptions",
            )
        self.rows[gift_id] = current.model_copy(update={**changes, "status": new_status})
        return self.rows[gift_id]

    async def list_expired_paid(self, now):
        return [
            gift for gift in self.rows.values()
            if gift.status == GiftStatus.PAID and gift.expires_at is not None and gift.expires_at < now
        ]


class InMemoryBundles(InMemoryRepository):
    async def list_active(self):
        return list(self.rows.values())


class InMemoryWebhookEvents:
    def __init__(self):
        self.processed: dict[str, str] = {}

    async def is_processed(self, event_id):
        return event_id in self.processed

    async def mark_processed(self, event_id, event_type):
        self.processed.setdefault(event_id, event_type)


class FakeRepositories:
    """Same attributes as BillingRepositories, backed by dicts."""

    def __init__(self):
        self.plans = InMemoryPlans()
        self.events = InMemoryEvents()
        self.subscriptions = InMemorySubscriptions(self.events)
        self.invoices = InMemoryInvoices(self.subscriptions)
        self.retries = InMemoryRetries()
        self.coupons = InMemoryCoupons()
        self.redemptions = InMemoryRepository()
        self.gifts = InMemoryGifts()
        self.bundles = InMemoryBundles()
        self.webhook_events = InMemoryWebhookEvents()


class FakeClock:
    """Callable clock that tests move forward explicitly."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, days: float = 0, hours: float = 0) -> datetime:
        self.now = self.now + timedelta(days=days, hours=hours)
        return self.now


# =============================================================================
# Core Fixtures
# =============================================================================

@pytest.fixture
def repos():
    return FakeRepositories()


@pytest.fixture
def unit_of_work(repos):
    """Unit-of-work factory handing out the shared in-memory repositories."""

    @asynccontextmanager
    async def factory():
        yield repos

    return factory


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def dunning_config():
    return DunningConfig()


@pytest.fixture
def gateway():
    """Billing gateway mock; every collection fails unless a test says otherwise."""
    mock = AsyncMock(spec=BillingGateway)
    mock.collect_open_invoice.return_value = PaymentCollection(
        paid=False, invoice_id="in_123", failure_reason="Your card was declined."
    )
    mock.verify_webhook_signature = MagicMock()
    return mock


@pytest.fixture
def notifier():
    mock = AsyncMock(spec=EmailNotifier)
    for name in (
        "send_subscription_confirmation",
        "send_payment_failed",
        "send_plan_changed",
        "send_gift_purchased",
        "send_gift_received",
    ):
        getattr(mock, name).return_value = {"status": "success"}
    return mock


# =============================================================================
# Sample Data Fixtures
# =============================================================================

@pytest.fixture
def make_plan(repos):
    async def factory(**overrides) -> SubscriptionPlan:
        values = {
            "name": "Coffee Club",
            "price_amount": 2999,
            "currency_code": "USD",
            "interval": PlanInterval.MONTH,
            "stripe_price_id": "price_basic",
        }
        values.update(overrides)
        return await repos.plans.create(SubscriptionPlan(**values))

    return factory


@pytest.fixture
def make_subscription(repos, clock):
    async def factory(plan: SubscriptionPlan, **overrides) -> Subscription:
        values: dict[str, Any] = {
            "id": uuid4(),
            "customer_id": "cust_1",
            "customer_email": "shopper@example.com",
            "plan_id": plan.id,
            "stripe_customer_id": "cus_123",
            "stripe_subscription_id": f"sub_{uuid4().hex[:8]}",
            "status": SubscriptionStatus.ACTIVE,
            "current_period_start": clock.now - timedelta(days=10),
            "current_period_end": clock.now + timedelta(days=20),
            "created_at": clock.now - timedelta(days=40),
        }
        values.update(overrides)
        return await repos.subscriptions.create(Subscription(**values))

    return factory


# =============================================================================
# App Fixtures
# =============================================================================

@pytest.fixture
def app():
    """Get the FastAPI application with dependency overrides cleared afterwards."""
    from storefront_billing.main import app
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
def client(app):
    """Get synchronous test client."""
    return TestClient(app)
