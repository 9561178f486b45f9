"""
Repository Layer for Storefront Billing

Exports all repository classes and the ``BillingRepositories`` bundle that
services receive: one set of repositories sharing a single session, so
everything a service writes commits or rolls back together.
"""

from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession

from storefront_billing.infrastructure.db.database import get_session_context
from storefront_billing.infrastructure.db.repositories.base_repository import (
    BaseRepository,
    IReadRepository,
    IWriteRepository,
)
from storefront_billing.infrastructure.db.repositories.subscription_repository import (
    InvoiceRepository,
    PlanRepository,
    SubscriptionEventRepository,
    SubscriptionRepository,
)
from storefront_billing.infrastructure.db.repositories.retry_repository import (
    RetryAttemptRepository,
)
from storefront_billing.infrastructure.db.repositories.promotion_repository import (
    BundleRepository,
    CouponRedemptionRepository,
    CouponRepository,
    GiftRepository,
)
from storefront_billing.infrastructure.db.repositories.webhook_event_repository import (
    WebhookEventRepository,
)


@dataclass
class BillingRepositories:
    plans: PlanRepository
    subscriptions: SubscriptionRepository
    events: SubscriptionEventRepository
    invoices: InvoiceRepository
    retries: RetryAttemptRepository
    coupons: CouponRepository
    redemptions: CouponRedemptionRepository
    gifts: GiftRepository
    bundles: BundleRepository
    webhook_events: WebhookEventRepository

    @classmethod
    def from_session(cls, session: AsyncSession) -> "BillingRepositories":
        return cls(
            plans=PlanRepository(session),
            subscriptions=SubscriptionRepository(session),
            events=SubscriptionEventRepository(session),
            invoices=InvoiceRepository(session),
            retries=RetryAttemptRepository(session),
            coupons=CouponRepository(session),
            redemptions=CouponRedemptionRepository(session),
            gifts=GiftRepository(session),
            bundles=BundleRepository(session),
            webhook_events=WebhookEventRepository(session),
        )


@asynccontextmanager
async def billing_unit_of_work() -> AsyncGenerator[BillingRepositories, None]:
    """
    One transaction outside a request.

    Commits on normal exit, rolls back if the block raises.
    """
    async with get_session_context() as session:
        yield BillingRepositories.from_session(session)


__all__ = [
    # Base
    "BaseRepository",
    "IReadRepository",
    "IWriteRepository",
    # Repositories
    "PlanRepository",
    "SubscriptionRepository",
    "SubscriptionEventRepository",
    "InvoiceRepository",
    "RetryAttemptRepository",
    "CouponRepository",
    "CouponRedemptionRepository",
    "GiftRepository",
    "BundleRepository",
    "WebhookEventRepository",
    # Unit of work
    "BillingRepositories",
    "billing_unit_of_work",
]
