"""
Subscription Repository

Data access for plans, subscriptions, subscription events and invoices.
Status changes are written with a compare-and-swap on the previous status
so two writers can never both move a subscription out of the same state.
"""

import logging
from typing import Any, Iterable, List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront_billing.domain.state_machine import StatusChange
from storefront_billing.domain.subscription import (
    InvoiceStatus,
    PlanStatus,
    Subscription,
    SubscriptionEvent,
    SubscriptionInvoice,
    SubscriptionPlan,
    SubscriptionStatus,
)
from storefront_billing.infrastructure.db.models import (
    SubscriptionEventModel,
    SubscriptionInvoiceModel,
    SubscriptionModel,
    SubscriptionPlanModel,
)
from storefront_billing.infrastructure.db.repositories.base_repository import BaseRepository
from storefront_billing.infrastructure.exceptions import ConcurrencyConflictError, NotFoundError


logger = logging.getLogger(__name__)


class PlanRepository(BaseRepository[SubscriptionPlanModel, SubscriptionPlan]):
    """Repository for subscription plans."""

    def __init__(self, session: AsyncSession):
        super().__init__(SubscriptionPlanModel, SubscriptionPlan, session)

    async def list_by_status(self, status: Optional[PlanStatus] = None) -> List[SubscriptionPlan]:
        stmt = select(SubscriptionPlanModel).order_by(SubscriptionPlanModel.price_amount)
        if status is not None:
            stmt = stmt.where(SubscriptionPlanModel.status == status.value)
        return await self._fetch_all(stmt)

    async def get_many(self, ids: List[UUID]) -> List[SubscriptionPlan]:
        if not ids:
            return []
        stmt = select(SubscriptionPlanModel).where(SubscriptionPlanModel.id.in_(ids))
        return await self._fetch_all(stmt)


class SubscriptionEventRepository(BaseRepository[SubscriptionEventModel, SubscriptionEvent]):
    """Append-only audit log."""

    def __init__(self, session: AsyncSession):
        super().__init__(SubscriptionEventModel, SubscriptionEvent, session)

    async def append(self, event: SubscriptionEvent) -> SubscriptionEvent:
        return await self.create(event)

    async def update(self, entity: SubscriptionEvent) -> SubscriptionEvent:
        raise NotImplementedError("Subscription events are append-only")

    async def list_for_subscription(
        self,
        subscription_id: UUID,
        limit: int = 50,
    ) -> List[SubscriptionEvent]:
        stmt = (
            select(SubscriptionEventModel)
            .where(SubscriptionEventModel.subscription_id == subscription_id)
            .order_by(SubscriptionEventModel.created_at.desc())
            .limit(limit)
        )
        return await self._fetch_all(stmt)


class SubscriptionRepository(BaseRepository[SubscriptionModel, Subscription]):
    """
    Repository for subscriptions.

    ``update`` never writes the status column; status only changes through
    ``save_transition``. Partial writes use ``update_fields`` so that only
    the named columns reach the row.
    """

    immutable_fields = frozenset({"id", "created_at", "status"})

    def __init__(self, session: AsyncSession):
        super().__init__(SubscriptionModel, Subscription, session)
        self._events = SubscriptionEventRepository(session)

    # =========================================================================
    # Query Methods
    # =========================================================================

    async def get_by_stripe_subscription_id(
        self,
        stripe_subscription_id: str,
    ) -> Optional[Subscription]:
        stmt = select(SubscriptionModel).where(
            SubscriptionModel.stripe_subscription_id == stripe_subscription_id
        )
        return await self._fetch_one(stmt)

    async def list_by_status(
        self,
        status: SubscriptionStatus,
        limit: int = 500,
    ) -> List[Subscription]:
        stmt = (
            select(SubscriptionModel)
            .where(SubscriptionModel.status == status.value)
            .order_by(SubscriptionModel.updated_at)
            .limit(limit)
        )
        return await self._fetch_all(stmt)

    async def list_filtered(
        self,
        customer_id: Optional[str] = None,
        status: Optional[SubscriptionStatus] = None,
        limit: int = 100,
    ) -> List[Subscription]:
        """Newest first, optionally narrowed to one customer and/or status."""
        stmt = select(SubscriptionModel).order_by(SubscriptionModel.created_at.desc()).limit(limit)
        if customer_id is not None:
            stmt = stmt.where(SubscriptionModel.customer_id == customer_id)
        if status is not None:
            stmt = stmt.where(SubscriptionModel.status == status.value)
        return await self._fetch_all(stmt)

    # =========================================================================
    # Command Methods
    # =========================================================================

    async def create_with_events(
        self,
        subscription: Subscription,
        events: List[SubscriptionEvent],
    ) -> Subscription:
        """Insert a new subscription and its opening events in one session."""
        created = await self.create(subscription)
        for event in events:
            await self._events.append(event.model_copy(update={"subscription_id": created.id}))
        logger.info(f"Created subscription {created.id} for customer {created.customer_id}")
        return created

    async def save_transition(
        self,
        change: StatusChange,
        expected_status: SubscriptionStatus,
    ) -> Subscription:
        """
        Write a status transition and its event.

        Only the columns in ``change.changes`` are written, and only while
        the row's status still equals ``expected_status``.

        Raises:
            ConcurrencyConflictError: If another writer moved the status first
        """
        subscription_id = change.subscription.id
        saved = await self.update_columns(
            subscription_id,
            self._writable(change.changes),
            SubscriptionModel.status == expected_status.value,
        )

        if saved is None:
            logger.warning(
                f"Status of subscription {subscription_id} changed concurrently, "
                f"expected {expected_status.value}"
            )
            raise ConcurrencyConflictError(
                f"Subscription {subscription_id} is no longer {expected_status.value}",
                operation="save_transition",
                table=SubscriptionModel.__tablename__,
            )

        await self._events.append(change.event)
        logger.info(
            f"Subscription {subscription_id}: {expected_status.value} -> "
            f"{saved.status.value} ({change.event.event_type.value})"
        )
        return saved

    async def update_fields(
        self,
        subscription_id: UUID,
        changes: dict[str, Any],
        allowed_statuses: Optional[Iterable[SubscriptionStatus]] = None,
    ) -> Subscription:
        """
        Write a partial update that leaves the status alone.

        With ``allowed_statuses`` the write only lands while the stored
        status is one of them.

        Raises:
            NotFoundError: If the subscription does not exist
            ConcurrencyConflictError: If the status left ``allowed_statuses``
        """
        if "status" in changes:
            raise ValueError("Status changes go through save_transition")

        conditions = []
        if allowed_statuses is not None:
            conditions.append(
                SubscriptionModel.status.in_([status.value for status in allowed_statuses])
            )

        saved = await self.update_columns(subscription_id, self._writable(changes), *conditions)
        if saved is not None:
            return saved

        if not conditions or await self.get_by_id(subscription_id) is None:
            raise NotFoundError(
                f"Subscription {subscription_id} not found",
                operation="update_fields",
                table=SubscriptionModel.__tablename__,
            )
        raise ConcurrencyConflictError(
            f"Subscription {subscription_id} changed status concurrently",
            operation="update_fields",
            table=SubscriptionModel.__tablename__,
        )

    def _writable(self, changes: dict[str, Any]) -> dict[str, Any]:
        values = {
            key: value for key, value in changes.items()
            if key not in ("id", "created_at")
        }
        if values.get("updated_at") is None:
            # left to the column's onupdate
            values.pop("updated_at", None)
        return values


class InvoiceRepository(BaseRepository[SubscriptionInvoiceModel, SubscriptionInvoice]):
    """Repository for subscription invoices."""

    def __init__(self, session: AsyncSession):
        super().__init__(SubscriptionInvoiceModel, SubscriptionInvoice, session)

    async def get_by_stripe_invoice_id(self, stripe_invoice_id: str) -> Optional[SubscriptionInvoice]:
        stmt = select(SubscriptionInvoiceModel).where(
            SubscriptionInvoiceModel.stripe_invoice_id == stripe_invoice_id
        )
        return await self._fetch_one(stmt)

    async def get_open_for_subscription(self, subscription_id: UUID) -> Optional[SubscriptionInvoice]:
        """Most recent open invoice of a subscription."""
        stmt = (
            select(SubscriptionInvoiceModel)
            .where(
                SubscriptionInvoiceModel.subscription_id == subscription_id,
                SubscriptionInvoiceModel.status == InvoiceStatus.OPEN.value,
            )
            .order_by(SubscriptionInvoiceModel.created_at.desc())
        )
        return await self._fetch_one(stmt)

    async def list_for_subscription(
        self,
        subscription_id: UUID,
        limit: int = 12,
    ) -> List[SubscriptionInvoice]:
        stmt = (
            select(SubscriptionInvoiceModel)
            .where(SubscriptionInvoiceModel.subscription_id == subscription_id)
            .order_by(SubscriptionInvoiceModel.created_at.desc())
            .limit(limit)
        )
        return await self._fetch_all(stmt)

    async def list_for_customer(
        self,
        customer_id: str,
        limit: int = 100,
    ) -> List[SubscriptionInvoice]:
        """Invoices across every subscription of a customer, in one query."""
        stmt = (
            select(SubscriptionInvoiceModel)
            .join(SubscriptionModel, SubscriptionModel.id == SubscriptionInvoiceModel.subscription_id)
            .where(SubscriptionModel.customer_id == customer_id)
            .order_by(SubscriptionInvoiceModel.created_at.desc())
            .limit(limit)
        )
        return await self._fetch_all(stmt)

    async def upsert_by_stripe_id(self, invoice: SubscriptionInvoice) -> SubscriptionInvoice:
        """Create or refresh the local copy of a gateway invoice."""
        existing = None
        if invoice.stripe_invoice_id:
            existing = await self.get_by_stripe_invoice_id(invoice.stripe_invoice_id)

        if existing is None:
            return await self.create(invoice)
        return await self.update(invoice.model_copy(update={"id": existing.id}))
