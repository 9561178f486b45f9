"""
Payment Retry Attempt Repository

Queries backing the dunning batch processor.
"""

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront_billing.domain.dunning import PaymentRetryAttempt, RetryStatus
from storefront_billing.infrastructure.db.models import PaymentRetryAttemptModel
from storefront_billing.infrastructure.db.repositories.base_repository import BaseRepository


class RetryAttemptRepository(BaseRepository[PaymentRetryAttemptModel, PaymentRetryAttempt]):
    """Repository for payment retry attempts."""

    def __init__(self, session: AsyncSession):
        super().__init__(PaymentRetryAttemptModel, PaymentRetryAttempt, session)

    async def list_due(self, now: datetime, limit: int = 100) -> List[PaymentRetryAttempt]:
        """
        Pending attempts whose scheduled time has come, oldest first.

        Succeeded and failed attempts never match, so reruns cannot
        charge the same attempt twice.
        """
        stmt = (
            select(PaymentRetryAttemptModel)
            .where(
                PaymentRetryAttemptModel.status == RetryStatus.PENDING.value,
                PaymentRetryAttemptModel.scheduled_at <= now,
            )
            .order_by(PaymentRetryAttemptModel.scheduled_at)
            .limit(limit)
        )
        return await self._fetch_all(stmt)

    async def list_pending_between(
        self,
        start: datetime,
        end: datetime,
    ) -> List[PaymentRetryAttempt]:
        stmt = (
            select(PaymentRetryAttemptModel)
            .where(
                PaymentRetryAttemptModel.status == RetryStatus.PENDING.value,
                PaymentRetryAttemptModel.scheduled_at >= start,
                PaymentRetryAttemptModel.scheduled_at <= end,
            )
            .order_by(PaymentRetryAttemptModel.scheduled_at)
        )
        return await self._fetch_all(stmt)

    async def get_latest_for_subscription(self, subscription_id: UUID) -> Optional[PaymentRetryAttempt]:
        """Highest-numbered attempt of the subscription's most recent episode."""
        stmt = (
            select(PaymentRetryAttemptModel)
            .where(PaymentRetryAttemptModel.subscription_id == subscription_id)
            .order_by(
                PaymentRetryAttemptModel.created_at.desc(),
                PaymentRetryAttemptModel.attempt_number.desc(),
            )
            .limit(1)
        )
        return await self._fetch_one(stmt)

    async def has_pending(self, subscription_id: UUID) -> bool:
        stmt = (
            select(func.count())
            .select_from(PaymentRetryAttemptModel)
            .where(
                PaymentRetryAttemptModel.subscription_id == subscription_id,
                PaymentRetryAttemptModel.status == RetryStatus.PENDING.value,
            )
        )
        result = await self._session.execute(stmt)
        return result.scalar_one() > 0
