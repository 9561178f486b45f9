"""
Promotion Repositories

Coupons, coupon redemptions, gift subscriptions and bundles.
"""

import logging
from datetime import datetime
from typing import List, Optional
from uuid import UUID

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from storefront_billing.domain.promotions import (
    BundleItem,
    Coupon,
    CouponRedemption,
    GiftStatus,
    GiftSubscription,
    SubscriptionBundle,
)
from storefront_billing.domain.subscription import PlanStatus
from storefront_billing.infrastructure.db.models import (
    CouponModel,
    CouponRedemptionModel,
    GiftSubscriptionModel,
    SubscriptionBundleItemModel,
    SubscriptionBundleModel,
)
from storefront_billing.infrastructure.db.repositories.base_repository import BaseRepository
from storefront_billing.infrastructure.exceptions import ConcurrencyConflictError, DuplicateError


logger = logging.getLogger(__name__)


class CouponRepository(BaseRepository[CouponModel, Coupon]):
    """Repository for coupons. Codes are stored upper-case."""

    def __init__(self, session: AsyncSession):
        super().__init__(CouponModel, Coupon, session)

    async def get_by_code(self, code: str) -> Optional[Coupon]:
        stmt = select(CouponModel).where(CouponModel.code == code.strip().upper())
        return await self._fetch_one(stmt)

    async def create(self, entity: Coupon) -> Coupon:
        if await self.get_by_code(entity.code) is not None:
            raise DuplicateError(
                f"Coupon code {entity.code} already exists",
                operation="create",
                table=CouponModel.__tablename__,
            )
        try:
            return await super().create(entity)
        except IntegrityError as e:
            raise DuplicateError(
                f"Coupon code {entity.code} already exists",
                operation="create",
                table=CouponModel.__tablename__,
                original_error=e,
            )

    async def increment_redemption_count(self, coupon_id: UUID) -> bool:
        """
        Atomically count one redemption.

        Returns False when the coupon already reached ``max_redemptions``.
        """
        stmt = (
            update(CouponModel)
            .where(
                CouponModel.id == coupon_id,
                or_(
                    CouponModel.max_redemptions.is_(None),
                    CouponModel.redemption_count < CouponModel.max_redemptions,
                ),
            )
            .values(redemption_count=CouponModel.redemption_count + 1)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount > 0

    async def list_coupons(self, active_only: bool = True, limit: int = 200) -> List[Coupon]:
        """Newest first."""
        stmt = select(CouponModel).order_by(CouponModel.created_at.desc()).limit(limit)
        if active_only:
            stmt = stmt.where(CouponModel.is_active.is_(True))
        return await self._fetch_all(stmt)

    async def list_expired_active(self, now: datetime) -> List[Coupon]:
        stmt = select(CouponModel).where(
            CouponModel.is_active.is_(True),
            CouponModel.valid_until.is_not(None),
            CouponModel.valid_until < now,
        )
        return await self._fetch_all(stmt)


class CouponRedemptionRepository(BaseRepository[CouponRedemptionModel, CouponRedemption]):
    def __init__(self, session: AsyncSession):
        super().__init__(CouponRedemptionModel, CouponRedemption, session)


class GiftRepository(BaseRepository[GiftSubscriptionModel, GiftSubscription]):
    """Repository for gift subscriptions."""

    def __init__(self, session: AsyncSession):
        super().__init__(GiftSubscriptionModel, GiftSubscription, session)

    async def get_by_code(self, redeem_code: str) -> Optional[GiftSubscription]:
        stmt = select(GiftSubscriptionModel).where(
            GiftSubscriptionModel.redeem_code == redeem_code.strip().upper()
        )
        return await self._fetch_one(stmt)

    async def code_exists(self, redeem_code: str) -> bool:
        return await self.get_by_code(redeem_code) is not None

    async def change_status(
        self,
        gift_id: UUID,
        expected_status: GiftStatus,
        new_status: GiftStatus,
        **changes,
    ) -> GiftSubscription:
        """
        Move a gift to ``new_status`` while it is still ``expected_status``.

        Raises:
            ConcurrencyConflictError: If another writer changed the status first
        """
        saved = await self.update_columns(
            gift_id,
            {**changes, "status": new_status},
            GiftSubscriptionModel.status == expected_status.value,
        )
        if saved is None:
            logger.warning(f"Gift {gift_id} is no longer {expected_status.value}")
            raise ConcurrencyConflictError(
                f"Gift {gift_id} is no longer {expected_status.value}",
                operation="change_status",
                table=GiftSubscriptionModel.__tablename__,
            )
        return saved

    async def list_expired_paid(self, now: datetime) -> List[GiftSubscription]:
        stmt = select(GiftSubscriptionModel).where(
            GiftSubscriptionModel.status == GiftStatus.PAID.value,
            GiftSubscriptionModel.expires_at.is_not(None),
            GiftSubscriptionModel.expires_at < now,
        )
        return await self._fetch_all(stmt)


class BundleRepository(BaseRepository[SubscriptionBundleModel, SubscriptionBundle]):
    """Bundles with their plan items."""

    def __init__(self, session: AsyncSession):
        super().__init__(SubscriptionBundleModel, SubscriptionBundle, session)

    async def create(self, entity: SubscriptionBundle) -> SubscriptionBundle:
        values = self._to_values(entity)
        values.pop("items", None)
        for key in ("id", "created_at", "updated_at"):
            if values.get(key) is None:
                values.pop(key, None)

        row = SubscriptionBundleModel(**values)
        self._session.add(row)
        await self._session.flush()

        item_rows = [
            SubscriptionBundleItemModel(bundle_id=row.id, plan_id=item.plan_id, quantity=item.quantity)
            for item in entity.items
        ]
        self._session.add_all(item_rows)
        await self._session.flush()
        await self._session.refresh(row)

        logger.info(f"Created bundle {row.id} with {len(item_rows)} plans")
        return self._with_items(row, item_rows)

    async def update(self, entity: SubscriptionBundle) -> SubscriptionBundle:
        raise NotImplementedError("Bundles are recreated rather than edited")

    async def get_by_id(self, id: UUID) -> Optional[SubscriptionBundle]:
        row = await self._session.get(SubscriptionBundleModel, id)
        if row is None:
            return None
        items = await self._load_items([row.id])
        return self._with_items(row, items.get(row.id, []))

    async def list_active(self) -> List[SubscriptionBundle]:
        stmt = (
            select(SubscriptionBundleModel)
            .where(SubscriptionBundleModel.status == PlanStatus.ACTIVE.value)
            .order_by(SubscriptionBundleModel.price_amount)
        )
        result = await self._session.execute(stmt)
        rows = list(result.scalars().all())
        items = await self._load_items([row.id for row in rows])
        return [self._with_items(row, items.get(row.id, [])) for row in rows]

    async def _load_items(self, bundle_ids: List[UUID]) -> dict:
        if not bundle_ids:
            return {}
        stmt = select(SubscriptionBundleItemModel).where(
            SubscriptionBundleItemModel.bundle_id.in_(bundle_ids)
        )
        result = await self._session.execute(stmt)
        grouped: dict = {}
        for item in result.scalars().all():
            grouped.setdefault(item.bundle_id, []).append(item)
        return grouped

    def _with_items(self, row: SubscriptionBundleModel, item_rows) -> SubscriptionBundle:
        bundle = SubscriptionBundle.model_validate(row, from_attributes=True)
        bundle.items = [
            BundleItem(plan_id=item.plan_id, quantity=item.quantity) for item in item_rows
        ]
        return bundle
