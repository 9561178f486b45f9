"""
Promotion Expiry Sweep

Expires paid gifts past their redemption deadline and deactivates coupons
past ``valid_until``. Each item is handled in its own unit of work so one
bad row does not stop the sweep.
"""

import logging
from datetime import datetime
from typing import Callable

from pydantic import BaseModel, Field

from storefront_billing.domain.promotions import GiftStatus
from storefront_billing.infrastructure.db.models.base import utc_now
from storefront_billing.infrastructure.db.repositories import billing_unit_of_work
from storefront_billing.infrastructure.exceptions import ConcurrencyConflictError
from storefront_billing.services.dunning_service import UnitOfWork


logger = logging.getLogger(__name__)


class ExpirySweepResult(BaseModel):
    gifts_expired: int = 0
    coupons_deactivated: int = 0
    errors: list[str] = Field(default_factory=list)


class ExpiryService:
    def __init__(
        self,
        unit_of_work: UnitOfWork = billing_unit_of_work,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._unit_of_work = unit_of_work
        self._clock = clock

    async def run(self) -> ExpirySweepResult:
        now = self._clock()
        result = ExpirySweepResult()

        async with self._unit_of_work() as repos:
            gifts = await repos.gifts.list_expired_paid(now)
            coupons = await repos.coupons.list_expired_active(now)

        for gift in gifts:
            try:
                async with self._unit_of_work() as repos:
                    await repos.gifts.change_status(gift.id, GiftStatus.PAID, GiftStatus.EXPIRED)
                result.gifts_expired += 1
            except ConcurrencyConflictError:
                logger.info(f"Gift {gift.id} changed status during the sweep, left as is")
            except Exception as e:
                logger.error(f"Error expiring gift {gift.id}: {e}")
                result.errors.append(f"Error expiring gift {gift.id}: {e}")

        for coupon in coupons:
            try:
                async with self._unit_of_work() as repos:
                    await repos.coupons.update_columns(coupon.id, {"is_active": False})
                result.coupons_deactivated += 1
            except Exception as e:
                logger.error(f"Error deactivating coupon {coupon.code}: {e}")
                result.errors.append(f"Error deactivating coupon {coupon.code}: {e}")

        logger.info(
            f"Expiry sweep done: gifts_expired={result.gifts_expired} "
            f"coupons_deactivated={result.coupons_deactivated} errors={len(result.errors)}"
        )
        return result
