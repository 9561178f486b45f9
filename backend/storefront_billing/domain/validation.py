"""
Coupon & Gift Validation

Stateless redeemability checks. Each failure carries a machine-readable
code so callers can render condition-specific guidance.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID

from storefront_billing.domain.promotions import Coupon, GiftStatus, GiftSubscription


class CouponErrorCode(str, Enum):
    INVALID = "invalid_coupon"
    NOT_YET_VALID = "not_yet_valid"
    EXPIRED = "expired"
    LIMIT_REACHED = "redemption_limit_reached"
    PLAN_NOT_APPLICABLE = "not_applicable_to_plan"
    MINIMUM_NOT_MET = "minimum_not_met"


class GiftErrorCode(str, Enum):
    NOT_FOUND = "invalid_code"
    ALREADY_REDEEMED = "already_redeemed"
    EXPIRED = "expired"
    NOT_PAID = "not_paid"


COUPON_ERROR_MESSAGES = {
    CouponErrorCode.INVALID: "Invalid coupon",
    CouponErrorCode.NOT_YET_VALID: "Coupon is not yet valid",
    CouponErrorCode.EXPIRED: "Coupon has expired",
    CouponErrorCode.LIMIT_REACHED: "Coupon redemption limit reached",
    CouponErrorCode.PLAN_NOT_APPLICABLE: "Coupon is not applicable to this plan",
    CouponErrorCode.MINIMUM_NOT_MET: "Order does not meet the coupon minimum",
}

GIFT_ERROR_MESSAGES = {
    GiftErrorCode.NOT_FOUND: "Invalid redemption code",
    GiftErrorCode.ALREADY_REDEEMED: "This gift has already been redeemed",
    GiftErrorCode.EXPIRED: "This gift has expired",
    GiftErrorCode.NOT_PAID: "This gift has not been paid for",
}


@dataclass
class CouponValidationResult:
    valid: bool
    coupon: Optional[Coupon] = None
    error_code: Optional[CouponErrorCode] = None

    @property
    def error(self) -> Optional[str]:
        if self.error_code is None:
            return None
        return COUPON_ERROR_MESSAGES[self.error_code]


@dataclass
class GiftValidationResult:
    valid: bool
    gift: Optional[GiftSubscription] = None
    error_code: Optional[GiftErrorCode] = None
    # True when the stored status should be corrected to expired
    needs_expiry: bool = False

    @property
    def error(self) -> Optional[str]:
        if self.error_code is None:
            return None
        return GIFT_ERROR_MESSAGES[self.error_code]


def validate_coupon(
    coupon: Optional[Coupon],
    now: datetime,
    plan_id: Optional[UUID] = None,
    order_amount: Optional[int] = None,
) -> CouponValidationResult:
    """
    Check a looked-up coupon against the current time and order context.

    Checks run in order and stop at the first failure. An omitted
    ``plan_id`` or ``order_amount`` skips its check rather than failing it.
    """
    def reject(code: CouponErrorCode) -> CouponValidationResult:
        return CouponValidationResult(valid=False, coupon=coupon, error_code=code)

    if coupon is None or not coupon.is_active:
        return CouponValidationResult(valid=False, error_code=CouponErrorCode.INVALID)

    if now < coupon.valid_from:
        return reject(CouponErrorCode.NOT_YET_VALID)

    if coupon.valid_until is not None and now > coupon.valid_until:
        return reject(CouponErrorCode.EXPIRED)

    if (
        coupon.max_redemptions is not None
        and coupon.redemption_count >= coupon.max_redemptions
    ):
        return reject(CouponErrorCode.LIMIT_REACHED)

    if coupon.applies_to_plans and plan_id is not None:
        if plan_id not in coupon.applies_to_plans:
            return reject(CouponErrorCode.PLAN_NOT_APPLICABLE)

    if coupon.min_order_amount is not None and order_amount is not None:
        if order_amount < coupon.min_order_amount:
            return reject(CouponErrorCode.MINIMUM_NOT_MET)

    return CouponValidationResult(valid=True, coupon=coupon)


def validate_gift(gift: Optional[GiftSubscription], now: datetime) -> GiftValidationResult:
    """
    A gift is redeemable only while paid and unexpired.

    A paid gift past ``expires_at`` is reported expired even though its stored
    status still says paid; ``needs_expiry`` tells the caller to fix the row.
    """
    if gift is None:
        return GiftValidationResult(valid=False, error_code=GiftErrorCode.NOT_FOUND)

    if gift.status == GiftStatus.REDEEMED:
        return GiftValidationResult(
            valid=False, gift=gift, error_code=GiftErrorCode.ALREADY_REDEEMED
        )

    if gift.status == GiftStatus.EXPIRED:
        return GiftValidationResult(valid=False, gift=gift, error_code=GiftErrorCode.EXPIRED)

    if gift.expires_at is not None and gift.expires_at < now:
        return GiftValidationResult(
            valid=False,
            gift=gift,
            error_code=GiftErrorCode.EXPIRED,
            needs_expiry=gift.status == GiftStatus.PAID,
        )

    if gift.status != GiftStatus.PAID:
        return GiftValidationResult(valid=False, gift=gift, error_code=GiftErrorCode.NOT_PAID)

    return GiftValidationResult(valid=True, gift=gift)
