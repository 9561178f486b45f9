"""
Unit tests for coupon and gift validation.
"""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

from storefront_billing.domain.promotions import (
    Coupon,
    DiscountType,
    GiftStatus,
    GiftSubscription,
)
from storefront_billing.domain.validation import (
    CouponErrorCode,
    GiftErrorCode,
    validate_coupon,
    validate_gift,
)


NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def make_coupon(**overrides) -> Coupon:
    values = {
        "code": "spring20",
        "name": "Spring",
        "discount_type": DiscountType.PERCENTAGE,
        "discount_value": 20,
        "valid_from": NOW - timedelta(days=1),
    }
    values.update(overrides)
    return Coupon(**values)


def make_gift(**overrides) -> GiftSubscription:
    values = {
        "sender_email": "a@example.com",
        "sender_name": "Ana",
        "recipient_email": "b@example.com",
        "recipient_name": "Ben",
        "plan_id": uuid4(),
        "redeem_code": "ABCD1234",
        "expires_at": NOW + timedelta(days=30),
        "status": GiftStatus.PAID,
    }
    values.update(overrides)
    return GiftSubscription(**values)


class TestValidateCoupon:

    def test_valid_coupon(self):
        result = validate_coupon(make_coupon(), NOW)
        assert result.valid is True
        assert result.error is None

    def test_code_is_normalized(self):
        assert make_coupon(code="  spring20 ").code == "SPRING20"

    def test_missing_coupon_is_invalid(self):
        result = validate_coupon(None, NOW)
        assert result.valid is False
        assert result.error_code == CouponErrorCode.INVALID
        assert result.error == "Invalid coupon"

    def test_inactive_coupon_is_invalid(self):
        result = validate_coupon(make_coupon(is_active=False), NOW)
        assert result.error_code == CouponErrorCode.INVALID

    def test_future_coupon_is_not_yet_valid(self):
        result = validate_coupon(make_coupon(valid_from=NOW + timedelta(hours=1)), NOW)
        assert result.error_code == CouponErrorCode.NOT_YET_VALID

    def test_past_coupon_is_expired(self):
        result = validate_coupon(make_coupon(valid_until=NOW - timedelta(seconds=1)), NOW)
        assert result.error_code == CouponErrorCode.EXPIRED

    def test_valid_until_is_inclusive(self):
        assert validate_coupon(make_coupon(valid_until=NOW), NOW).valid is True

    def test_redemption_limit(self):
        at_limit = make_coupon(max_redemptions=5, redemption_count=5)
        below_limit = make_coupon(max_redemptions=5, redemption_count=4)

        assert validate_coupon(at_limit, NOW).error_code == CouponErrorCode.LIMIT_REACHED
        assert validate_coupon(below_limit, NOW).valid is True

    def test_plan_restriction(self):
        allowed = uuid4()
        coupon = make_coupon(applies_to_plans=[allowed])

        assert validate_coupon(coupon, NOW, plan_id=allowed).valid is True
        assert validate_coupon(coupon, NOW, plan_id=uuid4()).error_code == CouponErrorCode.PLAN_NOT_APPLICABLE

    def test_unsupplied_plan_skips_restriction(self):
        coupon = make_coupon(applies_to_plans=[uuid4()])
        assert validate_coupon(coupon, NOW).valid is True

    def test_minimum_order(self):
        coupon = make_coupon(min_order_amount=5000)

        assert validate_coupon(coupon, NOW, order_amount=4999).error_code == CouponErrorCode.MINIMUM_NOT_MET
        assert validate_coupon(coupon, NOW, order_amount=5000).valid is True
        assert validate_coupon(coupon, NOW).valid is True

    def test_checks_stop_at_first_failure(self):
        # Both expired and over the limit: expiry is checked first
        coupon = make_coupon(
            valid_until=NOW - timedelta(days=1),
            max_redemptions=1,
            redemption_count=1,
        )
        assert validate_coupon(coupon, NOW).error_code == CouponErrorCode.EXPIRED


class TestValidateGift:

    def test_paid_unexpired_gift_is_valid(self):
        assert validate_gift(make_gift(), NOW).valid is True

    def test_unknown_code(self):
        assert validate_gift(None, NOW).error_code == GiftErrorCode.NOT_FOUND

    def test_redeemed_and_expired_have_distinct_errors(self):
        redeemed = validate_gift(make_gift(status=GiftStatus.REDEEMED), NOW)
        expired = validate_gift(make_gift(status=GiftStatus.EXPIRED), NOW)

        assert redeemed.error_code == GiftErrorCode.ALREADY_REDEEMED
        assert expired.error_code == GiftErrorCode.EXPIRED
        assert redeemed.error != expired.error

    def test_unpaid_gift(self):
        assert validate_gift(make_gift(status=GiftStatus.PENDING), NOW).error_code == GiftErrorCode.NOT_PAID

    def test_paid_gift_past_deadline_is_expired_and_flagged_for_correction(self):
        result = validate_gift(make_gift(expires_at=NOW - timedelta(minutes=1)), NOW)

        assert result.valid is False
        assert result.error_code == GiftErrorCode.EXPIRED
        assert result.needs_expiry is True
