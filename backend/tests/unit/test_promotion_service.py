"""
Unit tests for coupon, gift and bundle services.
"""

import pytest
from datetime import datetime, timedelta, timezone
from uuid import uuid4

from storefront_billing.domain.promotions import (
    Coupon,
    CouponDuration,
    DiscountType,
    GiftStatus,
)
from storefront_billing.domain.subscription import PlanStatus, SubscriptionStatus
from storefront_billing.domain.validation import CouponErrorCode, GiftErrorCode
from storefront_billing.infrastructure.exceptions import (
    ConcurrencyConflictError,
    DuplicateError,
    NotFoundError,
    NotificationError,
    ValidationError,
)
from storefront_billing.services.promotion_service import (
    GIFT_CODE_ALPHABET,
    BundleService,
    CouponService,
    GiftService,
    coupon_result_payload,
    generate_gift_code,
)


def build_coupon(clock, **overrides) -> Coupon:
    values = {
        "code": "WELCOME10",
        "name": "Welcome",
        "discount_type": DiscountType.PERCENTAGE,
        "discount_value": 10,
        "valid_from": clock.now - timedelta(days=1),
    }
    values.update(overrides)
    return Coupon(**values)


# =============================================================================
# Coupons
# =============================================================================

class TestCouponService:

    @pytest.fixture
    def service(self, repos, clock):
        return CouponService(repos, clock=clock)

    @pytest.mark.asyncio
    async def test_create_and_validate(self, service, clock):
        await service.create_coupon(build_coupon(clock))

        result = await service.validate("welcome10")

        assert result.valid is True
        assert coupon_result_payload(result)["coupon"]["code"] == "WELCOME10"

    @pytest.mark.asyncio
    async def test_duplicate_code(self, service, clock):
        await service.create_coupon(build_coupon(clock))
        with pytest.raises(DuplicateError):
            await service.create_coupon(build_coupon(clock, name="Again"))

    @pytest.mark.asyncio
    async def test_percentage_over_100_is_rejected(self, service, clock):
        with pytest.raises(ValidationError):
            await service.create_coupon(build_coupon(clock, discount_value=150))

    @pytest.mark.asyncio
    async def test_repeating_coupon_needs_months(self, service, clock):
        with pytest.raises(ValidationError):
            await service.create_coupon(build_coupon(clock, duration=CouponDuration.REPEATING))

    @pytest.mark.asyncio
    async def test_unknown_code_payload(self, service):
        payload = coupon_result_payload(await service.validate("NOPE"))
        assert payload == {"valid": False, "error": "Invalid coupon", "code": "invalid_coupon"}

    @pytest.mark.asyncio
    async def test_apply_computes_discount(self, service, clock):
        await service.create_coupon(build_coupon(clock, discount_value=15))

        applied = await service.apply("WELCOME10", None, 2999)

        assert applied.discount_amount == 450
        assert applied.final_amount == 2549

    @pytest.mark.asyncio
    async def test_apply_reports_error_code(self, service, clock):
        await service.create_coupon(build_coupon(clock, min_order_amount=5000))

        with pytest.raises(ValidationError) as exc_info:
            await service.apply("WELCOME10", None, 2999)
        assert exc_info.value.details == {"code": CouponErrorCode.MINIMUM_NOT_MET.value}

    @pytest.mark.asyncio
    async def test_redeem_counts_and_records(self, service, repos, clock):
        coupon = await service.create_coupon(build_coupon(clock, max_redemptions=2))

        redemption = await service.redeem("WELCOME10", "cust_1", order_amount=2000)

        assert redemption.discount_amount == 200
        assert redemption.expires_at is None
        assert (await repos.coupons.get_by_id(coupon.id)).redemption_count == 1

    @pytest.mark.asyncio
    async def test_redemption_limit_is_enforced(self, service, repos, clock):
        coupon = await service.create_coupon(build_coupon(clock, max_redemptions=1))

        await service.redeem("WELCOME10", "cust_1", order_amount=2000)
        with pytest.raises(ValidationError) as exc_info:
            await service.redeem("WELCOME10", "cust_2", order_amount=2000)

        assert exc_info.value.details["code"] == CouponErrorCode.LIMIT_REACHED.value
        assert (await repos.coupons.get_by_id(coupon.id)).redemption_count == 1

    @pytest.mark.asyncio
    async def test_losing_the_race_for_the_last_use(self, service, repos, clock):
        coupon = await service.create_coupon(build_coupon(clock, max_redemptions=1))

        async def lost_race(coupon_id):
            return False

        repos.coupons.increment_redemption_count = lost_race

        with pytest.raises(ValidationError) as exc_info:
            await service.redeem("WELCOME10", "cust_1", order_amount=2000)
        assert exc_info.value.details["code"] == CouponErrorCode.LIMIT_REACHED.value
        assert repos.redemptions.rows == {}
        assert (await repos.coupons.get_by_id(coupon.id)).redemption_count == 0

    @pytest.mark.asyncio
    async def test_repeating_redemption_expires_after_its_months(self, service, clock):
        await service.create_coupon(build_coupon(
            clock, duration=CouponDuration.REPEATING, duration_in_months=3
        ))

        redemption = await service.redeem("WELCOME10", "cust_1", order_amount=2000)

        assert redemption.expires_at == datetime(2026, 6, 1, 9, 0, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_deactivate(self, service, clock):
        await service.create_coupon(build_coupon(clock))

        await service.deactivate_coupon("WELCOME10")

        assert (await service.validate("WELCOME10")).error_code == CouponErrorCode.INVALID

    @pytest.mark.asyncio
    async def test_deactivate_unknown(self, service):
        with pytest.raises(NotFoundError):
            await service.deactivate_coupon("NOPE")


# =============================================================================
# Gifts
# =============================================================================

class TestGiftService:

    @pytest.fixture
    def service(self, repos, notifier, clock):
        return GiftService(repos, notifier, gift_expiry_days=90, clock=clock)

    @pytest.fixture
    def paid_gift(self, service, make_plan):
        async def factory():
            plan = await make_plan()
            gift = await service.purchase(
                plan.id,
                sender_email="ana@example.com",
                sender_name="Ana",
                recipient_email="ben@example.com",
                recipient_name="Ben",
                gift_message="Enjoy!",
            )
            return await service.mark_paid(gift.id, "pi_gift")

        return factory

    def test_gift_code_shape(self):
        code = generate_gift_code()
        assert len(code) == 8
        assert set(code) <= set(GIFT_CODE_ALPHABET)

    @pytest.mark.asyncio
    async def test_purchase_creates_pending_gift(self, service, make_plan, clock):
        plan = await make_plan()

        gift = await service.purchase(plan.id, "ana@example.com", "Ana", "ben@example.com", "Ben")

        assert gift.status == GiftStatus.PENDING
        assert gift.amount_paid == 2999
        assert gift.expires_at == clock.now + timedelta(days=90)

    @pytest.mark.asyncio
    async def test_purchase_of_archived_plan_is_rejected(self, service, make_plan):
        plan = await make_plan(status=PlanStatus.ARCHIVED)
        with pytest.raises(ValidationError):
            await service.purchase(plan.id, "ana@example.com", "Ana", "ben@example.com", "Ben")

    @pytest.mark.asyncio
    async def test_mark_paid_notifies_both_parties(self, paid_gift, notifier):
        gift = await paid_gift()

        assert gift.status == GiftStatus.PAID
        assert gift.stripe_payment_intent_id == "pi_gift"
        notifier.send_gift_purchased.assert_awaited_once()
        notifier.send_gift_received.assert_awaited_once()
        assert notifier.send_gift_received.call_args.kwargs["redeem_code"] == gift.redeem_code

    @pytest.mark.asyncio
    async def test_mark_paid_survives_email_failure(self, service, make_plan, notifier):
        plan = await make_plan()
        gift = await service.purchase(plan.id, "ana@example.com", "Ana", "ben@example.com", "Ben")
        notifier.send_gift_purchased.side_effect = NotificationError("bounce")

        paid = await service.mark_paid(gift.id)

        assert paid.status == GiftStatus.PAID
        notifier.send_gift_received.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_mark_paid_twice_is_rejected(self, service, paid_gift):
        gift = await paid_gift()
        with pytest.raises(ValidationError):
            await service.mark_paid(gift.id)

    @pytest.mark.asyncio
    async def test_redeem_creates_active_subscription(self, service, repos, paid_gift, clock):
        gift = await paid_gift()

        result = await service.redeem(gift.redeem_code.lower(), "cust_ben", "ben@example.com")

        assert result.success is True
        subscription = result.subscription
        assert subscription.status == SubscriptionStatus.ACTIVE
        assert subscription.customer_id == "cust_ben"
        assert subscription.current_period_start == clock.now

        events = await repos.events.list_for_subscription(subscription.id)
        assert events[0].data["source"] == "gift"
        assert events[0].previous_status is None

        redeemed = await repos.gifts.get_by_id(gift.id)
        assert redeemed.status == GiftStatus.REDEEMED
        assert redeemed.subscription_id == subscription.id

    @pytest.mark.asyncio
    async def test_second_redemption_fails(self, service, paid_gift):
        gift = await paid_gift()
        await service.redeem(gift.redeem_code, "cust_ben")

        result = await service.redeem(gift.redeem_code, "cust_other")

        assert result.success is False
        assert result.error_code == GiftErrorCode.ALREADY_REDEEMED

    @pytest.mark.asyncio
    async def test_unpaid_gift_cannot_be_redeemed(self, service, make_plan):
        plan = await make_plan()
        gift = await service.purchase(plan.id, "ana@example.com", "Ana", "ben@example.com", "Ben")

        result = await service.redeem(gift.redeem_code, "cust_ben")
        assert result.error_code == GiftErrorCode.NOT_PAID

    @pytest.mark.asyncio
    async def test_expired_gift_is_corrected_on_redemption(self, service, repos, paid_gift, clock):
        gift = await paid_gift()
        clock.advance(days=91)

        result = await service.redeem(gift.redeem_code, "cust_ben")

        assert result.success is False
        assert result.error_code == GiftErrorCode.EXPIRED
        assert result.error is not None
        assert (await repos.gifts.get_by_id(gift.id)).status == GiftStatus.EXPIRED

    @pytest.mark.asyncio
    async def test_concurrent_redeem_loses_the_claim(self, service, repos, paid_gift):
        gift = await paid_gift()
        original_get_plan = repos.plans.get_by_id

        async def redeemed_elsewhere(plan_id):
            repos.gifts.rows[gift.id] = gift.model_copy(update={
                "status": GiftStatus.REDEEMED,
                "redeemed_by_customer_id": "cust_first",
            })
            return await original_get_plan(plan_id)

        repos.plans.get_by_id = redeemed_elsewhere

        with pytest.raises(ConcurrencyConflictError):
            await service.redeem(gift.redeem_code, "cust_second")

        assert await repos.subscriptions.list_filtered(customer_id="cust_second") == []
        stored = await repos.gifts.get_by_id(gift.id)
        assert stored.redeemed_by_customer_id == "cust_first"
        assert stored.subscription_id is None

    @pytest.mark.asyncio
    async def test_concurrent_payment_confirmation_is_a_conflict(self, service, repos, make_plan, notifier):
        plan = await make_plan()
        gift = await service.purchase(plan.id, "ana@example.com", "Ana", "ben@example.com", "Ben")
        original_get = repos.gifts.get_by_id

        async def paid_elsewhere(gift_id):
            pending = await original_get(gift_id)
            repos.gifts.rows[gift_id] = pending.model_copy(update={"status": GiftStatus.PAID})
            return pending

        repos.gifts.get_by_id = paid_elsewhere

        with pytest.raises(ConcurrencyConflictError):
            await service.mark_paid(gift.id, "pi_second")

        notifier.send_gift_purchased.assert_not_awaited()
        notifier.send_gift_received.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_code(self, service):
        result = await service.redeem("ZZZZZZZZ", "cust_ben")
        assert result.error_code == GiftErrorCode.NOT_FOUND


# =============================================================================
# Bundles
# =============================================================================

class TestBundleService:

    @pytest.mark.asyncio
    async def test_bundle_savings(self, repos, make_plan):
        coffee = await make_plan(price_amount=2999)
        tea = await make_plan(name="Tea Club", price_amount=1999)
        snacks = await make_plan(name="Snack Box", price_amount=1499)
        service = BundleService(repos)

        bundle = await service.create_bundle("Breakfast", [coffee.id, tea.id, snacks.id], 4999)

        assert bundle.savings_amount == 1498
        assert bundle.savings_percentage == 23
        assert len(bundle.items) == 3
        assert await service.list_bundles() == [bundle]

    @pytest.mark.asyncio
    async def test_unknown_plans_are_left_out(self, repos, make_plan):
        coffee = await make_plan(price_amount=2999)

        bundle = await BundleService(repos).create_bundle("Solo", [coffee.id, uuid4()], 2500)

        assert [item.plan_id for item in bundle.items] == [coffee.id]
        assert bundle.savings_amount == 499

    @pytest.mark.asyncio
    async def test_empty_bundle_is_rejected(self, repos):
        with pytest.raises(ValidationError):
            await BundleService(repos).create_bundle("Empty", [], 1000)
