"""
Promotion Services

Coupons (create, validate, apply, redeem, deactivate), gift subscriptions
(purchase, payment, redemption) and plan bundles.
"""

import logging
import secrets
import string
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, List, Optional
from uuid import UUID, uuid4

from storefront_billing.domain.pricing import calculate_bundle_savings, calculate_discount
from storefront_billing.domain.promotions import (
    BundleItem,
    Coupon,
    CouponDuration,
    CouponRedemption,
    DiscountType,
    GiftStatus,
    GiftSubscription,
    SubscriptionBundle,
)
from storefront_billing.domain.state_machine import record_event
from storefront_billing.domain.subscription import (
    PlanInterval,
    Subscription,
    SubscriptionEventType,
    SubscriptionStatus,
    add_months,
    advance_period,
)
from storefront_billing.domain.validation import (
    GIFT_ERROR_MESSAGES,
    CouponErrorCode,
    CouponValidationResult,
    GiftErrorCode,
    validate_coupon,
    validate_gift,
)
from storefront_billing.infrastructure.db.models.base import utc_now
from storefront_billing.infrastructure.db.repositories import BillingRepositories
from storefront_billing.infrastructure.exceptions import NotFoundError, ValidationError
from storefront_billing.infrastructure.notifications.email_sender import EmailNotifier
from storefront_billing.services.best_effort import best_effort


logger = logging.getLogger(__name__)

GIFT_CODE_ALPHABET = string.ascii_uppercase + string.digits
GIFT_CODE_LENGTH = 8


# =============================================================================
# Coupons
# =============================================================================

@dataclass
class AppliedCoupon:
    coupon: Coupon
    order_amount: int
    discount_amount: int

    @property
    def final_amount(self) -> int:
        return self.order_amount - self.discount_amount


class CouponService:
    """Coupon administration and redemption."""

    def __init__(self, repos: BillingRepositories, clock: Callable[[], datetime] = utc_now):
        self._repos = repos
        self._clock = clock

    async def create_coupon(self, coupon: Coupon) -> Coupon:
        if coupon.duration == CouponDuration.REPEATING and not coupon.duration_in_months:
            raise ValidationError("Repeating coupons need duration_in_months")
        if coupon.discount_type == DiscountType.PERCENTAGE and coupon.discount_value > 100:
            raise ValidationError("Percentage discount cannot exceed 100")

        created = await self._repos.coupons.create(coupon)
        logger.info(f"Created coupon {created.code}")
        return created

    async def get_coupon(self, code: str) -> Coupon:
        coupon = await self._repos.coupons.get_by_code(code)
        if coupon is None:
            raise NotFoundError(f"Coupon {code} not found", table="coupons")
        return coupon

    async def list_coupons(self, active_only: bool = True) -> List[Coupon]:
        return await self._repos.coupons.list_coupons(active_only=active_only)

    async def deactivate_coupon(self, code: str) -> Coupon:
        coupon = await self.get_coupon(code)
        updated = await self._repos.coupons.update_columns(coupon.id, {"is_active": False})
        logger.info(f"Deactivated coupon {updated.code}")
        return updated

    async def validate(
        self,
        code: str,
        plan_id: Optional[UUID] = None,
        order_amount: Optional[int] = None,
    ) -> CouponValidationResult:
        coupon = await self._repos.coupons.get_by_code(code)
        return validate_coupon(coupon, self._clock(), plan_id=plan_id, order_amount=order_amount)

    async def apply(self, code: str, plan_id: Optional[UUID], order_amount: int) -> AppliedCoupon:
        """
        Validate a coupon for an order and compute its discount.

        Raises:
            ValidationError: With the validation error code in ``details``
        """
        result = await self.validate(code, plan_id=plan_id, order_amount=order_amount)
        if not result.valid:
            raise ValidationError(result.error, details={"code": result.error_code.value})

        return AppliedCoupon(
            coupon=result.coupon,
            order_amount=order_amount,
            discount_amount=calculate_discount(result.coupon, order_amount),
        )

    async def redeem(
        self,
        code: str,
        customer_id: str,
        order_amount: int,
        plan_id: Optional[UUID] = None,
        subscription_id: Optional[UUID] = None,
        order_id: Optional[str] = None,
    ) -> CouponRedemption:
        """
        Count one use of a coupon and record it.

        The counter increment is atomic; losing the race for the last
        redemption reports the limit as reached.
        """
        applied = await self.apply(code, plan_id, order_amount)
        coupon = applied.coupon

        if not await self._repos.coupons.increment_redemption_count(coupon.id):
            raise ValidationError(
                "Coupon redemption limit reached",
                details={"code": CouponErrorCode.LIMIT_REACHED.value},
            )

        now = self._clock()
        expires_at = None
        if coupon.duration == CouponDuration.REPEATING and coupon.duration_in_months:
            expires_at = add_months(now, coupon.duration_in_months)

        redemption = await self._repos.redemptions.create(CouponRedemption(
            coupon_id=coupon.id,
            customer_id=customer_id,
            subscription_id=subscription_id,
            order_id=order_id,
            discount_amount=applied.discount_amount,
            currency_code=coupon.currency_code,
            redeemed_at=now,
            expires_at=expires_at,
        ))
        logger.info(
            f"Coupon {coupon.code} redeemed by {customer_id} for {applied.discount_amount}"
        )
        return redemption


# =============================================================================
# Gift Subscriptions
# =============================================================================

@dataclass
class GiftRedemptionResult:
    success: bool
    subscription: Optional[Subscription] = None
    error_code: Optional[GiftErrorCode] = None

    @property
    def error(self) -> Optional[str]:
        return GIFT_ERROR_MESSAGES[self.error_code] if self.error_code else None


def generate_gift_code() -> str:
    return "".join(secrets.choice(GIFT_CODE_ALPHABET) for _ in range(GIFT_CODE_LENGTH))


class GiftService:
    """
    Gift purchase and redemption.

    Redemption failures are returned rather than raised so that the lazy
    correction of an expired gift still commits with the request.
    """

    def __init__(
        self,
        repos: BillingRepositories,
        notifier: EmailNotifier,
        gift_expiry_days: int = 90,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._repos = repos
        self._notifier = notifier
        self._gift_expiry_days = gift_expiry_days
        self._clock = clock

    async def purchase(
        self,
        plan_id: UUID,
        sender_email: str,
        sender_name: str,
        recipient_email: str,
        recipient_name: str,
        gift_message: Optional[str] = None,
        sender_customer_id: Optional[str] = None,
    ) -> GiftSubscription:
        plan = await self._repos.plans.get_by_id(plan_id)
        if plan is None:
            raise NotFoundError(f"Plan {plan_id} not found", table="subscription_plans")
        if not plan.accepts_subscribers:
            raise ValidationError(f"Plan {plan.name} is not available for gifting")

        redeem_code = generate_gift_code()
        while await self._repos.gifts.code_exists(redeem_code):
            redeem_code = generate_gift_code()

        now = self._clock()
        gift = await self._repos.gifts.create(GiftSubscription(
            sender_customer_id=sender_customer_id,
            sender_email=sender_email,
            sender_name=sender_name,
            recipient_email=recipient_email,
            recipient_name=recipient_name,
            plan_id=plan.id,
            gift_message=gift_message,
            redeem_code=redeem_code,
            expires_at=now + timedelta(days=self._gift_expiry_days),
            amount_paid=plan.price_amount,
            currency_code=plan.currency_code,
            status=GiftStatus.PENDING,
        ))
        logger.info(f"Gift {gift.id} purchased for plan {plan.name}")
        return gift

    async def mark_paid(self, gift_id: UUID, payment_intent_id: Optional[str] = None) -> GiftSubscription:
        gift = await self._repos.gifts.get_by_id(gift_id)
        if gift is None:
            raise NotFoundError(f"Gift {gift_id} not found", table="gift_subscriptions")
        if gift.status != GiftStatus.PENDING:
            raise ValidationError(f"Gift is already {gift.status.value}")

        paid = await self._repos.gifts.change_status(
            gift.id, GiftStatus.PENDING, GiftStatus.PAID,
            stripe_payment_intent_id=payment_intent_id,
        )
        plan = await self._repos.plans.get_by_id(paid.plan_id)
        plan_name = plan.name if plan else "a subscription"

        await best_effort(
            "gift sender email",
            self._notifier.send_gift_purchased(
                to=paid.sender_email,
                sender_name=paid.sender_name,
                recipient_name=paid.recipient_name,
                plan_name=plan_name,
            ),
        )
        await best_effort(
            "gift recipient email",
            self._notifier.send_gift_received(
                to=paid.recipient_email,
                recipient_name=paid.recipient_name,
                sender_name=paid.sender_name,
                plan_name=plan_name,
                redeem_code=paid.redeem_code,
                expires_at=paid.expires_at,
                gift_message=paid.gift_message,
            ),
        )
        logger.info(f"Gift {paid.id} paid")
        return paid

    async def redeem(
        self,
        redeem_code: str,
        customer_id: str,
        customer_email: Optional[str] = None,
    ) -> GiftRedemptionResult:
        now = self._clock()
        gift = await self._repos.gifts.get_by_code(redeem_code)
        check = validate_gift(gift, now)

        if not check.valid:
            if check.needs_expiry:
                await self._repos.gifts.change_status(gift.id, GiftStatus.PAID, GiftStatus.EXPIRED)
                logger.info(f"Gift {gift.id} found past expiry, marked expired")
            return GiftRedemptionResult(success=False, error_code=check.error_code)

        plan = await self._repos.plans.get_by_id(gift.plan_id)
        if plan is None or not plan.accepts_subscribers:
            raise ValidationError("The gifted plan is no longer available")

        # Claimed before the subscription exists; a concurrent redeem of the
        # same code stops here with a conflict
        await self._repos.gifts.change_status(
            gift.id, GiftStatus.PAID, GiftStatus.REDEEMED,
            redeemed_at=now,
            redeemed_by_customer_id=customer_id,
        )

        subscription = Subscription(
            id=uuid4(),
            customer_id=customer_id,
            customer_email=customer_email,
            plan_id=plan.id,
            status=SubscriptionStatus.ACTIVE,
            current_period_start=now,
            current_period_end=advance_period(now, plan.interval, plan.interval_count),
            created_at=now,
            updated_at=now,
        )
        created_event = record_event(
            subscription,
            SubscriptionEventType.CREATED,
            data={"source": "gift", "gift_id": str(gift.id), "sender_email": gift.sender_email},
            now=now,
        ).model_copy(update={"previous_status": None})
        subscription = await self._repos.subscriptions.create_with_events(subscription, [created_event])

        await self._repos.gifts.update_columns(gift.id, {"subscription_id": subscription.id})
        logger.info(f"Gift {gift.id} redeemed by {customer_id} as subscription {subscription.id}")

        if customer_email:
            await best_effort(
                "gift subscription confirmation email",
                self._notifier.send_subscription_confirmation(
                    to=customer_email,
                    plan_name=plan.name,
                    amount=plan.price_amount,
                    currency=plan.currency_code,
                    interval=plan.interval.value,
                    next_billing_date=subscription.current_period_end,
                ),
            )
        return GiftRedemptionResult(success=True, subscription=subscription)


# =============================================================================
# Bundles
# =============================================================================

class BundleService:
    def __init__(self, repos: BillingRepositories):
        self._repos = repos

    async def create_bundle(
        self,
        name: str,
        plan_ids: List[UUID],
        price_amount: int,
        description: Optional[str] = None,
        currency_code: str = "USD",
        interval: PlanInterval = PlanInterval.MONTH,
        interval_count: int = 1,
    ) -> SubscriptionBundle:
        """Bundle plans at a blended price; unknown plan ids are left out."""
        if not plan_ids:
            raise ValidationError("A bundle needs at least one plan")

        plans = await self._repos.plans.get_many(plan_ids)
        found = {plan.id: plan for plan in plans}
        missing = [str(plan_id) for plan_id in plan_ids if plan_id not in found]
        if missing:
            logger.warning(f"Bundle {name} references unknown plans: {missing}")

        savings = calculate_bundle_savings(
            [found[plan_id].price_amount for plan_id in plan_ids if plan_id in found],
            price_amount,
        )
        return await self._repos.bundles.create(SubscriptionBundle(
            name=name,
            description=description,
            price_amount=price_amount,
            currency_code=currency_code,
            interval=interval,
            interval_count=interval_count,
            savings_amount=savings.savings_amount,
            savings_percentage=savings.savings_percentage,
            items=[BundleItem(plan_id=plan_id) for plan_id in plan_ids if plan_id in found],
        ))

    async def list_bundles(self) -> List[SubscriptionBundle]:
        return await self._repos.bundles.list_active()


def coupon_result_payload(result: CouponValidationResult) -> dict[str, Any]:
    """API body for a coupon validation result."""
    if result.valid:
        return {"valid": True, "coupon": result.coupon.model_dump(mode="json")}
    return {"valid": False, "error": result.error, "code": result.error_code.value}
