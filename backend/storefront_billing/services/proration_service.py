"""
Proration Preview Service

Prices a plan change before it happens. The gateway's invoice preview is
authoritative; when it is unavailable a local day-based estimate is
returned and flagged ``is_estimate``.
"""

import logging
from datetime import datetime
from typing import Callable
from uuid import UUID

from storefront_billing.domain.pricing import (
    ProrationPreview,
    build_estimated_preview,
    summarize_proration_lines,
)
from storefront_billing.infrastructure.db.models.base import utc_now
from storefront_billing.infrastructure.db.repositories import BillingRepositories
from storefront_billing.infrastructure.exceptions import (
    NotFoundError,
    PaymentGatewayError,
    ValidationError,
)
from storefront_billing.infrastructure.payments.gateway import BillingGateway


logger = logging.getLogger(__name__)


class ProrationService:
    def __init__(
        self,
        repos: BillingRepositories,
        gateway: BillingGateway,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._repos = repos
        self._gateway = gateway
        self._clock = clock

    async def preview_change(self, subscription_id: UUID, new_plan_id: UUID) -> ProrationPreview:
        subscription = await self._repos.subscriptions.get_by_id(subscription_id)
        if subscription is None:
            raise NotFoundError(f"Subscription {subscription_id} not found", table="subscriptions")

        current_plan = await self._repos.plans.get_by_id(subscription.plan_id)
        new_plan = await self._repos.plans.get_by_id(new_plan_id)
        if current_plan is None or new_plan is None:
            raise NotFoundError("Plan not found", table="subscription_plans")
        if current_plan.id == new_plan.id:
            raise ValidationError("Subscription is already on this plan")

        message = "Exact proration not available; showing an estimate"
        if (
            subscription.stripe_subscription_id
            and subscription.stripe_customer_id
            and new_plan.stripe_price_id
        ):
            try:
                preview = await self._gateway.preview_price_change(
                    subscription.stripe_customer_id,
                    subscription.stripe_subscription_id,
                    new_plan.stripe_price_id,
                )
                return summarize_proration_lines(
                    preview.lines,
                    next_billing_amount=new_plan.price_amount,
                    currency=new_plan.currency_code,
                    next_billing_date=subscription.current_period_end,
                )
            except PaymentGatewayError as e:
                logger.warning(f"Gateway preview failed for {subscription_id}, estimating: {e}")
                message = f"Could not fetch exact proration ({e.message}); showing an estimate"

        return build_estimated_preview(
            current_price=current_plan.price_amount,
            new_price=new_plan.price_amount,
            currency=new_plan.currency_code,
            period_start=subscription.current_period_start,
            period_end=subscription.current_period_end,
            now=self._clock(),
            message=message,
        )
