"""
Plan Administration Service
"""

import logging
from typing import Any, List, Optional
from uuid import UUID

from storefront_billing.domain.subscription import PlanStatus, SubscriptionPlan
from storefront_billing.infrastructure.db.repositories import BillingRepositories
from storefront_billing.infrastructure.exceptions import NotFoundError, ValidationError


logger = logging.getLogger(__name__)

# Price and cadence are fixed at creation
MUTABLE_PLAN_FIELDS = frozenset({"name", "description", "status", "features", "plan_metadata"})


class PlanService:
    def __init__(self, repos: BillingRepositories):
        self._repos = repos

    async def create_plan(self, plan: SubscriptionPlan) -> SubscriptionPlan:
        created = await self._repos.plans.create(plan)
        logger.info(
            f"Created plan {created.name}: {created.price_amount} {created.currency_code} "
            f"every {created.interval_count} {created.interval.value}"
        )
        return created

    async def update_plan(self, plan_id: UUID, changes: dict[str, Any]) -> SubscriptionPlan:
        """
        Apply changes to a plan's descriptive fields.

        Raises:
            ValidationError: If a price or cadence field is included
        """
        locked = sorted(set(changes) - MUTABLE_PLAN_FIELDS)
        if locked:
            raise ValidationError(
                "Plan price and cadence cannot be changed; create a new plan instead",
                details={"fields": locked},
            )

        plan = await self._repos.plans.get_by_id(plan_id)
        if plan is None:
            raise NotFoundError(f"Plan {plan_id} not found", table="subscription_plans")

        updated = await self._repos.plans.update(plan.model_copy(update=changes))
        logger.info(f"Updated plan {updated.id}: {sorted(changes)}")
        return updated

    async def list_plans(self, status: Optional[PlanStatus] = None) -> List[SubscriptionPlan]:
        return await self._repos.plans.list_by_status(status)
