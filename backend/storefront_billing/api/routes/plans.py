"""
Subscription Plan Routes
"""

import logging
from typing import Any, List, Optional
from uuid import UUID

from fastapi import APIRouter, status
from pydantic import BaseModel, Field

from storefront_billing.api.dependencies import PlanServiceDep
from storefront_billing.domain.subscription import PlanInterval, PlanStatus, SubscriptionPlan


logger = logging.getLogger(__name__)

router = APIRouter()


class CreatePlanRequest(BaseModel):
    name: str
    description: Optional[str] = None
    interval: PlanInterval = PlanInterval.MONTH
    interval_count: int = Field(default=1, ge=1)
    price_amount: int = Field(ge=0)
    currency_code: str = "USD"
    trial_period_days: int = Field(default=0, ge=0)
    setup_fee_amount: int = Field(default=0, ge=0)
    features: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
    stripe_product_id: Optional[str] = None
    stripe_price_id: Optional[str] = None


class UpdatePlanRequest(BaseModel):
    """Only descriptive fields; price and cadence are permanent."""
    name: Optional[str] = None
    description: Optional[str] = None
    status: Optional[PlanStatus] = None
    features: Optional[list[str]] = None
    metadata: Optional[dict[str, Any]] = None

    class Config:
        extra = "forbid"


@router.post("/subscription-plans", response_model=SubscriptionPlan, status_code=status.HTTP_201_CREATED)
async def create_plan(request: CreatePlanRequest, service: PlanServiceDep):
    values = request.model_dump(exclude={"metadata"})
    return await service.create_plan(SubscriptionPlan(**values, plan_metadata=request.metadata))


@router.get("/subscription-plans", response_model=List[SubscriptionPlan])
async def list_plans(service: PlanServiceDep, status: Optional[PlanStatus] = None):
    return await service.list_plans(status)


@router.patch("/subscription-plans/{plan_id}", response_model=SubscriptionPlan)
async def update_plan(plan_id: UUID, request: UpdatePlanRequest, service: PlanServiceDep):
    changes = request.model_dump(exclude_unset=True)
    if "metadata" in changes:
        changes["plan_metadata"] = changes.pop("metadata")
    return await service.update_plan(plan_id, changes)
