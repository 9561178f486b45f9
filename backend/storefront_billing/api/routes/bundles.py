"""
Subscription Bundle Routes
"""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, status
from pydantic import BaseModel, Field

from storefront_billing.api.dependencies import BundleServiceDep
from storefront_billing.domain.promotions import SubscriptionBundle
from storefront_billing.domain.subscription import PlanInterval


router = APIRouter()


class CreateBundleRequest(BaseModel):
    name: str
    description: Optional[str] = None
    plan_ids: List[UUID] = Field(min_length=1)
    price_amount: int = Field(ge=0)
    currency_code: str = "USD"
    interval: PlanInterval = PlanInterval.MONTH
    interval_count: int = Field(default=1, ge=1)


@router.post("/subscription-bundles", response_model=SubscriptionBundle, status_code=status.HTTP_201_CREATED)
async def create_bundle(request: CreateBundleRequest, service: BundleServiceDep):
    return await service.create_bundle(**request.model_dump())


@router.get("/subscription-bundles", response_model=List[SubscriptionBundle])
async def list_bundles(service: BundleServiceDep):
    return await service.list_bundles()
