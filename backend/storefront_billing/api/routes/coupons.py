"""
Coupon Routes

Validation answers with a specific error code per failed condition so the
storefront can tell the shopper exactly why a code was refused.
"""

import logging
from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from fastapi import APIRouter, status
from pydantic import BaseModel, Field

from storefront_billing.api.dependencies import CouponServiceDep
from storefront_billing.domain.pricing import calculate_discount
from storefront_billing.domain.promotions import (
    Coupon,
    CouponDuration,
    CouponRedemption,
    DiscountType,
)
from storefront_billing.infrastructure.db.models.base import utc_now
from storefront_billing.services.promotion_service import coupon_result_payload


logger = logging.getLogger(__name__)

router = APIRouter()


class CreateCouponRequest(BaseModel):
    code: str = Field(min_length=1)
    name: str
    description: Optional[str] = None
    discount_type: DiscountType
    discount_value: int = Field(ge=0)
    currency_code: str = "USD"
    duration: CouponDuration = CouponDuration.ONCE
    duration_in_months: Optional[int] = Field(default=None, ge=1)
    max_redemptions: Optional[int] = Field(default=None, ge=1)
    min_order_amount: Optional[int] = Field(default=None, ge=0)
    applies_to_plans: list[UUID] = Field(default_factory=list)
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class ValidateCouponRequest(BaseModel):
    code: str
    plan_id: Optional[UUID] = None
    order_amount: Optional[int] = Field(default=None, ge=0)


@router.post("/coupons", response_model=Coupon, status_code=status.HTTP_201_CREATED)
async def create_coupon(request: CreateCouponRequest, service: CouponServiceDep):
    values = request.model_dump(exclude={"metadata", "valid_from"})
    coupon = Coupon(
        **values,
        valid_from=request.valid_from or utc_now(),
        coupon_metadata=request.metadata,
    )
    return await service.create_coupon(coupon)


@router.get("/coupons", response_model=list[Coupon])
async def list_coupons(service: CouponServiceDep, active_only: bool = True):
    return await service.list_coupons(active_only=active_only)


@router.get("/coupons/{code}", response_model=Coupon)
async def get_coupon(code: str, service: CouponServiceDep):
    return await service.get_coupon(code)


@router.post("/coupons/validate")
async def validate_coupon(request: ValidateCouponRequest, service: CouponServiceDep):
    """
    Check whether a code is redeemable for an order.

    Returns ``{"valid": true, "coupon": ...}`` or
    ``{"valid": false, "error": ..., "code": ...}``; an invalid coupon is
    an answer, not an error status.
    """
    result = await service.validate(
        request.code, plan_id=request.plan_id, order_amount=request.order_amount
    )
    body = coupon_result_payload(result)
    if result.valid and request.order_amount is not None:
        discount = calculate_discount(result.coupon, request.order_amount)
        body["discount_amount"] = discount
        body["final_amount"] = request.order_amount - discount
    return body


@router.delete("/coupons/{code}", response_model=Coupon)
async def deactivate_coupon(code: str, service: CouponServiceDep):
    return await service.deactivate_coupon(code)


class RedeemCouponRequest(BaseModel):
    code: str
    customer_id: str
    order_amount: int = Field(ge=0)
    plan_id: Optional[UUID] = None
    subscription_id: Optional[UUID] = None
    order_id: Optional[str] = None


@router.post("/coupons/redeem", response_model=CouponRedemption, status_code=status.HTTP_201_CREATED)
async def redeem_coupon(request: RedeemCouponRequest, service: CouponServiceDep):
    return await service.redeem(**request.model_dump())
