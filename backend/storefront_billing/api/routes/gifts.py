"""
Gift Subscription Routes
"""

import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from storefront_billing.api.dependencies import GiftServiceDep
from storefront_billing.domain.promotions import GiftSubscription


logger = logging.getLogger(__name__)

router = APIRouter()


class PurchaseGiftRequest(BaseModel):
    plan_id: UUID
    sender_email: str
    sender_name: str
    recipient_email: str
    recipient_name: str
    gift_message: Optional[str] = None
    sender_customer_id: Optional[str] = None


class MarkGiftPaidRequest(BaseModel):
    payment_intent_id: Optional[str] = None


class RedeemGiftRequest(BaseModel):
    redeem_code: str
    customer_id: str
    customer_email: Optional[str] = None


@router.post("/gift-subscriptions", response_model=GiftSubscription, status_code=status.HTTP_201_CREATED)
async def purchase_gift(request: PurchaseGiftRequest, service: GiftServiceDep):
    return await service.purchase(**request.model_dump())


@router.post("/gift-subscriptions/{gift_id}/paid", response_model=GiftSubscription)
async def mark_gift_paid(
    gift_id: UUID,
    service: GiftServiceDep,
    request: Optional[MarkGiftPaidRequest] = None,
):
    return await service.mark_paid(gift_id, request.payment_intent_id if request else None)


@router.post("/gift-subscriptions/redeem")
async def redeem_gift(request: RedeemGiftRequest, service: GiftServiceDep):
    """
    Redeem a gift code into a new active subscription.

    A refused code answers 400 with a specific ``code``; the request still
    commits, so a gift found past its deadline is stored as expired.
    """
    result = await service.redeem(
        request.redeem_code.strip().upper(),
        customer_id=request.customer_id,
        customer_email=request.customer_email,
    )
    if not result.success:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": result.error, "code": result.error_code.value},
        )

    return {"success": True, "subscription": result.subscription.model_dump(mode="json")}
