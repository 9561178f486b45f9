"""
Payment Method Routes

Thin pass-through to the billing gateway; gateway failures surface as 502.
"""

import logging

from fastapi import APIRouter, Query, status
from pydantic import BaseModel

from storefront_billing.api.dependencies import GatewayDep


logger = logging.getLogger(__name__)

router = APIRouter()


class AttachPaymentMethodRequest(BaseModel):
    customer_id: str
    payment_method_id: str
    set_default: bool = False


@router.post("/payment-methods", status_code=status.HTTP_201_CREATED)
async def attach_payment_method(request: AttachPaymentMethodRequest, gateway: GatewayDep):
    return await gateway.attach_payment_method(
        request.customer_id,
        request.payment_method_id,
        set_default=request.set_default,
    )


@router.get("/payment-methods")
async def list_payment_methods(gateway: GatewayDep, customer_id: str = Query(...)):
    return {"payment_methods": await gateway.list_payment_methods(customer_id)}


@router.delete("/payment-methods/{payment_method_id}", status_code=status.HTTP_204_NO_CONTENT)
async def detach_payment_method(payment_method_id: str, gateway: GatewayDep):
    await gateway.detach_payment_method(payment_method_id)
