"""
Subscription API Routes

REST API endpoints for the subscription lifecycle: create, list, read, activate,
pause, resume, cancel, plan and quantity changes, and proration preview.
Caller identity is out of scope here; customer references arrive as plain
parameters.
"""

import logging
from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from fastapi import APIRouter, Query, status
from pydantic import BaseModel, Field

from storefront_billing.api.dependencies import (
    ProrationServiceDep,
    RepositoriesDep,
    SubscriptionServiceDep,
)
from storefront_billing.domain.pricing import ProrationPreview
from storefront_billing.domain.subscription import Subscription, SubscriptionStatus


logger = logging.getLogger(__name__)

router = APIRouter()


# =============================================================================
# Request Models
# =============================================================================

class CreateSubscriptionRequest(BaseModel):
    customer_id: str
    plan_id: UUID
    quantity: int = Field(default=1, ge=1)
    customer_email: Optional[str] = None
    stripe_customer_id: Optional[str] = None
    stripe_subscription_id: Optional[str] = None
    shipping_address: Optional[dict[str, Any]] = None


class PauseRequest(BaseModel):
    resume_at: Optional[datetime] = None


class ChangePlanRequest(BaseModel):
    new_plan_id: UUID
    prorate: bool = True


class QuantityRequest(BaseModel):
    # Range is checked by the service so the error carries a billing message
    quantity: int


# =============================================================================
# Endpoints
# =============================================================================

@router.post("/subscriptions", response_model=Subscription, status_code=status.HTTP_201_CREATED)
async def create_subscription(request: CreateSubscriptionRequest, service: SubscriptionServiceDep):
    return await service.create_subscription(**request.model_dump())


@router.get("/subscriptions", response_model=list[Subscription])
async def list_subscriptions(
    repos: RepositoriesDep,
    customer_id: Optional[str] = None,
    status_filter: Optional[SubscriptionStatus] = Query(default=None, alias="status"),
    limit: int = Query(default=100, ge=1, le=500),
):
    """List subscriptions newest first, optionally for one customer or status."""
    return await repos.subscriptions.list_filtered(
        customer_id=customer_id, status=status_filter, limit=limit
    )


@router.get("/subscriptions/{subscription_id}")
async def get_subscription(
    subscription_id: UUID,
    service: SubscriptionServiceDep,
    repos: RepositoriesDep,
    include_events: bool = False,
    include_invoices: bool = False,
):
    """Get a subscription, optionally with its event history and recent invoices."""
    subscription = await service.get_subscription(subscription_id)
    body: dict[str, Any] = {"subscription": subscription}

    if include_events:
        body["events"] = await repos.events.list_for_subscription(subscription_id)
    if include_invoices:
        body["invoices"] = await repos.invoices.list_for_subscription(subscription_id)

    return body


@router.post("/subscriptions/{subscription_id}/activate", response_model=Subscription)
async def activate_subscription(subscription_id: UUID, service: SubscriptionServiceDep):
    return await service.activate(subscription_id)


@router.post("/subscriptions/{subscription_id}/pause", response_model=Subscription)
async def pause_subscription(
    subscription_id: UUID,
    service: SubscriptionServiceDep,
    request: Optional[PauseRequest] = None,
):
    return await service.pause(subscription_id, resume_at=request.resume_at if request else None)


@router.post("/subscriptions/{subscription_id}/resume", response_model=Subscription)
async def resume_subscription(subscription_id: UUID, service: SubscriptionServiceDep):
    return await service.resume(subscription_id)


@router.delete("/subscriptions/{subscription_id}", response_model=Subscription)
async def cancel_subscription(
    subscription_id: UUID,
    service: SubscriptionServiceDep,
    immediate: bool = False,
    reason: Optional[str] = None,
):
    """Cancel immediately, or at the end of the current period (default)."""
    return await service.cancel(subscription_id, immediate=immediate, reason=reason)


@router.post("/subscriptions/{subscription_id}/change-plan", response_model=Subscription)
async def change_plan(
    subscription_id: UUID,
    request: ChangePlanRequest,
    service: SubscriptionServiceDep,
):
    return await service.change_plan(subscription_id, request.new_plan_id, prorate=request.prorate)


@router.put("/subscriptions/{subscription_id}/quantity", response_model=Subscription)
async def change_quantity(
    subscription_id: UUID,
    request: QuantityRequest,
    service: SubscriptionServiceDep,
):
    return await service.change_quantity(subscription_id, request.quantity)


@router.get("/subscriptions/{subscription_id}/preview-change", response_model=ProrationPreview)
async def preview_plan_change(
    subscription_id: UUID,
    service: ProrationServiceDep,
    new_plan_id: UUID = Query(...),
):
    """
    Price a plan change before committing to it.

    ``is_estimate`` in the response is True when the figures are a local
    approximation rather than the payment provider's own preview.
    """
    return await service.preview_change(subscription_id, new_plan_id)
