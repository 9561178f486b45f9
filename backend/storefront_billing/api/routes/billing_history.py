"""
Billing History Routes

Invoices for one subscription or for every subscription of a customer,
newest first, with paid and outstanding totals.
"""

import logging
from typing import Any, Optional
from uuid import UUID

from fastapi import APIRouter, Query

from storefront_billing.api.dependencies import RepositoriesDep
from storefront_billing.domain.subscription import InvoiceStatus, SubscriptionInvoice
from storefront_billing.infrastructure.exceptions import ValidationError


logger = logging.getLogger(__name__)

router = APIRouter()


def invoice_totals(invoices: list[SubscriptionInvoice]) -> dict[str, int]:
    """Amount paid on paid invoices and still owed on open ones."""
    paid = sum(inv.amount_paid for inv in invoices if inv.status == InvoiceStatus.PAID)
    outstanding = sum(
        inv.amount_due - inv.amount_paid
        for inv in invoices
        if inv.status == InvoiceStatus.OPEN
    )
    return {"paid": paid, "outstanding": outstanding}


@router.get("/billing-history")
async def billing_history(
    repos: RepositoriesDep,
    subscription_id: Optional[UUID] = None,
    customer_id: Optional[str] = None,
    limit: int = Query(default=100, ge=1, le=500),
):
    if subscription_id is not None:
        invoices = await repos.invoices.list_for_subscription(subscription_id, limit=limit)
    elif customer_id is not None:
        invoices = await repos.invoices.list_for_customer(customer_id, limit=limit)
    else:
        raise ValidationError("Pass subscription_id or customer_id")

    body: dict[str, Any] = {
        "data": invoices,
        "meta": {"total": len(invoices), "totals": invoice_totals(invoices)},
    }
    return body
