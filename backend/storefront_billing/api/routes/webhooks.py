"""
Stripe Webhook Handler

Verifies the Stripe signature and hands the event to the webhook service,
which applies it idempotently (processed event ids are stored).

Handled events:
- invoice.payment_succeeded: recover a past-due subscription or log a renewal
- invoice.payment_failed: move to past_due and start dunning
- customer.subscription.updated: sync period and cancel flag, apply status moves
- customer.subscription.paused / resumed: pause or resume locally
- customer.subscription.trial_will_end: record the upcoming trial end
- customer.subscription.deleted: cancel immediately
"""

import logging

from fastapi import APIRouter, HTTPException, Request, status

from storefront_billing.api.dependencies import GatewayDep, WebhookServiceDep
from storefront_billing.infrastructure.exceptions import PaymentGatewayError


logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/webhooks/stripe")
async def stripe_webhook(request: Request, gateway: GatewayDep, service: WebhookServiceDep):
    """
    Handle Stripe webhook events.

    Returns 200 once the event is applied (or was already applied). Errors
    while applying roll the event back and answer 5xx so Stripe redelivers.
    """
    payload = await request.body()
    signature = request.headers.get("stripe-signature")

    if not signature:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing Stripe signature",
        )

    try:
        event = gateway.verify_webhook_signature(payload, signature)
    except PaymentGatewayError as e:
        logger.error(f"Webhook signature verification failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid signature",
        )

    outcome = await service.process_event(event)
    return {"status": outcome}
