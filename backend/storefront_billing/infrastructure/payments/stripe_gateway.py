"""
Stripe Billing Gateway

BillingGateway implementation on the Stripe API.
Every Stripe error is translated into the PaymentGatewayError family so
nothing above this module depends on the SDK's exception shapes.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Optional

import stripe
from stripe import APIConnectionError, CardError, SignatureVerificationError, StripeError

from storefront_billing.config.settings import get_settings
from storefront_billing.domain.pricing import ProrationLine
from storefront_billing.infrastructure.exceptions import (
    ConfigurationError,
    GatewayUnavailableError,
    PaymentDeclinedError,
    PaymentGatewayError,
)
from storefront_billing.infrastructure.payments.gateway import (
    BillingGateway,
    GatewaySubscription,
    InvoicePreview,
    PaymentCollection,
    PaymentMethodInfo,
)


logger = logging.getLogger(__name__)


def _from_timestamp(value: Optional[int]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc)


def _translate_error(e: StripeError, operation: str) -> PaymentGatewayError:
    """Map a Stripe SDK error onto the gateway error family."""
    message = e.user_message or str(e)
    if isinstance(e, CardError):
        return PaymentDeclinedError(message, operation=operation, original_error=e)
    if isinstance(e, APIConnectionError):
        return GatewayUnavailableError(
            f"Stripe unreachable during {operation}: {message}",
            operation=operation,
            original_error=e,
        )
    return PaymentGatewayError(
        f"Stripe {operation} failed: {message}",
        operation=operation,
        original_error=e,
    )


def _is_proration(line: Any) -> bool:
    # Older API versions flag the line itself, newer ones nest it under parent
    if line.get("proration") is not None:
        return bool(line.get("proration"))
    parent = line.get("parent") or {}
    details = parent.get("subscription_item_details") or {}
    return bool(details.get("proration"))


class StripeBillingGateway(BillingGateway):
    """
    Stripe payment processing gateway.

    Calls the synchronous SDK; each method is one remote round trip
    (two for invoice collection).
    """

    def __init__(self):
        settings = get_settings()
        self._api_key = settings.stripe_secret_key
        self._webhook_secret = settings.stripe_webhook_secret

        if self._api_key:
            stripe.api_key = self._api_key

    # =========================================================================
    # Subscriptions
    # =========================================================================

    async def retrieve_subscription(self, subscription_id: str) -> GatewaySubscription:
        try:
            subscription = stripe.Subscription.retrieve(subscription_id)
        except StripeError as e:
            logger.error(f"Failed to retrieve subscription {subscription_id}: {e}")
            raise _translate_error(e, "retrieve_subscription")
        return self._to_gateway_subscription(subscription)

    async def change_price(
        self,
        subscription_id: str,
        new_price_id: str,
        prorate: bool = True,
    ) -> GatewaySubscription:
        current = await self.retrieve_subscription(subscription_id)
        if not current.item_id:
            raise GatewayUnavailableError(
                f"Subscription {subscription_id} has no line item to change",
                operation="change_price",
            )

        try:
            subscription = stripe.Subscription.modify(
                subscription_id,
                items=[{"id": current.item_id, "price": new_price_id}],
                proration_behavior="create_prorations" if prorate else "none",
            )
        except StripeError as e:
            logger.error(f"Failed to change price of {subscription_id}: {e}")
            raise _translate_error(e, "change_price")

        logger.info(f"Changed price of Stripe subscription {subscription_id} to {new_price_id}")
        return self._to_gateway_subscription(subscription)

    async def change_quantity(self, subscription_id: str, quantity: int) -> GatewaySubscription:
        current = await self.retrieve_subscription(subscription_id)
        if not current.item_id:
            raise GatewayUnavailableError(
                f"Subscription {subscription_id} has no line item to change",
                operation="change_quantity",
            )

        try:
            subscription = stripe.Subscription.modify(
                subscription_id,
                items=[{"id": current.item_id, "quantity": quantity}],
                proration_behavior="create_prorations",
            )
        except StripeError as e:
            logger.error(f"Failed to change quantity of {subscription_id}: {e}")
            raise _translate_error(e, "change_quantity")

        logger.info(f"Set quantity of Stripe subscription {subscription_id} to {quantity}")
        return self._to_gateway_subscription(subscription)

    async def pause_collection(
        self,
        subscription_id: str,
        resumes_at: Optional[datetime] = None,
    ) -> GatewaySubscription:
        pause = {"behavior": "void"}
        if resumes_at is not None:
            pause["resumes_at"] = int(resumes_at.timestamp())

        try:
            subscription = stripe.Subscription.modify(subscription_id, pause_collection=pause)
        except StripeError as e:
            logger.error(f"Failed to pause {subscription_id}: {e}")
            raise _translate_error(e, "pause_collection")

        logger.info(f"Paused collection for Stripe subscription {subscription_id}")
        return self._to_gateway_subscription(subscription)

    async def resume_collection(self, subscription_id: str) -> GatewaySubscription:
        try:
            # Empty string unsets pause_collection
            subscription = stripe.Subscription.modify(subscription_id, pause_collection="")
        except StripeError as e:
            logger.error(f"Failed to resume {subscription_id}: {e}")
            raise _translate_error(e, "resume_collection")

        logger.info(f"Resumed collection for Stripe subscription {subscription_id}")
        return self._to_gateway_subscription(subscription)

    async def cancel_at_period_end(self, subscription_id: str) -> GatewaySubscription:
        try:
            subscription = stripe.Subscription.modify(subscription_id, cancel_at_period_end=True)
        except StripeError as e:
            logger.error(f"Failed to schedule cancellation of {subscription_id}: {e}")
            raise _translate_error(e, "cancel_at_period_end")

        logger.info(f"Stripe subscription {subscription_id} cancels at period end")
        return self._to_gateway_subscription(subscription)

    async def cancel_subscription(self, subscription_id: str) -> None:
        try:
            stripe.Subscription.cancel(subscription_id)
        except StripeError as e:
            logger.error(f"Failed to cancel {subscription_id}: {e}")
            raise _translate_error(e, "cancel_subscription")

        logger.info(f"Cancelled Stripe subscription {subscription_id}")

    # =========================================================================
    # Invoices
    # =========================================================================

    async def collect_open_invoice(self, subscription_id: str) -> PaymentCollection:
        try:
            invoices = stripe.Invoice.list(subscription=subscription_id, status="open", limit=1)
        except StripeError as e:
            raise _translate_error(e, "list_invoices")

        if not invoices.data:
            raise GatewayUnavailableError(
                f"No open invoice for subscription {subscription_id}",
                operation="collect_open_invoice",
            )

        invoice_id = invoices.data[0].id
        try:
            invoice = stripe.Invoice.pay(invoice_id)
        except StripeError as e:
            logger.warning(f"Collection of invoice {invoice_id} failed: {e}")
            raise _translate_error(e, "collect_open_invoice")

        paid = invoice.get("status") == "paid"
        return PaymentCollection(
            paid=paid,
            invoice_id=invoice_id,
            payment_intent_id=invoice.get("payment_intent"),
            failure_reason=None if paid else f"Invoice status is {invoice.get('status')}",
        )

    async def preview_price_change(
        self,
        customer_id: str,
        subscription_id: str,
        new_price_id: str,
    ) -> InvoicePreview:
        current = await self.retrieve_subscription(subscription_id)
        if not current.item_id:
            raise GatewayUnavailableError(
                f"Subscription {subscription_id} has no line item to preview",
                operation="preview_price_change",
            )

        try:
            preview = stripe.Invoice.create_preview(
                customer=customer_id,
                subscription=subscription_id,
                subscription_details={
                    "items": [{"id": current.item_id, "price": new_price_id}],
                    "proration_behavior": "create_prorations",
                },
            )
        except StripeError as e:
            logger.warning(f"Invoice preview failed for {subscription_id}: {e}")
            raise GatewayUnavailableError(
                f"Invoice preview unavailable: {e.user_message or e}",
                operation="preview_price_change",
                original_error=e,
            )

        lines = [
            ProrationLine(
                amount=line.get("amount", 0),
                proration=_is_proration(line),
                description=line.get("description"),
                period_start=_from_timestamp((line.get("period") or {}).get("start")),
                period_end=_from_timestamp((line.get("period") or {}).get("end")),
            )
            for line in preview.lines.data
        ]
        return InvoicePreview(
            lines=lines,
            total=preview.get("total", 0),
            currency=preview.get("currency", "usd"),
            next_payment_attempt=_from_timestamp(preview.get("next_payment_attempt")),
        )

    # =========================================================================
    # Payment Instruments
    # =========================================================================

    async def attach_payment_method(
        self,
        customer_id: str,
        payment_method_id: str,
        set_default: bool = False,
    ) -> PaymentMethodInfo:
        try:
            payment_method = stripe.PaymentMethod.attach(payment_method_id, customer=customer_id)
            if set_default:
                stripe.Customer.modify(
                    customer_id,
                    invoice_settings={"default_payment_method": payment_method_id},
                )
        except StripeError as e:
            logger.error(f"Failed to attach payment method for {customer_id}: {e}")
            raise _translate_error(e, "attach_payment_method")

        logger.info(f"Attached payment method {payment_method_id} to {customer_id}")
        return self._to_payment_method(payment_method, default_id=payment_method_id if set_default else None)

    async def detach_payment_method(self, payment_method_id: str) -> None:
        try:
            stripe.PaymentMethod.detach(payment_method_id)
        except StripeError as e:
            logger.error(f"Failed to detach payment method {payment_method_id}: {e}")
            raise _translate_error(e, "detach_payment_method")

        logger.info(f"Detached payment method {payment_method_id}")

    async def list_payment_methods(self, customer_id: str) -> list[PaymentMethodInfo]:
        try:
            customer = stripe.Customer.retrieve(customer_id)
            methods = stripe.PaymentMethod.list(customer=customer_id, type="card")
        except StripeError as e:
            logger.error(f"Failed to list payment methods for {customer_id}: {e}")
            raise _translate_error(e, "list_payment_methods")

        default_id = (customer.get("invoice_settings") or {}).get("default_payment_method")
        return [self._to_payment_method(pm, default_id=default_id) for pm in methods.data]

    # =========================================================================
    # Webhook Verification
    # =========================================================================

    def verify_webhook_signature(self, payload: bytes, signature: str) -> dict[str, Any]:
        """
        Verify the Stripe-Signature header and parse the event.

        Raises:
            ConfigurationError: If no webhook secret is configured
            PaymentGatewayError: If the payload or signature is invalid
        """
        if not self._webhook_secret:
            raise ConfigurationError(
                "Stripe webhook secret is not configured",
                missing_keys=["STRIPE_WEBHOOK_SECRET"],
            )

        try:
            return stripe.Webhook.construct_event(payload, signature, self._webhook_secret)
        except ValueError as e:
            raise PaymentGatewayError(f"Invalid payload: {e}", operation="verify_webhook")
        except SignatureVerificationError as e:
            raise PaymentGatewayError(f"Invalid signature: {e}", operation="verify_webhook")

    # =========================================================================
    # Mapping Methods
    # =========================================================================

    @staticmethod
    def _to_gateway_subscription(subscription: Any) -> GatewaySubscription:
        items = subscription.get("items")
        item = items.data[0] if items and items.data else None
        period_source = subscription if subscription.get("current_period_start") else (item or {})

        return GatewaySubscription(
            id=subscription.get("id"),
            status=subscription.get("status"),
            item_id=item.get("id") if item else None,
            price_id=(item.get("price") or {}).get("id") if item else None,
            quantity=item.get("quantity", 1) if item else 1,
            current_period_start=_from_timestamp(period_source.get("current_period_start")),
            current_period_end=_from_timestamp(period_source.get("current_period_end")),
        )

    @staticmethod
    def _to_payment_method(payment_method: Any, default_id: Optional[str] = None) -> PaymentMethodInfo:
        card = payment_method.get("card") or {}
        return PaymentMethodInfo(
            id=payment_method.get("id"),
            type=payment_method.get("type", "card"),
            brand=card.get("brand"),
            last4=card.get("last4"),
            exp_month=card.get("exp_month"),
            exp_year=card.get("exp_year"),
            is_default=payment_method.get("id") == default_id,
        )


# =============================================================================
# Singleton Instance (Dependency Injection Ready)
# =============================================================================

_gateway_instance: Optional[StripeBillingGateway] = None


def get_billing_gateway() -> BillingGateway:
    """Get or create the billing gateway singleton."""
    global _gateway_instance

    if _gateway_instance is None:
        _gateway_instance = StripeBillingGateway()

    return _gateway_instance
