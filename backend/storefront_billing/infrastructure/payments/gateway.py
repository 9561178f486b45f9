"""
Billing Gateway Interface

The narrow set of remote billing operations the services depend on.
Implementations translate vendor errors into the PaymentGatewayError
family; ``GatewayUnavailableError`` marks the cases where callers should
fall back (for example to an estimated proration).
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from storefront_billing.domain.pricing import ProrationLine


@dataclass
class GatewaySubscription:
    """Remote subscription state the services care about."""
    id: str
    status: str
    item_id: Optional[str] = None
    price_id: Optional[str] = None
    quantity: int = 1
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None


@dataclass
class InvoicePreview:
    lines: list[ProrationLine] = field(default_factory=list)
    total: int = 0
    currency: str = "usd"
    next_payment_attempt: Optional[datetime] = None


@dataclass
class PaymentCollection:
    """Outcome of trying to collect an open invoice."""
    paid: bool
    invoice_id: Optional[str] = None
    payment_intent_id: Optional[str] = None
    failure_reason: Optional[str] = None


@dataclass
class PaymentMethodInfo:
    id: str
    type: str
    brand: Optional[str] = None
    last4: Optional[str] = None
    exp_month: Optional[int] = None
    exp_year: Optional[int] = None
    is_default: bool = False


class BillingGateway(ABC):
    """Remote billing capability, pluggable per payment provider."""

    # Subscriptions

    @abstractmethod
    async def retrieve_subscription(self, subscription_id: str) -> GatewaySubscription:
        pass

    @abstractmethod
    async def change_price(
        self,
        subscription_id: str,
        new_price_id: str,
        prorate: bool = True,
    ) -> GatewaySubscription:
        pass

    @abstractmethod
    async def change_quantity(self, subscription_id: str, quantity: int) -> GatewaySubscription:
        pass

    @abstractmethod
    async def pause_collection(
        self,
        subscription_id: str,
        resumes_at: Optional[datetime] = None,
    ) -> GatewaySubscription:
        pass

    @abstractmethod
    async def resume_collection(self, subscription_id: str) -> GatewaySubscription:
        pass

    @abstractmethod
    async def cancel_at_period_end(self, subscription_id: str) -> GatewaySubscription:
        pass

    @abstractmethod
    async def cancel_subscription(self, subscription_id: str) -> None:
        pass

    # Invoices

    @abstractmethod
    async def collect_open_invoice(self, subscription_id: str) -> PaymentCollection:
        """
        Try to pay the subscription's open invoice.

        Raises:
            GatewayUnavailableError: If there is no open invoice to pay
            PaymentDeclinedError: If the charge was declined
        """
        pass

    @abstractmethod
    async def preview_price_change(
        self,
        customer_id: str,
        subscription_id: str,
        new_price_id: str,
    ) -> InvoicePreview:
        pass

    # Payment instruments

    @abstractmethod
    async def attach_payment_method(
        self,
        customer_id: str,
        payment_method_id: str,
        set_default: bool = False,
    ) -> PaymentMethodInfo:
        pass

    @abstractmethod
    async def detach_payment_method(self, payment_method_id: str) -> None:
        pass

    @abstractmethod
    async def list_payment_methods(self, customer_id: str) -> list[PaymentMethodInfo]:
        pass

    # Events

    @abstractmethod
    def verify_webhook_signature(self, payload: bytes, signature: str) -> dict[str, Any]:
        pass
