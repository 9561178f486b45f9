"""
Payments Infrastructure Module

Billing gateway interface and its Stripe implementation.
"""

from storefront_billing.infrastructure.payments.gateway import BillingGateway
from storefront_billing.infrastructure.payments.stripe_gateway import (
    StripeBillingGateway,
    get_billing_gateway,
)

__all__ = ["BillingGateway", "StripeBillingGateway", "get_billing_gateway"]
