# API Routes Module
from storefront_billing.api.routes import (
    plans,
    retries,
    subscriptions,
    billing_history,
    coupons,
    gifts,
    bundles,
    payment_methods,
    webhooks,
)

__all__ = [
    "plans",
    "retries",
    "subscriptions",
    "billing_history",
    "coupons",
    "gifts",
    "bundles",
    "payment_methods",
    "webhooks",
]
