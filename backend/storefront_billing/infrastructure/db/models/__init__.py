"""
SQLModel ORM Models for Storefront Billing

Exports all database models for Alembic autogenerate and application use.
Import models here to register them with SQLModel.metadata.
"""

from storefront_billing.infrastructure.db.models.base import (
    TimestampMixin,
    UUIDMixin,
    utc_now,
)
from storefront_billing.infrastructure.db.models.subscription import (
    SubscriptionPlanModel,
    SubscriptionModel,
    SubscriptionEventModel,
    SubscriptionInvoiceModel,
)
from storefront_billing.infrastructure.db.models.dunning import PaymentRetryAttemptModel
from storefront_billing.infrastructure.db.models.promotions import (
    CouponModel,
    CouponRedemptionModel,
    GiftSubscriptionModel,
    SubscriptionBundleModel,
    SubscriptionBundleItemModel,
)
from storefront_billing.infrastructure.db.models.webhook_event import ProcessedWebhookEventModel


__all__ = [
    # Base
    "TimestampMixin",
    "UUIDMixin",
    "utc_now",
    # Subscriptions
    "SubscriptionPlanModel",
    "SubscriptionModel",
    "SubscriptionEventModel",
    "SubscriptionInvoiceModel",
    # Dunning
    "PaymentRetryAttemptModel",
    # Promotions
    "CouponModel",
    "CouponRedemptionModel",
    "GiftSubscriptionModel",
    "SubscriptionBundleModel",
    "SubscriptionBundleItemModel",
    # Webhooks
    "ProcessedWebhookEventModel",
]
