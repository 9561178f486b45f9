"""
API Dependencies

FastAPI dependency providers for the batch-trigger guard and the services
routes call into. Services are built per request around the request's
repository bundle, so everything one request writes commits together.
"""

import logging
import secrets
from functools import lru_cache
from typing import Annotated, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from storefront_billing.config.settings import get_settings
from storefront_billing.domain.dunning import DunningConfig
from storefront_billing.infrastructure.db.dependencies import RepositoriesDep
from storefront_billing.infrastructure.notifications.email_sender import (
    EmailNotifier,
    get_email_notifier,
)
from storefront_billing.infrastructure.payments import BillingGateway, get_billing_gateway
from storefront_billing.services.dunning_service import DunningService
from storefront_billing.services.expiry_service import ExpiryService
from storefront_billing.services.plan_service import PlanService
from storefront_billing.services.promotion_service import (
    BundleService,
    CouponService,
    GiftService,
)
from storefront_billing.services.proration_service import ProrationService
from storefront_billing.services.subscription_service import SubscriptionService
from storefront_billing.services.webhook_service import WebhookService


logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


# =============================================================================
# Batch Trigger Authentication
# =============================================================================

async def verify_cron_secret(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> None:
    """
    Require ``Authorization: Bearer <CRON_SECRET_KEY>`` when a key is configured.

    Without a configured key the batch endpoints are open (local development).
    """
    expected_key = get_settings().cron_secret_key
    if not expected_key:
        return

    if credentials is None or not secrets.compare_digest(credentials.credentials, expected_key):
        logger.warning("Rejected batch trigger call with a missing or invalid secret")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )


# =============================================================================
# Collaborators
# =============================================================================

@lru_cache
def get_dunning_config() -> DunningConfig:
    """Dunning policy, read once per process."""
    return DunningConfig.from_settings(get_settings())


GatewayDep = Annotated[BillingGateway, Depends(get_billing_gateway)]
NotifierDep = Annotated[EmailNotifier, Depends(get_email_notifier)]
DunningConfigDep = Annotated[DunningConfig, Depends(get_dunning_config)]


# =============================================================================
# Services
# =============================================================================

def get_subscription_service(
    repos: RepositoriesDep,
    gateway: GatewayDep,
    notifier: NotifierDep,
) -> SubscriptionService:
    return SubscriptionService(repos, gateway, notifier)


def get_proration_service(repos: RepositoriesDep, gateway: GatewayDep) -> ProrationService:
    return ProrationService(repos, gateway)


def get_plan_service(repos: RepositoriesDep) -> PlanService:
    return PlanService(repos)


def get_coupon_service(repos: RepositoriesDep) -> CouponService:
    return CouponService(repos)


def get_gift_service(repos: RepositoriesDep, notifier: NotifierDep) -> GiftService:
    return GiftService(repos, notifier, gift_expiry_days=get_settings().gift_expiry_days)


def get_bundle_service(repos: RepositoriesDep) -> BundleService:
    return BundleService(repos)


def get_dunning_service(
    gateway: GatewayDep,
    notifier: NotifierDep,
    config: DunningConfigDep,
) -> DunningService:
    """Batch-scoped: the service opens its own unit of work per attempt."""
    return DunningService(gateway, notifier, config)


def get_expiry_service() -> ExpiryService:
    return ExpiryService()


def get_webhook_service(
    dunning: Annotated[DunningService, Depends(get_dunning_service)],
) -> WebhookService:
    return WebhookService(dunning)


SubscriptionServiceDep = Annotated[SubscriptionService, Depends(get_subscription_service)]
ProrationServiceDep = Annotated[ProrationService, Depends(get_proration_service)]
PlanServiceDep = Annotated[PlanService, Depends(get_plan_service)]
CouponServiceDep = Annotated[CouponService, Depends(get_coupon_service)]
GiftServiceDep = Annotated[GiftService, Depends(get_gift_service)]
BundleServiceDep = Annotated[BundleService, Depends(get_bundle_service)]
DunningServiceDep = Annotated[DunningService, Depends(get_dunning_service)]
ExpiryServiceDep = Annotated[ExpiryService, Depends(get_expiry_service)]
WebhookServiceDep = Annotated[WebhookService, Depends(get_webhook_service)]


# =============================================================================
# Re-export DB dependencies for a single import source
# Routers should import from api.dependencies, not db.dependencies directly.
# =============================================================================
from storefront_billing.infrastructure.db.dependencies import (  # noqa: E402, F401
    SessionDep,
)
