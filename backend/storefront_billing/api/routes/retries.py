"""
Batch Trigger Routes

Entry points the external scheduler calls: the payment retry processor
and the promotion expiry sweep. Protected by the cron bearer secret.
"""

import logging

from fastapi import APIRouter, Depends

from storefront_billing.api.dependencies import (
    DunningServiceDep,
    ExpiryServiceDep,
    verify_cron_secret,
)
from storefront_billing.domain.dunning import RetryBatchResult
from storefront_billing.services.expiry_service import ExpirySweepResult


logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(verify_cron_secret)])


@router.post("/subscriptions/process-retries", response_model=RetryBatchResult)
async def process_retries(service: DunningServiceDep):
    """Work all due payment retries and expire finished grace periods."""
    return await service.process_due_retries()


@router.get("/subscriptions/process-retries")
async def retry_status(service: DunningServiceDep):
    """Pending retries due within 24 hours, with the active policy."""
    return await service.get_retry_status()


@router.post("/maintenance/expire", response_model=ExpirySweepResult)
async def expire_promotions(service: ExpiryServiceDep):
    return await service.run()
