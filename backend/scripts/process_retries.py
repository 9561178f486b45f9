"""
Process Payment Retries Script

Runs one pass of the dunning engine: works every due payment retry, then
cancels subscriptions whose grace period has ended. Meant to be invoked
by an external scheduler (cron, hourly).

Usage:
    cd backend
    python scripts/process_retries.py
"""

import asyncio
import logging
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from storefront_billing.config.settings import settings
from storefront_billing.domain.dunning import DunningConfig
from storefront_billing.infrastructure.db.database import close_db
from storefront_billing.infrastructure.notifications.email_sender import get_email_notifier
from storefront_billing.infrastructure.payments import get_billing_gateway
from storefront_billing.services.dunning_service import DunningService

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


async def main() -> int:
    service = DunningService(
        gateway=get_billing_gateway(),
        notifier=get_email_notifier(),
        config=DunningConfig.from_settings(settings),
    )

    try:
        result = await service.process_due_retries()
    finally:
        await close_db()

    logger.info(
        f"Processed {result.processed} retries: {result.succeeded} succeeded, "
        f"{result.failed} failed, {result.cancelled} cancelled"
    )
    for error in result.errors:
        logger.error(error)

    return 1 if result.errors else 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
