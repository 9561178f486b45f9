"""
Expire Promotions Script

Marks paid gifts past their redemption deadline as expired and deactivates
coupons past their validity window.

Usage:
    cd backend
    python scripts/expire_promotions.py
"""

import asyncio
import logging
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from storefront_billing.config.settings import settings
from storefront_billing.infrastructure.db.database import close_db
from storefront_billing.services.expiry_service import ExpiryService

logging.basicConfig(level=getattr(logging, settings.log_level.upper()))
logger = logging.getLogger(__name__)


async def main() -> int:
    try:
        result = await ExpiryService().run()
    finally:
        await close_db()

    for error in result.errors:
        logger.error(error)
    return 1 if result.errors else 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
