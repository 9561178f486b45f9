"""
Best-effort side effects

Cleanup calls whose failure must not undo or block the local write that
preceded them: gateway cancellation after a dunning cancellation, or a
notice email. Failures are logged and reported as False.
"""

import logging
from typing import Awaitable, Tuple, Type

from storefront_billing.infrastructure.exceptions import NotificationError, PaymentGatewayError


logger = logging.getLogger(__name__)

SWALLOWED_ERRORS: Tuple[Type[Exception], ...] = (PaymentGatewayError, NotificationError)


async def best_effort(
    operation: str,
    call: Awaitable,
    swallow: Tuple[Type[Exception], ...] = SWALLOWED_ERRORS,
) -> bool:
    """
    Await ``call``; log and swallow errors of the ``swallow`` types.

    Returns:
        True if the call completed, False if it failed and was swallowed
    """
    try:
        await call
        return True
    except swallow as e:
        logger.warning(f"Best-effort {operation} failed, continuing: {e}")
        return False
