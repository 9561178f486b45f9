"""
Processed Webhook Event Repository

DB-backed idempotency for payment-provider events (survives restarts).
"""

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession


class WebhookEventRepository:
    """Records which provider event ids were already applied."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def is_processed(self, event_id: str) -> bool:
        result = await self._session.execute(
            text("SELECT 1 FROM processed_webhook_events WHERE event_id = :eid"),
            {"eid": event_id},
        )
        return result.scalar_one_or_none() is not None

    async def mark_processed(self, event_id: str, event_type: str) -> None:
        await self._session.execute(
            text(
                "INSERT INTO processed_webhook_events (event_id, event_type, processed_at) "
                "VALUES (:eid, :etype, now()) ON CONFLICT (event_id) DO NOTHING"
            ),
            {"eid": event_id, "etype": event_type},
        )
