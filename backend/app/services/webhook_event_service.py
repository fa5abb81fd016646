"""WebhookEventService: audit trail of inbound webhook deliveries.

Each method runs in its own short transaction so audit rows survive a rollback
of the business-state transaction.
"""

from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.exceptions import InvalidInputError
from app.db.models.webhook_event import WebhookEvent

logger = structlog.get_logger(__name__)

MAX_ERROR_LENGTH = 4000


class WebhookEventService:
    """Owns every write to the webhook_events table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def save_event(self, event_name: str, body: dict[str, Any]) -> WebhookEvent:
        """Insert a new, unprocessed audit row. Duplicate deliveries get their own row."""
        async with self.session_factory() as session:
            event = WebhookEvent(event_name=event_name, body=body, processed=False)
            session.add(event)
            await session.commit()
            await session.refresh(event)

        logger.info("webhook_event_saved", webhook_event_id=event.id, event_name=event_name)
        return event

    async def update_event_status(
        self,
        event_id: int,
        processed: bool,
        processing_error: str | None = None,
    ) -> WebhookEvent:
        """Record the outcome of a handling attempt.

        ``processed`` means the attempt concluded; failures also carry
        ``processing_error``. A successful retry clears a previous error.
        """
        async with self.session_factory() as session:
            event = await session.get(WebhookEvent, event_id)
            if event is None:
                raise InvalidInputError(f"Webhook event not found: {event_id}")

            event.processed = processed
            event.processing_error = processing_error[:MAX_ERROR_LENGTH] if processing_error else None
            await session.commit()
            await session.refresh(event)

        if processing_error:
            logger.warning(
                "webhook_event_failed",
                webhook_event_id=event_id,
                event_name=event.event_name,
                processing_error=processing_error,
            )
        else:
            logger.info("webhook_event_processed", webhook_event_id=event_id, event_name=event.event_name)
        return event

    async def get_event(self, event_id: int) -> WebhookEvent | None:
        async with self.session_factory() as session:
            return await session.get(WebhookEvent, event_id)

    async def list_unprocessed(self, limit: int = 100) -> list[WebhookEvent]:
        """Events whose handling never concluded (e.g. process crash), oldest first."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(WebhookEvent)
                .where(WebhookEvent.processed.is_(False))
                .order_by(WebhookEvent.created_at.asc(), WebhookEvent.id.asc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def list_failed(self, limit: int = 100) -> list[WebhookEvent]:
        """Concluded events that recorded an error, newest first."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(WebhookEvent)
                .where(WebhookEvent.processing_error.is_not(None))
                .order_by(WebhookEvent.created_at.desc(), WebhookEvent.id.desc())
                .limit(limit)
            )
            return list(result.scalars().all())
