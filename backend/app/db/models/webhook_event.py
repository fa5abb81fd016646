"""WebhookEvent model: audit trail of every accepted webhook delivery."""

from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, Column, DateTime, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB

from app.db.base import Base


class WebhookEvent(Base):
    """One row per inbound call that passed validation, duplicates included.

    ``processed`` flips to True once an attempt concluded, whatever its outcome;
    failures carry ``processing_error``.
    """

    __tablename__ = "webhook_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_name = Column(String(100), nullable=False, index=True)
    body = Column(JSON().with_variant(JSONB(), "postgresql"), nullable=False)
    processed = Column(Boolean, nullable=False, default=False, index=True)
    processing_error = Column(Text, nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
