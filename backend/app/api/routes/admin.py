"""Admin API routes: webhook audit trail inspection and replay."""

from typing import Literal

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query

from app.core.auth import AuthUser, require_admin
from app.db.base import get_session_factory
from app.schemas.billing import ReplayResponse, WebhookEventList, WebhookEventSummary
from app.services.webhook_dispatcher import WebhookDispatcher
from app.services.webhook_event_service import WebhookEventService

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/webhook-events", response_model=WebhookEventList)
async def list_webhook_events(
    state: Literal["pending", "failed"] = Query("failed"),
    limit: int = Query(100, ge=1, le=500),
    _: AuthUser = Depends(require_admin),
):
    """List unprocessed (oldest first) or failed (newest first) webhook events."""
    service = WebhookEventService(get_session_factory())
    if state == "pending":
        events = await service.list_unprocessed(limit=limit)
    else:
        events = await service.list_failed(limit=limit)
    return WebhookEventList(events=[WebhookEventSummary.model_validate(e) for e in events])


@router.post("/webhook-events/{event_id}/replay", response_model=ReplayResponse)
async def replay_webhook_event(event_id: int, admin: AuthUser = Depends(require_admin)):
    """Re-run a stored webhook event and record the new outcome on the same row."""
    dispatcher = WebhookDispatcher(get_session_factory())
    if await dispatcher.events.get_event(event_id) is None:
        raise HTTPException(status_code=404, detail="Webhook event not found")

    logger.info("webhook_replay_requested", webhook_event_id=event_id, admin_user_id=admin.user_id)
    outcome = await dispatcher.replay(event_id)
    return ReplayResponse(
        event=WebhookEventSummary.model_validate(outcome.webhook_event),
        success=outcome.ok,
    )
