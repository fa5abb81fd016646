"""Lemon Squeezy webhook endpoint.

Flow: configuration check -> signature -> schema validation -> audit row ->
dispatch in one transaction -> audit outcome. Responses use ``{"error": ...}``
bodies so the provider's delivery log shows the reason.
"""

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from app.core.config import get_settings
from app.core.exceptions import SignatureInvalidError, WebhookInvalidError
from app.db.base import get_session_factory
from app.domain.webhook_parser import parse_webhook
from app.domain.webhook_signature import SIGNATURE_HEADER, verify_signature
from app.services.webhook_dispatcher import WebhookDispatcher

logger = structlog.get_logger(__name__)

router = APIRouter()

PROCESSING_FAILED = "Webhook processing failed"


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def require_valid_signature(raw_body: bytes, signature: str | None, secret: str) -> None:
    """Raise SignatureInvalidError unless ``signature`` matches ``raw_body``."""
    if not signature:
        raise SignatureInvalidError("Missing signature")
    if not verify_signature(raw_body, signature, secret):
        raise SignatureInvalidError("Invalid signature")


@router.post("/webhooks/lemon-squeezy")
async def lemon_squeezy_webhook(request: Request):
    """Receive a Lemon Squeezy webhook delivery."""
    settings = get_settings()
    if not settings.lemon_squeezy_webhook_secret:
        logger.error("lemon_squeezy_webhook_secret_missing")
        return _error(500, "Webhook Error: Missing configuration")

    raw_body = await request.body()
    try:
        require_valid_signature(
            raw_body, request.headers.get(SIGNATURE_HEADER), settings.lemon_squeezy_webhook_secret
        )
    except SignatureInvalidError as exc:
        logger.error("webhook_signature_rejected", reason=exc.message)
        return _error(401, exc.message)

    try:
        parsed = parse_webhook(raw_body)
    except WebhookInvalidError as exc:
        logger.error("webhook_payload_invalid", error=exc.message, body_size=len(raw_body))
        return _error(500, PROCESSING_FAILED)

    logger.info(
        "webhook_received",
        event_name=parsed.raw_event_name,
        webhook_id=parsed.event.meta.webhook_id,
        data_id=parsed.event.data.id,
    )

    try:
        outcome = await WebhookDispatcher(get_session_factory(), settings).process(parsed)
    except Exception as exc:
        # Audit row could not be written or updated
        logger.error("webhook_request_failed", error=str(exc), error_type=type(exc).__name__, exc_info=True)
        return _error(500, PROCESSING_FAILED)

    if not outcome.ok:
        return _error(500, PROCESSING_FAILED)
    return {"success": True}
