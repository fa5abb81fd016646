"""Webhook payload parsing and event classification.

Pure functions: nothing here touches the database. The parser turns untrusted
bytes into a ``ParsedWebhook`` or raises ``WebhookInvalidError``; no partially
validated object ever escapes.
"""

import json
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError

from app.core.exceptions import WebhookInvalidError
from app.schemas.lemon_squeezy import EventName, LemonSqueezyWebhookEvent

_KNOWN_EVENT_NAMES = frozenset(e.value for e in EventName if e is not EventName.UNHANDLED)

INVOICE_EVENT_PREFIX = "subscription_payment_"


@dataclass(frozen=True)
class ParsedWebhook:
    """A validated webhook.

    ``body`` is the original JSON document, kept verbatim for the audit row.
    """

    event: LemonSqueezyWebhookEvent
    event_name: EventName
    body: dict[str, Any]

    @property
    def raw_event_name(self) -> str:
        return self.event.meta.event_name


def classify_event(event_name: str) -> EventName:
    """Map a provider event name onto the router's enumeration.

    Names the router does not know are classified UNHANDLED rather than rejected,
    so a new provider event type never fails the webhook.
    """
    if event_name in _KNOWN_EVENT_NAMES:
        return EventName(event_name)
    return EventName.UNHANDLED


def parse_webhook(raw_body: bytes | str) -> ParsedWebhook:
    """Validate a raw webhook body.

    Raises:
        WebhookInvalidError: body is not JSON, lacks ``meta.event_name`` or ``data``,
            or ``data`` matches neither the subscription nor the order shape. Invoice
            data is accepted for ``subscription_payment_*`` events only.
    """
    try:
        event = LemonSqueezyWebhookEvent.model_validate_json(raw_body)
    except ValidationError as exc:
        locations = sorted({".".join(str(p) for p in err["loc"]) for err in exc.errors()})
        raise WebhookInvalidError(
            f"Invalid webhook payload ({exc.error_count()} errors at {', '.join(locations[:5])})"
        ) from exc

    if event.data.type == "subscription-invoices" and not event.meta.event_name.startswith(INVOICE_EVENT_PREFIX):
        raise WebhookInvalidError(f"Invalid webhook payload (invoice data for {event.meta.event_name})")

    # Validation succeeded, so the body is well-formed JSON
    body = json.loads(raw_body)
    return ParsedWebhook(
        event=event,
        event_name=classify_event(event.meta.event_name),
        body=body,
    )
