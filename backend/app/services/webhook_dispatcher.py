"""Webhook routing and processing.

``WebhookDispatcher.dispatch`` applies one validated event inside a single database
transaction: a pre-dispatch step for every subscription-ish event, then the handler
registered for the classified event name. ``process`` wraps dispatch with the audit
trail: save the row, dispatch, record the outcome. ``replay`` re-runs a stored event.
"""

import json
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import Settings, get_settings
from app.core.exceptions import InvalidInputError, WebhookInvalidError
from app.db.models.webhook_event import WebhookEvent
from app.domain.webhook_parser import ParsedWebhook, parse_webhook
from app.metrics.cloudwatch import emit_business_event
from app.schemas.lemon_squeezy import EventName
from app.services.customer_link_service import CustomerLinker, find_user_by_customer_id
from app.services.subscription_service import SubscriptionReconciler
from app.services.webhook_event_service import WebhookEventService

logger = structlog.get_logger(__name__)


@dataclass
class _DispatchContext:
    session: AsyncSession
    reconciler: SubscriptionReconciler
    linker: CustomerLinker


@dataclass(frozen=True)
class WebhookOutcome:
    webhook_event: WebhookEvent
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


Handler = Callable[[_DispatchContext, ParsedWebhook], Awaitable[None]]


class WebhookDispatcher:
    """Routes validated webhook events to their reconciliation handlers."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings | None = None,
    ):
        self.session_factory = session_factory
        self.settings = settings or get_settings()
        self.events = WebhookEventService(session_factory)

        lifecycle = self._handle_lifecycle
        self.handlers: dict[EventName, Handler] = {
            EventName.SUBSCRIPTION_CREATED: self._handle_subscription_created,
            EventName.SUBSCRIPTION_UPDATED: lifecycle,
            EventName.SUBSCRIPTION_CANCELLED: lifecycle,
            EventName.SUBSCRIPTION_EXPIRED: lifecycle,
            EventName.SUBSCRIPTION_RESUMED: lifecycle,
            EventName.SUBSCRIPTION_PAUSED: lifecycle,
            EventName.ORDER_CREATED: self._handle_order_created,
            EventName.SUBSCRIPTION_PAYMENT_SUCCESS: self._handle_payment_success,
            EventName.SUBSCRIPTION_PAYMENT_FAILED: self._handle_payment_failed,
            EventName.SUBSCRIPTION_PAYMENT_RECOVERED: self._handle_payment_success,
            EventName.SUBSCRIPTION_REFUNDED: self._handle_refunded,
            EventName.ORDER_REFUNDED: self._handle_refunded,
            EventName.UNHANDLED: self._handle_unhandled,
        }

    # ── Audit-wrapped entry points ──────────────────────────────────

    async def process(self, parsed: ParsedWebhook) -> WebhookOutcome:
        """Persist the audit row, dispatch, then record success or the error message."""
        webhook_event = await self.events.save_event(parsed.raw_event_name, parsed.body)
        return await self._run(webhook_event, parsed)

    async def replay(self, event_id: int) -> WebhookOutcome:
        """Re-validate a stored body and dispatch it again, recording on the same row."""
        webhook_event = await self.events.get_event(event_id)
        if webhook_event is None:
            raise InvalidInputError(f"Webhook event not found: {event_id}")

        logger.info("webhook_event_replay", webhook_event_id=event_id, event_name=webhook_event.event_name)
        try:
            parsed = parse_webhook(json.dumps(webhook_event.body))
        except WebhookInvalidError as exc:
            updated = await self.events.update_event_status(event_id, True, exc.message)
            return WebhookOutcome(updated, exc.message)
        return await self._run(webhook_event, parsed)

    async def _run(self, webhook_event: WebhookEvent, parsed: ParsedWebhook) -> WebhookOutcome:
        try:
            await self.dispatch(parsed)
        except Exception as exc:
            error = str(exc) or type(exc).__name__
            logger.error(
                "webhook_processing_failed",
                webhook_event_id=webhook_event.id,
                event_name=parsed.raw_event_name,
                data_id=parsed.event.data.id,
                error=error,
                error_type=type(exc).__name__,
                exc_info=True,
            )
            updated = await self.events.update_event_status(webhook_event.id, True, error)
            return WebhookOutcome(updated, error)

        updated = await self.events.update_event_status(webhook_event.id, True)
        return WebhookOutcome(updated)

    # ── Dispatch ────────────────────────────────────────────────────

    async def dispatch(self, parsed: ParsedWebhook) -> None:
        """Apply one event atomically. Handler errors propagate after rollback."""
        logger.info(
            "webhook_dispatch",
            event_name=parsed.raw_event_name,
            classified_as=parsed.event_name.value,
            data_id=parsed.event.data.id,
        )

        async with self.session_factory() as session:
            async with session.begin():
                ctx = _DispatchContext(
                    session=session,
                    reconciler=SubscriptionReconciler(session),
                    linker=CustomerLinker(session, overwrite=self.settings.lemon_squeezy_customer_id_overwrite),
                )
                await self._pre_dispatch(ctx, parsed)
                await self.handlers[parsed.event_name](ctx, parsed)

        for change in ctx.reconciler.role_changes:
            metric = "subscription_upgraded" if change.role == "PREMIUM" else "subscription_downgraded"
            await emit_business_event(metric, user_id=change.user_id)

    async def _pre_dispatch(self, ctx: _DispatchContext, parsed: ParsedWebhook) -> None:
        """Customer linking and full reconciliation shared by every subscription event."""
        name = parsed.raw_event_name
        if "subscription" not in name:
            return

        event = parsed.event
        user_id = event.user_id
        customer_id = event.customer_id
        if customer_id and user_id:
            await ctx.linker.link(user_id, customer_id, "subscription_event")

        if name.startswith("subscription_payment_"):
            # Payment events usually carry no product / variant data
            logger.info(
                "subscription_payment_event",
                event_name=name,
                subscription_id=getattr(event.data.attributes, "subscription_id", None),
                invoice_id=event.data.id,
            )
            return

        if not user_id:
            return
        if event.data.type != "subscriptions":
            logger.warning("subscription_event_without_subscription_data", event_name=name, data_type=event.data.type)
            return
        await ctx.reconciler.reconcile(event, user_id)

    # ── Handlers ────────────────────────────────────────────────────

    async def _handle_subscription_created(self, ctx: _DispatchContext, parsed: ParsedWebhook) -> None:
        event = parsed.event
        if event.customer_id and event.user_id:
            await ctx.linker.link(event.user_id, event.customer_id, "subscription")
        logger.info("handling_subscription_created", subscription_id=event.data.id)
        await ctx.reconciler.apply_status_change(event)

    async def _handle_lifecycle(self, ctx: _DispatchContext, parsed: ParsedWebhook) -> None:
        logger.info("handling_subscription_lifecycle", event_name=parsed.raw_event_name, subscription_id=parsed.event.data.id)
        await ctx.reconciler.apply_status_change(parsed.event)

    async def _handle_order_created(self, ctx: _DispatchContext, parsed: ParsedWebhook) -> None:
        event = parsed.event
        if event.customer_id and event.user_id:
            await ctx.linker.link(event.user_id, event.customer_id, "order")

        logger.info("handling_order_created", order_id=event.data.id)
        if event.data.type != "orders":
            logger.error("order_event_not_an_order", data_type=event.data.type)
            return

        attrs = event.data.attributes
        user = await find_user_by_customer_id(ctx.session, str(attrs.customer_id))
        if user is None:
            return
        # Receipts and feature activation hook in here
        logger.info(
            "order_processed",
            order_id=event.data.id,
            user_id=user.id,
            total=attrs.total,
            currency=attrs.currency,
            status=attrs.status,
        )

    async def _handle_payment_success(self, ctx: _DispatchContext, parsed: ParsedWebhook) -> None:
        logger.info(
            "subscription_payment_succeeded",
            event_name=parsed.raw_event_name,
            subscription_id=_subscription_ref(parsed),
        )

    async def _handle_payment_failed(self, ctx: _DispatchContext, parsed: ParsedWebhook) -> None:
        logger.warning("subscription_payment_failed", subscription_id=_subscription_ref(parsed))

    async def _handle_refunded(self, ctx: _DispatchContext, parsed: ParsedWebhook) -> None:
        logger.info("payment_refunded", event_name=parsed.raw_event_name, data_id=parsed.event.data.id)

    async def _handle_unhandled(self, ctx: _DispatchContext, parsed: ParsedWebhook) -> None:
        logger.warning("unhandled_webhook_event", event_name=parsed.raw_event_name)


def _subscription_ref(parsed: ParsedWebhook) -> str:
    ref = getattr(parsed.event.data.attributes, "subscription_id", None)
    return str(ref) if ref is not None else parsed.event.data.id
