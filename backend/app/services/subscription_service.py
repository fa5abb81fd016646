"""Subscription reconciliation: Plan / Subscription / User state from webhook events.

``SubscriptionReconciler`` works inside the dispatcher's transaction and only
flushes; the caller commits or rolls back the whole event.
``SubscriptionService`` serves read paths for the billing API.
"""

from dataclasses import dataclass
from datetime import datetime, timezone

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from app.core.exceptions import UserNotFoundError
from app.db.models.plan import Plan
from app.db.models.subscription import Subscription
from app.db.models.user import User
from app.domain.roles import role_for_status
from app.schemas.lemon_squeezy import LemonSqueezyWebhookEvent, SubscriptionAttributes
from app.services.customer_link_service import find_user_by_customer_id

logger = structlog.get_logger(__name__)

LIFETIME_INTERVAL = "lifetime"


@dataclass(frozen=True)
class RoleChange:
    user_id: str
    previous_role: str | None
    role: str
    status: str


def as_utc(value: datetime | None) -> datetime | None:
    """Normalize a datetime to aware UTC. SQLite hands back naive values."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def is_stale(subscription: Subscription, incoming_updated_at: datetime | None) -> bool:
    """True when the stored row reflects a newer provider update than the event."""
    stored = as_utc(subscription.provider_updated_at)
    incoming = as_utc(incoming_updated_at)
    if stored is None or incoming is None:
        return False
    return incoming < stored


def _plan_fields(attrs: SubscriptionAttributes) -> dict:
    item = attrs.first_subscription_item
    is_subscription = True if attrs.is_subscription is None else attrs.is_subscription
    return {
        "product_id": attrs.product_id,
        "product_name": attrs.product_name,
        "name": attrs.product_name or attrs.variant_name,
        "description": "",
        "price": str(item.price_id),
        "is_usage_based": item.is_usage_based,
        "is_one_time_payment": not is_subscription,
        "interval": (attrs.interval or "") if is_subscription else LIFETIME_INTERVAL,
        "interval_count": attrs.interval_count or 0,
        "trial_interval": "",
        "trial_interval_count": 0,
        "sort": 0,
    }


class SubscriptionReconciler:
    """Applies subscription lifecycle events to local state within one session."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.role_changes: list[RoleChange] = []

    async def _get_subscription(self, lemon_squeezy_id: str) -> Subscription | None:
        result = await self.session.execute(
            select(Subscription).where(Subscription.lemon_squeezy_id == lemon_squeezy_id)
        )
        return result.scalar_one_or_none()

    async def reconcile(self, event: LemonSqueezyWebhookEvent, user_id: str) -> Subscription | None:
        """Upsert Plan and Subscription from a subscription event, then update the user.

        Returns None without touching anything when product_id, variant_id or
        first_subscription_item is absent; some event subtypes omit them.

        Raises:
            UserNotFoundError: ``user_id`` does not exist
        """
        lemon_squeezy_id = event.data.id
        attrs = event.data.attributes
        item = attrs.first_subscription_item

        if attrs.product_id is None or attrs.variant_id is None or item is None:
            logger.warning(
                "subscription_data_incomplete",
                user_id=user_id,
                subscription_id=lemon_squeezy_id,
                has_product_id=attrs.product_id is not None,
                has_variant_id=attrs.variant_id is not None,
                has_first_item=item is not None,
            )
            return None

        user = await self.session.get(User, user_id)
        if user is None:
            raise UserNotFoundError(user_id)

        existing = await self._get_subscription(lemon_squeezy_id)
        if existing is not None and is_stale(existing, attrs.updated_at):
            logger.info(
                "stale_subscription_event_ignored",
                subscription_id=lemon_squeezy_id,
                event_updated_at=attrs.updated_at.isoformat(),
                stored_updated_at=as_utc(existing.provider_updated_at).isoformat(),
            )
            return existing

        plan = await self.upsert_plan(attrs)
        subscription = await self.upsert_subscription(existing, lemon_squeezy_id, attrs, user_id, plan)
        await self.update_user_subscription(user, attrs.status, plan_name=plan.name)

        logger.info(
            "subscription_reconciled",
            subscription_id=lemon_squeezy_id,
            local_subscription_id=subscription.id,
            plan_id=plan.id,
            user_id=user_id,
        )
        return subscription

    async def upsert_plan(self, attrs: SubscriptionAttributes) -> Plan:
        """Insert the plan for ``variant_id`` or overwrite every mutable field."""
        fields = _plan_fields(attrs)
        result = await self.session.execute(select(Plan).where(Plan.variant_id == attrs.variant_id))
        plan = result.scalar_one_or_none()

        if plan is None:
            plan = Plan(variant_id=attrs.variant_id, **fields)
            self.session.add(plan)
        else:
            for key, value in fields.items():
                setattr(plan, key, value)

        await self.session.flush()
        logger.info("plan_saved", plan_id=plan.id, variant_id=attrs.variant_id)
        return plan

    async def upsert_subscription(
        self,
        existing: Subscription | None,
        lemon_squeezy_id: str,
        attrs: SubscriptionAttributes,
        user_id: str,
        plan: Plan,
    ) -> Subscription:
        """Create the subscription, or update its status / timing / price fields.

        user_id and plan_id are set on create only.
        """
        item = attrs.first_subscription_item
        mutable = {
            "status": attrs.status,
            "status_formatted": attrs.status_formatted,
            "renews_at": attrs.renews_at,
            "ends_at": attrs.ends_at,
            "trial_ends_at": attrs.trial_ends_at,
            "price": str(item.price_id),
            "is_paused": attrs.pause is not None,
            "lemon_squeezy_variant_id": str(attrs.variant_id),
            "lemon_squeezy_order_id": str(attrs.order_id),
            "provider_updated_at": attrs.updated_at,
        }

        if existing is None:
            subscription = Subscription(
                lemon_squeezy_id=lemon_squeezy_id,
                order_id=attrs.order_id,
                name=attrs.user_name,
                email=attrs.user_email,
                is_usage_based=item.is_usage_based,
                subscription_item_id=item.id,
                user_id=user_id,
                plan_id=plan.id,
                **mutable,
            )
            self.session.add(subscription)
        else:
            subscription = existing
            for key, value in mutable.items():
                setattr(subscription, key, value)

        await self.session.flush()
        logger.info(
            "subscription_saved",
            local_subscription_id=subscription.id,
            subscription_id=lemon_squeezy_id,
            created=existing is None,
        )
        return subscription

    async def apply_status_change(self, event: LemonSqueezyWebhookEvent) -> bool:
        """Propagate a lifecycle status to the existing subscription and its user.

        The subscription's owner is updated when the row exists; the customer-id
        lookup only resolves the user for subscriptions not stored yet. Never creates
        a subscription row. Returns False when the event was skipped.
        """
        if event.data.type != "subscriptions":
            logger.error(
                "status_change_not_a_subscription",
                event_name=event.meta.event_name,
                data_type=event.data.type,
            )
            return False

        lemon_squeezy_id = event.data.id
        attrs = event.data.attributes
        customer_id = str(attrs.customer_id)

        existing = await self._get_subscription(lemon_squeezy_id)
        if existing is not None:
            user = await self.session.get(User, existing.user_id)
        else:
            user = await find_user_by_customer_id(self.session, customer_id)

        if user is None:
            logger.warning("status_change_user_not_found", subscription_id=lemon_squeezy_id, customer_id=customer_id)
            return False

        if existing is None:
            logger.warning("no_subscription_found", subscription_id=lemon_squeezy_id, user_id=user.id)
        elif is_stale(existing, attrs.updated_at):
            logger.info(
                "stale_subscription_event_ignored",
                subscription_id=lemon_squeezy_id,
                event_updated_at=attrs.updated_at.isoformat(),
            )
            return False
        else:
            existing.status = attrs.status
            existing.status_formatted = attrs.status_formatted
            if attrs.variant_id is not None:
                existing.lemon_squeezy_variant_id = str(attrs.variant_id)
            existing.provider_updated_at = attrs.updated_at
            await self.session.flush()
            logger.info("subscription_status_updated", local_subscription_id=existing.id, status=attrs.status)

        await self.update_user_subscription(user, attrs.status)
        logger.info("subscription_change_processed", subscription_id=lemon_squeezy_id, user_id=user.id)
        return True

    async def update_user_subscription(
        self,
        user: User,
        status: str,
        plan_name: str | None = None,
    ) -> User:
        """Store the latest status on the user and derive the role from it."""
        user.subscription_status = status
        if plan_name is not None:
            user.plan_name = plan_name

        previous_role = user.role
        role = role_for_status(status, previous_role)
        if role != previous_role:
            user.role = role
            self.role_changes.append(RoleChange(user.id, previous_role, role, status))
            logger.info("user_role_changed", user_id=user.id, previous_role=previous_role, role=role, status=status)

        await self.session.flush()
        return user


class SubscriptionService:
    """Read access to subscriptions for the billing API."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def get_user_subscription(self, user_id: str) -> Subscription | None:
        """The user's most recent subscription, with its plan loaded."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(Subscription)
                .options(selectinload(Subscription.plan))
                .where(Subscription.user_id == user_id)
                .order_by(Subscription.created_at.desc(), Subscription.id.desc())
                .limit(1)
            )
            subscription = result.scalar_one_or_none()

        logger.info(
            "user_subscription_retrieved",
            user_id=user_id,
            local_subscription_id=subscription.id if subscription else None,
        )
        return subscription
