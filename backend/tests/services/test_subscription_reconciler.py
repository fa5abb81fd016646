"""Tests for SubscriptionReconciler: plan/subscription upserts, ordering guard, role changes."""

import pytest
from sqlalchemy import func, select

from app.core.exceptions import UserNotFoundError
from app.db.models.plan import Plan
from app.db.models.subscription import Subscription
from app.db.models.user import User
from app.schemas.lemon_squeezy import LemonSqueezyWebhookEvent
from app.services.subscription_service import RoleChange, SubscriptionReconciler, SubscriptionService

pytestmark = pytest.mark.integration


@pytest.fixture
def make_event(subscription_event):
    def _make(event_name: str = "subscription_created", **kwargs) -> LemonSqueezyWebhookEvent:
        return LemonSqueezyWebhookEvent.model_validate(subscription_event(event_name, **kwargs))

    return _make


async def _count(session, model) -> int:
    return (await session.execute(select(func.count()).select_from(model))).scalar_one()


class TestReconcile:
    async def test_creates_plan_and_subscription_and_promotes_user(self, db_session, make_user, make_event):
        user = await make_user()
        reconciler = SubscriptionReconciler(db_session)

        subscription = await reconciler.reconcile(make_event(user_id=user.id), user.id)

        assert subscription is not None
        assert subscription.lemon_squeezy_id == "1001"
        assert subscription.status == "active"
        assert subscription.user_id == user.id
        assert subscription.price == "3001"
        assert subscription.order_id == 9001
        assert subscription.subscription_item_id == 4242

        plan = (await db_session.execute(select(Plan))).scalar_one()
        assert plan.variant_id == 20
        assert plan.product_id == 10
        assert plan.name == "IELTS Premium"
        assert plan.is_one_time_payment is False
        assert subscription.plan_id == plan.id

        db_user = await db_session.get(User, user.id)
        assert db_user.role == "PREMIUM"
        assert db_user.subscription_status == "active"
        assert db_user.plan_name == "IELTS Premium"
        assert reconciler.role_changes == [RoleChange(user.id, "USER", "PREMIUM", "active")]

    async def test_plan_price_fully_overwritten(self, db_session, make_user, make_event):
        user = await make_user()
        reconciler = SubscriptionReconciler(db_session)

        await reconciler.reconcile(make_event(user_id=user.id, subscription_id="1001", price_id=3001), user.id)
        await reconciler.reconcile(make_event(user_id=user.id, subscription_id="1002", price_id=4002), user.id)

        plans = (await db_session.execute(select(Plan))).scalars().all()
        assert len(plans) == 1
        assert plans[0].price == "4002"
        assert await _count(db_session, Subscription) == 2

    async def test_repeat_delivery_updates_single_row(self, db_session, make_user, make_event):
        user = await make_user()
        reconciler = SubscriptionReconciler(db_session)

        await reconciler.reconcile(make_event(user_id=user.id), user.id)
        await reconciler.reconcile(
            make_event(
                "subscription_updated",
                user_id=user.id,
                status="past_due",
                price_id=5005,
                updated_at="2026-10-02T12:00:00.000000Z",
            ),
            user.id,
        )

        subscription = (await db_session.execute(select(Subscription))).scalar_one()
        assert subscription.status == "past_due"
        assert subscription.status_formatted == "Past Due"
        assert subscription.price == "5005"

        # past_due keeps the privileged role
        db_user = await db_session.get(User, user.id)
        assert db_user.role == "PREMIUM"
        assert db_user.subscription_status == "past_due"

    async def test_older_event_ignored(self, db_session, make_user, make_event):
        user = await make_user()
        reconciler = SubscriptionReconciler(db_session)

        await reconciler.reconcile(make_event(user_id=user.id, updated_at="2026-10-05T12:00:00Z"), user.id)
        result = await reconciler.reconcile(
            make_event(
                "subscription_cancelled",
                user_id=user.id,
                status="cancelled",
                updated_at="2026-10-04T12:00:00Z",
            ),
            user.id,
        )

        assert result.status == "active"
        db_user = await db_session.get(User, user.id)
        assert db_user.role == "PREMIUM"
        assert db_user.subscription_status == "active"

    async def test_equal_timestamp_applies(self, db_session, make_user, make_event):
        user = await make_user()
        reconciler = SubscriptionReconciler(db_session)

        await reconciler.reconcile(make_event(user_id=user.id), user.id)
        result = await reconciler.reconcile(make_event("subscription_paused", user_id=user.id, status="paused"), user.id)

        assert result.status == "paused"

    async def test_one_time_purchase_stored_as_lifetime_plan(self, db_session, make_user, subscription_event):
        user = await make_user()
        payload = subscription_event(user_id=user.id)
        payload["data"]["attributes"].update(is_subscription=False, interval="year", interval_count=1)

        await SubscriptionReconciler(db_session).reconcile(LemonSqueezyWebhookEvent.model_validate(payload), user.id)

        plan = (await db_session.execute(select(Plan))).scalar_one()
        assert plan.is_one_time_payment is True
        assert plan.interval == "lifetime"

    async def test_missing_is_subscription_treated_as_recurring(self, db_session, make_user, subscription_event):
        user = await make_user()
        payload = subscription_event(user_id=user.id)
        payload["data"]["attributes"].update(interval="month", interval_count=1)
        assert "is_subscription" not in payload["data"]["attributes"]

        await SubscriptionReconciler(db_session).reconcile(LemonSqueezyWebhookEvent.model_validate(payload), user.id)

        plan = (await db_session.execute(select(Plan))).scalar_one()
        assert plan.is_one_time_payment is False
        assert plan.interval == "month"
        assert plan.interval_count == 1

    @pytest.mark.parametrize(
        "kwargs",
        [{"first_item": False}, {"product_id": None}, {"variant_id": None}],
    )
    async def test_incomplete_data_skipped(self, db_session, make_user, make_event, kwargs):
        user = await make_user()
        reconciler = SubscriptionReconciler(db_session)

        assert await reconciler.reconcile(make_event(user_id=user.id, **kwargs), user.id) is None

        assert await _count(db_session, Plan) == 0
        assert await _count(db_session, Subscription) == 0
        db_user = await db_session.get(User, user.id)
        assert db_user.role == "USER"
        assert reconciler.role_changes == []

    async def test_unknown_user_raises(self, db_session, make_event):
        reconciler = SubscriptionReconciler(db_session)

        with pytest.raises(UserNotFoundError) as exc_info:
            await reconciler.reconcile(make_event(user_id="ghost"), "ghost")

        assert exc_info.value.user_id == "ghost"
        assert exc_info.value.code == "user-not-found"


class TestApplyStatusChange:
    async def test_updates_existing_subscription_and_user(self, db_session, make_user, make_event):
        user = await make_user(customer_id="555")
        reconciler = SubscriptionReconciler(db_session)
        await reconciler.reconcile(make_event(user_id=user.id), user.id)

        applied = await reconciler.apply_status_change(
            make_event("subscription_cancelled", status="cancelled", updated_at="2026-10-03T12:00:00Z")
        )

        assert applied is True
        subscription = (await db_session.execute(select(Subscription))).scalar_one()
        assert subscription.status == "cancelled"
        assert subscription.status_formatted == "Cancelled"
        db_user = await db_session.get(User, user.id)
        assert db_user.role == "USER"
        assert [c.role for c in reconciler.role_changes] == ["PREMIUM", "USER"]

    async def test_missing_subscription_still_updates_user(self, db_session, make_user, make_event):
        user = await make_user(customer_id="555")
        reconciler = SubscriptionReconciler(db_session)

        applied = await reconciler.apply_status_change(make_event("subscription_updated", status="on_trial"))

        assert applied is True
        assert await _count(db_session, Subscription) == 0
        db_user = await db_session.get(User, user.id)
        assert db_user.role == "PREMIUM"
        assert db_user.subscription_status == "on_trial"

    async def test_existing_subscription_owner_updated_not_customer_holder(self, db_session, make_user, make_event):
        holder = await make_user(email="a@example.com", role="PREMIUM", customer_id="555")
        owner = await make_user(email="b@example.com")
        reconciler = SubscriptionReconciler(db_session)
        await reconciler.reconcile(make_event(user_id=owner.id), owner.id)

        applied = await reconciler.apply_status_change(
            make_event("subscription_cancelled", status="cancelled", updated_at="2026-10-03T12:00:00Z")
        )

        assert applied is True
        db_owner = await db_session.get(User, owner.id)
        assert db_owner.role == "USER"
        assert db_owner.subscription_status == "cancelled"
        db_holder = await db_session.get(User, holder.id)
        assert db_holder.role == "PREMIUM"
        assert db_holder.subscription_status is None

    async def test_unknown_customer_skipped(self, db_session, make_event):
        reconciler = SubscriptionReconciler(db_session)
        assert await reconciler.apply_status_change(make_event("subscription_updated")) is False

    async def test_order_data_skipped(self, db_session, make_user, order_event):
        await make_user(customer_id="555")
        reconciler = SubscriptionReconciler(db_session)
        event = LemonSqueezyWebhookEvent.model_validate(order_event("subscription_updated"))

        assert await reconciler.apply_status_change(event) is False

    async def test_stale_status_change_skipped(self, db_session, make_user, make_event):
        user = await make_user(customer_id="555")
        reconciler = SubscriptionReconciler(db_session)
        await reconciler.reconcile(make_event(user_id=user.id, updated_at="2026-10-05T12:00:00Z"), user.id)

        applied = await reconciler.apply_status_change(
            make_event("subscription_expired", status="expired", updated_at="2026-10-01T00:00:00Z")
        )

        assert applied is False
        db_user = await db_session.get(User, user.id)
        assert db_user.role == "PREMIUM"


class TestUpdateUserSubscription:
    async def test_neutral_status_keeps_role(self, db_session, make_user):
        user = await make_user(role="PREMIUM")
        reconciler = SubscriptionReconciler(db_session)
        db_user = await db_session.get(User, user.id)

        await reconciler.update_user_subscription(db_user, "paused")

        assert db_user.role == "PREMIUM"
        assert db_user.subscription_status == "paused"
        assert reconciler.role_changes == []


class TestSubscriptionService:
    async def test_returns_latest_subscription_with_plan(self, session_factory, make_user, make_event):
        user = await make_user()
        async with session_factory() as session:
            async with session.begin():
                reconciler = SubscriptionReconciler(session)
                await reconciler.reconcile(make_event(user_id=user.id, subscription_id="1001"), user.id)
                await reconciler.reconcile(make_event(user_id=user.id, subscription_id="1002"), user.id)

        subscription = await SubscriptionService(session_factory).get_user_subscription(user.id)

        assert subscription.lemon_squeezy_id == "1002"
        assert subscription.plan.variant_id == 20

    async def test_none_without_subscription(self, session_factory, make_user):
        user = await make_user()
        assert await SubscriptionService(session_factory).get_user_subscription(user.id) is None
