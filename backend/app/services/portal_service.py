"""Customer portal URL resolution."""

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.exceptions import CustomerPortalError, UserNotFoundError
from app.db.models.subscription import Subscription
from app.db.models.user import User
from app.integrations.lemon_squeezy import LemonSqueezyClient

logger = structlog.get_logger(__name__)


def default_portal_url(store_url: str, customer_id: str) -> str:
    return f"{store_url.rstrip('/')}/billing?customer_id={customer_id}"


class PortalService:
    """Resolves the Lemon Squeezy customer portal for a user.

    The signed portal URL comes from the provider's subscription record; when
    there is no subscription or the provider call fails, the store's generic
    billing page for the customer is used instead.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        client: LemonSqueezyClient,
        store_url: str,
    ):
        self.session_factory = session_factory
        self.client = client
        self.store_url = store_url

    async def get_customer_portal_url(self, user_id: str) -> str:
        """
        Raises:
            UserNotFoundError: unknown user
            CustomerPortalError: the user was never linked to a customer id
        """
        async with self.session_factory() as session:
            user = await session.get(User, user_id)
            if user is None:
                raise UserNotFoundError(user_id)
            if not user.lemon_squeezy_customer_id:
                raise CustomerPortalError("No LemonSqueezy customer ID found")

            result = await session.execute(
                select(Subscription)
                .where(Subscription.user_id == user_id)
                .order_by(Subscription.created_at.desc(), Subscription.id.desc())
                .limit(1)
            )
            subscription = result.scalar_one_or_none()
            customer_id = user.lemon_squeezy_customer_id

        if subscription is not None and subscription.lemon_squeezy_id:
            api_result = await self.client.get_subscription(subscription.lemon_squeezy_id)
            if api_result.error:
                logger.warning(
                    "customer_portal_lookup_failed",
                    user_id=user_id,
                    subscription_id=subscription.lemon_squeezy_id,
                    error=api_result.error.message,
                )
            else:
                urls = (api_result.data.get("attributes") or {}).get("urls") or {}
                portal_url = urls.get("customer_portal")
                if portal_url:
                    logger.info("customer_portal_url_from_api", user_id=user_id)
                    return portal_url

        logger.info("customer_portal_url_default", user_id=user_id)
        return default_portal_url(self.store_url, customer_id)
