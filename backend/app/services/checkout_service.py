"""Hosted checkout creation."""

import structlog

from app.core.exceptions import ConfigurationError, InvalidInputError, UpstreamApiError
from app.integrations.lemon_squeezy import LemonSqueezyClient

logger = structlog.get_logger(__name__)


class CheckoutService:
    """Creates Lemon Squeezy checkouts tagged with the local user id.

    The user id travels as ``custom.user_id`` and comes back in every webhook
    for the resulting order and subscription.
    """

    def __init__(self, client: LemonSqueezyClient, store_id: str, redirect_url: str | None = None):
        self.client = client
        self.store_id = store_id
        self.redirect_url = redirect_url

    async def create_checkout(self, user_id: str, variant_id: int, email: str | None = None) -> str:
        """Return the checkout URL.

        Raises:
            InvalidInputError: variant_id is not a positive integer
            ConfigurationError: no store id configured
            UpstreamApiError: the provider rejected the checkout
        """
        if isinstance(variant_id, bool) or not isinstance(variant_id, int) or variant_id <= 0:
            raise InvalidInputError(f"Invalid variant ID: {variant_id}")
        if not self.store_id:
            raise ConfigurationError("Missing Lemon Squeezy store ID")

        result = await self.client.create_checkout(
            store_id=self.store_id,
            variant_id=variant_id,
            custom_data={"user_id": user_id},
            email=email,
            redirect_url=self.redirect_url,
        )
        if result.error:
            raise result.error

        url = (result.data.get("attributes") or {}).get("url")
        if not url:
            raise UpstreamApiError("Checkout created without a URL", code="api-response")

        logger.info("checkout_created", user_id=user_id, variant_id=variant_id, checkout_id=result.data.get("id"))
        return url
