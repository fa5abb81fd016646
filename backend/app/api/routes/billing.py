"""Billing routes: Lemon Squeezy checkout, customer portal, and current subscription."""

import structlog
from fastapi import APIRouter, Depends, HTTPException

from app.core.auth import AuthUser, require_auth
from app.core.config import get_settings
from app.db.base import get_session_factory
from app.db.models.user import User
from app.integrations.lemon_squeezy import LemonSqueezyClient, get_lemon_squeezy_client
from app.schemas.billing import (
    CheckoutRequest,
    CheckoutResponse,
    CurrentSubscriptionResponse,
    PortalResponse,
    SubscriptionSummary,
)
from app.services.checkout_service import CheckoutService
from app.services.portal_service import PortalService
from app.services.subscription_service import SubscriptionService

logger = structlog.get_logger(__name__)

router = APIRouter()


async def _load_user(user_id: str) -> User:
    factory = get_session_factory()
    async with factory() as session:
        user = await session.get(User, user_id)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    return user


@router.post("/billing/checkout", response_model=CheckoutResponse)
async def create_checkout(
    body: CheckoutRequest,
    user: AuthUser = Depends(require_auth),
    client: LemonSqueezyClient = Depends(get_lemon_squeezy_client),
):
    """Create a hosted checkout for a variant and return its URL."""
    db_user = await _load_user(user.user_id)
    settings = get_settings()
    service = CheckoutService(
        client,
        store_id=settings.lemon_squeezy_store_id,
        redirect_url=f"{settings.frontend_url}/dashboard?checkout_success=true",
    )
    url = await service.create_checkout(db_user.id, body.variant_id, email=db_user.email)
    return CheckoutResponse(url=url)


@router.post("/billing/portal", response_model=PortalResponse)
async def create_portal_link(
    user: AuthUser = Depends(require_auth),
    client: LemonSqueezyClient = Depends(get_lemon_squeezy_client),
):
    """Return the customer portal URL for the current user."""
    settings = get_settings()
    service = PortalService(get_session_factory(), client, settings.lemon_squeezy_store_url)
    url = await service.get_customer_portal_url(user.user_id)
    return PortalResponse(url=url)


@router.get("/billing/subscription", response_model=CurrentSubscriptionResponse)
async def get_current_subscription(user: AuthUser = Depends(require_auth)):
    """Return the user's role, status, and most recent subscription with its plan."""
    db_user = await _load_user(user.user_id)
    subscription = await SubscriptionService(get_session_factory()).get_user_subscription(user.user_id)

    return CurrentSubscriptionResponse(
        role=db_user.role,
        subscription_status=db_user.subscription_status,
        plan_name=db_user.plan_name,
        subscription=SubscriptionSummary.model_validate(subscription) if subscription else None,
    )
