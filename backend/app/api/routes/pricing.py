"""Public pricing listing."""

from datetime import UTC, datetime

import structlog
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from app.core.config import get_settings
from app.core.exceptions import BillingError
from app.integrations.lemon_squeezy import LemonSqueezyClient, get_lemon_squeezy_client
from app.schemas.billing import PricingResponse
from app.services.pricing_service import PricingService

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.get("/pricing", response_model=PricingResponse)
async def get_pricing(client: LemonSqueezyClient = Depends(get_lemon_squeezy_client)):
    """List the store's prices."""
    service = PricingService(client, get_settings().lemon_squeezy_store_id)
    try:
        prices = await service.get_prices()
    except BillingError as exc:
        logger.error("pricing_fetch_failed", error=exc.message, code=exc.code)
        return JSONResponse(status_code=500, content={"error": "Failed to fetch pricing data"})

    return PricingResponse(prices=prices, updated_at=datetime.now(UTC))
