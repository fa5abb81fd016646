"""PricingService: store variants and products from the Lemon Squeezy read API."""

from typing import Any

import structlog
from pydantic import ValidationError

from app.integrations.lemon_squeezy import LemonSqueezyClient
from app.schemas.billing import PriceInfo, ProductInfo
from app.schemas.lemon_squeezy import Product, Variant

logger = structlog.get_logger(__name__)


def _to_price(variant: Variant) -> PriceInfo:
    attrs = variant.attributes
    # Lifetime deal: one-time purchase that still carries an interval
    is_lifetime = attrs.is_subscription is False and bool(attrs.interval)
    return PriceInfo(
        id=variant.id,
        product_id=variant.product_ref_id() or str(attrs.product_id),
        name=attrs.name or "Unknown Variant",
        description=attrs.description or "",
        price=attrs.price or 0,
        currency=attrs.currency or "USD",
        interval="once" if is_lifetime else attrs.interval,
        interval_count=attrs.interval_count or 1,
        is_subscription=attrs.is_subscription,
    )


def _product_id(raw: Any) -> int | None:
    if not isinstance(raw, dict):
        return None
    try:
        return int((raw.get("attributes") or {}).get("product_id"))
    except (TypeError, ValueError):
        return None


class PricingService:
    """Lists the configured store's prices and products.

    Invalid records are skipped with a warning; an upstream error is raised.
    """

    def __init__(self, client: LemonSqueezyClient, store_id: str):
        self.client = client
        self.store_id = str(store_id)

    async def _store_product_ids(self) -> set[int]:
        result = await self.client.list_products(store_id=self.store_id)
        if result.error:
            logger.warning("store_products_unavailable", store_id=self.store_id, error=result.error.message)
            return set()

        ids: set[int] = set()
        for raw in result.data or []:
            if not isinstance(raw, dict):
                continue
            store_id = (raw.get("attributes") or {}).get("store_id")
            if str(store_id) == self.store_id:
                try:
                    ids.add(int(raw.get("id")))
                except (TypeError, ValueError):
                    continue
        return ids

    async def get_prices(self) -> list[PriceInfo]:
        """Validated variants belonging to the store's products.

        Raises:
            UpstreamApiError: the variants listing failed
        """
        result = await self.client.list_variants()
        if result.error:
            raise result.error

        raw_variants = result.data or []
        store_products = await self._store_product_ids()
        in_store = [v for v in raw_variants if _product_id(v) in store_products]
        logger.info(
            "variants_filtered_to_store",
            store_id=self.store_id,
            total=len(raw_variants),
            in_store=len(in_store),
        )

        prices: list[PriceInfo] = []
        for raw in in_store:
            try:
                variant = Variant.model_validate(raw)
            except ValidationError as exc:
                logger.warning("invalid_variant_skipped", variant_id=raw.get("id"), error_count=exc.error_count())
                continue
            prices.append(_to_price(variant))

        logger.info("variants_validated", valid=len(prices), total=len(raw_variants))
        return prices

    async def get_products(self) -> list[ProductInfo]:
        """Validated products of the store.

        Raises:
            UpstreamApiError: the products listing failed
        """
        result = await self.client.list_products(store_id=self.store_id)
        if result.error:
            raise result.error

        products: list[ProductInfo] = []
        raw_products = result.data or []
        for raw in raw_products:
            try:
                product = Product.model_validate(raw)
            except ValidationError as exc:
                logger.warning(
                    "invalid_product_skipped",
                    product_id=raw.get("id") if isinstance(raw, dict) else None,
                    error_count=exc.error_count(),
                )
                continue
            products.append(
                ProductInfo(
                    id=product.id,
                    name=product.attributes.name or "Unknown Product",
                    description=product.attributes.description or "",
                    status=product.attributes.status,
                    variants=product.variant_ids(),
                )
            )

        logger.info("products_validated", valid=len(products), total=len(raw_products))
        return products
