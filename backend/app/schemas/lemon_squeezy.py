"""Pydantic schemas for Lemon Squeezy payloads.

Two families live here:
- Webhook envelope: ``{meta, data}`` where ``data`` is a tagged union on ``type``
  (``subscriptions`` | ``orders`` | ``subscription-invoices``). Envelope and resource
  wrappers forbid unknown keys; attribute objects tolerate provider-added keys but check
  required keys and primitive types strictly.
- Read-API resources (variants, products, subscriptions) returned by the JSON:API client.
"""

from datetime import datetime
from enum import StrEnum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictInt, StrictStr


class EventName(StrEnum):
    """Webhook event names the router knows how to handle."""

    SUBSCRIPTION_CREATED = "subscription_created"
    SUBSCRIPTION_UPDATED = "subscription_updated"
    SUBSCRIPTION_CANCELLED = "subscription_cancelled"
    SUBSCRIPTION_EXPIRED = "subscription_expired"
    SUBSCRIPTION_RESUMED = "subscription_resumed"
    SUBSCRIPTION_PAUSED = "subscription_paused"
    ORDER_CREATED = "order_created"
    SUBSCRIPTION_PAYMENT_SUCCESS = "subscription_payment_success"
    SUBSCRIPTION_PAYMENT_FAILED = "subscription_payment_failed"
    SUBSCRIPTION_PAYMENT_RECOVERED = "subscription_payment_recovered"
    SUBSCRIPTION_REFUNDED = "subscription_refunded"
    ORDER_REFUNDED = "order_refunded"
    UNHANDLED = "unhandled"


SubscriptionStatus = Literal[
    "on_trial", "active", "paused", "past_due", "unpaid", "cancelled", "expired",
]
OrderStatus = Literal["pending", "failed", "paid", "refunded", "partial_refund", "fraudulent"]


# ==================== WEBHOOK ENVELOPE ====================


class CustomData(BaseModel):
    """Checkout ``custom`` payload echoed back by the provider."""

    model_config = ConfigDict(extra="allow")

    user_id: StrictStr | None = None


class WebhookMeta(BaseModel):
    model_config = ConfigDict(extra="forbid")

    event_name: StrictStr = Field(..., min_length=1, max_length=100, pattern=r"^[a-z][a-z0-9_]*$")
    webhook_id: StrictStr | None = None
    test_mode: StrictBool | None = None
    custom_data: CustomData | None = None


class FirstSubscriptionItem(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: StrictInt
    subscription_id: StrictInt
    price_id: StrictInt
    quantity: StrictInt = 1
    is_usage_based: StrictBool = False


class SubscriptionAttributes(BaseModel):
    model_config = ConfigDict(extra="allow")

    store_id: StrictInt | None = None
    customer_id: StrictInt
    order_id: StrictInt
    order_item_id: StrictInt | None = None
    product_id: StrictInt | None = None
    variant_id: StrictInt | None = None
    product_name: StrictStr
    variant_name: StrictStr
    user_name: StrictStr
    user_email: StrictStr
    status: SubscriptionStatus
    status_formatted: StrictStr
    pause: dict[str, Any] | None = None
    cancelled: StrictBool | None = None
    trial_ends_at: datetime | None = None
    renews_at: datetime | None = None
    ends_at: datetime | None = None
    first_subscription_item: FirstSubscriptionItem | None = None
    urls: dict[str, StrictStr | None] | None = None
    is_subscription: StrictBool | None = None
    interval: StrictStr | None = None
    interval_count: StrictInt | None = None
    created_at: datetime
    updated_at: datetime


class OrderAttributes(BaseModel):
    model_config = ConfigDict(extra="allow")

    store_id: StrictInt | None = None
    customer_id: StrictInt
    identifier: StrictStr | None = None
    order_number: StrictInt | None = None
    user_name: StrictStr
    user_email: StrictStr
    currency: StrictStr
    status: OrderStatus
    status_formatted: StrictStr | None = None
    total: StrictInt
    created_at: datetime
    updated_at: datetime


class InvoiceAttributes(BaseModel):
    """Subscription invoice attributes. Payment events only log, so little is required."""

    model_config = ConfigDict(extra="allow")

    store_id: StrictInt | None = None
    subscription_id: StrictInt
    customer_id: StrictInt
    user_name: StrictStr | None = None
    user_email: StrictStr | None = None
    billing_reason: StrictStr | None = None
    status: StrictStr
    status_formatted: StrictStr | None = None
    currency: StrictStr | None = None
    total: StrictInt | None = None
    created_at: datetime
    updated_at: datetime


class SubscriptionData(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: Literal["subscriptions"]
    id: StrictStr
    attributes: SubscriptionAttributes
    relationships: dict[str, Any] | None = None
    links: dict[str, Any] | None = None


class OrderData(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: Literal["orders"]
    id: StrictStr
    attributes: OrderAttributes
    relationships: dict[str, Any] | None = None
    links: dict[str, Any] | None = None


class InvoiceData(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: Literal["subscription-invoices"]
    id: StrictStr
    attributes: InvoiceAttributes
    relationships: dict[str, Any] | None = None
    links: dict[str, Any] | None = None


WebhookData = Annotated[Union[SubscriptionData, OrderData, InvoiceData], Field(discriminator="type")]


class LemonSqueezyWebhookEvent(BaseModel):
    model_config = ConfigDict(extra="forbid")

    meta: WebhookMeta
    data: WebhookData

    @property
    def user_id(self) -> str | None:
        custom = self.meta.custom_data
        return custom.user_id if custom else None

    @property
    def customer_id(self) -> int:
        return self.data.attributes.customer_id


# ==================== READ API RESOURCES ====================


class VariantAttributes(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: StrictStr
    price: StrictInt
    currency: StrictStr | None = None
    interval: Literal["day", "week", "month", "year"] | None = None
    interval_count: StrictInt | None = None
    is_subscription: StrictBool
    product_id: StrictInt
    description: StrictStr | None = None
    status: Literal["draft", "published", "pending"]


class Variant(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: Literal["variants"]
    id: StrictStr
    attributes: VariantAttributes
    relationships: dict[str, Any] | None = None

    def product_ref_id(self) -> str | None:
        product = (self.relationships or {}).get("product") or {}
        data = product.get("data")
        return data.get("id") if isinstance(data, dict) else None


class ProductAttributes(BaseModel):
    model_config = ConfigDict(extra="allow")

    store_id: StrictInt | None = None
    name: StrictStr
    description: StrictStr | None = None
    status: Literal["draft", "published"]
    slug: StrictStr
    thumb_url: StrictStr | None = None


class Product(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: Literal["products"]
    id: StrictStr
    attributes: ProductAttributes
    relationships: dict[str, Any] | None = None

    def variant_ids(self) -> list[str]:
        variants = (self.relationships or {}).get("variants") or {}
        return [ref["id"] for ref in variants.get("data") or [] if isinstance(ref, dict) and "id" in ref]
