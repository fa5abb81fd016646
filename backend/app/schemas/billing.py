"""Pydantic schemas for the billing API (pricing, checkout, portal, subscription)."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Serializes with camelCase keys, accepts either case on input."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class PriceInfo(CamelModel):
    id: str
    product_id: str | None = None
    name: str
    description: str = ""
    price: int = 0  # smallest currency unit
    currency: str = "USD"
    interval: str | None = None  # "once" for lifetime variants
    interval_count: int = 1
    is_subscription: bool


class ProductInfo(CamelModel):
    id: str
    name: str
    description: str = ""
    status: str = "draft"
    variants: list[str] = Field(default_factory=list)


class PricingResponse(CamelModel):
    prices: list[PriceInfo]
    updated_at: datetime


class CheckoutRequest(CamelModel):
    variant_id: int


class CheckoutResponse(BaseModel):
    url: str


class PortalResponse(BaseModel):
    url: str


class PlanSummary(CamelModel):
    id: int
    name: str
    variant_id: int
    price: str
    interval: str | None = None
    interval_count: int | None = None
    is_one_time_payment: bool


class SubscriptionSummary(CamelModel):
    id: int
    lemon_squeezy_id: str
    status: str
    status_formatted: str
    renews_at: datetime | None = None
    ends_at: datetime | None = None
    trial_ends_at: datetime | None = None
    is_paused: bool
    plan: PlanSummary | None = None


class CurrentSubscriptionResponse(CamelModel):
    role: str
    subscription_status: str | None = None
    plan_name: str | None = None
    subscription: SubscriptionSummary | None = None


class WebhookEventSummary(CamelModel):
    id: int
    event_name: str
    processed: bool
    processing_error: str | None = None
    created_at: datetime


class WebhookEventList(CamelModel):
    events: list[WebhookEventSummary]


class ReplayResponse(CamelModel):
    event: WebhookEventSummary
    success: bool
