"""Lemon Squeezy Integration: read/write access to the provider's JSON:API.

Every public call returns an ``ApiResult``. A populated ``error`` means the call
failed and ``data`` must not be interpreted; callers short-circuit on it.
Transport failures (connect errors, timeouts) are retried; HTTP error statuses are not.
"""

from dataclasses import dataclass
from typing import Any, Generic, TypeVar

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from app.core.config import Settings, get_settings
from app.core.exceptions import ConfigurationError, UpstreamApiError

logger = structlog.get_logger(__name__)

T = TypeVar("T")

JSONAPI_CONTENT_TYPE = "application/vnd.api+json"
PAGE_SIZE = 100
MAX_PAGES = 50


@dataclass
class ApiResult(Generic[T]):
    data: T | None = None
    error: UpstreamApiError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def require_lemon_squeezy_config(settings: Settings | None = None) -> Settings:
    """Raise ConfigurationError naming every missing Lemon Squeezy setting."""
    settings = settings or get_settings()
    required = {
        "LEMON_SQUEEZY_API_KEY": settings.lemon_squeezy_api_key,
        "LEMON_SQUEEZY_STORE_ID": settings.lemon_squeezy_store_id,
        "LEMON_SQUEEZY_WEBHOOK_SECRET": settings.lemon_squeezy_webhook_secret,
    }
    missing = [name for name, value in required.items() if not value]
    if missing:
        logger.error("lemon_squeezy_config_missing", missing=missing)
        raise ConfigurationError(f"Missing required Lemon Squeezy environment variables: {', '.join(missing)}")
    return settings


class LemonSqueezyClient:
    """Client for the Lemon Squeezy API."""

    def __init__(
        self,
        api_key: str,
        api_url: str = "https://api.lemonsqueezy.com/v1",
        timeout: float = 10.0,
        max_attempts: int = 3,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the client.

        Args:
            api_key: Lemon Squeezy API key (Bearer token)
            api_url: API base URL, without trailing slash
            timeout: Per-request timeout in seconds
            max_attempts: Attempts per request on transport failures
            transport: Optional httpx transport (tests pass a MockTransport)
        """
        self.api_key = api_key
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.max_attempts = max(1, max_attempts)
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "LemonSqueezyClient":
        settings = require_lemon_squeezy_config(settings)
        return cls(
            api_key=settings.lemon_squeezy_api_key,
            api_url=settings.lemon_squeezy_api_url,
            timeout=settings.lemon_squeezy_timeout_seconds,
        )

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Accept": JSONAPI_CONTENT_TYPE,
            "Content-Type": JSONAPI_CONTENT_TYPE,
        }

    async def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Make an authenticated request and return the decoded JSON document.

        Raises:
            UpstreamApiError: non-2xx status, undecodable body, or retries exhausted
        """
        url = f"{self.api_url}{path}"
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            try:
                async for attempt in AsyncRetrying(
                    retry=retry_if_exception_type(httpx.TransportError),
                    stop=stop_after_attempt(self.max_attempts),
                    wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
                    reraise=True,
                ):
                    with attempt:
                        response = await client.request(
                            method, url, headers=self._headers(), params=params, json=json,
                        )
            except httpx.TransportError as exc:
                raise UpstreamApiError(f"{method} {path} failed: {exc}") from exc

        if response.status_code >= 400:
            raise UpstreamApiError(f"{method} {path} returned {response.status_code}: {_error_detail(response)}")

        try:
            document = response.json()
        except ValueError as exc:
            raise UpstreamApiError(f"{method} {path} returned a non-JSON body", code="api-response") from exc
        if not isinstance(document, dict):
            raise UpstreamApiError(f"{method} {path} returned an unexpected document", code="api-response")
        return document

    async def _call(self, operation: str, coro) -> ApiResult:
        try:
            return ApiResult(data=await coro)
        except UpstreamApiError as exc:
            logger.warning("lemon_squeezy_api_error", operation=operation, error=exc.message)
            return ApiResult(error=exc)

    async def _list(self, path: str, params: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        """Collect every page of a JSON:API collection."""
        resources: list[dict[str, Any]] = []
        page = 1
        while page <= MAX_PAGES:
            query = {**(params or {}), "page[number]": page, "page[size]": PAGE_SIZE}
            document = await self._request("GET", path, params=query)
            data = document.get("data")
            if not isinstance(data, list):
                raise UpstreamApiError(f"GET {path} returned no data array", code="api-response")
            resources.extend(data)

            page_meta = (document.get("meta") or {}).get("page") or {}
            if page >= page_meta.get("lastPage", page):
                break
            page += 1
        return resources

    # ── Public API ──────────────────────────────────────────────────

    async def list_variants(self, product_id: str | None = None) -> ApiResult[list[dict[str, Any]]]:
        params = {"filter[product_id]": product_id} if product_id else None
        return await self._call("list_variants", self._list("/variants", params))

    async def list_products(self, store_id: str | None = None) -> ApiResult[list[dict[str, Any]]]:
        params = {"filter[store_id]": store_id} if store_id else None
        return await self._call("list_products", self._list("/products", params))

    async def get_subscription(self, subscription_id: str) -> ApiResult[dict[str, Any]]:
        async def fetch() -> dict[str, Any]:
            document = await self._request("GET", f"/subscriptions/{subscription_id}")
            data = document.get("data")
            if not isinstance(data, dict):
                raise UpstreamApiError("GET /subscriptions returned no resource", code="api-response")
            return data

        return await self._call("get_subscription", fetch())

    async def create_checkout(
        self,
        store_id: str,
        variant_id: int,
        custom_data: dict[str, str] | None = None,
        email: str | None = None,
        redirect_url: str | None = None,
    ) -> ApiResult[dict[str, Any]]:
        """Create a hosted checkout. ``data.attributes.url`` is the checkout link."""
        checkout_data: dict[str, Any] = {"custom": custom_data or {}}
        if email:
            checkout_data["email"] = email
        attributes: dict[str, Any] = {"checkout_data": checkout_data}
        if redirect_url:
            attributes["product_options"] = {"redirect_url": redirect_url}

        payload = {
            "data": {
                "type": "checkouts",
                "attributes": attributes,
                "relationships": {
                    "store": {"data": {"type": "stores", "id": str(store_id)}},
                    "variant": {"data": {"type": "variants", "id": str(variant_id)}},
                },
            }
        }

        async def create() -> dict[str, Any]:
            document = await self._request("POST", "/checkouts", json=payload)
            data = document.get("data")
            if not isinstance(data, dict):
                raise UpstreamApiError("POST /checkouts returned no resource", code="api-response")
            return data

        return await self._call("create_checkout", create())


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    errors = body.get("errors") if isinstance(body, dict) else None
    errors = errors or []
    if errors and isinstance(errors[0], dict):
        return str(errors[0].get("detail") or errors[0].get("title") or "")
    return ""


def get_lemon_squeezy_client() -> LemonSqueezyClient:
    """FastAPI dependency; raises ConfigurationError when settings are incomplete."""
    return LemonSqueezyClient.from_settings()
