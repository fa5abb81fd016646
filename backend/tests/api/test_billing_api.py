"""Tests for the billing API: checkout, customer portal, current subscription, pricing."""

import json
from datetime import timedelta

import httpx
import pytest

from app.core.config import Settings
from app.integrations.lemon_squeezy import LemonSqueezyClient, get_lemon_squeezy_client

pytestmark = pytest.mark.integration


def override_client(app_handler):
    """Dependency override factory for get_lemon_squeezy_client."""
    client = LemonSqueezyClient(api_key="ls_test_key", transport=httpx.MockTransport(app_handler))

    def _override():
        return client

    return _override


@pytest.fixture
def fastapi_app(client):
    from app.main import app

    return app


class TestAuth:
    async def test_missing_token_rejected(self, client):
        response = await client.get("/api/billing/subscription")

        assert response.status_code == 401
        assert "debug_id" in response.json()

    async def test_expired_token_rejected(self, client, make_user, make_jwt):
        user = await make_user()
        token = make_jwt(user.id, expires_in=timedelta(seconds=-10))

        response = await client.get("/api/billing/subscription", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401
        assert response.json()["detail"] == "Token expired"

    async def test_garbage_token_rejected(self, client):
        response = await client.get("/api/billing/subscription", headers={"Authorization": "Bearer not.a.jwt"})
        assert response.status_code == 401


class TestCheckout:
    async def test_returns_checkout_url(self, client, fastapi_app, make_user, auth_headers):
        user = await make_user()
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["body"] = json.loads(request.content)
            return httpx.Response(
                201,
                json={"data": {"type": "checkouts", "id": "chk_1", "attributes": {"url": "https://pay.example/chk_1"}}},
            )

        fastapi_app.dependency_overrides[get_lemon_squeezy_client] = override_client(handler)

        response = await client.post("/api/billing/checkout", json={"variantId": 20}, headers=auth_headers(user.id))

        assert response.status_code == 200
        assert response.json() == {"url": "https://pay.example/chk_1"}
        attributes = captured["body"]["data"]["attributes"]
        assert attributes["checkout_data"]["custom"] == {"user_id": user.id}
        assert attributes["checkout_data"]["email"] == "ada@example.com"
        assert attributes["product_options"]["redirect_url"].endswith("/dashboard?checkout_success=true")

    async def test_invalid_variant_is_bad_request(self, client, fastapi_app, make_user, auth_headers):
        user = await make_user()
        fastapi_app.dependency_overrides[get_lemon_squeezy_client] = override_client(None)

        response = await client.post("/api/billing/checkout", json={"variant_id": 0}, headers=auth_headers(user.id))

        assert response.status_code == 400
        assert response.json()["code"] == "invalid-input"

    async def test_provider_error_is_bad_gateway(self, client, fastapi_app, make_user, auth_headers):
        user = await make_user()

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(422, json={"errors": [{"detail": "Variant not found"}]})

        fastapi_app.dependency_overrides[get_lemon_squeezy_client] = override_client(handler)

        response = await client.post("/api/billing/checkout", json={"variantId": 20}, headers=auth_headers(user.id))

        assert response.status_code == 502
        assert response.json()["code"] == "api-error"

    async def test_unknown_user_not_found(self, client, fastapi_app, auth_headers):
        fastapi_app.dependency_overrides[get_lemon_squeezy_client] = override_client(None)

        response = await client.post("/api/billing/checkout", json={"variantId": 20}, headers=auth_headers("ghost"))

        assert response.status_code == 404

    async def test_missing_configuration_hidden(self, client, make_user, auth_headers, monkeypatch):
        user = await make_user()
        monkeypatch.setattr(
            "app.integrations.lemon_squeezy.get_settings",
            lambda: Settings(lemon_squeezy_api_key=""),
        )

        response = await client.post("/api/billing/checkout", json={"variantId": 20}, headers=auth_headers(user.id))

        assert response.status_code == 500
        body = response.json()
        assert body["code"] == "configuration"
        assert body["detail"] == "Service is misconfigured"


class TestPortal:
    async def test_default_portal_for_linked_user(self, client, fastapi_app, make_user, auth_headers):
        user = await make_user(customer_id="555")
        fastapi_app.dependency_overrides[get_lemon_squeezy_client] = override_client(None)

        response = await client.post("/api/billing/portal", headers=auth_headers(user.id))

        assert response.status_code == 200
        assert response.json() == {"url": "https://skillielts.lemonsqueezy.com/billing?customer_id=555"}

    async def test_unlinked_user_rejected(self, client, fastapi_app, make_user, auth_headers):
        user = await make_user()
        fastapi_app.dependency_overrides[get_lemon_squeezy_client] = override_client(None)

        response = await client.post("/api/billing/portal", headers=auth_headers(user.id))

        assert response.status_code == 400
        body = response.json()
        assert body["code"] == "customer-portal-error"
        assert body["detail"] == "No LemonSqueezy customer ID found"


class TestCurrentSubscription:
    async def test_after_subscription_created(self, client, post_webhook, make_user, subscription_event, auth_headers):
        user = await make_user()
        await post_webhook(subscription_event("subscription_created", user_id=user.id))

        response = await client.get("/api/billing/subscription", headers=auth_headers(user.id))

        assert response.status_code == 200
        body = response.json()
        assert body["role"] == "PREMIUM"
        assert body["subscriptionStatus"] == "active"
        assert body["planName"] == "IELTS Premium"
        assert body["subscription"]["lemonSqueezyId"] == "1001"
        assert body["subscription"]["isPaused"] is False
        assert body["subscription"]["plan"]["variantId"] == 20

    async def test_without_subscription(self, client, make_user, auth_headers):
        user = await make_user()

        response = await client.get("/api/billing/subscription", headers=auth_headers(user.id))

        assert response.status_code == 200
        assert response.json() == {"role": "USER", "subscriptionStatus": None, "planName": None, "subscription": None}


class TestPricing:
    async def test_lists_store_prices(self, client, fastapi_app):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/products"):
                data = [{
                    "type": "products",
                    "id": "10",
                    "attributes": {"store_id": 1234, "name": "IELTS", "slug": "ielts", "status": "published"},
                }]
            else:
                data = [{
                    "type": "variants",
                    "id": "20",
                    "attributes": {
                        "product_id": 10,
                        "name": "Monthly",
                        "price": 1999,
                        "is_subscription": True,
                        "interval": "month",
                        "interval_count": 1,
                        "status": "published",
                    },
                }]
            return httpx.Response(200, json={"data": data})

        fastapi_app.dependency_overrides[get_lemon_squeezy_client] = override_client(handler)

        response = await client.get("/api/pricing")

        assert response.status_code == 200
        body = response.json()
        assert "updatedAt" in body
        assert [p["id"] for p in body["prices"]] == ["20"]
        assert body["prices"][0]["intervalCount"] == 1

    async def test_upstream_failure_reported(self, client, fastapi_app):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, text="boom")

        fastapi_app.dependency_overrides[get_lemon_squeezy_client] = override_client(handler)

        response = await client.get("/api/pricing")

        assert response.status_code == 500
        assert response.json() == {"error": "Failed to fetch pricing data"}
