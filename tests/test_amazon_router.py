"""Test the Amazon channel API endpoints."""

from datetime import timedelta
from typing import Any, Callable, Iterator
from unittest.mock import patch
from urllib.parse import parse_qs, urlsplit

import httpx
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import func, select
from sqlalchemy.orm import sessionmaker

from conftest import NOW, FakeClock, FakeVendor
from seller_backend.api.errors import add_exception_handlers
from seller_backend.core.auth import TokenData, create_access_token, get_current_user
from seller_backend.core.models import ChannelConnection, Listing, Notification, Order
from seller_backend.core.settings import AmazonSettings, AppSettings
from seller_backend.core.store import SellerStore
from seller_backend.plugins.amazon import create_amazon_router
from seller_backend.spapi.gateway import SpApiGateway
from seller_backend.spapi.lwa import LwaClient

TOKEN_PATH = "/auth/o2/token"
SELLER_PATH = "/sellers/v1/marketplaceParticipations"
ORDERS_PATH = "/orders/v0/orders"
PARTICIPATIONS = [
    {
        "marketplace": {"id": "ATVPDKIKX0DER", "countryCode": "US", "name": "Amazon.com"},
        "participation": {"isParticipating": True},
    }
]


def _count(session_factory: sessionmaker, model: type) -> int:
    with session_factory() as session:
        return session.execute(select(func.count()).select_from(model)).scalar_one()


@pytest.fixture
def vendor() -> FakeVendor:
    return FakeVendor()


@pytest.fixture
def lwa_vendor() -> FakeVendor:
    return FakeVendor()


@pytest.fixture
def build_client(
    amazon_settings: AmazonSettings,
    app_settings: AppSettings,
    store: SellerStore,
    vendor: FakeVendor,
    lwa_vendor: FakeVendor,
    clock: FakeClock,
) -> Iterator[Callable[..., TestClient]]:
    """Build a test client around the Amazon router; keyword args override settings."""

    with patch("seller_backend.core.auth.get_app_settings", return_value=app_settings):

        def _build(**overrides: Any) -> TestClient:
            settings = amazon_settings.model_copy(update=overrides)
            app = FastAPI()
            add_exception_handlers(app)
            app.include_router(
                create_amazon_router(
                    settings,
                    app_settings,
                    store,
                    LwaClient(settings, transport=lwa_vendor.transport),
                    SpApiGateway(settings, transport=vendor.transport),
                    clock=clock,
                ),
                prefix="/api/amazon",
            )
            app.dependency_overrides[get_current_user] = lambda: TokenData(user_id="user-1")
            return TestClient(app)

        yield _build


@pytest.fixture
def client(build_client: Callable[..., TestClient]) -> TestClient:
    return build_client()


def _query(location: str) -> dict[str, str]:
    return {key: values[0] for key, values in parse_qs(urlsplit(location).query).items()}


def test_auth_redirects_to_consent_page(
    client: TestClient, amazon_settings: AmazonSettings
) -> None:
    response = client.get("/api/amazon/auth", follow_redirects=False)

    assert response.status_code == 307
    location = response.headers["location"]
    assert location.startswith(amazon_settings.consent_url + "?")
    assert _query(location) == {
        "application_id": amazon_settings.app_id,
        "state": "user-1",
        "redirect_uri": "https://dashboard.test/api/amazon/callback",
        "version": "beta",
    }


def test_auth_without_app_id_is_a_configuration_error(
    build_client: Callable[..., TestClient],
) -> None:
    response = build_client(app_id="").get("/api/amazon/auth", follow_redirects=False)

    assert response.status_code == 500
    assert response.json() == {"error": "Amazon SP App ID not configured"}


@pytest.mark.parametrize(
    "params, error",
    [
        ({"state": "user-1"}, "missing_code"),
        ({"spapi_oauth_code": "code-1"}, "missing_state"),
    ],
)
def test_callback_rejects_incomplete_redirects(
    client: TestClient, params: dict[str, str], error: str
) -> None:
    response = client.get("/api/amazon/callback", params=params, follow_redirects=False)

    assert response.status_code == 307
    assert response.headers["location"] == f"https://dashboard.test/settings?error={error}"


def test_callback_rejects_state_of_another_user(
    client: TestClient, lwa_vendor: FakeVendor
) -> None:
    token = create_access_token("user-2")

    response = client.get(
        "/api/amazon/callback",
        params={"spapi_oauth_code": "code-1", "state": "user-1"},
        headers={"Authorization": f"Bearer {token}"},
        follow_redirects=False,
    )

    assert response.headers["location"] == "https://dashboard.test/settings?error=auth_mismatch"
    assert lwa_vendor.requests == []


def test_callback_saves_connection(
    client: TestClient,
    session_factory: sessionmaker,
    vendor: FakeVendor,
    lwa_vendor: FakeVendor,
) -> None:
    lwa_vendor.routes[TOKEN_PATH] = {
        "access_token": "at-new",
        "refresh_token": "rt-new",
        "expires_in": 3600,
    }
    vendor.routes[SELLER_PATH] = {"payload": PARTICIPATIONS}
    token = create_access_token("user-1")

    response = client.get(
        "/api/amazon/callback",
        params={"spapi_oauth_code": "code-1", "state": "user-1", "selling_partner_id": "SELLER9"},
        headers={"Authorization": f"Bearer {token}"},
        follow_redirects=False,
    )

    assert response.headers["location"] == "https://dashboard.test/dashboard?amazon=connected"
    assert vendor.requests[0].headers["x-amz-access-token"] == "at-new"

    with session_factory() as session:
        row = session.execute(select(ChannelConnection)).scalar_one()
        assert row.user_id == "user-1"
        assert row.seller_id == "SELLER9"
        assert row.store_name == "Amazon US (SELLER9)"
        assert row.refresh_token == "rt-new"
        assert row.status == "connected"
        assert row.credentials["marketplace_participations"][0]["marketplace_id"] == "ATVPDKIKX0DER"
    assert _count(session_factory, Notification) == 1


def test_callback_exchange_failure_redirects_with_message(
    client: TestClient, lwa_vendor: FakeVendor, session_factory: sessionmaker
) -> None:
    lwa_vendor.routes[TOKEN_PATH] = (400, {"error": "invalid_grant"})

    response = client.get(
        "/api/amazon/callback",
        params={"spapi_oauth_code": "code-1", "state": "user-1"},
        follow_redirects=False,
    )

    location = response.headers["location"]
    assert location.startswith("https://dashboard.test/settings?error=")
    assert "LWA token exchange failed (400)" in _query(location)["error"]


def test_callback_with_invalid_bearer_is_a_mismatch(
    client: TestClient, lwa_vendor: FakeVendor
) -> None:
    response = client.get(
        "/api/amazon/callback",
        params={"spapi_oauth_code": "code-1", "state": "user-1"},
        headers={"Authorization": "Bearer not-a-jwt"},
        follow_redirects=False,
    )

    assert response.headers["location"] == "https://dashboard.test/settings?error=auth_mismatch"
    assert lwa_vendor.requests == []


def test_callback_without_refresh_token_does_not_connect(
    client: TestClient, lwa_vendor: FakeVendor, session_factory: sessionmaker
) -> None:
    lwa_vendor.routes[TOKEN_PATH] = {"access_token": "at-new", "expires_in": 3600}

    response = client.get(
        "/api/amazon/callback",
        params={"spapi_oauth_code": "code-1", "state": "user-1"},
        follow_redirects=False,
    )

    assert (
        response.headers["location"]
        == "https://dashboard.test/settings?error=missing_refresh_token"
    )
    assert _count(session_factory, ChannelConnection) == 0


def test_unreadable_refresh_response_reads_as_not_connected(
    client: TestClient,
    lwa_vendor: FakeVendor,
    seed_connection: Callable[..., None],
) -> None:
    seed_connection(token_expires_at=NOW - timedelta(minutes=1))
    lwa_vendor.routes[TOKEN_PATH] = lambda request: httpx.Response(200, text="<html>gateway</html>")

    assert client.get("/api/amazon/dashboard").json() == {"connected": False}
    response = client.get("/api/amazon/orders")
    assert response.status_code == 403
    assert response.json() == {"detail": "Amazon not connected"}


def test_status_when_not_connected(client: TestClient) -> None:
    response = client.get("/api/amazon/status")
    assert response.status_code == 200
    assert response.json() == {"connected": False}


def test_status_verifies_connection(
    client: TestClient, vendor: FakeVendor, seed_connection: Callable[..., None]
) -> None:
    seed_connection()
    vendor.routes[SELLER_PATH] = {"payload": PARTICIPATIONS}

    body = client.get("/api/amazon/status").json()

    assert body["connected"] is True
    assert body["sellerId"] == "SELLER1"
    assert body["participations"] == PARTICIPATIONS


def test_status_reports_unverified_connection(
    client: TestClient, vendor: FakeVendor, seed_connection: Callable[..., None]
) -> None:
    seed_connection()
    vendor.routes[SELLER_PATH] = (401, {"errors": ["Unauthorized"]})

    body = client.get("/api/amazon/status").json()

    assert body == {"connected": True, "sellerId": "SELLER1", "error": "Could not verify"}


def test_disconnect_clears_tokens(
    client: TestClient,
    store: SellerStore,
    session_factory: sessionmaker,
    seed_connection: Callable[..., None],
) -> None:
    seed_connection()

    assert client.delete("/api/amazon/status").json() == {"disconnected": True}
    assert client.get("/api/amazon/status").json() == {"connected": False}
    assert _count(session_factory, Notification) == 1


def test_resource_routes_require_connection(client: TestClient) -> None:
    response = client.get("/api/amazon/orders")
    assert response.status_code == 403
    assert response.json() == {"detail": "Amazon not connected"}


def test_orders_route_fetches_and_caches(
    client: TestClient,
    vendor: FakeVendor,
    session_factory: sessionmaker,
    seed_connection: Callable[..., None],
) -> None:
    seed_connection()
    vendor.routes[ORDERS_PATH] = {
        "payload": {
            "Orders": [
                {"AmazonOrderId": "111-1", "OrderStatus": "Shipped"},
                {"AmazonOrderId": "111-2", "OrderStatus": "Unshipped"},
            ]
        }
    }

    body = client.get("/api/amazon/orders", params={"days": 7}).json()

    assert body["totalOrders"] == 2
    assert vendor.requests[0].url.params["CreatedAfter"] == "2025-05-25T12:00:00Z"
    assert _count(session_factory, Order) == 2


def test_vendor_error_becomes_bad_gateway(
    client: TestClient, vendor: FakeVendor, seed_connection: Callable[..., None]
) -> None:
    seed_connection()
    vendor.routes[ORDERS_PATH] = (429, {"errors": [{"code": "QuotaExceeded"}]})

    response = client.get("/api/amazon/orders")

    assert response.status_code == 502
    body = response.json()
    assert body["path"] == ORDERS_PATH
    assert body["status_code"] == 429
    assert "QuotaExceeded" in body["details"]


def test_expired_token_is_refreshed_before_resource_call(
    client: TestClient,
    vendor: FakeVendor,
    lwa_vendor: FakeVendor,
    seed_connection: Callable[..., None],
) -> None:
    seed_connection(token_expires_at=NOW - timedelta(minutes=1))
    lwa_vendor.routes[TOKEN_PATH] = {"access_token": "at-fresh", "expires_in": 3600}
    vendor.routes[ORDERS_PATH] = {"payload": {"Orders": []}}

    assert client.get("/api/amazon/orders").status_code == 200
    assert vendor.requests[0].headers["x-amz-access-token"] == "at-fresh"


def test_put_listing_reports_acceptance(
    client: TestClient,
    vendor: FakeVendor,
    session_factory: sessionmaker,
    seed_connection: Callable[..., None],
) -> None:
    seed_connection()
    path = "/listings/2021-08-01/items/SELLER1/MUG-1"
    listing = {
        "sku": "MUG-1",
        "productType": "MUG",
        "attributes": {"item_name": [{"value": "Blue Mug"}]},
    }

    vendor.routes[path] = {
        "sku": "MUG-1",
        "status": "ACCEPTED",
        "issues": [{"severity": "ERROR", "code": "8541", "message": "Missing brand"}],
    }
    flagged = client.put("/api/amazon/listings", json=listing).json()
    assert flagged["accepted"] is False
    assert flagged["issues"][0]["code"] == "8541"
    assert _count(session_factory, Listing) == 0

    vendor.routes[path] = {"sku": "MUG-1", "status": "ACCEPTED", "issues": []}
    accepted = client.put("/api/amazon/listings", json=listing).json()
    assert accepted["accepted"] is True
    assert _count(session_factory, Listing) == 1
    assert _count(session_factory, Notification) == 1

    put_request = vendor.requests[-1]
    assert put_request.method == "PUT"
    assert put_request.url.params["marketplaceIds"] == "ATVPDKIKX0DER"


def test_manage_inventory_validates_actions(
    client: TestClient, seed_connection: Callable[..., None]
) -> None:
    seed_connection()

    invalid = client.post("/api/amazon/inventory/manage", json={"action": "explode"})
    assert invalid.status_code == 400

    missing_ids = client.post("/api/amazon/inventory/manage", json={"action": "bulkDelete"})
    assert missing_ids.status_code == 400
    assert missing_ids.json() == {"detail": "ids array is required"}


def test_manage_inventory_updates_quantity(
    client: TestClient, vendor: FakeVendor, seed_connection: Callable[..., None]
) -> None:
    seed_connection()

    def accept(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"sku": "SKU-1", "status": "ACCEPTED", "issues": []})

    vendor.routes["/listings/2021-08-01/items/SELLER1/SKU-1"] = accept

    body = client.post(
        "/api/amazon/inventory/manage",
        json={"action": "updateQuantity", "sku": "SKU-1", "quantity": 9, "fulfillmentChannel": "FBA"},
    ).json()

    assert body["accepted"] is True
    request = vendor.requests[0]
    assert request.method == "PATCH"
    patch_body = request.content.decode()
    assert '"fulfillment_channel_code": "AMAZON_NA"' in patch_body
    assert '"quantity": 9' in patch_body


def test_dashboard_route(
    client: TestClient, vendor: FakeVendor, seed_connection: Callable[..., None]
) -> None:
    seed_connection()
    vendor.routes.update(
        {
            SELLER_PATH: {"payload": PARTICIPATIONS},
            ORDERS_PATH: {"payload": {"Orders": []}},
            "/fba/inventory/v1/summaries": {"payload": {"inventorySummaries": []}},
            "/finances/v0/financialEventGroups": {"payload": {"FinancialEventGroupList": []}},
        }
    )

    body = client.get("/api/amazon/dashboard").json()

    assert body["connected"] is True
    assert body["participations"] == PARTICIPATIONS
    assert len(body["errors"]) == 1
    assert body["errors"][0].startswith("Sales API:")


def test_direct_connect(
    client: TestClient,
    vendor: FakeVendor,
    lwa_vendor: FakeVendor,
    store: SellerStore,
    session_factory: sessionmaker,
) -> None:
    lwa_vendor.routes[TOKEN_PATH] = {"access_token": "at-direct", "expires_in": 3600}
    vendor.routes[SELLER_PATH] = {"payload": PARTICIPATIONS}
    vendor.routes[ORDERS_PATH] = {"payload": {"Orders": [{"AmazonOrderId": "111-9"}]}}

    body = client.post("/api/amazon/connect").json()

    assert body["success"] is True
    assert body["store_name"] == "Amazon.com"
    assert body["orders_synced"] == 1
    assert _count(session_factory, Order) == 1
    with session_factory() as session:
        row = session.execute(select(ChannelConnection)).scalar_one()
        assert row.refresh_token == "rt-configured"
        assert row.access_token == "at-direct"


def test_direct_connect_failure(client: TestClient, lwa_vendor: FakeVendor) -> None:
    lwa_vendor.routes[TOKEN_PATH] = (400, {"error": "invalid_grant"})

    response = client.post("/api/amazon/connect")

    assert response.status_code == 400
    assert response.json()["detail"]["error"] == "Failed to authenticate with Amazon"


def test_fnsku_labels(client: TestClient) -> None:
    response = client.post(
        "/api/amazon/labels",
        json={"items": [{"sku": "SKU-1", "title": "Mug <XL>", "fnsku": "X00ABC"}]},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["count"] == 1
    assert "Mug &lt;XL&gt;" in body["html"]
