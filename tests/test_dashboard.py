"""Test dashboard aggregation and partial failure handling."""

from typing import Callable
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker

from conftest import FakeClock, FakeVendor
from seller_backend.core.models import InventoryItem
from seller_backend.core.settings import AmazonSettings
from seller_backend.core.store import SellerStore
from seller_backend.spapi.dashboard import (
    DashboardAggregator,
    buy_box_price,
    own_offer_price,
    summarize_inventory,
    summarize_orders,
)
from seller_backend.spapi.gateway import SpApiGateway
from seller_backend.spapi.lwa import LwaClient
from seller_backend.spapi.tokens import TokenManager

SELLER_PATH = "/sellers/v1/marketplaceParticipations"
ORDERS_PATH = "/orders/v0/orders"
INVENTORY_PATH = "/fba/inventory/v1/summaries"
FINANCES_PATH = "/finances/v0/financialEventGroups"
SALES_PATH = "/sales/v1/orderMetrics"
MY_PRICE_PATH = "/products/pricing/v0/price"
COMPETITIVE_PATH = "/products/pricing/v0/competitivePrice"

ORDERS = [
    {"AmazonOrderId": "111-1", "OrderStatus": "Shipped", "OrderTotal": {"Amount": "20.50"}},
    {"AmazonOrderId": "111-2", "OrderStatus": "Unshipped", "OrderTotal": {"Amount": "9.50"}},
    {"AmazonOrderId": "111-3", "OrderStatus": "PartiallyShipped", "OrderTotal": {"Amount": "n/a"}},
    {"AmazonOrderId": "111-4", "OrderStatus": "Canceled"},
]
INVENTORY = [
    {"sellerSku": "SKU-1", "asin": "B01", "inventoryDetails": {"fulfillableQuantity": 4}},
    {"sellerSku": "SKU-2", "asin": "B02", "totalQuantity": 3},
    {"asin": "B03", "totalQuantity": 1},
]


def _routes(**overrides: object) -> dict:
    routes = {
        SELLER_PATH: {"payload": [{"marketplace": {"id": "ATVPDKIKX0DER"}}]},
        ORDERS_PATH: {"payload": {"Orders": ORDERS}},
        INVENTORY_PATH: {"payload": {"inventorySummaries": INVENTORY}},
        FINANCES_PATH: {"payload": {"FinancialEventGroupList": [{"FinancialEventGroupId": "g1"}]}},
        SALES_PATH: {"payload": [{"interval": "x", "unitCount": 7}]},
    }
    routes.update(overrides)
    return routes


def _aggregator(
    store: SellerStore, settings: AmazonSettings, vendor: FakeVendor, clock: FakeClock
) -> DashboardAggregator:
    lwa_vendor = FakeVendor()
    tokens = TokenManager(
        store, LwaClient(settings, transport=lwa_vendor.transport), settings, clock=clock
    )
    gateway = SpApiGateway(settings, transport=vendor.transport)
    return DashboardAggregator(store, tokens, gateway, settings, clock=clock)


def test_summarize_orders_skips_unparseable_totals() -> None:
    summary = summarize_orders(ORDERS)
    assert summary == {
        "order_count": 4,
        "total_revenue": 30.0,
        "shipped_orders": 1,
        "pending_orders": 2,
        "canceled_orders": 1,
    }


def test_summarize_inventory_counts_distinct_skus() -> None:
    assert summarize_inventory(INVENTORY + [INVENTORY[0]]) == {
        "fba_total_units": 12,
        "fba_total_skus": 3,
    }


@pytest.mark.asyncio
async def test_dashboard_with_all_sections(
    store: SellerStore,
    amazon_settings: AmazonSettings,
    clock: FakeClock,
    seed_connection: Callable[..., None],
) -> None:
    seed_connection()
    vendor = FakeVendor(_routes())

    dashboard = await _aggregator(store, amazon_settings, vendor, clock).build("user-1")

    assert dashboard.connected
    assert dashboard.errors == []
    assert dashboard.seller_id == "SELLER1"
    assert dashboard.order_count == 4
    assert dashboard.total_revenue == 30.0
    assert dashboard.fba_total_units == 8
    assert dashboard.fba_total_skus == 3
    assert dashboard.financial_event_groups == [{"FinancialEventGroupId": "g1"}]
    assert dashboard.sales_metrics == [{"interval": "x", "unitCount": 7}]

    orders_request = next(r for r in vendor.requests if r.url.path == ORDERS_PATH)
    assert orders_request.url.params["CreatedAfter"] == "2025-05-02T12:00:00Z"

    cached = await store.list_orders("user-1")
    assert {row["amazon_order_id"] for row in cached} == {"111-1", "111-2", "111-3", "111-4"}


@pytest.mark.asyncio
async def test_one_failing_branch_keeps_the_others(
    store: SellerStore,
    amazon_settings: AmazonSettings,
    clock: FakeClock,
    seed_connection: Callable[..., None],
) -> None:
    seed_connection()
    vendor = FakeVendor(_routes(**{INVENTORY_PATH: (500, {"errors": ["InternalFailure"]})}))

    dashboard = await _aggregator(store, amazon_settings, vendor, clock).build("user-1")

    assert dashboard.connected
    assert len(dashboard.errors) == 1
    assert dashboard.errors[0].startswith("FBA Inventory: SP-API /fba/inventory/v1/summaries failed (500)")
    assert dashboard.fba_inventory == []
    assert dashboard.fba_total_units == 0
    assert dashboard.fba_total_skus == 0
    assert dashboard.order_count == 4
    assert dashboard.participations == [{"marketplace": {"id": "ATVPDKIKX0DER"}}]
    assert dashboard.financial_event_groups == [{"FinancialEventGroupId": "g1"}]


@pytest.mark.asyncio
async def test_only_a_bounded_slice_of_orders_is_cached(
    store: SellerStore,
    amazon_settings: AmazonSettings,
    clock: FakeClock,
    seed_connection: Callable[..., None],
) -> None:
    seed_connection()
    settings = amazon_settings.model_copy(update={"dashboard_cached_orders": 2})
    vendor = FakeVendor(_routes())

    dashboard = await _aggregator(store, settings, vendor, clock).build("user-1")

    assert dashboard.order_count == 4
    assert len(await store.list_orders("user-1")) == 2


@pytest.mark.asyncio
async def test_cache_write_failure_does_not_fail_the_dashboard(
    store: SellerStore,
    amazon_settings: AmazonSettings,
    clock: FakeClock,
    seed_connection: Callable[..., None],
) -> None:
    seed_connection()
    vendor = FakeVendor(_routes())
    failing_write = AsyncMock(side_effect=OperationalError("INSERT", {}, Exception("locked")))

    with patch.object(store, "upsert_order", failing_write):
        dashboard = await _aggregator(store, amazon_settings, vendor, clock).build("user-1")

    assert dashboard.errors == []
    assert dashboard.order_count == 4
    assert failing_write.await_count == 4


@pytest.mark.asyncio
async def test_not_connected(
    store: SellerStore,
    amazon_settings: AmazonSettings,
    clock: FakeClock,
    seed_connection: Callable[..., None],
) -> None:
    seed_connection(user_id="user-2", connected=False, status="disconnected", refresh_token=None)
    vendor = FakeVendor(_routes())
    aggregator = _aggregator(store, amazon_settings, vendor, clock)

    assert (await aggregator.build("nobody")).to_response() == {"connected": False}
    assert (await aggregator.build("user-2")).to_response() == {"connected": False}
    assert vendor.requests == []


def test_price_extraction() -> None:
    assert own_offer_price({"Product": {"Offers": [{"RegularPrice": {"Amount": "7.25"}}]}}) == 7.25
    assert own_offer_price({"Product": {"Offers": []}}) is None
    item = {
        "Product": {
            "CompetitivePricing": {
                "CompetitivePrices": [
                    {"CompetitivePriceId": "2", "Price": {"LandedPrice": {"Amount": "1.00"}}},
                    {"CompetitivePriceId": "1", "Price": {"ListingPrice": {"Amount": "18.40"}}},
                ]
            }
        }
    }
    assert buy_box_price(item) == 18.4


@pytest.mark.asyncio
async def test_inventory_is_cached_with_prices(
    store: SellerStore,
    session_factory: sessionmaker,
    amazon_settings: AmazonSettings,
    clock: FakeClock,
    seed_connection: Callable[..., None],
) -> None:
    seed_connection()
    my_prices = {
        "payload": [
            {
                "ASIN": "B01",
                "status": "Success",
                "Product": {"Offers": [{"BuyingPrice": {"LandedPrice": {"Amount": "12.99"}}}]},
            },
            {"ASIN": "B02", "status": "ClientError"},
            {"ASIN": "B03", "status": "Success", "Product": {"Offers": []}},
        ]
    }
    competitive = {
        "payload": [
            {
                "ASIN": "B02",
                "status": "Success",
                "Product": {
                    "CompetitivePricing": {
                        "CompetitivePrices": [
                            {"CompetitivePriceId": "1", "Price": {"LandedPrice": {"Amount": "8.50"}}}
                        ]
                    }
                },
            },
            {"ASIN": "B03", "status": "Success", "Product": {}},
        ]
    }
    vendor = FakeVendor(_routes(**{MY_PRICE_PATH: my_prices, COMPETITIVE_PATH: competitive}))

    dashboard = await _aggregator(store, amazon_settings, vendor, clock).build("user-1")

    assert dashboard.errors == []
    my_price_request = next(r for r in vendor.requests if r.url.path == MY_PRICE_PATH)
    assert my_price_request.url.params["Asins"] == "B01,B02,B03"
    competitive_request = next(r for r in vendor.requests if r.url.path == COMPETITIVE_PATH)
    assert competitive_request.url.params["Asins"] == "B02,B03"
    with session_factory() as session:
        rows = session.execute(select(InventoryItem)).scalars().all()
        prices = {row.sku: row.price for row in rows}
    assert prices == {"SKU-1": 12.99, "SKU-2": 8.5, "B03": None}


@pytest.mark.asyncio
async def test_price_lookup_failure_still_caches_inventory(
    store: SellerStore,
    session_factory: sessionmaker,
    amazon_settings: AmazonSettings,
    clock: FakeClock,
    seed_connection: Callable[..., None],
) -> None:
    seed_connection()
    vendor = FakeVendor(
        _routes(**{MY_PRICE_PATH: (503, {"errors": ["QuotaExceeded"]}), COMPETITIVE_PATH: (503, {})})
    )

    dashboard = await _aggregator(store, amazon_settings, vendor, clock).build("user-1")

    assert dashboard.errors == []
    assert dashboard.fba_total_skus == 3
    with session_factory() as session:
        rows = session.execute(select(InventoryItem)).scalars().all()
    assert sorted(row.sku for row in rows) == ["B03", "SKU-1", "SKU-2"]
