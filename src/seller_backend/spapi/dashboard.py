"""
Dashboard aggregation.

Fans out the dashboard's SP-API calls concurrently and assembles whatever
came back. A failing branch contributes an entry to `errors` and empty
defaults for its own section; the remaining sections keep their data.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

import httpx
from pydantic import BaseModel, Field

from seller_backend.core.models import utcnow
from seller_backend.core.settings import AmazonSettings, Provider
from seller_backend.core.store import SellerStore
from seller_backend.spapi.endpoints import SellingPartnerClient
from seller_backend.spapi.errors import SpApiError
from seller_backend.spapi.gateway import SpApiGateway, iso_timestamp
from seller_backend.spapi.results import Err, Ok, settle_all
from seller_backend.spapi.sync import (
    PENDING_ORDER_STATUSES,
    inventory_quantity,
    order_total,
    parse_amount,
    sync_inventory,
    sync_orders,
)
from seller_backend.spapi.tokens import TokenManager

logger = logging.getLogger("spapi.dashboard")

PRICE_BATCH_SIZE = 20

SECTION_LABELS = {
    "seller": "Seller info",
    "orders": "Orders",
    "inventory": "FBA Inventory",
    "finances": "Finances",
    "sales": "Sales API",
}


class AggregatedDashboard(BaseModel):
    """Dashboard payload. Only `connected` is set when Amazon is not connected."""

    connected: bool
    seller_id: Optional[str] = None
    store_name: Optional[str] = None
    marketplace_id: Optional[str] = None
    participations: list[Any] = Field(default_factory=list)
    orders: list[dict[str, Any]] = Field(default_factory=list)
    order_count: int = 0
    total_revenue: float = 0.0
    shipped_orders: int = 0
    pending_orders: int = 0
    canceled_orders: int = 0
    fba_inventory: list[dict[str, Any]] = Field(default_factory=list)
    fba_total_units: int = 0
    fba_total_skus: int = 0
    financial_event_groups: list[dict[str, Any]] = Field(default_factory=list)
    sales_metrics: Optional[Any] = None
    errors: list[str] = Field(default_factory=list)

    def to_response(self) -> dict[str, Any]:
        if not self.connected:
            return {"connected": False}
        return self.model_dump()


def summarize_orders(orders: list[dict[str, Any]]) -> dict[str, Any]:
    """Revenue and status counts. Unparseable totals are skipped."""
    revenue = 0.0
    shipped = pending = canceled = 0
    for order in orders:
        amount = order_total(order)
        if amount is not None and amount > 0:
            revenue += amount
        status = order.get("OrderStatus")
        if status == "Shipped":
            shipped += 1
        elif status in PENDING_ORDER_STATUSES:
            pending += 1
        elif status == "Canceled":
            canceled += 1
    return {
        "order_count": len(orders),
        "total_revenue": round(revenue, 2),
        "shipped_orders": shipped,
        "pending_orders": pending,
        "canceled_orders": canceled,
    }


def summarize_inventory(summaries: list[dict[str, Any]]) -> dict[str, Any]:
    skus = {s.get("sellerSku") or s.get("asin") for s in summaries}
    skus.discard(None)
    return {
        "fba_total_units": sum(inventory_quantity(s) for s in summaries),
        "fba_total_skus": len(skus),
    }


def _price_items(response: Any) -> list[dict[str, Any]]:
    items = (response or {}).get("payload") if isinstance(response, dict) else response
    if not isinstance(items, list):
        return []
    return [
        item
        for item in items
        if isinstance(item, dict) and item.get("status") not in ("ClientError", "ServerError")
    ]


def own_offer_price(item: dict[str, Any]) -> Optional[float]:
    """Landed, listing or regular price of the seller's first offer."""
    offers = (item.get("Product") or {}).get("Offers") or [{}]
    offer = offers[0] or {}
    buying = offer.get("BuyingPrice") or {}
    price = buying.get("LandedPrice") or buying.get("ListingPrice") or offer.get("RegularPrice")
    return parse_amount((price or {}).get("Amount"))


def buy_box_price(item: dict[str, Any]) -> Optional[float]:
    competitive = (item.get("Product") or {}).get("CompetitivePricing") or {}
    for entry in competitive.get("CompetitivePrices") or []:
        if entry.get("CompetitivePriceId") == "1":
            price = entry.get("Price") or {}
            amount = price.get("LandedPrice") or price.get("ListingPrice")
            return parse_amount((amount or {}).get("Amount"))
    return None


async def collect_inventory_prices(
    client: SellingPartnerClient, marketplace_id: str, asins: list[str]
) -> dict[str, float]:
    """
    Price per ASIN for the inventory cache.

    Own offer prices are fetched first; ASINs still without a price fall
    back to the competitive buy-box price. Batches run one after another,
    and a failed batch is logged and skipped.
    """
    prices: dict[str, float] = {}
    lookups = [
        ("own price", client.get_my_price, own_offer_price),
        ("competitive pricing", client.get_competitive_pricing, buy_box_price),
    ]
    for label, fetch, extract in lookups:
        missing = [asin for asin in asins if asin not in prices]
        for start in range(0, len(missing), PRICE_BATCH_SIZE):
            batch = missing[start : start + PRICE_BATCH_SIZE]
            try:
                response = await fetch(marketplace_id, batch)
            except (SpApiError, httpx.HTTPError) as e:
                logger.info("Dashboard %s lookup failed for %s ASINs: %s", label, len(batch), e)
                continue
            for item in _price_items(response):
                asin = item.get("ASIN") or item.get("asin")
                amount = extract(item)
                if asin and amount:
                    prices[asin] = amount
    return prices


class DashboardAggregator:
    """Builds the dashboard for one user."""

    def __init__(
        self,
        store: SellerStore,
        tokens: TokenManager,
        gateway: SpApiGateway,
        settings: AmazonSettings,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._tokens = tokens
        self._gateway = gateway
        self._settings = settings
        self._clock = clock

    async def build(self, user_id: str) -> AggregatedDashboard:
        connection = await self._store.get_connection(user_id, Provider.AMAZON)
        if connection is None or not connection.is_connected:
            return AggregatedDashboard(connected=False)

        access_token = await self._tokens.get_valid_access_token(user_id)
        if access_token is None:
            logger.info("No valid access token for user %s, reporting disconnected", user_id)
            return AggregatedDashboard(connected=False)

        marketplace_id = connection.marketplace_id or self._settings.default_marketplace_id
        marketplace_ids = [marketplace_id]
        client = SellingPartnerClient(
            self._gateway,
            access_token,
            max_orders=self._settings.max_orders,
            max_inventory_rows=self._settings.max_inventory_rows,
            clock=self._clock,
        )

        now = self._clock()
        orders_since = iso_timestamp(now - timedelta(days=self._settings.dashboard_order_days))
        sales_interval = f"{iso_timestamp(now - timedelta(days=90))}--{iso_timestamp(now)}"

        results = await settle_all(
            {
                "seller": client.get_seller_info,
                "orders": lambda: client.get_all_orders(marketplace_ids, orders_since),
                "inventory": lambda: client.get_all_fba_inventory(marketplace_ids),
                "finances": client.get_financial_event_groups,
                "sales": lambda: client.get_order_metrics(marketplace_ids, sales_interval, "Day"),
            }
        )

        dashboard = AggregatedDashboard(
            connected=True,
            seller_id=connection.seller_id,
            store_name=connection.store_name,
            marketplace_id=marketplace_id,
        )
        for name, result in results.items():
            if isinstance(result, Err):
                dashboard.errors.append(f"{SECTION_LABELS[name]}: {result.message}")

        seller = results["seller"]
        if isinstance(seller, Ok):
            dashboard.participations = (seller.value or {}).get("payload") or []

        orders = results["orders"]
        if isinstance(orders, Ok):
            dashboard.orders = orders.value
            for field, value in summarize_orders(orders.value).items():
                setattr(dashboard, field, value)
            cached = orders.value[: self._settings.dashboard_cached_orders]
            await sync_orders(self._store, user_id, cached)

        inventory = results["inventory"]
        if isinstance(inventory, Ok):
            dashboard.fba_inventory = inventory.value
            for field, value in summarize_inventory(inventory.value).items():
                setattr(dashboard, field, value)
            asins = list(dict.fromkeys(s["asin"] for s in inventory.value if s.get("asin")))
            prices = await collect_inventory_prices(client, marketplace_id, asins)
            await sync_inventory(self._store, user_id, inventory.value, prices)

        finances = results["finances"]
        if isinstance(finances, Ok):
            payload = (finances.value or {}).get("payload") or {}
            dashboard.financial_event_groups = payload.get("FinancialEventGroupList") or []

        sales = results["sales"]
        if isinstance(sales, Ok):
            dashboard.sales_metrics = (sales.value or {}).get("payload")

        return dashboard
