"""
SP-API resource wrappers.

Each method binds the gateway to one resource path and its required query
or body shape, and returns the vendor's JSON verbatim. Only the two
`get_all_*` helpers add behavior: they follow continuation tokens
sequentially until the vendor stops returning one or a row cap is hit.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Optional, Sequence
from urllib.parse import quote

from seller_backend.core.models import utcnow
from seller_backend.spapi.gateway import SpApiGateway, iso_timestamp

logger = logging.getLogger("spapi.endpoints")

DEFAULT_MAX_ORDERS = 2000
DEFAULT_MAX_INVENTORY_ROWS = 500

CATALOG_SEARCH_DATA = "identifiers,images,productTypes,summaries,salesRanks"
CATALOG_ITEM_DATA = "identifiers,images,productTypes,summaries,salesRanks,attributes"
LISTING_ITEM_DATA = "summaries,attributes,issues,offers,fulfillmentAvailability"


def _segment(value: str) -> str:
    """Encode a caller-supplied value for use as one path segment."""
    return quote(value, safe="")


def listing_errors(response: dict[str, Any]) -> list[dict[str, Any]]:
    """Issues of severity ERROR from a listings PUT/PATCH/DELETE response."""
    return [issue for issue in response.get("issues") or [] if issue.get("severity") == "ERROR"]


def listing_accepted(response: dict[str, Any]) -> bool:
    """True when a listings submission carries no ERROR issues."""
    return response.get("status") != "INVALID" and not listing_errors(response)


class SellingPartnerClient:
    """SP-API resources for one seller, bound to a valid access token."""

    def __init__(
        self,
        gateway: SpApiGateway,
        access_token: str,
        max_orders: int = DEFAULT_MAX_ORDERS,
        max_inventory_rows: int = DEFAULT_MAX_INVENTORY_ROWS,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._gateway = gateway
        self._access_token = access_token
        self.max_orders = max_orders
        self.max_inventory_rows = max_inventory_rows
        self._clock = clock

    async def _call(self, path: str, **kwargs: Any) -> Any:
        return await self._gateway.call(self._access_token, path, **kwargs)

    def _days_ago(self, days: int) -> str:
        return iso_timestamp(self._clock() - timedelta(days=days))

    # --- Sellers ---

    async def get_seller_info(self) -> Any:
        return await self._call("/sellers/v1/marketplaceParticipations")

    # --- Orders ---

    async def get_orders(
        self,
        marketplace_ids: Sequence[str],
        created_after: Optional[str] = None,
        next_token: Optional[str] = None,
        max_results_per_page: Optional[int] = None,
    ) -> Any:
        """One page of orders. Defaults to orders created in the last 30 days."""
        return await self._call(
            "/orders/v0/orders",
            query={
                "MarketplaceIds": list(marketplace_ids),
                "CreatedAfter": created_after or self._days_ago(30),
                "MaxResultsPerPage": max_results_per_page,
                "NextToken": next_token,
            },
        )

    async def get_all_orders(
        self, marketplace_ids: Sequence[str], created_after: Optional[str] = None
    ) -> list[dict[str, Any]]:
        """
        Every order page, concatenated, up to `max_orders`.

        Pages are fetched one after another since each request needs the
        previous page's NextToken.
        """
        created_after = created_after or self._days_ago(30)
        orders: list[dict[str, Any]] = []
        next_token: Optional[str] = None
        while True:
            response = await self.get_orders(marketplace_ids, created_after, next_token)
            payload = response.get("payload") or {}
            orders.extend(payload.get("Orders") or [])
            next_token = payload.get("NextToken")
            if not next_token:
                break
            if len(orders) >= self.max_orders:
                logger.warning("Stopping order pagination at cap of %s", self.max_orders)
                break
        return orders[: self.max_orders]

    async def get_order_items(self, order_id: str) -> Any:
        return await self._call(f"/orders/v0/orders/{_segment(order_id)}/orderItems")

    # --- Catalog ---

    async def search_catalog(self, keywords: str, marketplace_ids: Sequence[str]) -> Any:
        return await self._call(
            "/catalog/2022-04-01/items",
            query={
                "keywords": keywords,
                "marketplaceIds": list(marketplace_ids),
                "includedData": CATALOG_SEARCH_DATA,
                "pageSize": 20,
            },
        )

    async def get_catalog_item(self, asin: str, marketplace_ids: Sequence[str]) -> Any:
        return await self._call(
            f"/catalog/2022-04-01/items/{_segment(asin)}",
            query={"marketplaceIds": list(marketplace_ids), "includedData": CATALOG_ITEM_DATA},
        )

    # --- Pricing ---

    async def get_my_price(self, marketplace_id: str, asins: Sequence[str]) -> Any:
        """Own offer prices, at most 20 ASINs per request."""
        return await self._call(
            "/products/pricing/v0/price",
            query={"MarketplaceId": marketplace_id, "ItemType": "Asin", "Asins": list(asins)},
        )

    async def get_competitive_pricing(self, marketplace_id: str, asins: Sequence[str]) -> Any:
        return await self._call(
            "/products/pricing/v0/competitivePrice",
            query={"MarketplaceId": marketplace_id, "ItemType": "Asin", "Asins": list(asins)},
        )

    async def get_item_offers(self, asin: str, marketplace_id: str, condition: str = "New") -> Any:
        return await self._call(
            f"/products/pricing/v0/items/{_segment(asin)}/offers",
            query={"MarketplaceId": marketplace_id, "ItemCondition": condition},
        )

    async def get_my_fees_estimate(
        self, asin: str, price: float, marketplace_id: str, currency: str = "USD"
    ) -> Any:
        return await self._call(
            f"/products/fees/v0/items/{_segment(asin)}/feesEstimate",
            method="POST",
            body={
                "FeesEstimateRequest": {
                    "MarketplaceId": marketplace_id,
                    "IsAmazonFulfilled": True,
                    "PriceToEstimateFees": {
                        "ListingPrice": {"CurrencyCode": currency, "Amount": price},
                    },
                    "Identifier": asin,
                }
            },
        )

    # --- Listings ---

    def _listing_path(self, seller_id: str, sku: str) -> str:
        return f"/listings/2021-08-01/items/{_segment(seller_id)}/{_segment(sku)}"

    async def get_listings_item(
        self, seller_id: str, sku: str, marketplace_ids: Sequence[str]
    ) -> Any:
        return await self._call(
            self._listing_path(seller_id, sku),
            query={"marketplaceIds": list(marketplace_ids), "includedData": LISTING_ITEM_DATA},
        )

    async def put_listings_item(
        self, seller_id: str, sku: str, marketplace_ids: Sequence[str], body: dict[str, Any]
    ) -> Any:
        """Create or replace a listing. Check `issues` for ERROR severity on return."""
        return await self._call(
            self._listing_path(seller_id, sku),
            method="PUT",
            query={"marketplaceIds": list(marketplace_ids)},
            body=body,
        )

    async def patch_listings_item(
        self,
        seller_id: str,
        sku: str,
        marketplace_ids: Sequence[str],
        patches: list[dict[str, Any]],
        product_type: str = "PRODUCT",
    ) -> Any:
        return await self._call(
            self._listing_path(seller_id, sku),
            method="PATCH",
            query={"marketplaceIds": list(marketplace_ids)},
            body={"productType": product_type, "patches": patches},
        )

    async def delete_listings_item(
        self, seller_id: str, sku: str, marketplace_ids: Sequence[str]
    ) -> Any:
        return await self._call(
            self._listing_path(seller_id, sku),
            method="DELETE",
            query={"marketplaceIds": list(marketplace_ids)},
        )

    # --- FBA inventory ---

    async def get_fba_inventory(
        self, marketplace_ids: Sequence[str], next_token: Optional[str] = None
    ) -> Any:
        return await self._call(
            "/fba/inventory/v1/summaries",
            query={
                "details": True,
                "granularityType": "Marketplace",
                "granularityId": marketplace_ids[0],
                "marketplaceIds": list(marketplace_ids),
                "nextToken": next_token,
            },
        )

    async def get_all_fba_inventory(self, marketplace_ids: Sequence[str]) -> list[dict[str, Any]]:
        """Every inventory summary page, concatenated, up to `max_inventory_rows`."""
        summaries: list[dict[str, Any]] = []
        next_token: Optional[str] = None
        while True:
            response = await self.get_fba_inventory(marketplace_ids, next_token)
            payload = response.get("payload") or {}
            summaries.extend(payload.get("inventorySummaries") or [])
            next_token = payload.get("nextToken") or (response.get("pagination") or {}).get(
                "nextToken"
            )
            if not next_token:
                break
            if len(summaries) >= self.max_inventory_rows:
                logger.warning("Stopping inventory pagination at cap of %s", self.max_inventory_rows)
                break
        return summaries[: self.max_inventory_rows]

    # --- Finances ---

    async def get_financial_event_groups(self, started_after: Optional[str] = None) -> Any:
        """Settlement groups, by default those started in the last 90 days."""
        return await self._call(
            "/finances/v0/financialEventGroups",
            query={"FinancialEventGroupStartedAfter": started_after or self._days_ago(90)},
        )

    async def get_financial_events(self, order_id: str) -> Any:
        return await self._call(f"/finances/v0/orders/{_segment(order_id)}/financialEvents")

    # --- Sales ---

    async def get_order_metrics(
        self, marketplace_ids: Sequence[str], interval: str, granularity: str = "Day"
    ) -> Any:
        """
        Aggregated order metrics.

        `interval` is an ISO-8601 range such as
        "2025-01-01T00:00:00Z--2025-02-01T00:00:00Z".
        """
        return await self._call(
            "/sales/v1/orderMetrics",
            query={
                "marketplaceIds": list(marketplace_ids),
                "interval": interval,
                "granularity": granularity,
            },
        )

    # --- Messaging ---

    async def get_messaging_actions(self, order_id: str, marketplace_ids: Sequence[str]) -> Any:
        return await self._call(
            f"/messaging/v1/orders/{_segment(order_id)}",
            query={"marketplaceIds": list(marketplace_ids)},
        )

    # --- Fulfillment inbound ---

    def _shipment_path(self, shipment_id: str, suffix: str = "") -> str:
        return f"/fba/inbound/v0/shipments/{_segment(shipment_id)}{suffix}"

    async def get_inbound_shipments(self, status: str = "WORKING") -> Any:
        return await self._call(
            "/fba/inbound/v0/shipments",
            query={"ShipmentStatusList": status, "QueryType": "SHIPMENT"},
        )

    async def get_inbound_shipment_items(self, shipment_id: str) -> Any:
        return await self._call(self._shipment_path(shipment_id, "/items"))

    async def create_inbound_shipment_plan(self, body: dict[str, Any]) -> Any:
        return await self._call("/fba/inbound/v0/plans", method="POST", body=body)

    async def create_inbound_shipment(self, shipment_id: str, body: dict[str, Any]) -> Any:
        return await self._call(self._shipment_path(shipment_id), method="POST", body=body)

    async def update_inbound_shipment(self, shipment_id: str, body: dict[str, Any]) -> Any:
        return await self._call(self._shipment_path(shipment_id), method="PUT", body=body)

    async def get_labels(
        self,
        shipment_id: str,
        page_type: str = "PackageLabel_Plain_Paper",
        label_type: str = "UNIQUE",
    ) -> Any:
        return await self._call(
            self._shipment_path(shipment_id, "/labels"),
            query={"PageType": page_type, "LabelType": label_type},
        )

    async def get_transport_details(self, shipment_id: str) -> Any:
        return await self._call(self._shipment_path(shipment_id, "/transport"))

    async def put_transport_details(self, shipment_id: str, body: dict[str, Any]) -> Any:
        return await self._call(self._shipment_path(shipment_id, "/transport"), method="PUT", body=body)

    async def confirm_transport(self, shipment_id: str) -> Any:
        return await self._call(self._shipment_path(shipment_id, "/transport/confirm"), method="POST")

    # --- Fulfillment outbound ---

    async def get_fulfillment_preview(self, body: dict[str, Any]) -> Any:
        return await self._call(
            "/fba/outbound/2020-07-01/fulfillmentOrders/preview", method="POST", body=body
        )

    # --- Reports ---

    async def create_report(
        self,
        report_type: str,
        marketplace_ids: Sequence[str],
        data_start_time: Optional[str] = None,
        data_end_time: Optional[str] = None,
    ) -> Any:
        body: dict[str, Any] = {"reportType": report_type, "marketplaceIds": list(marketplace_ids)}
        if data_start_time:
            body["dataStartTime"] = data_start_time
        if data_end_time:
            body["dataEndTime"] = data_end_time
        return await self._call("/reports/2021-06-30/reports", method="POST", body=body)

    async def get_report(self, report_id: str) -> Any:
        return await self._call(f"/reports/2021-06-30/reports/{_segment(report_id)}")

    async def get_report_document(self, report_document_id: str) -> Any:
        return await self._call(f"/reports/2021-06-30/documents/{_segment(report_document_id)}")

    # --- Shipping ---

    async def get_rates(self, body: dict[str, Any]) -> Any:
        return await self._call("/shipping/v2/shipments/rates", method="POST", body=body)

    async def purchase_shipment(self, body: dict[str, Any]) -> Any:
        return await self._call("/shipping/v2/shipments", method="POST", body=body)

    async def get_tracking(self, tracking_id: str, carrier_id: str) -> Any:
        return await self._call(
            "/shipping/v2/tracking", query={"trackingId": tracking_id, "carrierId": carrier_id}
        )
