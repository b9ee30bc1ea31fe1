"""Projection of vendor payloads into the local cache tables."""

import logging
from typing import Any, Awaitable, Callable, Iterable, Optional

from seller_backend.core.settings import Provider
from seller_backend.core.store import SellerStore
from seller_backend.spapi.results import Err, settle_all

logger = logging.getLogger("spapi.sync")

PENDING_ORDER_STATUSES = ("Unshipped", "PartiallyShipped")


def parse_amount(value: Any) -> Optional[float]:
    """Parse a vendor money amount, returning None when it is not a number."""
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def order_total(order: dict[str, Any]) -> Optional[float]:
    return parse_amount((order.get("OrderTotal") or {}).get("Amount"))


def inventory_quantity(summary: dict[str, Any]) -> int:
    details = summary.get("inventoryDetails") or {}
    return (
        details.get("fulfillableQuantity")
        or summary.get("totalQuantity")
        or details.get("totalQuantity")
        or 0
    )


def order_row(order: dict[str, Any]) -> dict[str, Any]:
    total = order.get("OrderTotal") or {}
    return {
        "amazon_order_id": order["AmazonOrderId"],
        "status": order.get("OrderStatus"),
        "total_amount": order_total(order) or 0.0,
        "currency": total.get("CurrencyCode") or "USD",
        "items_count": (order.get("NumberOfItemsUnshipped") or 0)
        + (order.get("NumberOfItemsShipped") or 0),
        "buyer_email": (order.get("BuyerInfo") or {}).get("BuyerEmail"),
        "order_date": order.get("PurchaseDate"),
        "channel": Provider.AMAZON.value,
        "raw_data": order,
    }


def inventory_row(summary: dict[str, Any], price: Optional[float] = None) -> dict[str, Any]:
    quantity = inventory_quantity(summary)
    row: dict[str, Any] = {
        "sku": summary.get("sellerSku") or summary.get("asin"),
        "channel": "FBA",
        "asin": summary.get("asin"),
        "title": summary.get("productName") or summary.get("sellerSku") or summary.get("asin"),
        "quantity": quantity,
        "status": "active" if quantity > 0 else "out_of_stock",
        "fulfillment_channel": "FBA" if summary.get("inventoryDetails") else "FBM",
        "fnsku": summary.get("fnSku"),
    }
    if price is not None:
        row["price"] = price
    return row


def financial_event_row(group: dict[str, Any]) -> dict[str, Any]:
    total = group.get("ConvertedTotal") or group.get("OriginalTotal") or {}
    return {
        "event_group_id": group["FinancialEventGroupId"],
        "event_type": "settlement",
        "amount": parse_amount(total.get("CurrencyAmount")) or 0.0,
        "currency": total.get("CurrencyCode") or "USD",
        "posted_at": group.get("FinancialEventGroupStart"),
        "raw_data": group,
    }


def listing_row(sku: str, attributes: dict[str, Any]) -> dict[str, Any]:
    """Local listing row from the attributes submitted to the listings API."""

    def _first(name: str) -> dict[str, Any]:
        values = attributes.get(name) or [{}]
        return values[0] if values else {}

    offer = _first("purchasable_offer")
    schedule = ((offer.get("our_price") or [{}])[0].get("schedule") or [{}])[0]
    return {
        "sku": sku,
        "channel": Provider.AMAZON.value,
        "title": _first("item_name").get("value") or sku,
        "asin": attributes.get("asin") or "",
        "price": parse_amount(schedule.get("value_with_tax")) or 0.0,
        "quantity": _first("fulfillment_availability").get("quantity") or 1,
        "status": "active",
        "condition": _first("condition_type").get("value") or "new_new",
    }


async def best_effort(label: str, writes: Iterable[Callable[[], Awaitable[Any]]]) -> int:
    """
    Run independent cache writes concurrently, logging failures.

    Returns:
        int: How many writes failed.
    """
    results = await settle_all({f"{label}[{i}]": write for i, write in enumerate(writes)})
    failed = sum(1 for result in results.values() if isinstance(result, Err))
    if failed:
        logger.warning("%s: %s of %s cache writes failed", label, failed, len(results))
    return failed


async def sync_orders(store: SellerStore, user_id: str, orders: Iterable[dict[str, Any]]) -> int:
    """Upsert orders keyed by (user, AmazonOrderId). Returns failed writes."""
    rows = [order_row(order) for order in orders if order.get("AmazonOrderId")]
    return await best_effort(
        "orders", [lambda row=row: store.upsert_order(user_id, row) for row in rows]
    )


async def sync_inventory(
    store: SellerStore,
    user_id: str,
    summaries: Iterable[dict[str, Any]],
    prices: Optional[dict[str, float]] = None,
) -> int:
    prices = prices or {}
    rows = [
        inventory_row(summary, prices.get(summary.get("asin") or ""))
        for summary in summaries
        if summary.get("sellerSku") or summary.get("asin")
    ]
    return await best_effort(
        "inventory", [lambda row=row: store.upsert_inventory_item(user_id, row) for row in rows]
    )


async def sync_financial_event_groups(
    store: SellerStore, user_id: str, groups: Iterable[dict[str, Any]]
) -> int:
    rows = [financial_event_row(group) for group in groups if group.get("FinancialEventGroupId")]
    return await best_effort(
        "financial_events",
        [lambda row=row: store.upsert_financial_event(user_id, row) for row in rows],
    )
