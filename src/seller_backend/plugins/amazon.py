"""Amazon plugin module.

This module provides the API endpoints for the Amazon channel: the seller
authorization flow (consent redirect and callback), direct connect with a
pre-issued refresh token, connection status and disconnect, the aggregated
dashboard, and thin passthroughs to the SP-API resources the dashboard UI
uses (orders, inventory, listings, pricing, finances, messaging, inbound
and outbound fulfillment, reports, shipping and labels).

Vendor data fetched here is also mirrored into the local tables on a
best-effort basis; a failed cache write never fails the request.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Optional
from urllib.parse import urlencode

import httpx
from fastapi import APIRouter, Body, Depends, HTTPException, Query
from fastapi.responses import RedirectResponse
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy.exc import SQLAlchemyError

from seller_backend.core.auth import (
    TokenData,
    get_current_user,
    get_optional_user,
    optional_security,
)
from seller_backend.core.models import ChannelConnectionRecord, utcnow
from seller_backend.core.settings import AmazonSettings, AppSettings, Provider
from seller_backend.core.store import SellerStore
from seller_backend.spapi.dashboard import DashboardAggregator, summarize_inventory
from seller_backend.spapi.endpoints import SellingPartnerClient, listing_accepted
from seller_backend.spapi.errors import ConfigurationError, SpApiError, TokenRefreshError
from seller_backend.spapi.gateway import SpApiGateway, iso_timestamp
from seller_backend.spapi.labels import LabelItem, render_fnsku_labels
from seller_backend.spapi.lwa import LwaClient
from seller_backend.spapi.results import Ok, settle_all
from seller_backend.spapi.sync import (
    listing_row,
    sync_financial_event_groups,
    sync_inventory,
    sync_orders,
)
from seller_backend.spapi.tokens import TokenManager

# Setup module-level logger
logger = logging.getLogger("amazon")

INVENTORY_REPORTS = {
    "requestRestockReport": "GET_RESTOCK_INVENTORY_RECOMMENDATIONS_REPORT",
    "requestStrandedReport": "GET_STRANDED_INVENTORY_UI_DATA",
    "requestAgeReport": "GET_FBA_INVENTORY_AGED_DATA",
}
DEFAULT_SHIPMENT_STATUSES = "WORKING,SHIPPED,RECEIVING,CLOSED"
CONNECT_SYNC_ORDERS = 20
FINANCE_SYNC_GROUPS = 20


@dataclass
class AmazonSession:
    """An authenticated user's SP-API client plus their connection details."""

    user_id: str
    client: SellingPartnerClient
    seller_id: str
    marketplace_id: str

    @property
    def marketplace_ids(self) -> list[str]:
        return [self.marketplace_id]

    def require_seller_id(self) -> str:
        if not self.seller_id:
            raise HTTPException(status_code=400, detail="Seller ID not found")
        return self.seller_id


def _require(value: Any, message: str) -> Any:
    if value is None or value == "" or value == []:
        raise HTTPException(status_code=400, detail=message)
    return value


def pick_participation(participations: list[dict], preferred_marketplace_id: str) -> Optional[dict]:
    """The participation for the preferred marketplace, else the first one."""
    for participation in participations:
        if (participation.get("marketplace") or {}).get("id") == preferred_marketplace_id:
            return participation
    return participations[0] if participations else None


def participation_seller_id(participation: dict) -> Optional[str]:
    return (participation.get("seller") or {}).get("sellerId") or (
        participation.get("sellingPartner") or {}
    ).get("id")


def create_amazon_router(
    settings: AmazonSettings,
    app_settings: AppSettings,
    store: SellerStore,
    lwa: LwaClient,
    gateway: SpApiGateway,
    clock: Callable[[], datetime] = utcnow,
) -> APIRouter:
    """Create a router for the Amazon channel."""

    router = APIRouter()
    tokens = TokenManager(store, lwa, settings, clock=clock)
    aggregator = DashboardAggregator(store, tokens, gateway, settings, clock=clock)

    def make_client(access_token: str) -> SellingPartnerClient:
        return SellingPartnerClient(
            gateway,
            access_token,
            max_orders=settings.max_orders,
            max_inventory_rows=settings.max_inventory_rows,
            clock=clock,
        )

    def site_redirect(path: str, **params: str) -> RedirectResponse:
        query = f"?{urlencode(params)}" if params else ""
        return RedirectResponse(f"{app_settings.site_url.rstrip('/')}{path}{query}")

    def days_ago(days: int) -> str:
        return iso_timestamp(clock() - timedelta(days=days))

    async def notify(user_id: str, type_: str, title: str, message: str) -> None:
        try:
            await store.add_notification(user_id, type_, title, message)
        except SQLAlchemyError as e:
            logger.error("Could not save notification for %s: %s", user_id, e)

    async def amazon_session(
        current_user: TokenData = Depends(get_current_user),
    ) -> AmazonSession:
        """Dependency resolving a valid access token for the current user."""
        access_token = await tokens.get_valid_access_token(current_user.user_id)
        if access_token is None:
            raise HTTPException(status_code=403, detail="Amazon not connected")
        connection = await store.get_connection(current_user.user_id, Provider.AMAZON)
        return AmazonSession(
            user_id=current_user.user_id,
            client=make_client(access_token),
            seller_id=(connection.seller_id if connection else None) or "",
            marketplace_id=(connection.marketplace_id if connection else None)
            or settings.default_marketplace_id,
        )

    # ------------------------------------------------------------------
    # Authorization
    # ------------------------------------------------------------------

    @router.get("/auth")
    async def initiate_oauth(
        current_user: TokenData = Depends(get_current_user),
    ) -> RedirectResponse:
        """Redirect the seller to the Seller Central consent page."""
        if not settings.app_id:
            raise ConfigurationError("Amazon SP App ID not configured")

        redirect_uri = settings.redirect_uri or (
            f"{app_settings.site_url.rstrip('/')}/api/amazon/callback"
        )
        params = {
            "application_id": settings.app_id,
            "state": current_user.user_id,
            "redirect_uri": redirect_uri,
        }
        if settings.oauth_version:
            params["version"] = settings.oauth_version

        logger.info("Redirecting user %s to Amazon consent", current_user.user_id)
        return RedirectResponse(f"{settings.consent_url}?{urlencode(params)}")

    @router.get("/callback")
    async def oauth_callback(
        spapi_oauth_code: Optional[str] = None,
        state: Optional[str] = None,
        selling_partner_id: Optional[str] = None,
        credentials: Optional[HTTPAuthorizationCredentials] = Depends(optional_security),
    ) -> RedirectResponse:
        """
        Handle the authorization redirect from Seller Central.

        `state` carries the user id sent by /auth. When the request is also
        authenticated, the authenticated user must match it.

        On success:
        - Exchanges the authorization code for access and refresh tokens
        - Looks up marketplace participations (non-fatal on failure)
        - Upserts the user's Amazon connection and adds a notification
        - Redirects to the dashboard

        Failures redirect to the settings page with an `error` parameter.
        """
        logger.info(
            "Amazon callback received: code=%s state=%s selling_partner_id=%s",
            bool(spapi_oauth_code),
            state,
            selling_partner_id,
        )
        if not spapi_oauth_code:
            return site_redirect("/settings", error="missing_code")
        if not state:
            return site_redirect("/settings", error="missing_state")

        try:
            identity = get_optional_user(credentials)
        except HTTPException:
            return site_redirect("/settings", error="auth_mismatch")
        if identity is not None and identity.user_id != state:
            logger.warning("Auth mismatch: user=%s state=%s", identity.user_id, state)
            return site_redirect("/settings", error="auth_mismatch")

        user_id = state
        try:
            lwa_tokens = await lwa.exchange_authorization_code(spapi_oauth_code)
            if not lwa_tokens.refresh_token:
                logger.error("Token exchange for user %s returned no refresh token", user_id)
                return site_redirect("/settings", error="missing_refresh_token")
            expires_at = clock() + timedelta(seconds=lwa_tokens.expires_in)

            seller_id = selling_partner_id or ""
            marketplace_id = settings.default_marketplace_id
            store_name = "Amazon Seller"
            participations: list[dict] = []
            try:
                seller_info = await make_client(lwa_tokens.access_token).get_seller_info()
                participations = (seller_info or {}).get("payload") or []
                chosen = pick_participation(participations, settings.default_marketplace_id)
                if chosen:
                    seller_id = participation_seller_id(chosen) or seller_id
                    marketplace_id = (chosen.get("marketplace") or {}).get("id") or marketplace_id
                    country = (chosen.get("marketplace") or {}).get("countryCode") or "US"
                    store_name = f"Amazon {country} ({seller_id})"
            except (SpApiError, httpx.HTTPError) as e:
                logger.info("Non-fatal: seller info lookup failed: %s", e)

            record = ChannelConnectionRecord(
                user_id=user_id,
                channel=Provider.AMAZON.value,
                connected=True,
                status="connected",
                store_name=store_name,
                seller_id=seller_id,
                marketplace_id=marketplace_id,
                access_token=lwa_tokens.access_token,
                refresh_token=lwa_tokens.refresh_token,
                token_expires_at=expires_at,
                credentials={
                    "selling_partner_id": selling_partner_id,
                    "marketplace_participations": [
                        {
                            "marketplace_id": (p.get("marketplace") or {}).get("id"),
                            "country": (p.get("marketplace") or {}).get("countryCode"),
                            "seller_id": participation_seller_id(p),
                        }
                        for p in participations
                    ],
                    "connected_at": clock().isoformat(),
                },
            )
            try:
                await store.upsert_connection(record)
            except SQLAlchemyError as e:
                logger.error("Saving Amazon connection for %s failed: %s", user_id, e)
                return site_redirect("/settings", error="db_save_failed")

            await notify(
                user_id,
                "system",
                "Amazon Connected",
                f"Your Amazon Seller account ({seller_id or 'unknown'}) has been successfully "
                f"connected with {len(participations) or 1} marketplace(s).",
            )
            logger.info("Amazon connection saved for user %s", user_id)
            return site_redirect("/dashboard", amazon="connected")
        except Exception as e:
            logger.error("Amazon callback error: %s: %s", type(e).__name__, str(e))
            return site_redirect("/settings", error=str(e) or "connection_failed")

    @router.post("/connect")
    async def direct_connect(current_user: TokenData = Depends(get_current_user)) -> dict:
        """Connect using the refresh token configured for this deployment."""
        if not settings.client_id or not settings.client_secret or not settings.refresh_token:
            raise ConfigurationError("Amazon SP-API credentials not configured")

        user_id = current_user.user_id
        try:
            lwa_tokens = await lwa.refresh_access_token(settings.refresh_token)
        except TokenRefreshError as e:
            logger.error("LWA token exchange failed: %s", e.raw_body)
            raise HTTPException(
                status_code=400,
                detail={"error": "Failed to authenticate with Amazon", "details": e.raw_body},
            ) from e

        client = make_client(lwa_tokens.access_token)
        participations: list[dict] = []
        try:
            participations = (await client.get_seller_info() or {}).get("payload") or []
        except (SpApiError, httpx.HTTPError) as e:
            logger.info("Seller info fetch error: %s", e)

        chosen = participations[0] if participations else {}
        marketplace = chosen.get("marketplace") or {}
        store_name = marketplace.get("name") or "Amazon Seller"
        marketplace_id = marketplace.get("id") or settings.default_marketplace_id
        seller_id = participation_seller_id(chosen) if chosen else None

        try:
            await store.upsert_connection(
                ChannelConnectionRecord(
                    user_id=user_id,
                    channel=Provider.AMAZON.value,
                    connected=True,
                    status="connected",
                    store_name=store_name,
                    seller_id=seller_id,
                    marketplace_id=marketplace_id,
                    access_token=lwa_tokens.access_token,
                    refresh_token=lwa_tokens.refresh_token or settings.refresh_token,
                    token_expires_at=clock() + timedelta(seconds=lwa_tokens.expires_in),
                    credentials={
                        "marketplace_participations": participations,
                        "connected_at": clock().isoformat(),
                    },
                )
            )
        except SQLAlchemyError as e:
            logger.error("Saving Amazon connection for %s failed: %s", user_id, e)
            raise HTTPException(status_code=500, detail="Failed to save connection") from e

        await notify(
            user_id,
            "channel",
            "Amazon Connected",
            f"Successfully connected to {store_name}. Your seller data is now syncing.",
        )

        orders: list[dict] = []
        try:
            response = await client.get_orders(
                [marketplace_id],
                created_after=days_ago(30),
                max_results_per_page=CONNECT_SYNC_ORDERS,
            )
            orders = ((response or {}).get("payload") or {}).get("Orders") or []
            await sync_orders(store, user_id, orders[:CONNECT_SYNC_ORDERS])
        except (SpApiError, httpx.HTTPError) as e:
            logger.info("Order sync error: %s", e)

        return {
            "success": True,
            "store_name": store_name,
            "marketplace_id": marketplace_id,
            "seller_id": seller_id,
            "orders_synced": len(orders),
            "participations": participations,
        }

    @router.get("/status")
    async def connection_status(current_user: TokenData = Depends(get_current_user)) -> dict:
        """Report whether Amazon is connected and verify the token still works."""
        connection = await store.get_connection(current_user.user_id, Provider.AMAZON)
        if connection is None or not connection.is_connected or not connection.refresh_token:
            return {"connected": False}

        access_token = await tokens.get_valid_access_token(current_user.user_id)
        if access_token is None:
            return {"connected": False}

        try:
            seller_info = await make_client(access_token).get_seller_info()
        except (SpApiError, httpx.HTTPError) as e:
            logger.warning("Could not verify Amazon connection: %s", e)
            return {"connected": True, "sellerId": connection.seller_id, "error": "Could not verify"}

        return {
            "connected": True,
            "sellerId": connection.seller_id,
            "marketplaceId": connection.marketplace_id,
            "participations": (seller_info or {}).get("payload") or [],
        }

    @router.delete("/status")
    async def disconnect(current_user: TokenData = Depends(get_current_user)) -> dict:
        """Clear stored tokens and mark the connection disconnected."""
        await store.clear_tokens(current_user.user_id, Provider.AMAZON)
        await notify(
            current_user.user_id,
            "system",
            "Amazon Disconnected",
            "Your Amazon Seller account has been disconnected.",
        )
        return {"disconnected": True}

    # ------------------------------------------------------------------
    # Dashboard and resources
    # ------------------------------------------------------------------

    @router.get("/dashboard")
    async def dashboard(current_user: TokenData = Depends(get_current_user)) -> dict:
        """Aggregated seller, orders, inventory, finances and sales data."""
        result = await aggregator.build(current_user.user_id)
        return result.to_response()

    @router.get("/orders")
    async def orders(
        orderId: Optional[str] = None,
        days: int = 30,
        session: AmazonSession = Depends(amazon_session),
    ) -> Any:
        """Order items for one order, or every order from the last `days` days."""
        if orderId:
            return await session.client.get_order_items(orderId)

        all_orders = await session.client.get_all_orders(session.marketplace_ids, days_ago(days))
        await sync_orders(store, session.user_id, all_orders)
        return {"payload": {"Orders": all_orders}, "totalOrders": len(all_orders)}

    @router.get("/inventory")
    async def inventory(session: AmazonSession = Depends(amazon_session)) -> dict:
        """All FBA inventory summaries, mirrored into the local inventory table."""
        summaries = await session.client.get_all_fba_inventory(session.marketplace_ids)
        await sync_inventory(store, session.user_id, summaries)
        totals = summarize_inventory(summaries)
        return {
            "inventorySummaries": summaries,
            "totalSkus": totals["fba_total_skus"],
            "totalUnits": totals["fba_total_units"],
        }

    @router.post("/inventory/manage")
    async def manage_inventory(
        body: dict[str, Any] = Body(...),
        session: AmazonSession = Depends(amazon_session),
    ) -> Any:
        """Inventory actions selected by `action` in the request body."""
        action = body.get("action")
        client = session.client

        if action == "getFees":
            asin = _require(body.get("asin"), "asin and price are required")
            price = _require(body.get("price"), "asin and price are required")
            return await client.get_my_fees_estimate(asin, price, session.marketplace_id)

        if action == "updateQuantity":
            sku = _require(body.get("sku"), "sku and quantity required")
            quantity = _require(body.get("quantity"), "sku and quantity required")
            channel_code = "AMAZON_NA" if body.get("fulfillmentChannel") == "FBA" else "DEFAULT"
            result = await client.patch_listings_item(
                session.require_seller_id(),
                sku,
                session.marketplace_ids,
                [
                    {
                        "op": "replace",
                        "path": "/attributes/fulfillment_availability",
                        "value": [{"fulfillment_channel_code": channel_code, "quantity": quantity}],
                    }
                ],
            )
            await store.update_inventory_item(session.user_id, sku, quantity=quantity)
            return {**result, "accepted": listing_accepted(result)}

        if action == "updatePrice":
            sku = _require(body.get("sku"), "sku and price required")
            price = _require(body.get("price"), "sku and price required")
            result = await client.patch_listings_item(
                session.require_seller_id(),
                sku,
                session.marketplace_ids,
                [
                    {
                        "op": "replace",
                        "path": "/attributes/purchasable_offer",
                        "value": [
                            {
                                "our_price": [{"schedule": [{"value_with_tax": price}]}],
                                "marketplace_id": session.marketplace_id,
                            }
                        ],
                    }
                ],
            )
            await store.update_inventory_item(session.user_id, sku, price=price)
            return {**result, "accepted": listing_accepted(result)}

        if action in INVENTORY_REPORTS:
            return await client.create_report(
                INVENTORY_REPORTS[action],
                session.marketplace_ids,
                data_start_time=days_ago(30),
                data_end_time=days_ago(0),
            )

        if action == "getReportStatus":
            return await client.get_report(_require(body.get("reportId"), "reportId required"))

        if action == "getReportDocument":
            document_id = _require(body.get("reportDocumentId"), "reportDocumentId required")
            return await client.get_report_document(document_id)

        if action == "bulkDelete":
            ids = body.get("ids")
            if not isinstance(ids, list) or not ids:
                raise HTTPException(status_code=400, detail="ids array is required")
            deleted = await store.delete_inventory_items(session.user_id, ids)
            return {"deleted": deleted}

        if action == "bulkUpdateStatus":
            ids = body.get("ids")
            status = body.get("status")
            if not isinstance(ids, list) or not status:
                raise HTTPException(status_code=400, detail="ids array and status required")
            updated = await store.update_inventory_status(session.user_id, ids, status)
            return {"updated": updated}

        if action == "getProductDetails":
            asin = _require(body.get("asin"), "asin required")
            price = body.get("price")
            calls = {"catalog": lambda: client.get_catalog_item(asin, session.marketplace_ids)}
            if price:
                calls["fees"] = lambda: client.get_my_fees_estimate(
                    asin, price, session.marketplace_id
                )
            results = await settle_all(calls)
            catalog = results["catalog"]
            fees = results.get("fees")
            return {
                "catalog": catalog.value if isinstance(catalog, Ok) else None,
                "fees": fees.value if isinstance(fees, Ok) else None,
            }

        raise HTTPException(status_code=400, detail="Invalid action")

    @router.get("/listings")
    async def get_listing(
        sku: Optional[str] = None,
        keywords: Optional[str] = None,
        session: AmazonSession = Depends(amazon_session),
    ) -> Any:
        """Search the catalog by keywords, or fetch one of the seller's listings by SKU."""
        if keywords:
            return await session.client.search_catalog(keywords, session.marketplace_ids)
        if sku and session.seller_id:
            return await session.client.get_listings_item(
                session.seller_id, sku, session.marketplace_ids
            )
        raise HTTPException(status_code=400, detail="Provide sku or keywords")

    @router.put("/listings")
    async def put_listing(
        body: dict[str, Any] = Body(...),
        session: AmazonSession = Depends(amazon_session),
    ) -> dict:
        """
        Create or replace a listing.

        The vendor response is returned with an added `accepted` flag, false
        when any issue has severity ERROR. Accepted listings are recorded
        locally and announced with a notification.
        """
        sku = _require(body.get("sku"), "sku required")
        attributes = body.get("attributes") or {}
        result = await session.client.put_listings_item(
            session.require_seller_id(),
            sku,
            session.marketplace_ids,
            {
                "productType": body.get("productType"),
                "requirements": "LISTING",
                "attributes": attributes,
            },
        )
        accepted = listing_accepted(result)
        if accepted:
            try:
                await store.upsert_listing(session.user_id, listing_row(sku, attributes))
            except SQLAlchemyError as e:
                logger.error("Could not record listing %s: %s", sku, e)
            await notify(
                session.user_id,
                "listing",
                "Listed on Amazon",
                f'SKU "{sku}" has been listed on Amazon marketplace.',
            )
        else:
            logger.info("Listing %s submitted with errors: %s", sku, result.get("issues"))
        return {**result, "accepted": accepted}

    @router.delete("/listings")
    async def delete_listing(
        sku: Optional[str] = None,
        session: AmazonSession = Depends(amazon_session),
    ) -> Any:
        sku = _require(sku, "SKU required")
        return await session.client.delete_listings_item(
            session.require_seller_id(), sku, session.marketplace_ids
        )

    @router.get("/pricing")
    async def pricing(
        asin: Optional[str] = None,
        pricing_type: str = Query("competitive", alias="type"),
        session: AmazonSession = Depends(amazon_session),
    ) -> Any:
        """Competitive pricing (default) or the offer list for one ASIN."""
        asin = _require(asin, "ASIN required")
        if pricing_type == "offers":
            return await session.client.get_item_offers(asin, session.marketplace_id)
        return await session.client.get_competitive_pricing(session.marketplace_id, [asin])

    @router.get("/finances")
    async def finances(
        orderId: Optional[str] = None,
        session: AmazonSession = Depends(amazon_session),
    ) -> Any:
        if orderId:
            return await session.client.get_financial_events(orderId)

        groups = await session.client.get_financial_event_groups()
        group_list = ((groups or {}).get("payload") or {}).get("FinancialEventGroupList") or []
        await sync_financial_event_groups(store, session.user_id, group_list[:FINANCE_SYNC_GROUPS])
        return groups

    @router.get("/messaging")
    async def messaging(
        orderId: Optional[str] = None,
        session: AmazonSession = Depends(amazon_session),
    ) -> Any:
        order_id = _require(orderId, "orderId required")
        return await session.client.get_messaging_actions(order_id, session.marketplace_ids)

    @router.get("/fulfillment")
    async def list_shipments(
        shipmentId: Optional[str] = None,
        status: str = DEFAULT_SHIPMENT_STATUSES,
        action: Optional[str] = None,
        pageType: str = "PackageLabel_Plain_Paper",
        labelType: str = "UNIQUE",
        session: AmazonSession = Depends(amazon_session),
    ) -> Any:
        """
        Inbound shipments across statuses, or one shipment's items, labels or transport.

        A status whose lookup fails is logged and skipped.
        """
        client = session.client
        if shipmentId and action == "labels":
            return await client.get_labels(shipmentId, pageType, labelType)
        if shipmentId and action == "transport":
            return await client.get_transport_details(shipmentId)
        if shipmentId:
            return await client.get_inbound_shipment_items(shipmentId)

        shipments: list[dict] = []
        for shipment_status in (s.strip() for s in status.split(",") if s.strip()):
            try:
                result = await client.get_inbound_shipments(shipment_status)
            except SpApiError as e:
                logger.info("Inbound shipments with status %s: %s", shipment_status, e)
                continue
            shipments.extend(((result or {}).get("payload") or {}).get("ShipmentData") or [])
        return {"shipments": shipments, "total": len(shipments)}

    @router.post("/fulfillment")
    async def fulfillment_action(
        body: dict[str, Any] = Body(...),
        session: AmazonSession = Depends(amazon_session),
    ) -> Any:
        action = body.get("action")
        client = session.client

        if action == "createPlan":
            return await client.create_inbound_shipment_plan(
                {
                    "ShipFromAddress": body.get("shipFromAddress"),
                    "InboundShipmentPlanRequestItems": body.get("items"),
                    "LabelPrepPreference": body.get("labelPrepPreference") or "SELLER_LABEL",
                }
            )

        if action in ("createShipment", "updateShipment"):
            shipment_id = _require(body.get("shipmentId"), "shipmentId required")
            header = body.get("header") or {}
            request = {"InboundShipmentHeader": header, "InboundShipmentItems": body.get("items")}
            if action == "updateShipment":
                return await client.update_inbound_shipment(shipment_id, request)

            result = await client.create_inbound_shipment(shipment_id, request)
            await notify(
                session.user_id,
                "shipment",
                "Inbound Shipment Created",
                f"Shipment {shipment_id} created for "
                f"{header.get('DestinationFulfillmentCenterId', 'unknown')}",
            )
            return result

        if action == "getLabels":
            shipment_id = _require(body.get("shipmentId"), "shipmentId required")
            return await client.get_labels(
                shipment_id,
                body.get("pageType") or "PackageLabel_Plain_Paper",
                body.get("labelType") or "UNIQUE",
            )

        if action == "putTransport":
            shipment_id = _require(body.get("shipmentId"), "shipmentId required")
            return await client.put_transport_details(shipment_id, body.get("transport") or {})

        if action == "confirmTransport":
            shipment_id = _require(body.get("shipmentId"), "shipmentId required")
            return await client.confirm_transport(shipment_id)

        if action == "preview":
            return await client.get_fulfillment_preview(body.get("order") or {})

        raise HTTPException(
            status_code=400,
            detail="Invalid action. Use: createPlan, createShipment, updateShipment, "
            "getLabels, putTransport, confirmTransport, preview",
        )

    @router.get("/reports")
    async def get_report(
        reportId: Optional[str] = None,
        documentId: Optional[str] = None,
        session: AmazonSession = Depends(amazon_session),
    ) -> Any:
        if documentId:
            return await session.client.get_report_document(documentId)
        if reportId:
            return await session.client.get_report(reportId)
        raise HTTPException(status_code=400, detail="Provide reportId or documentId")

    @router.post("/reports")
    async def create_report(
        body: Optional[dict[str, Any]] = Body(None),
        session: AmazonSession = Depends(amazon_session),
    ) -> Any:
        body = body or {}
        return await session.client.create_report(
            body.get("reportType") or "GET_SALES_AND_TRAFFIC_REPORT",
            session.marketplace_ids,
            data_start_time=body.get("dataStartTime") or days_ago(30),
            data_end_time=body.get("dataEndTime") or days_ago(0),
        )

    @router.get("/shipping")
    async def tracking(
        trackingId: Optional[str] = None,
        carrierId: Optional[str] = None,
        session: AmazonSession = Depends(amazon_session),
    ) -> Any:
        if not trackingId or not carrierId:
            raise HTTPException(status_code=400, detail="trackingId and carrierId required")
        return await session.client.get_tracking(trackingId, carrierId)

    @router.post("/shipping")
    async def shipping_action(
        body: dict[str, Any] = Body(...),
        session: AmazonSession = Depends(amazon_session),
    ) -> Any:
        action = body.get("action")
        if action == "rates":
            return await session.client.get_rates(body.get("shipmentData") or {})
        if action == "purchase":
            return await session.client.purchase_shipment(body.get("shipmentData") or {})
        raise HTTPException(status_code=400, detail="Invalid action")

    @router.get("/labels")
    async def shipment_labels(
        shipmentId: Optional[str] = None,
        pageType: str = "PackageLabel_Plain_Paper",
        labelType: str = "UNIQUE",
        session: AmazonSession = Depends(amazon_session),
    ) -> Any:
        shipment_id = _require(shipmentId, "shipmentId is required")
        return await session.client.get_labels(shipment_id, pageType, labelType)

    @router.post("/labels")
    async def fnsku_labels(
        body: dict[str, Any] = Body(...),
        current_user: TokenData = Depends(get_current_user),
    ) -> dict:
        """Render printable FNSKU labels locally; no vendor call is made."""
        raw_items = body.get("items")
        if not isinstance(raw_items, list) or not raw_items:
            raise HTTPException(status_code=400, detail="items array is required")
        items = [LabelItem.model_validate(item) for item in raw_items]
        return {
            "html": render_fnsku_labels(items, body.get("pageType"), today=clock().date()),
            "count": len(items),
        }

    return router
