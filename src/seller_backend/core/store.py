"""Connection store and local caches of vendor data.

Every operation opens its own session and runs in a worker thread, so async
callers suspend on datastore I/O instead of blocking the event loop. Upserts
select by the row's natural key and then update or insert; the unique
constraints on the tables guarantee at most one row per key.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Iterable, Optional, TypeVar

import anyio
from sqlalchemy import and_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from seller_backend.core.models import (
    ChannelConnection,
    ChannelConnectionRecord,
    FinancialEvent,
    InventoryItem,
    Listing,
    Notification,
    Order,
    utcnow,
)
from seller_backend.core.settings import Provider

logger = logging.getLogger("store")

T = TypeVar("T")

CONNECTION_FIELDS = (
    "connected",
    "status",
    "store_name",
    "seller_id",
    "marketplace_id",
    "access_token",
    "refresh_token",
    "token_expires_at",
    "credentials",
)


def _channel_name(channel: Provider | str) -> str:
    return channel.value if isinstance(channel, Provider) else channel


def _upsert_row(session: Session, model: type, key: dict[str, Any], values: dict[str, Any]) -> Any:
    """Update the row matching `key`, or insert a new one."""
    row = session.execute(select(model).filter_by(**key)).scalar_one_or_none()
    if row is None:
        row = model(**key, **values)
        session.add(row)
    else:
        for name, value in values.items():
            setattr(row, name, value)
    return row


class SellerStore:
    """Async facade over the relational store."""

    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    async def _run(self, fn: Callable[[Session], T]) -> T:
        def _in_session() -> T:
            with self._session_factory() as session:
                try:
                    result = fn(session)
                    session.commit()
                    return result
                except Exception:
                    session.rollback()
                    raise

        return await anyio.to_thread.run_sync(_in_session)

    async def _upsert(self, model: type, key: dict[str, Any], values: dict[str, Any]) -> None:
        def _write(session: Session) -> None:
            _upsert_row(session, model, key, values)

        await self._run(_write)

    # ------------------------------------------------------------------
    # Channel connections
    # ------------------------------------------------------------------

    async def get_connection(
        self, user_id: str, channel: Provider | str = Provider.AMAZON
    ) -> Optional[ChannelConnectionRecord]:
        """Return the user's connection for `channel`, or None when there is none."""
        name = _channel_name(channel)

        def _get(session: Session) -> Optional[ChannelConnectionRecord]:
            row = session.execute(
                select(ChannelConnection).where(
                    and_(ChannelConnection.user_id == user_id, ChannelConnection.channel == name)
                )
            ).scalar_one_or_none()
            return ChannelConnectionRecord.model_validate(row) if row is not None else None

        return await self._run(_get)

    async def upsert_connection(self, record: ChannelConnectionRecord) -> ChannelConnectionRecord:
        """Insert or update the connection keyed on (user_id, channel)."""
        key = {"user_id": record.user_id, "channel": record.channel}
        values = {name: getattr(record, name) for name in CONNECTION_FIELDS}

        def _upsert(session: Session) -> ChannelConnectionRecord:
            row = _upsert_row(session, ChannelConnection, key, values)
            session.flush()
            return ChannelConnectionRecord.model_validate(row)

        try:
            return await self._run(_upsert)
        except IntegrityError:
            # A concurrent insert won the race; the second pass updates its row
            logger.info("Connection for %s/%s inserted concurrently, retrying", *key.values())
            return await self._run(_upsert)

    async def update_tokens(
        self,
        user_id: str,
        channel: Provider | str,
        access_token: str,
        refresh_token: str,
        expires_at: datetime,
    ) -> None:
        """Persist a refreshed token pair on an existing connection."""
        name = _channel_name(channel)

        def _update(session: Session) -> None:
            row = session.execute(
                select(ChannelConnection).filter_by(user_id=user_id, channel=name)
            ).scalar_one_or_none()
            if row is None:
                raise LookupError(f"No {name} connection for user {user_id}")
            row.access_token = access_token
            row.refresh_token = refresh_token
            row.token_expires_at = expires_at

        await self._run(_update)

    async def clear_tokens(self, user_id: str, channel: Provider | str = Provider.AMAZON) -> bool:
        """Null the tokens and mark the connection disconnected. Rows are never deleted."""
        name = _channel_name(channel)

        def _clear(session: Session) -> bool:
            row = session.execute(
                select(ChannelConnection).filter_by(user_id=user_id, channel=name)
            ).scalar_one_or_none()
            if row is None:
                return False
            row.connected = False
            row.status = "disconnected"
            row.access_token = None
            row.refresh_token = None
            row.token_expires_at = None
            return True

        return await self._run(_clear)

    # ------------------------------------------------------------------
    # Local mirrors
    # ------------------------------------------------------------------

    async def upsert_order(self, user_id: str, order: dict[str, Any]) -> None:
        values = dict(order)
        key = {"user_id": user_id, "amazon_order_id": values.pop("amazon_order_id")}
        await self._upsert(Order, key, values)

    async def list_orders(self, user_id: str) -> list[dict[str, Any]]:
        """Cached orders for the user, newest first."""

        def _list(session: Session) -> list[dict[str, Any]]:
            rows = session.execute(
                select(Order).where(Order.user_id == user_id).order_by(Order.order_date.desc())
            ).scalars()
            return [
                {
                    "amazon_order_id": row.amazon_order_id,
                    "status": row.status,
                    "total_amount": row.total_amount,
                    "currency": row.currency,
                    "items_count": row.items_count,
                    "buyer_email": row.buyer_email,
                    "order_date": row.order_date,
                    "channel": row.channel,
                }
                for row in rows
            ]

        return await self._run(_list)

    async def upsert_inventory_item(self, user_id: str, item: dict[str, Any]) -> None:
        values = dict(item)
        key = {"user_id": user_id, "sku": values.pop("sku"), "channel": values.pop("channel")}
        values.setdefault("updated_at", utcnow())
        await self._upsert(InventoryItem, key, values)

    async def update_inventory_item(self, user_id: str, sku: str, **fields: Any) -> int:
        """Update every inventory row for `sku` across channels. Returns rows touched."""

        def _update(session: Session) -> int:
            rows = session.execute(select(InventoryItem).filter_by(user_id=user_id, sku=sku)).scalars()
            count = 0
            for row in rows:
                for name, value in fields.items():
                    setattr(row, name, value)
                row.updated_at = utcnow()
                count += 1
            return count

        return await self._run(_update)

    async def update_inventory_status(self, user_id: str, ids: Iterable[int], status: str) -> int:
        id_list = list(ids)

        def _update(session: Session) -> int:
            rows = session.execute(
                select(InventoryItem).where(
                    and_(InventoryItem.user_id == user_id, InventoryItem.id.in_(id_list))
                )
            ).scalars()
            count = 0
            for row in rows:
                row.status = status
                row.updated_at = utcnow()
                count += 1
            return count

        return await self._run(_update)

    async def delete_inventory_items(self, user_id: str, ids: Iterable[int]) -> int:
        """Remove local inventory rows. The vendor listing is untouched."""
        id_list = list(ids)

        def _delete(session: Session) -> int:
            rows = session.execute(
                select(InventoryItem).where(
                    and_(InventoryItem.user_id == user_id, InventoryItem.id.in_(id_list))
                )
            ).scalars().all()
            for row in rows:
                session.delete(row)
            return len(rows)

        return await self._run(_delete)

    async def upsert_listing(self, user_id: str, listing: dict[str, Any]) -> None:
        values = dict(listing)
        key = {"user_id": user_id, "sku": values.pop("sku"), "channel": values.pop("channel")}
        await self._upsert(Listing, key, values)

    async def upsert_financial_event(self, user_id: str, event: dict[str, Any]) -> None:
        values = dict(event)
        key = {"user_id": user_id, "event_group_id": values.pop("event_group_id")}
        await self._upsert(FinancialEvent, key, values)

    async def add_notification(self, user_id: str, type_: str, title: str, message: str) -> None:
        def _add(session: Session) -> None:
            session.add(Notification(user_id=user_id, type=type_, title=title, message=message))

        await self._run(_add)
