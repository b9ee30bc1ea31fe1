"""
Database models for channel connections and the local mirrors of vendor data.
"""

import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from sqlalchemy import JSON, Boolean, DateTime, Float, Integer, String, UniqueConstraint, text
from sqlalchemy.orm import Mapped, mapped_column

from seller_backend.core.database import Base


def utcnow() -> datetime.datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.datetime.now(datetime.UTC)


class ChannelConnection(Base):
    """
    Represents a seller's connection to one sales channel.

    Attributes:
        user_id (str): Identifier of the dashboard user owning the connection.
        channel (str): Channel name, e.g. "Amazon".
        connected (bool): Whether the channel is currently connected.
        status (str): "connected" or "disconnected".
        store_name (str): Display name of the store.
        seller_id (str): Vendor seller identifier.
        marketplace_id (str): Vendor marketplace identifier.
        access_token (str): Short-lived vendor access token.
        refresh_token (str): Long-lived vendor refresh token.
        token_expires_at (datetime): Expiry of the cached access token.
        credentials (dict): Free-form blob, e.g. raw marketplace participations.
    """

    __tablename__ = "channel_connections"
    __table_args__ = (UniqueConstraint("user_id", "channel", name="uq_connection_user_channel"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    channel: Mapped[str] = mapped_column(String, nullable=False)
    connected: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    status: Mapped[str] = mapped_column(String, default="disconnected", nullable=False)
    store_name: Mapped[str | None] = mapped_column(String, nullable=True)
    seller_id: Mapped[str | None] = mapped_column(String, nullable=True)
    marketplace_id: Mapped[str | None] = mapped_column(String, nullable=True)
    access_token: Mapped[str | None] = mapped_column(String, nullable=True)
    refresh_token: Mapped[str | None] = mapped_column(String, nullable=True)
    token_expires_at: Mapped[datetime.datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    credentials: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime, server_default=text("CURRENT_TIMESTAMP")
    )


class Order(Base):
    """Local mirror of a marketplace order, keyed by (user_id, amazon_order_id)."""

    __tablename__ = "orders"
    __table_args__ = (UniqueConstraint("user_id", "amazon_order_id", name="uq_order_user_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    amazon_order_id: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str | None] = mapped_column(String, nullable=True)
    total_amount: Mapped[float] = mapped_column(Float, default=0.0)
    currency: Mapped[str] = mapped_column(String, default="USD")
    items_count: Mapped[int] = mapped_column(Integer, default=0)
    buyer_email: Mapped[str | None] = mapped_column(String, nullable=True)
    order_date: Mapped[str | None] = mapped_column(String, nullable=True)
    channel: Mapped[str] = mapped_column(String, default="Amazon")
    raw_data: Mapped[dict | None] = mapped_column(JSON, nullable=True)


class InventoryItem(Base):
    """Local mirror of an inventory row, keyed by (user_id, sku, channel)."""

    __tablename__ = "inventory"
    __table_args__ = (UniqueConstraint("user_id", "sku", "channel", name="uq_inventory_sku"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    sku: Mapped[str] = mapped_column(String, nullable=False)
    channel: Mapped[str] = mapped_column(String, nullable=False)
    asin: Mapped[str | None] = mapped_column(String, nullable=True)
    title: Mapped[str | None] = mapped_column(String, nullable=True)
    quantity: Mapped[int] = mapped_column(Integer, default=0)
    price: Mapped[float | None] = mapped_column(Float, nullable=True)
    status: Mapped[str] = mapped_column(String, default="active")
    fulfillment_channel: Mapped[str | None] = mapped_column(String, nullable=True)
    fnsku: Mapped[str | None] = mapped_column(String, nullable=True)
    updated_at: Mapped[datetime.datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )


class Listing(Base):
    """Listing created from the dashboard, keyed by (user_id, sku, channel)."""

    __tablename__ = "listings"
    __table_args__ = (UniqueConstraint("user_id", "sku", "channel", name="uq_listing_sku"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    sku: Mapped[str] = mapped_column(String, nullable=False)
    channel: Mapped[str] = mapped_column(String, nullable=False)
    title: Mapped[str | None] = mapped_column(String, nullable=True)
    asin: Mapped[str | None] = mapped_column(String, nullable=True)
    price: Mapped[float] = mapped_column(Float, default=0.0)
    quantity: Mapped[int] = mapped_column(Integer, default=1)
    status: Mapped[str] = mapped_column(String, default="active")
    condition: Mapped[str | None] = mapped_column(String, nullable=True)


class FinancialEvent(Base):
    """Settlement group mirror, keyed by (user_id, event_group_id)."""

    __tablename__ = "financial_events"
    __table_args__ = (
        UniqueConstraint("user_id", "event_group_id", name="uq_financial_event_group"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    event_group_id: Mapped[str] = mapped_column(String, nullable=False)
    event_type: Mapped[str] = mapped_column(String, default="settlement")
    amount: Mapped[float] = mapped_column(Float, default=0.0)
    currency: Mapped[str] = mapped_column(String, default="USD")
    posted_at: Mapped[str | None] = mapped_column(String, nullable=True)
    raw_data: Mapped[dict | None] = mapped_column(JSON, nullable=True)


class Notification(Base):
    """User-facing notification. Append-only."""

    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    type: Mapped[str] = mapped_column(String, nullable=False)
    title: Mapped[str] = mapped_column(String, nullable=False)
    message: Mapped[str] = mapped_column(String, nullable=False)
    read: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime, server_default=text("CURRENT_TIMESTAMP")
    )


class ChannelConnectionRecord(BaseModel):
    """
    Detached snapshot of a ChannelConnection row.

    Used both to read a connection out of the store and to describe the
    values written by an upsert. `token_expires_at` is always UTC-aware.
    """

    model_config = ConfigDict(from_attributes=True)

    user_id: str
    channel: str = "Amazon"
    connected: bool = False
    status: str = "disconnected"
    store_name: Optional[str] = None
    seller_id: Optional[str] = None
    marketplace_id: Optional[str] = None
    access_token: Optional[str] = Field(None, repr=False)
    refresh_token: Optional[str] = Field(None, repr=False)
    token_expires_at: Optional[datetime.datetime] = None
    credentials: Optional[dict[str, Any]] = None

    @field_validator("token_expires_at")
    @classmethod
    def _assume_utc(cls, value: Optional[datetime.datetime]) -> Optional[datetime.datetime]:
        # SQLite hands back naive datetimes
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=datetime.UTC)
        return value

    @property
    def is_connected(self) -> bool:
        """True when either the flag or the status string says connected."""
        return self.connected or self.status == "connected"
