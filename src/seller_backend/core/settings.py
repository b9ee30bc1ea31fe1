"""
Settings for the seller dashboard backend.
"""

import platform
from enum import Enum

from pydantic_settings import BaseSettings, SettingsConfigDict

from seller_backend import __version__

LWA_TOKEN_URL = "https://api.amazon.com/auth/o2/token"
SP_API_BASE_URL_NA = "https://sellingpartnerapi-na.amazon.com"
SELLER_CENTRAL_CONSENT_URL = "https://sellercentral.amazon.com/apps/authorize/consent"
US_MARKETPLACE_ID = "ATVPDKIKX0DER"


class Provider(Enum):
    """
    Sales channels a seller can connect.

    The value is the channel name stored on each connection row.
    """

    AMAZON = "Amazon"
    EBAY = "eBay"
    SHOPIFY = "Shopify"


def default_user_agent() -> str:
    """User-Agent required by the SP-API developer guidelines."""
    return (
        f"SellerDashboard/{__version__} "
        f"(Language=Python/{platform.python_version()}; Platform={platform.system()})"
    )


class AmazonSettings(BaseSettings):
    """
    Settings for the Amazon Selling-Partner API.
    """

    client_id: str = ""
    client_secret: str = ""
    app_id: str = ""
    refresh_token: str = ""
    redirect_uri: str = ""
    lwa_token_url: str = LWA_TOKEN_URL
    api_base_url: str = SP_API_BASE_URL_NA
    consent_url: str = SELLER_CENTRAL_CONSENT_URL
    oauth_version: str = "beta"
    default_marketplace_id: str = US_MARKETPLACE_ID
    token_refresh_margin_seconds: int = 300
    max_orders: int = 2000
    max_inventory_rows: int = 500
    dashboard_order_days: int = 30
    dashboard_cached_orders: int = 50
    request_timeout_seconds: float = 30.0
    user_agent: str = ""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="AMAZON_SP_",
        extra="ignore",
    )

    @property
    def effective_user_agent(self) -> str:
        """Configured User-Agent, or one derived from the package and platform."""
        return self.user_agent or default_user_agent()


class AppSettings(BaseSettings):
    """
    Settings for the web application itself.
    """

    site_url: str = "http://localhost:3000"
    jwt_secret_key: str = ""
    jwt_algorithm: str = "HS256"
    jwt_access_token_expire_minutes: int = 30
    cors_origins: list[str] = ["http://localhost:3000", "http://127.0.0.1:3000"]

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )
