"""
FastAPI dependencies for the seller dashboard backend.
"""

import logging
from functools import lru_cache

from seller_backend.core.settings import AmazonSettings, AppSettings, Provider
from seller_backend.core.store import SellerStore
from seller_backend.spapi.gateway import SpApiGateway
from seller_backend.spapi.lwa import LwaClient

# Setup logger
logger = logging.getLogger("dependencies")


@lru_cache()
def get_settings(provider: Provider) -> AmazonSettings:
    """
    Get the settings for a sales channel.
    """
    if provider == Provider.AMAZON:
        settings = AmazonSettings()  # Reads AMAZON_SP_* vars from .env
        logger.info("get_settings returning AmazonSettings for %s", settings.api_base_url)
        return settings
    raise ValueError(f"Unsupported provider: {provider}")


@lru_cache()
def get_app_settings() -> AppSettings:
    """
    Get the web application settings.
    """
    return AppSettings()


@lru_cache()
def get_store() -> SellerStore:
    """
    Injection method to get the store bound to the application database.
    """
    from seller_backend.core.database import SessionLocal

    return SellerStore(SessionLocal)


@lru_cache()
def get_lwa_client() -> LwaClient:
    """
    Injection method to get the LWA token client.
    """
    return LwaClient(get_settings(Provider.AMAZON))


@lru_cache()
def get_gateway() -> SpApiGateway:
    """
    Injection method to get the SP-API request gateway.
    """
    settings = get_settings(Provider.AMAZON)
    logger.info("Creating SP-API gateway for %s", settings.api_base_url)
    return SpApiGateway(settings)
