"""Login with Amazon (LWA) token client."""

import logging
from typing import Optional

import httpx
from pydantic import BaseModel, ValidationError

from seller_backend.core.settings import AmazonSettings
from seller_backend.spapi.errors import (
    AuthExchangeError,
    ConfigurationError,
    LwaError,
    TokenRefreshError,
)

logger = logging.getLogger("spapi.lwa")


class LwaTokens(BaseModel):
    """Token endpoint response."""

    access_token: str
    refresh_token: Optional[str] = None
    token_type: str = "bearer"
    expires_in: int = 3600


class LwaClient:
    """
    Exchanges authorization codes and refresh tokens at the LWA token endpoint.

    No retries happen here; callers decide whether to try again.
    """

    def __init__(
        self, settings: AmazonSettings, transport: Optional[httpx.AsyncBaseTransport] = None
    ) -> None:
        self._settings = settings
        self._transport = transport

    def _credentials(self) -> dict[str, str]:
        if not self._settings.client_id or not self._settings.client_secret:
            raise ConfigurationError("Amazon SP-API client id and secret are not configured")
        return {
            "client_id": self._settings.client_id,
            "client_secret": self._settings.client_secret,
        }

    async def _post(self, form: dict[str, str], error_cls: type[LwaError], message: str) -> LwaTokens:
        async with httpx.AsyncClient(
            transport=self._transport, timeout=self._settings.request_timeout_seconds
        ) as client:
            response = await client.post(
                self._settings.lwa_token_url,
                data=form,
                headers={
                    "Content-Type": "application/x-www-form-urlencoded;charset=UTF-8",
                    "User-Agent": self._settings.effective_user_agent,
                },
            )

        if not response.is_success:
            logger.error("%s: status=%s", message, response.status_code)
            raise error_cls(message, response.status_code, response.text)

        try:
            return LwaTokens.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            logger.error("%s: unreadable token response: %s", message, e)
            raise error_cls(message, response.status_code, response.text) from e

    async def exchange_authorization_code(self, code: str) -> LwaTokens:
        """
        Exchange a one-time OAuth authorization code for an access/refresh token pair.

        Raises:
            AuthExchangeError: If the token endpoint returns a non-2xx response
                or a body that is not a token response.
            ConfigurationError: If the client credentials are not configured.
        """
        logger.info("Exchanging authorization code %s... for tokens", code[:5])
        form = {"grant_type": "authorization_code", "code": code, **self._credentials()}
        if self._settings.redirect_uri:
            form["redirect_uri"] = self._settings.redirect_uri
        return await self._post(form, AuthExchangeError, "LWA token exchange failed")

    async def refresh_access_token(self, refresh_token: str) -> LwaTokens:
        """
        Exchange a refresh token for a new access token.

        The response may carry a rotated refresh token; callers must persist
        whatever comes back rather than assume the old one is still valid.

        Raises:
            TokenRefreshError: If the token endpoint returns a non-2xx response
                or a body that is not a token response.
            ConfigurationError: If the client credentials are not configured.
        """
        logger.debug("Refreshing LWA access token")
        form = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            **self._credentials(),
        }
        return await self._post(form, TokenRefreshError, "LWA token refresh failed")
