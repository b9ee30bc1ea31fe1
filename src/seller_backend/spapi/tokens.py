"""Access token lifecycle for a user's Amazon connection."""

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

import httpx
from sqlalchemy.exc import SQLAlchemyError

from seller_backend.core.models import utcnow
from seller_backend.core.settings import AmazonSettings, Provider
from seller_backend.core.store import SellerStore
from seller_backend.spapi.errors import SellerBackendError
from seller_backend.spapi.lwa import LwaClient

logger = logging.getLogger("spapi.tokens")


class TokenManager:
    """
    Hands out a currently valid access token for a user.

    A cached token is reused while its expiry lies beyond the refresh margin;
    otherwise the stored refresh token is exchanged and the new pair is
    persisted before returning. Concurrent callers may both refresh; the
    later write simply overwrites the earlier, still valid, token.
    """

    def __init__(
        self,
        store: SellerStore,
        lwa: LwaClient,
        settings: AmazonSettings,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._lwa = lwa
        self._margin = timedelta(seconds=settings.token_refresh_margin_seconds)
        self._clock = clock

    async def get_valid_access_token(self, user_id: str) -> Optional[str]:
        """
        Return a usable access token, or None when the user must (re)connect.

        Store read errors propagate. Any failure while refreshing or saving
        the refreshed token is reported as None.
        """
        connection = await self._store.get_connection(user_id, Provider.AMAZON)
        if connection is None or not connection.refresh_token:
            return None

        now = self._clock()
        expires_at = connection.token_expires_at
        if connection.access_token and expires_at is not None and expires_at > now + self._margin:
            return connection.access_token

        logger.info("Access token for user %s expired or near expiry, refreshing", user_id)
        try:
            tokens = await self._lwa.refresh_access_token(connection.refresh_token)
            new_expiry = now + timedelta(seconds=tokens.expires_in)
            await self._store.update_tokens(
                user_id,
                Provider.AMAZON,
                access_token=tokens.access_token,
                refresh_token=tokens.refresh_token or connection.refresh_token,
                expires_at=new_expiry,
            )
        except (SellerBackendError, httpx.HTTPError, SQLAlchemyError, LookupError) as e:
            logger.warning("Token refresh for user %s failed: %s", user_id, e)
            return None

        return tokens.access_token
