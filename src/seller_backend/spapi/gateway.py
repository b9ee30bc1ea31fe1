"""Single parameterized caller for every SP-API resource."""

import json
import logging
from datetime import UTC, datetime
from typing import Any, Mapping, Optional
from urllib.parse import quote

import httpx

from seller_backend.core.settings import AmazonSettings
from seller_backend.spapi.errors import SpApiError
from seller_backend.spapi.results import Err, Ok, Result, unwrap

logger = logging.getLogger("spapi.gateway")

# SP-API rejects or misreads %2C in list parameters and %3A in timestamps
QUERY_SAFE_CHARS = ",:"

QueryValue = str | int | float | bool | datetime | list[str] | tuple[str, ...] | None


def iso_timestamp(value: datetime) -> str:
    """Format a datetime the way SP-API expects, e.g. 2025-01-01T00:00:00Z."""
    if value.tzinfo is not None:
        value = value.astimezone(UTC)
    return value.strftime("%Y-%m-%dT%H:%M:%SZ")


def _format_value(value: QueryValue) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, datetime):
        return iso_timestamp(value)
    if isinstance(value, (list, tuple)):
        return ",".join(str(item) for item in value)
    return str(value)


def build_query_string(query: Mapping[str, QueryValue]) -> str:
    """
    Serialize query parameters without escaping commas or colons.

    List values are joined with commas, datetimes become ISO-8601 UTC
    timestamps and None values are dropped. Everything else is
    percent-encoded as usual.
    """
    parts = []
    for key, value in query.items():
        if value is None:
            continue
        encoded = quote(_format_value(value), safe=QUERY_SAFE_CHARS)
        parts.append(f"{quote(key, safe='')}={encoded}")
    return "&".join(parts)


class SpApiGateway:
    """
    Attaches the access token and fixed headers to SP-API requests.

    Each request is single-shot; there is no retry, backoff or circuit
    breaking at this layer.
    """

    def __init__(
        self, settings: AmazonSettings, transport: Optional[httpx.AsyncBaseTransport] = None
    ) -> None:
        self._settings = settings
        self._transport = transport

    def build_url(self, path: str, query: Optional[Mapping[str, QueryValue]] = None) -> str:
        url = f"{self._settings.api_base_url.rstrip('/')}/{path.lstrip('/')}"
        query_string = build_query_string(query or {})
        return f"{url}?{query_string}" if query_string else url

    async def send(
        self,
        access_token: str,
        path: str,
        method: str = "GET",
        body: Any = None,
        query: Optional[Mapping[str, QueryValue]] = None,
    ) -> Result[Any]:
        """
        Perform one request and return Ok(parsed JSON) or Err(SpApiError).

        Transport failures (timeouts, connection errors) are not wrapped and
        propagate to the caller.
        """
        url = self.build_url(path, query)
        headers = {
            "x-amz-access-token": access_token,
            "Content-Type": "application/json",
            "Accept": "application/json",
            "User-Agent": self._settings.effective_user_agent,
        }
        content = json.dumps(body) if body is not None else None

        logger.debug("SP-API %s %s", method, url)
        async with httpx.AsyncClient(
            transport=self._transport, timeout=self._settings.request_timeout_seconds
        ) as client:
            response = await client.request(method, url, headers=headers, content=content)

        if not response.is_success:
            logger.warning("SP-API %s %s returned %s", method, path, response.status_code)
            return Err(SpApiError(path, response.status_code, response.text))

        if not response.content:
            return Ok({})
        return Ok(response.json())

    async def call(
        self,
        access_token: str,
        path: str,
        method: str = "GET",
        body: Any = None,
        query: Optional[Mapping[str, QueryValue]] = None,
    ) -> Any:
        """
        Perform one request and return the parsed JSON body.

        Raises:
            SpApiError: On any non-2xx response.
        """
        return unwrap(await self.send(access_token, path, method=method, body=body, query=query))
