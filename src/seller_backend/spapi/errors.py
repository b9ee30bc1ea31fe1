"""Exceptions raised by the SP-API layer."""


class SellerBackendError(Exception):
    """Base class for errors raised by the seller backend."""


class ConfigurationError(SellerBackendError):
    """A required setting (client id, secret, app id, ...) is missing."""


class LwaError(SellerBackendError):
    """The LWA token endpoint rejected a request."""

    def __init__(self, message: str, status_code: int, raw_body: str) -> None:
        super().__init__(f"{message} ({status_code}): {raw_body}")
        self.status_code = status_code
        self.raw_body = raw_body


class AuthExchangeError(LwaError):
    """Exchanging an authorization code for tokens failed."""


class TokenRefreshError(LwaError):
    """Exchanging a refresh token for a new access token failed."""


class SpApiError(SellerBackendError):
    """An SP-API resource call returned a non-2xx response."""

    def __init__(self, path: str, status_code: int, raw_body: str) -> None:
        super().__init__(f"SP-API {path} failed ({status_code}): {raw_body}")
        self.path = path
        self.status_code = status_code
        self.raw_body = raw_body
