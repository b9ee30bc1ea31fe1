"""Shared fixtures: settings, a throwaway SQLite store and a fake SP-API vendor."""

import os

os.environ.setdefault("DATABASE_URL", "sqlite://")

from datetime import UTC, datetime, timedelta
from typing import Any, Callable, Iterator

import httpx
import pytest
from sqlalchemy.orm import sessionmaker

from seller_backend.core.database import Base, make_engine
from seller_backend.core.models import ChannelConnection
from seller_backend.core.settings import US_MARKETPLACE_ID, AmazonSettings, AppSettings
from seller_backend.core.store import SellerStore

NOW = datetime(2025, 6, 1, 12, 0, 0, tzinfo=UTC)


class FakeClock:
    """Settable clock passed wherever code asks for the current time."""

    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class FakeVendor:
    """
    Routes httpx requests to canned responses by URL path.

    A route maps to a dict (200 JSON), a (status, json) tuple, or a callable
    taking the request and returning an httpx.Response.
    """

    def __init__(self, routes: dict[str, Any] | None = None) -> None:
        self.routes = routes or {}
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get(request.url.path)
        if route is None:
            return httpx.Response(404, json={"errors": [{"code": "NotFound"}]})
        if callable(route):
            return route(request)
        if isinstance(route, tuple):
            status, body = route
            return httpx.Response(status, json=body)
        return httpx.Response(200, json=route)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)

    def calls(self, path: str) -> int:
        return sum(1 for request in self.requests if request.url.path == path)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def amazon_settings() -> AmazonSettings:
    return AmazonSettings(
        _env_file=None,
        client_id="amzn1.application-oa2-client.test",
        client_secret="test-secret",
        app_id="amzn1.sp.solution.test",
        refresh_token="rt-configured",
        lwa_token_url="https://lwa.test/auth/o2/token",
        api_base_url="https://sp.test",
        user_agent="SellerDashboardTests/1.0 (Language=Python)",
    )


@pytest.fixture
def app_settings() -> AppSettings:
    return AppSettings(
        _env_file=None,
        site_url="https://dashboard.test",
        jwt_secret_key="test_secret_key",
        jwt_algorithm="HS256",
        jwt_access_token_expire_minutes=30,
    )


@pytest.fixture
def session_factory(tmp_path: Any) -> Iterator[sessionmaker]:
    engine = make_engine(f"sqlite:///{tmp_path / 'seller.db'}")
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def store(session_factory: sessionmaker) -> SellerStore:
    return SellerStore(session_factory)


@pytest.fixture
def seed_connection(session_factory: sessionmaker) -> Callable[..., None]:
    """Insert a connected Amazon connection row for a user."""

    def _seed(user_id: str = "user-1", **fields: Any) -> None:
        values: dict[str, Any] = {
            "channel": "Amazon",
            "connected": True,
            "status": "connected",
            "store_name": "Amazon US (SELLER1)",
            "seller_id": "SELLER1",
            "marketplace_id": US_MARKETPLACE_ID,
            "access_token": "at-cached",
            "refresh_token": "rt-stored",
            "token_expires_at": NOW + timedelta(hours=1),
        }
        values.update(fields)
        with session_factory() as session:
            session.add(ChannelConnection(user_id=user_id, **values))
            session.commit()

    return _seed
