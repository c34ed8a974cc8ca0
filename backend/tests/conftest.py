"""Pytest configuration and shared fixtures for API tests."""

import os
from datetime import datetime, timedelta, timezone

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Set test DB and provider config before fitlink imports so config/engine use them
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./fitlink_test.db")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("ENCRYPTION_KEY", "MDEyMzQ1Njc4OWFiY2RlZjAxMjM0NTY3ODlhYmNkZWY=")
os.environ.setdefault("STRAVA_CLIENT_ID", "strava-client")
os.environ.setdefault("STRAVA_CLIENT_SECRET", "strava-secret")
os.environ.setdefault("GARMIN_CLIENT_ID", "garmin-consumer")
os.environ.setdefault("GARMIN_CLIENT_SECRET", "garmin-secret")
os.environ.setdefault("BACKFILL_REQUEST_DELAY_SECONDS", "0")
os.environ.setdefault("CRON_SECRET", "cron-test-secret")

from fitlink.core.auth import create_access_token
from fitlink.core.rate_limit import limiter
from fitlink.db.base import Base
from fitlink.db.session import async_session_maker, engine, init_db
from fitlink.main import app
from fitlink.models.provider_credential import ProviderCredential
from fitlink.models.user import User
from fitlink.services.crypto import encrypt_value
from fitlink.services.http_client import close_http_client, init_http_client

pytest_plugins = ["pytest_asyncio"]

limiter.enabled = False


class FakeUpstream:
    """
    httpx.MockTransport handler standing in for Strava, Garmin and the config service.

    Routes are keyed by (method, url without query). Each route holds a queue of
    responses; the last one repeats. A queued item may be an httpx.Response, a
    callable taking the request, or an exception to raise.
    """

    def __init__(self):
        self.routes: dict[tuple[str, str], list] = {}
        self.requests: list[httpx.Request] = []

    def add(self, method: str, url: str, *responses) -> None:
        self.routes.setdefault((method, url), []).extend(responses)

    def calls(self, method: str, url: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method and _route_url(r) == url]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queue = self.routes.get((request.method, _route_url(request)))
        if not queue:
            return httpx.Response(404, text=f"no fake route for {request.method} {request.url}")
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        if callable(item):
            return item(request)
        return httpx.Response(item.status_code, headers=item.headers, content=item.content)


def _route_url(request: httpx.Request) -> str:
    return f"{request.url.scheme}://{request.url.host}{request.url.path}"


@pytest_asyncio.fixture
async def clean_db():
    """Create tables and empty them so the next test has a clean DB."""
    await init_db()
    async with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            await conn.execute(table.delete())
    yield


@pytest_asyncio.fixture
async def upstream():
    """Shared HTTP client routed to a FakeUpstream for the duration of one test."""
    fake = FakeUpstream()
    await close_http_client()
    init_http_client(timeout=5.0, transport=httpx.MockTransport(fake))
    yield fake
    await close_http_client()


@pytest_asyncio.fixture
async def client(clean_db, upstream):
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


@pytest_asyncio.fixture
async def test_user(clean_db):
    """Create a user via DB (committed) and return (user_id, email, access_token)."""
    async with async_session_maker() as session:
        user = User(email="test@test.com")
        session.add(user)
        await session.commit()
        await session.refresh(user)
        token = create_access_token(user.id, user.email)
        return user.id, user.email, token


@pytest.fixture
def auth_headers(test_user):
    _, __, token = test_user
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def make_credential():
    """Factory storing a ProviderCredential; defaults to a valid Garmin PKCE credential."""

    async def _make(
        user_id: int,
        provider: str = "garmin",
        auth_scheme: str = "oauth2_pkce",
        access_token: str = "garmin-user-token",
        secret: str | None = "refresh-token",
        expires_in: timedelta = timedelta(hours=6),
    ) -> int:
        async with async_session_maker() as session:
            creds = ProviderCredential(
                user_id=user_id,
                provider=provider,
                auth_scheme=auth_scheme,
                access_token=access_token,
                encrypted_secret=encrypt_value(secret),
                consumer_key="garmin-consumer" if auth_scheme == "oauth1" else None,
                expires_at=datetime.now(timezone.utc) + expires_in,
            )
            session.add(creds)
            await session.commit()
            return creds.id

    return _make
