"""
Outbound HTTP for provider APIs (Strava, Garmin, config service).

One httpx.AsyncClient lives for the app's lifetime so connection pools are
shared across requests and background jobs. Tests install an
httpx.MockTransport through init_http_client(transport=...).
"""
from __future__ import annotations

import logging

import httpx

logger = logging.getLogger(__name__)

USER_AGENT = "fitlink/0.1"

_client: httpx.AsyncClient | None = None


async def _log_response(response: httpx.Response) -> None:
    request = response.request
    logger.debug("%s %s%s -> %s", request.method, request.url.host, request.url.path, response.status_code)


def init_http_client(
    timeout: float = 30.0,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """Create the shared client once; later calls return the existing one."""
    global _client
    if _client is None:
        _client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout, connect=min(timeout, 10.0)),
            limits=httpx.Limits(max_connections=50, max_keepalive_connections=10),
            headers={"User-Agent": USER_AGENT},
            event_hooks={"response": [_log_response]},
            transport=transport,
        )
    return _client


def get_http_client() -> httpx.AsyncClient:
    if _client is None:
        raise RuntimeError("HTTP client not initialized; call init_http_client() in the app lifespan first.")
    return _client


async def close_http_client() -> None:
    global _client
    client, _client = _client, None
    if client is not None:
        await client.aclose()
