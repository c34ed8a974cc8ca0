"""
Strava API client: OAuth2 authorize URL, code exchange/refresh, list activities.
All calls go through the shared httpx client.
"""
import logging
from typing import Any
from urllib.parse import urlencode

import httpx

from fitlink.config import settings
from fitlink.errors import ExchangeFailed, UpstreamError
from fitlink.services.http_client import get_http_client
from fitlink.services.provider_config import OAuthAppConfig

logger = logging.getLogger(__name__)

STRAVA_AUTHORIZE_URL = "https://www.strava.com/oauth/authorize"
STRAVA_OAUTH_URL = "https://www.strava.com/oauth/token"
STRAVA_API_BASE = "https://www.strava.com/api/v3"
PER_PAGE = 200


def _json(r: httpx.Response, error: type[UpstreamError] = UpstreamError) -> Any:
    try:
        return r.json()
    except ValueError as e:
        raise error(f"Strava returned malformed JSON (status {r.status_code})", status=r.status_code, body=r.text) from e


async def _post_token(data: dict[str, str]) -> httpx.Response:
    try:
        return await get_http_client().post(STRAVA_OAUTH_URL, data=data)
    except httpx.HTTPError as e:
        raise UpstreamError(f"Strava token endpoint unreachable: {e}") from e


def build_authorize_url(config: OAuthAppConfig, state: str) -> str:
    params = {
        "client_id": config.client_id,
        "redirect_uri": config.redirect_uri,
        "response_type": "code",
        "approval_prompt": "auto",
        "scope": config.scope or settings.strava_scope,
        "state": state,
    }
    return f"{STRAVA_AUTHORIZE_URL}?{urlencode(params)}"


async def exchange_code(config: OAuthAppConfig, code: str) -> dict[str, Any]:
    """Exchange authorization code for tokens. Non-2xx raises ExchangeFailed with upstream status and body."""
    data: dict[str, str] = {
        "client_id": config.client_id,
        "client_secret": config.client_secret,
        "code": code,
        "grant_type": "authorization_code",
    }
    if config.redirect_uri:
        data["redirect_uri"] = config.redirect_uri
    r = await _post_token(data)
    if r.status_code >= 300:
        logger.warning("Strava token exchange failed: status=%s", r.status_code)
        raise ExchangeFailed(status=r.status_code, body=r.text)
    return _json(r, ExchangeFailed)


async def refresh_access_token(refresh_token: str) -> dict[str, Any]:
    r = await _post_token(
        {
            "client_id": settings.strava_client_id,
            "client_secret": settings.strava_client_secret,
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
        }
    )
    if r.status_code >= 300:
        raise UpstreamError(status=r.status_code, body=r.text)
    return _json(r)


async def get_activities_page(
    authorization: str,
    after_epoch: int,
    page: int = 1,
    per_page: int = PER_PAGE,
) -> list[dict]:
    """One page of the athlete's activities newer than `after_epoch`."""
    client = get_http_client()
    try:
        r = await client.get(
            f"{STRAVA_API_BASE}/athlete/activities",
            params={"after": after_epoch, "page": page, "per_page": per_page},
            headers={"Authorization": authorization},
        )
    except httpx.HTTPError as e:
        raise UpstreamError(f"Strava request failed: {e}") from e
    if r.status_code >= 300:
        raise UpstreamError(status=r.status_code, body=r.text)
    data = _json(r)
    return data if isinstance(data, list) else []
