"""
Garmin Connect client.

Authorization runs either as OAuth2 + PKCE (diauth token endpoint) or as the
legacy OAuth 1.0a three-legged flow, chosen by GARMIN_AUTH_SCHEME. Wellness
API calls (activities, backfill, webhook registration) are signed per call
through oauth_signing.sign_request.
"""
import base64
import hashlib
import logging
import secrets
from typing import Any
from urllib.parse import parse_qsl, urlencode

import httpx

from fitlink.config import settings
from fitlink.errors import ExchangeFailed, UpstreamError
from fitlink.models.provider_credential import ProviderCredential
from fitlink.services.http_client import get_http_client
from fitlink.services.oauth_signing import oauth1_authorization, sign_request
from fitlink.services.provider_config import OAuthAppConfig

logger = logging.getLogger(__name__)

# OAuth2 + PKCE
PKCE_AUTHORIZE_URL = "https://connect.garmin.com/oauth2Confirm"
PKCE_TOKEN_URL = "https://diauth.garmin.com/di-oauth2-service/oauth/token"

# OAuth 1.0a
REQUEST_TOKEN_URL = "https://connectapi.garmin.com/oauth-service/oauth/request_token"
OAUTH1_AUTHORIZE_URL = "https://connect.garmin.com/oauthConfirm"
ACCESS_TOKEN_URL = "https://connectapi.garmin.com/oauth-service/oauth/access_token"

API_BASE = "https://apis.garmin.com"
ACTIVITIES_URL = f"{API_BASE}/wellness-api/rest/activities"
BACKFILL_URLS = {
    "activities": f"{API_BASE}/wellness-api/rest/backfill/activities",
    "dailies": f"{API_BASE}/wellness-api/rest/backfill/dailies",
    "sleeps": f"{API_BASE}/wellness-api/rest/backfill/sleeps",
}
REGISTRATION_URL = "https://connectapi.garmin.com/webhook-service/registration"
SUBSCRIPTION_TYPES = ("ACTIVITY", "DAILY_SUMMARY", "SLEEP")

# Upload-time windows on the activities endpoint may not exceed one day.
MAX_WINDOW_SECONDS = 86400


def _json(r: httpx.Response, error: type[UpstreamError] = UpstreamError) -> Any:
    try:
        return r.json()
    except ValueError as e:
        raise error(f"Garmin returned malformed JSON (status {r.status_code})", status=r.status_code, body=r.text) from e


async def _post(url: str, headers: dict[str, str]) -> httpx.Response:
    try:
        return await get_http_client().post(url, headers=headers)
    except httpx.HTTPError as e:
        raise UpstreamError(f"Garmin OAuth1 endpoint unreachable: {e}") from e


def generate_code_verifier() -> str:
    return secrets.token_urlsafe(64)[:128]


def code_challenge(verifier: str) -> str:
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def build_pkce_authorize_url(config: OAuthAppConfig, state: str, verifier: str) -> str:
    params = {
        "client_id": config.client_id,
        "response_type": "code",
        "redirect_uri": config.redirect_uri,
        "state": state,
        "code_challenge": code_challenge(verifier),
        "code_challenge_method": "S256",
    }
    return f"{PKCE_AUTHORIZE_URL}?{urlencode(params)}"


def build_oauth1_authorize_url(request_token: str, callback: str) -> str:
    return f"{OAUTH1_AUTHORIZE_URL}?{urlencode({'oauth_token': request_token, 'oauth_callback': callback})}"


async def _post_token(data: dict[str, str]) -> httpx.Response:
    client = get_http_client()
    try:
        return await client.post(PKCE_TOKEN_URL, data=data)
    except httpx.HTTPError as e:
        raise UpstreamError(f"Garmin token endpoint unreachable: {e}") from e


async def exchange_pkce_code(config: OAuthAppConfig, code: str, code_verifier: str) -> dict[str, Any]:
    r = await _post_token(
        {
            "grant_type": "authorization_code",
            "client_id": config.client_id,
            "client_secret": config.client_secret,
            "code": code,
            "code_verifier": code_verifier,
            "redirect_uri": config.redirect_uri,
        }
    )
    if r.status_code >= 300:
        logger.warning("Garmin PKCE exchange failed: status=%s", r.status_code)
        raise ExchangeFailed(status=r.status_code, body=r.text)
    return _json(r, ExchangeFailed)


async def refresh_pkce_token(refresh_token: str) -> dict[str, Any]:
    r = await _post_token(
        {
            "grant_type": "refresh_token",
            "client_id": settings.garmin_client_id,
            "client_secret": settings.garmin_client_secret,
            "refresh_token": refresh_token,
        }
    )
    if r.status_code >= 300:
        raise UpstreamError(status=r.status_code, body=r.text)
    return _json(r)


def _parse_token_pair(body: str) -> tuple[str, str]:
    parts = dict(parse_qsl(body))
    token, secret = parts.get("oauth_token"), parts.get("oauth_token_secret")
    if not token or not secret:
        raise ExchangeFailed("Invalid token response from Garmin")
    return token, secret


async def request_oauth1_token(config: OAuthAppConfig, callback: str) -> tuple[str, str]:
    """Step 1 of the OAuth1 flow: obtain a temporary request token and secret."""
    header = oauth1_authorization(
        "POST",
        REQUEST_TOKEN_URL,
        consumer_key=config.client_id,
        consumer_secret=config.client_secret,
        extra_oauth={"oauth_callback": callback},
    )
    r = await _post(REQUEST_TOKEN_URL, {"Authorization": header})
    if r.status_code >= 300:
        raise UpstreamError(status=r.status_code, body=r.text)
    return _parse_token_pair(r.text)


async def exchange_oauth1_verifier(
    config: OAuthAppConfig,
    request_token: str,
    request_token_secret: str,
    verifier: str,
) -> tuple[str, str]:
    """Step 3: trade the authorized request token for an access token and secret."""
    header = oauth1_authorization(
        "POST",
        ACCESS_TOKEN_URL,
        consumer_key=config.client_id,
        consumer_secret=config.client_secret,
        token=request_token,
        token_secret=request_token_secret,
        extra_oauth={"oauth_verifier": verifier},
    )
    r = await _post(
        ACCESS_TOKEN_URL,
        {"Authorization": header, "Content-Type": "application/x-www-form-urlencoded"},
    )
    if r.status_code >= 300:
        logger.warning("Garmin OAuth1 access token request failed: status=%s", r.status_code)
        raise ExchangeFailed(status=r.status_code, body=r.text)
    return _parse_token_pair(r.text)


async def signed_get(credential: ProviderCredential, url: str, params: dict[str, str] | None = None) -> httpx.Response:
    """GET signed with the credential. Transport failures become UpstreamError; HTTP status is left to the caller."""
    client = get_http_client()
    authorization = sign_request(credential, "GET", url, params, consumer_secret=settings.garmin_client_secret)
    try:
        return await client.get(url, params=params, headers={"Authorization": authorization})
    except httpx.HTTPError as e:
        raise UpstreamError(f"Garmin request failed: {e}") from e


async def fetch_activities(credential: ProviderCredential, start_epoch: int, end_epoch: int) -> list[dict]:
    """Activities uploaded in [start, end); the window must be at most one day."""
    params = {"uploadStartTimeInSeconds": str(start_epoch), "uploadEndTimeInSeconds": str(end_epoch)}
    r = await signed_get(credential, ACTIVITIES_URL, params)
    if r.status_code >= 300:
        raise UpstreamError(status=r.status_code, body=r.text)
    data = _json(r)
    return data if isinstance(data, list) else []


async def fetch_callback(credential: ProviderCredential, callback_url: str) -> list[dict]:
    """Pull the data a ping notification points at."""
    r = await signed_get(credential, callback_url)
    if r.status_code >= 300:
        raise UpstreamError(status=r.status_code, body=r.text)
    data = _json(r)
    return data if isinstance(data, list) else []


async def submit_backfill(
    credential: ProviderCredential,
    summary_type: str,
    start_epoch: int,
    end_epoch: int,
) -> httpx.Response:
    """Ask Garmin to push historical summaries for the period. Status mapping is the caller's job."""
    params = {"summaryStartTimeInSeconds": str(start_epoch), "summaryEndTimeInSeconds": str(end_epoch)}
    return await signed_get(credential, BACKFILL_URLS[summary_type], params)


async def register_webhook(credential: ProviderCredential, webhook_url: str, summary_type: str) -> httpx.Response:
    client = get_http_client()
    authorization = sign_request(credential, "POST", REGISTRATION_URL, consumer_secret=settings.garmin_client_secret)
    try:
        return await client.post(
            REGISTRATION_URL,
            json={"webhookURL": webhook_url, "summaryType": summary_type},
            headers={"Authorization": authorization},
        )
    except httpx.HTTPError as e:
        raise UpstreamError(f"Garmin registration failed: {e}") from e
