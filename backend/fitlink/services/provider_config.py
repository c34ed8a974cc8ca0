"""
Per-request OAuth app configuration: client credentials, redirect URI and
deployment environment (production / preview / development) derived from
the caller's Origin or Host. The result is an immutable value handed to the
token exchange explicitly.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from urllib.parse import urlsplit

import httpx

from fitlink.config import settings
from fitlink.errors import ConfigMissing, UnknownProvider
from fitlink.services.http_client import get_http_client

logger = logging.getLogger(__name__)

STRAVA = "strava"
GARMIN = "garmin"
PROVIDERS = (STRAVA, GARMIN)

PRODUCTION = "production"
PREVIEW = "preview"
DEVELOPMENT = "development"

_LOCAL_HOSTS = {"localhost", "127.0.0.1"}


@dataclass(frozen=True)
class OAuthAppConfig:
    provider: str
    client_id: str
    client_secret: str
    redirect_uri: str
    environment: str
    auth_scheme: str
    scope: str = ""

    def public(self) -> dict:
        return {"clientId": self.client_id, "redirectUri": self.redirect_uri, "environment": self.environment}


def ensure_provider(provider: str) -> str:
    if provider not in PROVIDERS:
        raise UnknownProvider(f"Unknown provider: {provider}")
    return provider


def resolve_origin(origin: str | None, host: str | None) -> str:
    """Origin header wins; otherwise rebuild one from Host; otherwise the public base URL."""
    if origin and origin != "null":
        return origin.rstrip("/")
    if host:
        hostname = host.split(":", 1)[0].lower()
        scheme = "http" if hostname in _LOCAL_HOSTS else "https"
        return f"{scheme}://{host}"
    return settings.webhook_base_url.rstrip("/")


def resolve_environment(origin_url: str) -> str:
    hostname = (urlsplit(origin_url).hostname or "").lower()
    if hostname in settings.split_hosts(settings.production_hosts):
        return PRODUCTION
    if hostname.startswith("preview--") or hostname in settings.split_hosts(settings.preview_hosts):
        return PREVIEW
    return DEVELOPMENT


def _local_defaults(provider: str, origin_url: str, environment: str) -> OAuthAppConfig:
    if provider == STRAVA:
        return OAuthAppConfig(
            provider=STRAVA,
            client_id=settings.strava_client_id,
            client_secret=settings.strava_client_secret,
            redirect_uri=settings.strava_redirect_uri or f"{origin_url}/{STRAVA}",
            environment=environment,
            auth_scheme="oauth2",
            scope=settings.strava_scope,
        )
    return OAuthAppConfig(
        provider=GARMIN,
        client_id=settings.garmin_client_id,
        client_secret=settings.garmin_client_secret,
        redirect_uri=settings.garmin_redirect_uri or f"{origin_url}/{GARMIN}",
        environment=environment,
        auth_scheme=settings.garmin_auth_scheme,
    )


async def _fetch_remote_overrides(provider: str, environment: str) -> dict:
    """Ask the auxiliary config service; any failure means 'no overrides'."""
    if not settings.config_service_url:
        return {}
    client = get_http_client()
    try:
        r = await client.get(
            settings.config_service_url,
            params={"provider": provider, "environment": environment},
            timeout=settings.config_service_timeout_seconds,
        )
        r.raise_for_status()
        data = r.json()
    except httpx.TimeoutException:
        logger.warning("Config service timed out for provider=%s; using local defaults", provider)
        return {}
    except httpx.HTTPError as e:
        logger.warning("Config service unavailable for provider=%s (%s); using local defaults", provider, e)
        return {}
    except ValueError:
        logger.warning("Config service returned malformed JSON for provider=%s; using local defaults", provider)
        return {}
    if not isinstance(data, dict):
        logger.warning("Config service returned unexpected payload for provider=%s; using local defaults", provider)
        return {}
    return data


async def resolve_app_config(provider: str, origin: str | None = None, host: str | None = None) -> OAuthAppConfig:
    ensure_provider(provider)
    origin_url = resolve_origin(origin, host)
    environment = resolve_environment(origin_url)
    config = _local_defaults(provider, origin_url, environment)

    overrides = await _fetch_remote_overrides(provider, environment)
    changes = {}
    if isinstance(overrides.get("clientId"), str) and overrides["clientId"]:
        changes["client_id"] = overrides["clientId"]
    if isinstance(overrides.get("redirectUri"), str) and overrides["redirectUri"]:
        changes["redirect_uri"] = overrides["redirectUri"]
    if changes:
        config = replace(config, **changes)

    if not config.client_id or not config.client_secret:
        raise ConfigMissing(f"{provider} client id/secret not configured")
    logger.debug("Resolved %s app config for environment=%s", provider, environment)
    return config
