"""Credential store: one ProviderCredential per (user, provider)."""

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from fitlink.errors import CredentialExpired, NotConnected, UpstreamError
from fitlink.models.provider_credential import ProviderCredential
from fitlink.models.sync_status import SyncStatus
from fitlink.services import garmin_client, strava_client
from fitlink.services.crypto import decrypt_value, encrypt_value
from fitlink.services.oauth_signing import OAUTH1
from fitlink.services.provider_config import STRAVA

logger = logging.getLogger(__name__)


async def get_credential(session: AsyncSession, user_id: int, provider: str) -> ProviderCredential | None:
    r = await session.execute(
        select(ProviderCredential).where(
            ProviderCredential.user_id == user_id,
            ProviderCredential.provider == provider,
        )
    )
    return r.scalar_one_or_none()


async def require_credential(session: AsyncSession, user_id: int, provider: str) -> ProviderCredential:
    creds = await get_credential(session, user_id, provider)
    if creds is None:
        raise NotConnected(f"{provider} is not connected")
    return creds


async def store_credential(
    session: AsyncSession,
    user_id: int,
    provider: str,
    *,
    auth_scheme: str,
    access_token: str,
    secret: str | None,
    expires_at: datetime,
    consumer_key: str | None = None,
    provider_user_id: str | None = None,
    scope: str | None = None,
) -> ProviderCredential:
    """Insert or replace the user's credential for the provider."""
    creds = await get_credential(session, user_id, provider)
    if creds is None:
        creds = ProviderCredential(user_id=user_id, provider=provider)
        session.add(creds)
    creds.auth_scheme = auth_scheme
    creds.access_token = access_token
    creds.encrypted_secret = encrypt_value(secret)
    creds.expires_at = expires_at
    creds.consumer_key = consumer_key
    creds.provider_user_id = provider_user_id
    creds.scope = scope
    await session.flush()
    return creds


async def delete_credential(session: AsyncSession, user_id: int, provider: str) -> bool:
    r = await session.execute(
        delete(ProviderCredential).where(
            ProviderCredential.user_id == user_id,
            ProviderCredential.provider == provider,
        )
    )
    await session.execute(delete(SyncStatus).where(SyncStatus.user_id == user_id, SyncStatus.provider == provider))
    return (r.rowcount or 0) > 0


def expires_at_from(data: dict) -> datetime:
    """Token responses carry either an absolute `expires_at` (epoch) or a relative `expires_in`."""
    now = datetime.now(timezone.utc)
    if data.get("expires_at") is not None:
        return datetime.fromtimestamp(int(data["expires_at"]), tz=timezone.utc)
    if data.get("expires_in") is not None:
        return now + timedelta(seconds=int(data["expires_in"]))
    return now + timedelta(hours=6)


async def ensure_fresh(session: AsyncSession, creds: ProviderCredential) -> ProviderCredential:
    """
    Return a usable credential, refreshing an expired OAuth2 token if possible.

    OAuth1 credentials cannot be refreshed; a missing refresh token or a
    rejected refresh means the user has to authorize again.
    """
    if not creds.is_expired():
        return creds
    if creds.auth_scheme == OAUTH1:
        raise CredentialExpired(f"{creds.provider} authorization expired; reconnect required")
    refresh_token = decrypt_value(creds.encrypted_secret)
    if not refresh_token:
        raise CredentialExpired(f"{creds.provider} credential expired and cannot be refreshed")
    try:
        if creds.provider == STRAVA:
            data = await strava_client.refresh_access_token(refresh_token)
        else:
            data = await garmin_client.refresh_pkce_token(refresh_token)
    except UpstreamError as e:
        logger.warning("Token refresh rejected for user_id=%s provider=%s: %s", creds.user_id, creds.provider, e.status)
        raise CredentialExpired(f"{creds.provider} refresh failed; reconnect required") from e
    new_access = data.get("access_token")
    if not new_access:
        raise CredentialExpired(f"{creds.provider} refresh returned no access token")
    creds.access_token = new_access
    creds.expires_at = expires_at_from(data)
    if data.get("refresh_token"):
        creds.encrypted_secret = encrypt_value(data["refresh_token"])
    await session.flush()
    logger.info("Refreshed %s token for user_id=%s", creds.provider, creds.user_id)
    return creds
