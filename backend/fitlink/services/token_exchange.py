"""
Authorization start and token exchange for both providers.

A server-issued `state` is stored with the pending attempt in
oauth_temp_tokens. The exchange trusts only the newest unconsumed attempt of
the user/provider, consumes it exactly once, and on a state mismatch purges
every pending attempt and records the rejection.
"""
import hmac
import logging
import secrets
from datetime import datetime, timedelta, timezone
from urllib.parse import urlencode

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from fitlink.config import settings
from fitlink.errors import CsrfMismatch, ExchangeFailed, InvalidRequest, MissingVerifier
from fitlink.models.oauth_temp_token import OAuthTempToken
from fitlink.schemas.oauth import TokenExchangeRequest
from fitlink.services import garmin_client, strava_client
from fitlink.services.audit import OAUTH_CONNECTED, OAUTH_CSRF_MISMATCH, log_provider_event
from fitlink.services.credentials import expires_at_from, store_credential
from fitlink.services.crypto import decrypt_value, encrypt_value
from fitlink.services.oauth_signing import OAUTH1
from fitlink.services.provider_config import STRAVA, OAuthAppConfig

logger = logging.getLogger(__name__)


async def purge_pending(session: AsyncSession, user_id: int, provider: str) -> int:
    r = await session.execute(
        delete(OAuthTempToken).where(
            OAuthTempToken.user_id == user_id,
            OAuthTempToken.provider == provider,
        )
    )
    return r.rowcount or 0


async def start_authorization(session: AsyncSession, user_id: int, config: OAuthAppConfig) -> dict:
    """Issue state (and PKCE verifier or OAuth1 request token) and return the provider URL to redirect to."""
    await purge_pending(session, user_id, config.provider)
    state = secrets.token_urlsafe(32)
    pending = OAuthTempToken(
        user_id=user_id,
        provider=config.provider,
        state=state,
        redirect_uri=config.redirect_uri,
        expires_at=datetime.now(timezone.utc) + timedelta(minutes=settings.oauth_state_ttl_minutes),
    )
    if config.provider == STRAVA:
        auth_url = strava_client.build_authorize_url(config, state)
    elif config.auth_scheme == OAUTH1:
        sep = "&" if "?" in config.redirect_uri else "?"
        callback = f"{config.redirect_uri}{sep}{urlencode({'state': state})}"
        token, token_secret = await garmin_client.request_oauth1_token(config, callback)
        pending.oauth_token = token
        pending.encrypted_token_secret = encrypt_value(token_secret)
        auth_url = garmin_client.build_oauth1_authorize_url(token, callback)
    else:
        pending.code_verifier = garmin_client.generate_code_verifier()
        auth_url = garmin_client.build_pkce_authorize_url(config, state, pending.code_verifier)
    session.add(pending)
    await session.flush()
    logger.info("Authorization started user_id=%s provider=%s", user_id, config.provider)
    return {"authUrl": auth_url, "state": state, "redirectUri": config.redirect_uri}


async def _latest_pending(session: AsyncSession, user_id: int, provider: str) -> OAuthTempToken | None:
    r = await session.execute(
        select(OAuthTempToken)
        .where(OAuthTempToken.user_id == user_id, OAuthTempToken.provider == provider)
        .order_by(OAuthTempToken.created_at.desc(), OAuthTempToken.id.desc())
        .limit(1)
    )
    return r.scalar_one_or_none()


async def _consume(session: AsyncSession, user_id: int, body: TokenExchangeRequest, provider: str) -> OAuthTempToken:
    pending = await _latest_pending(session, user_id, provider)
    if pending is None:
        raise MissingVerifier()
    if pending.expires_at <= datetime.now(timezone.utc):
        await purge_pending(session, user_id, provider)
        await session.commit()
        raise MissingVerifier("Authorization attempt expired; restart authorization")
    state_ok = hmac.compare_digest(pending.state.encode(), body.state.encode())
    token_ok = body.oauth_token is None or body.oauth_token == pending.oauth_token
    if not (state_ok and token_ok):
        purged = await purge_pending(session, user_id, provider)
        await log_provider_event(session, user_id, OAUTH_CSRF_MISMATCH, provider, details={"purged": purged})
        await session.commit()
        logger.warning("OAuth state mismatch user_id=%s provider=%s; pending attempts purged", user_id, provider)
        raise CsrfMismatch()
    r = await session.execute(delete(OAuthTempToken).where(OAuthTempToken.id == pending.id))
    if (r.rowcount or 0) != 1:
        raise MissingVerifier("Authorization attempt already used; restart authorization")
    return pending


async def exchange(
    session: AsyncSession,
    user_id: int,
    config: OAuthAppConfig,
    body: TokenExchangeRequest,
) -> dict:
    """Validate state, consume the pending attempt and store the resulting credential."""
    provider = config.provider
    pending = await _consume(session, user_id, body, provider)
    # consumed even if the provider rejects the grant below
    await session.commit()

    if provider == STRAVA:
        if not body.code:
            raise InvalidRequest("Authorization code required")
        data = await strava_client.exchange_code(config, body.code)
        athlete = data.get("athlete") or {}
        fields = dict(
            auth_scheme="oauth2",
            access_token=data.get("access_token"),
            secret=data.get("refresh_token"),
            expires_at=expires_at_from(data),
            provider_user_id=str(athlete["id"]) if athlete.get("id") is not None else None,
            scope=data.get("scope") or config.scope,
        )
    elif config.auth_scheme == OAUTH1:
        if not (body.oauth_token and body.oauth_verifier):
            raise InvalidRequest("oauth_token and oauth_verifier required")
        token, token_secret = await garmin_client.exchange_oauth1_verifier(
            config,
            pending.oauth_token or body.oauth_token,
            decrypt_value(pending.encrypted_token_secret),
            body.oauth_verifier,
        )
        fields = dict(
            auth_scheme=OAUTH1,
            access_token=token,
            secret=token_secret,
            expires_at=datetime.now(timezone.utc) + timedelta(days=settings.garmin_oauth1_token_ttl_days),
            consumer_key=config.client_id,
        )
    else:
        if not body.code:
            raise InvalidRequest("Authorization code required")
        if not pending.code_verifier:
            raise MissingVerifier()
        data = await garmin_client.exchange_pkce_code(config, body.code, pending.code_verifier)
        fields = dict(
            auth_scheme="oauth2_pkce",
            access_token=data.get("access_token"),
            secret=data.get("refresh_token"),
            expires_at=expires_at_from(data),
            scope=data.get("scope"),
        )

    if not fields["access_token"]:
        raise ExchangeFailed("Token response carried no access token")
    creds = await store_credential(session, user_id, provider, **fields)
    await log_provider_event(session, user_id, OAUTH_CONNECTED, provider)
    logger.info("Stored %s credential for user_id=%s", provider, user_id)
    return {
        "success": True,
        "provider": provider,
        "expiresAt": creds.expires_at.isoformat(),
        "scope": creds.scope,
    }
