"""Provider connection: app config, authorization start, token exchange, status, disconnect."""

from datetime import datetime, timezone
from typing import Annotated

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from fitlink.api.deps import get_app_config, get_current_user, provider_param
from fitlink.db.session import get_db
from fitlink.models.user import User
from fitlink.schemas.oauth import TokenExchangeRequest
from fitlink.services import token_exchange
from fitlink.services.audit import OAUTH_DISCONNECTED, log_provider_event
from fitlink.services.credentials import delete_credential, get_credential
from fitlink.services.provider_config import OAuthAppConfig

router = APIRouter(prefix="/oauth", tags=["oauth"])


@router.get("/{provider}/config")
async def get_provider_config(config: Annotated[OAuthAppConfig, Depends(get_app_config)]) -> dict:
    """Public part of the OAuth app config for the caller's environment."""
    return config.public()


@router.post("/{provider}/authorize")
async def authorize(
    session: Annotated[AsyncSession, Depends(get_db)],
    user: Annotated[User, Depends(get_current_user)],
    config: Annotated[OAuthAppConfig, Depends(get_app_config)],
) -> dict:
    return await token_exchange.start_authorization(session, user.id, config)


@router.post("/{provider}/token-exchange")
async def exchange_token(
    body: TokenExchangeRequest,
    session: Annotated[AsyncSession, Depends(get_db)],
    user: Annotated[User, Depends(get_current_user)],
    config: Annotated[OAuthAppConfig, Depends(get_app_config)],
) -> dict:
    return await token_exchange.exchange(session, user.id, config, body)


@router.get("/{provider}/status")
async def connection_status(
    session: Annotated[AsyncSession, Depends(get_db)],
    user: Annotated[User, Depends(get_current_user)],
    provider: Annotated[str, Depends(provider_param)],
) -> dict:
    creds = await get_credential(session, user.id, provider)
    if not creds:
        return {"connected": False, "expiresAt": None, "expired": False}
    return {
        "connected": True,
        "expiresAt": creds.expires_at.isoformat(),
        "expired": creds.expires_at <= datetime.now(timezone.utc),
    }


@router.post("/{provider}/disconnect")
async def disconnect(
    request: Request,
    session: Annotated[AsyncSession, Depends(get_db)],
    user: Annotated[User, Depends(get_current_user)],
    provider: Annotated[str, Depends(provider_param)],
) -> dict:
    """Remove the credential and sync status; synced activities are kept."""
    removed = await delete_credential(session, user.id, provider)
    await token_exchange.purge_pending(session, user.id, provider)
    if removed:
        ip = request.client.host if request.client else None
        await log_provider_event(session, user.id, OAUTH_DISCONNECTED, provider, ip_address=ip)
    await session.commit()
    return {"success": True, "disconnected": removed}
