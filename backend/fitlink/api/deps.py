"""FastAPI dependencies: current user from JWT, cron secret, per-request provider config."""

from typing import Annotated

from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from fitlink.config import settings
from fitlink.core.auth import user_id_from_token
from fitlink.db.session import get_db
from fitlink.errors import AuthError
from fitlink.models.user import User
from fitlink.services.provider_config import OAuthAppConfig, ensure_provider, resolve_app_config
from fitlink.services.scoring import Scorer, default_score


async def get_current_user(
    request: Request,
    session: Annotated[AsyncSession, Depends(get_db)],
) -> User:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        raise AuthError("Not authenticated")
    token = auth_header[7:].strip()
    if not token:
        raise AuthError("Not authenticated")
    user_id = user_id_from_token(token)
    r = await session.execute(select(User).where(User.id == user_id))
    user = r.scalar_one_or_none()
    if not user:
        raise AuthError("User not found")
    return user


async def verify_cron_secret(x_cron_secret: str | None = Header(None, alias="X-Cron-Secret")) -> None:
    """Shared secret for the scheduled cleanup trigger."""
    if not settings.cron_secret:
        raise HTTPException(status_code=503, detail="Cron trigger not configured")
    if x_cron_secret != settings.cron_secret:
        raise HTTPException(status_code=401, detail="Invalid cron secret")


def provider_param(provider: str) -> str:
    return ensure_provider(provider)


async def get_app_config(request: Request, provider: Annotated[str, Depends(provider_param)]) -> OAuthAppConfig:
    """OAuth app config for this request's origin; passed explicitly to the exchange."""
    return await resolve_app_config(provider, request.headers.get("origin"), request.headers.get("host"))


def get_scorer() -> Scorer:
    return default_score
