"""Manual activity sync per provider."""

import logging
from typing import Annotated

from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from fitlink.api.deps import get_current_user, provider_param
from fitlink.db.session import get_db
from fitlink.models.user import User
from fitlink.services.activity_sync import get_sync_status, status_payload, sync_activities
from fitlink.services.training_sessions import derive_in_background

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sync", tags=["sync"])


@router.post("/{provider}")
async def trigger_sync(
    background_tasks: BackgroundTasks,
    session: Annotated[AsyncSession, Depends(get_db)],
    user: Annotated[User, Depends(get_current_user)],
    provider: Annotated[str, Depends(provider_param)],
) -> dict:
    """Run a sync now. When anything new was written, training sessions are derived after the response."""
    result = await sync_activities(session, user.id, provider)
    if result["synced"] > 0:
        background_tasks.add_task(derive_in_background, user.id)
        logger.debug("Scheduled training session derivation for user_id=%s", user.id)
    return {"success": True, **result}


@router.get("/{provider}/status")
async def sync_status(
    session: Annotated[AsyncSession, Depends(get_db)],
    user: Annotated[User, Depends(get_current_user)],
    provider: Annotated[str, Depends(provider_param)],
) -> dict:
    return status_payload(await get_sync_status(session, user.id, provider))
