"""Garmin push notifications. No end-user auth: ownership comes from the payload's access token."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from fitlink.api.deps import get_current_user
from fitlink.config import settings
from fitlink.core.rate_limit import limiter
from fitlink.db.session import get_db
from fitlink.models.user import User
from fitlink.services.webhook_ingest import ingest, register_webhooks

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

WEBHOOK_PATH = "/api/v1/webhooks/garmin"


@router.get("/garmin")
@limiter.exempt
async def garmin_verify() -> dict:
    return {"status": "active"}


@router.post("/garmin")
@limiter.exempt
async def garmin_webhook(
    request: Request,
    session: Annotated[AsyncSession, Depends(get_db)],
) -> dict:
    """Always 200: Garmin only needs the acknowledgement; outcomes are in the body and logs."""
    try:
        payload = await request.json()
    except ValueError:
        logger.warning("Garmin webhook: invalid JSON body")
        return {"success": False, "error": "Invalid JSON", "processed": 0, "failed": 0, "ignored": 0}
    return await ingest(session, payload)


@router.post("/garmin/register")
async def garmin_register(
    session: Annotated[AsyncSession, Depends(get_db)],
    user: Annotated[User, Depends(get_current_user)],
) -> dict:
    webhook_url = settings.webhook_base_url.rstrip("/") + WEBHOOK_PATH
    results = await register_webhooks(session, user.id, webhook_url)
    return {
        "success": all(r["status"] == "success" for r in results),
        "webhookUrl": webhook_url,
        "results": results,
    }
