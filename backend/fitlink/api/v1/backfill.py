"""Garmin historical backfill: initiate, manual period, status, scheduled cleanup."""

from typing import Annotated

from fastapi import APIRouter, Body, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from fitlink.api.deps import get_current_user, verify_cron_secret
from fitlink.db.session import get_db
from fitlink.models.user import User
from fitlink.schemas.backfill import BackfillInitiateRequest, ManualBackfillRequest
from fitlink.services import backfill as backfill_service

router = APIRouter(prefix="/backfill", tags=["backfill"])


@router.post("/initiate")
async def initiate(
    session: Annotated[AsyncSession, Depends(get_db)],
    user: Annotated[User, Depends(get_current_user)],
    body: Annotated[BackfillInitiateRequest | None, Body()] = None,
) -> dict:
    body = body or BackfillInitiateRequest()
    return await backfill_service.initiate_backfill(session, user.id, body.months_back, list(body.summary_types))


@router.post("/manual")
async def manual(
    body: ManualBackfillRequest,
    session: Annotated[AsyncSession, Depends(get_db)],
    user: Annotated[User, Depends(get_current_user)],
) -> dict:
    return await backfill_service.manual_backfill(session, user.id, body.start, body.end, list(body.summary_types))


@router.get("/status")
async def status(
    session: Annotated[AsyncSession, Depends(get_db)],
    user: Annotated[User, Depends(get_current_user)],
) -> dict:
    rows = await backfill_service.list_requests(session, user.id)
    return {"requests": [backfill_service.serialize(r) for r in rows]}


@router.post("/retry-cleanup", dependencies=[Depends(verify_cron_secret)])
async def retry_cleanup(session: Annotated[AsyncSession, Depends(get_db)]) -> dict:
    """Reconcile stuck requests for all users. Called by an external cron; the in-process scheduler runs the same pass."""
    return await backfill_service.reconcile(session)
