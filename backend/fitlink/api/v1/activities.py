"""Unified activity list across providers."""

from datetime import date
from typing import Annotated, Literal

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from fitlink.api.deps import get_current_user
from fitlink.db.session import get_db
from fitlink.models.user import User
from fitlink.services.unified_activities import ActivityFilters, activity_types, list_unified

router = APIRouter(prefix="/activities", tags=["activities"])


@router.get("")
async def list_activities(
    session: Annotated[AsyncSession, Depends(get_db)],
    user: Annotated[User, Depends(get_current_user)],
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    activity_type: str | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    keyword: str | None = None,
    source: Literal["all", "strava", "garmin"] = "all",
) -> dict:
    filters = ActivityFilters(
        activity_type=activity_type,
        date_from=date_from,
        date_to=date_to,
        keyword=keyword.strip() if keyword else None,
        source=source,
    )
    return await list_unified(session, user.id, page, page_size, filters)


@router.get("/types")
async def list_activity_types(
    session: Annotated[AsyncSession, Depends(get_db)],
    user: Annotated[User, Depends(get_current_user)],
) -> dict:
    return {"types": await activity_types(session, user.id)}
