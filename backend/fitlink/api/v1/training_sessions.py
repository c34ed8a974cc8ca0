"""Derived training sessions."""

from typing import Annotated

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from fitlink.api.deps import get_current_user, get_scorer
from fitlink.db.session import get_db
from fitlink.models.user import User
from fitlink.services.scoring import Scorer
from fitlink.services.training_sessions import derive_missing, list_sessions

router = APIRouter(prefix="/training-sessions", tags=["training-sessions"])


@router.post("/derive")
async def derive(
    session: Annotated[AsyncSession, Depends(get_db)],
    user: Annotated[User, Depends(get_current_user)],
    scorer: Annotated[Scorer, Depends(get_scorer)],
) -> dict:
    return await derive_missing(session, user.id, scorer=scorer)


@router.get("")
async def get_sessions(
    session: Annotated[AsyncSession, Depends(get_db)],
    user: Annotated[User, Depends(get_current_user)],
    limit: int = Query(50, ge=1, le=200),
) -> list[dict]:
    rows = await list_sessions(session, user.id, limit)
    return [
        {
            "id": s.id,
            "source": s.source,
            "sourceActivityId": s.source_activity_id,
            "name": s.name,
            "activityType": s.activity_type,
            "startDate": s.start_date.isoformat(),
            "duration": s.duration,
            "distance": s.distance,
            "averagePace": s.average_pace,
            "averageSpeed": s.average_speed,
            "averageHeartrate": s.average_heartrate,
            "maxHeartrate": s.max_heartrate,
            "calories": s.calories,
            "elevationGain": s.elevation_gain,
            "performanceScore": s.performance_score,
        }
        for s in rows
    ]
