"""
Derive TrainingSession rows from recent raw activities.

Activities that already have a session are skipped; each remaining one is
inserted inside its own SAVEPOINT so one bad row does not undo the others.
"""
import logging

from sqlalchemy import select, tuple_
from sqlalchemy.ext.asyncio import AsyncSession

from fitlink.config import settings
from fitlink.db.session import async_session_maker
from fitlink.models.training_session import TrainingSession
from fitlink.schemas.activity import RawActivity
from fitlink.services.scoring import Scorer, average_pace, default_score
from fitlink.services.unified_activities import recent_activities

logger = logging.getLogger(__name__)


def build_session(user_id: int, activity: RawActivity, scorer: Scorer) -> TrainingSession:
    duration = activity.moving_time or activity.elapsed_time or 0
    return TrainingSession(
        user_id=user_id,
        source=activity.source,
        source_activity_id=activity.source_activity_id,
        name=activity.name or f"{activity.type or 'Activity'} {activity.start_date.date().isoformat()}",
        activity_type=activity.type or "unknown",
        start_date=activity.start_date,
        duration=duration,
        distance=activity.distance,
        average_pace=average_pace(activity.distance, activity.moving_time),
        average_speed=activity.average_speed,
        average_heartrate=activity.average_heartrate,
        max_heartrate=activity.max_heartrate,
        calories=activity.calories,
        elevation_gain=activity.total_elevation_gain,
        performance_score=scorer(activity),
    )


async def derive_missing(
    session: AsyncSession,
    user_id: int,
    scorer: Scorer = default_score,
    window: int | None = None,
) -> dict:
    activities = await recent_activities(session, user_id, window or settings.derivation_window)
    if not activities:
        return {"success": True, "processed": 0, "total": 0, "skipped": 0, "failed": 0}

    keys = [(a.source, a.source_activity_id) for a in activities]
    r = await session.execute(
        select(TrainingSession.source, TrainingSession.source_activity_id).where(
            TrainingSession.user_id == user_id,
            tuple_(TrainingSession.source, TrainingSession.source_activity_id).in_(keys),
        )
    )
    derived = {(row[0], row[1]) for row in r.all()}

    processed = skipped = failed = 0
    for activity in activities:
        if (activity.source, activity.source_activity_id) in derived:
            skipped += 1
            continue
        try:
            row = build_session(user_id, activity, scorer)
            async with session.begin_nested():
                session.add(row)
        except Exception as e:
            # scorer is pluggable; any failure is confined to its activity
            failed += 1
            logger.exception(
                "Training session derivation failed user_id=%s %s:%s: %s",
                user_id,
                activity.source,
                activity.source_activity_id,
                e,
            )
            continue
        processed += 1
    await session.commit()
    logger.info(
        "Derived training sessions user_id=%s processed=%s skipped=%s failed=%s",
        user_id,
        processed,
        skipped,
        failed,
    )
    return {"success": True, "processed": processed, "total": len(activities), "skipped": skipped, "failed": failed}


async def derive_in_background(user_id: int) -> None:
    """Fire-and-forget hook run after a sync that wrote activities."""
    async with async_session_maker() as session:
        try:
            await derive_missing(session, user_id)
        except Exception as e:
            await session.rollback()
            logger.exception("Background derivation failed for user_id=%s: %s", user_id, e)


async def list_sessions(session: AsyncSession, user_id: int, limit: int = 50) -> list[TrainingSession]:
    r = await session.execute(
        select(TrainingSession)
        .where(TrainingSession.user_id == user_id)
        .order_by(TrainingSession.start_date.desc())
        .limit(limit)
    )
    return list(r.scalars().all())
