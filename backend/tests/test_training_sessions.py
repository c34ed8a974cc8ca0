"""Tests for training session derivation: once per source activity, pluggable scorer, per-row isolation."""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from fitlink.api.deps import get_scorer
from fitlink.db.session import async_session_maker
from fitlink.main import app
from fitlink.models.activities import GarminActivity, StravaActivity
from fitlink.models.training_session import TrainingSession
from fitlink.schemas.activity import RawActivity
from fitlink.services.scoring import average_pace, default_score
from fitlink.services.training_sessions import derive_missing

BASE = datetime(2026, 9, 1, 6, 0, tzinfo=timezone.utc)


async def _seed(user_id: int) -> None:
    async with async_session_maker() as session:
        session.add_all(
            [
                StravaActivity(
                    user_id=user_id,
                    strava_activity_id=1,
                    name="Tempo",
                    type="Run",
                    start_date=BASE,
                    distance=10000.0,
                    moving_time=2700,
                    average_speed=3.7,
                ),
                StravaActivity(
                    user_id=user_id,
                    strava_activity_id=2,
                    name="Broken",
                    type="Run",
                    start_date=BASE + timedelta(days=1),
                    distance=5000.0,
                    moving_time=1500,
                ),
                GarminActivity(
                    user_id=user_id,
                    garmin_activity_id=3,
                    name=None,
                    type="cycling",
                    start_date=BASE + timedelta(days=2),
                    distance=40000.0,
                    elapsed_time=5400,
                ),
            ]
        )
        await session.commit()


def _scorer(activity: RawActivity) -> float:
    if activity.name == "Broken":
        raise ValueError("cannot score")
    return 42.0


async def _sessions(user_id: int) -> list[TrainingSession]:
    async with async_session_maker() as session:
        r = await session.execute(
            select(TrainingSession).where(TrainingSession.user_id == user_id).order_by(TrainingSession.start_date)
        )
        return list(r.scalars().all())


@pytest.mark.asyncio
async def test_derivation_counts_and_isolation(test_user):
    user_id, _, _ = test_user
    await _seed(user_id)

    async with async_session_maker() as session:
        result = await derive_missing(session, user_id, scorer=_scorer)
    assert result == {"success": True, "processed": 2, "total": 3, "skipped": 0, "failed": 1}

    sessions = await _sessions(user_id)
    assert [(s.source, s.source_activity_id) for s in sessions] == [("strava", 1), ("garmin", 3)]
    assert all(s.performance_score == 42.0 for s in sessions)
    assert sessions[0].average_pace == pytest.approx(270.0)
    assert sessions[1].duration == 5400
    assert sessions[1].name == "cycling 2026-09-03"

    async with async_session_maker() as session:
        again = await derive_missing(session, user_id, scorer=_scorer)
    assert again == {"success": True, "processed": 0, "total": 3, "skipped": 2, "failed": 1}
    assert len(await _sessions(user_id)) == 2


@pytest.mark.asyncio
async def test_any_scorer_exception_is_confined_to_its_activity(test_user):
    user_id, _, _ = test_user
    await _seed(user_id)

    def zone_scorer(activity: RawActivity) -> float:
        if activity.type == "cycling":
            raise KeyError("zone")
        return 60.0

    async with async_session_maker() as session:
        result = await derive_missing(session, user_id, scorer=zone_scorer)
    assert result == {"success": True, "processed": 2, "total": 3, "skipped": 0, "failed": 1}
    assert [s.source_activity_id for s in await _sessions(user_id)] == [1, 2]


@pytest.mark.asyncio
async def test_derivation_with_no_activities(test_user):
    user_id, _, _ = test_user
    async with async_session_maker() as session:
        result = await derive_missing(session, user_id)
    assert result["total"] == 0
    assert result["processed"] == 0


@pytest.mark.asyncio
async def test_derive_endpoint_uses_injected_scorer(client, test_user, auth_headers):
    user_id, _, _ = test_user
    await _seed(user_id)
    app.dependency_overrides[get_scorer] = lambda: (lambda activity: 7.5)
    try:
        res = await client.post("/api/v1/training-sessions/derive", headers=auth_headers)
    finally:
        app.dependency_overrides.pop(get_scorer, None)
    assert res.status_code == 200
    assert res.json()["processed"] == 3

    res = await client.get("/api/v1/training-sessions", headers=auth_headers)
    body = res.json()
    assert len(body) == 3
    assert {s["performanceScore"] for s in body} == {7.5}
    assert body[0]["startDate"] > body[-1]["startDate"]


def test_default_score_contract():
    run = RawActivity(source="strava", source_activity_id=1, type="Run", start_date=BASE, distance=10000, average_speed=4.0)
    assert default_score(run) == 88.0  # 4:10 min/km
    missing = RawActivity(source="garmin", source_activity_id=2, start_date=BASE)
    assert default_score(missing) == 50.0
    assert average_pace(None, 100) is None
    assert average_pace(1000.0, 300) == 300.0
