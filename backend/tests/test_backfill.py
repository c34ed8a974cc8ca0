"""Tests for Garmin backfill: chunking, submission status mapping, backoff and reconciliation."""

from datetime import datetime, timedelta, timezone

import httpx
import pytest
from sqlalchemy import select

from fitlink.config import settings
from fitlink.db.session import async_session_maker
from fitlink.models.activities import GarminActivity
from fitlink.models.backfill_request import BackfillRequest
from fitlink.services import backfill, garmin_client
from fitlink.services.backfill import (
    DUPLICATE_MESSAGE,
    backoff_seconds,
    compute_periods,
    next_retry_time,
    parse_retry_after,
    reconcile,
)

ACTIVITIES_BACKFILL = garmin_client.BACKFILL_URLS["activities"]
NOW = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)


async def _requests(user_id: int) -> list[BackfillRequest]:
    async with async_session_maker() as session:
        r = await session.execute(
            select(BackfillRequest).where(BackfillRequest.user_id == user_id).order_by(BackfillRequest.id)
        )
        return list(r.scalars().all())


async def _add_request(user_id: int, **fields) -> int:
    values = dict(
        user_id=user_id,
        summary_type="activities",
        period_start=NOW - timedelta(days=90),
        period_end=NOW,
        status="pending",
        retry_count=0,
        max_retries=3,
        requested_at=NOW,
    )
    values.update(fields)
    async with async_session_maker() as session:
        row = BackfillRequest(**values)
        session.add(row)
        await session.commit()
        return row.id


def test_periods_cover_window_without_gaps():
    periods = compute_periods(6, now=NOW)
    assert periods[0][1] == NOW
    assert periods[-1][0] == NOW - timedelta(days=180)
    assert all(periods[i][0] == periods[i + 1][1] for i in range(len(periods) - 1))
    assert all(end - start <= timedelta(days=settings.backfill_chunk_days) for start, end in periods)


def test_periods_are_capped_and_clipped():
    assert compute_periods(24, now=NOW)[-1][0] == NOW - timedelta(days=180)
    assert compute_periods(4, now=NOW) == [
        (NOW - timedelta(days=90), NOW),
        (NOW - timedelta(days=120), NOW - timedelta(days=90)),
    ]


def test_backoff_is_monotonic_and_bounded():
    delays = [backoff_seconds(n) for n in range(12)]
    assert delays[0] == 300
    assert delays == sorted(delays)
    assert max(delays) == settings.backfill_backoff_max_seconds


def test_next_retry_never_moves_earlier():
    row = BackfillRequest(retry_count=0, next_retry_at=NOW + timedelta(hours=10))
    assert next_retry_time(row, NOW) == NOW + timedelta(hours=10)
    row = BackfillRequest(retry_count=2, next_retry_at=None)
    assert next_retry_time(row, NOW) == NOW + timedelta(seconds=1200)
    assert next_retry_time(row, NOW, retry_after=7200) == NOW + timedelta(seconds=7200)


def test_parse_retry_after():
    assert parse_retry_after("120", NOW) == 120
    assert parse_retry_after("Sun, 18 Oct 2026 13:00:00 GMT", NOW) == 3600
    assert parse_retry_after("soon", NOW) is None
    assert parse_retry_after(None, NOW) is None


@pytest.mark.asyncio
async def test_initiate_requires_garmin(client, test_user, auth_headers):
    res = await client.post("/api/v1/backfill/initiate", headers=auth_headers)
    assert res.status_code == 400
    assert res.json()["code"] == "NotConnected"


@pytest.mark.asyncio
async def test_initiate_submits_each_chunk_once(client, test_user, auth_headers, make_credential, upstream):
    user_id, _, _ = test_user
    await make_credential(user_id)
    upstream.add("GET", ACTIVITIES_BACKFILL, httpx.Response(202))

    res = await client.post("/api/v1/backfill/initiate", headers=auth_headers, json={"monthsBack": 6})
    assert res.status_code == 200
    body = res.json()
    assert body["totalPeriods"] == 2
    assert body["successfulPeriods"] == 2
    assert [r["status"] for r in await _requests(user_id)] == ["in_progress", "in_progress"]

    calls = upstream.calls("GET", ACTIVITIES_BACKFILL)
    assert len(calls) == 2
    spans = [
        int(c.url.params["summaryEndTimeInSeconds"]) - int(c.url.params["summaryStartTimeInSeconds"]) for c in calls
    ]
    assert all(span == 90 * 86400 for span in spans)

    res = await client.post("/api/v1/backfill/initiate", headers=auth_headers)
    body = res.json()
    assert body["message"] == "User already has backfill records"
    assert body["alreadyInitiated"] is True
    assert len(upstream.calls("GET", ACTIVITIES_BACKFILL)) == 2
    assert len(await _requests(user_id)) == 2


@pytest.mark.asyncio
async def test_initiate_with_several_summary_types(client, test_user, auth_headers, make_credential, upstream):
    user_id, _, _ = test_user
    await make_credential(user_id)
    for url in garmin_client.BACKFILL_URLS.values():
        upstream.add("GET", url, httpx.Response(202))
    res = await client.post(
        "/api/v1/backfill/initiate",
        headers=auth_headers,
        json={"monthsBack": 3, "summaryTypes": ["activities", "sleeps"]},
    )
    assert res.json()["totalPeriods"] == 2
    assert sorted(r.summary_type for r in await _requests(user_id)) == ["activities", "sleeps"]
    assert upstream.calls("GET", garmin_client.BACKFILL_URLS["dailies"]) == []


@pytest.mark.asyncio
async def test_submission_status_mapping(client, test_user, auth_headers, make_credential, upstream):
    user_id, _, _ = test_user
    await make_credential(user_id)
    upstream.add(
        "GET",
        ACTIVITIES_BACKFILL,
        httpx.Response(409, text="duplicate"),
        httpx.Response(429, headers={"Retry-After": "7200"}),
    )
    before = datetime.now(timezone.utc)
    res = await client.post("/api/v1/backfill/initiate", headers=auth_headers, json={"monthsBack": 6})
    assert res.json()["successfulPeriods"] == 1

    duplicate, limited = await _requests(user_id)
    assert duplicate.status == "completed"
    assert duplicate.error_message == DUPLICATE_MESSAGE
    assert duplicate.completed_at is not None
    assert limited.status == "error"
    assert limited.retry_count == 0
    assert limited.next_retry_at >= before + timedelta(seconds=7200)


@pytest.mark.asyncio
async def test_upstream_error_is_recorded_per_chunk(client, test_user, auth_headers, make_credential, upstream):
    user_id, _, _ = test_user
    await make_credential(user_id)
    upstream.add("GET", ACTIVITIES_BACKFILL, httpx.Response(500, text="garmin down"), httpx.Response(202))
    res = await client.post("/api/v1/backfill/initiate", headers=auth_headers, json={"monthsBack": 6})
    assert res.json()["successfulPeriods"] == 1
    failed, ok = await _requests(user_id)
    assert failed.status == "error"
    assert "500" in failed.error_message
    assert failed.next_retry_at is not None
    assert ok.status == "in_progress"


@pytest.mark.asyncio
async def test_manual_backfill_validation(client, test_user, auth_headers, make_credential):
    user_id, _, _ = test_user
    await make_credential(user_id)
    res = await client.post(
        "/api/v1/backfill/manual",
        headers=auth_headers,
        json={"start": "2026-06-01T00:00:00Z", "end": "2026-05-01T00:00:00Z"},
    )
    assert res.status_code == 400
    assert res.json()["code"] == "BackfillValidationError"
    res = await client.post(
        "/api/v1/backfill/manual",
        headers=auth_headers,
        json={"start": "2026-01-01T00:00:00Z", "end": "2026-06-01T00:00:00Z"},
    )
    assert res.status_code == 400


@pytest.mark.asyncio
async def test_manual_backfill_reports_existing_period(client, test_user, auth_headers, make_credential, upstream):
    user_id, _, _ = test_user
    await make_credential(user_id)
    upstream.add("GET", ACTIVITIES_BACKFILL, httpx.Response(202))
    body = {"start": "2026-08-01T00:00:00Z", "end": "2026-08-31T00:00:00Z"}
    first = (await client.post("/api/v1/backfill/manual", headers=auth_headers, json=body)).json()
    second = (await client.post("/api/v1/backfill/manual", headers=auth_headers, json=body)).json()
    assert first["results"][0]["status"] == "in_progress"
    assert second["results"][0]["existing"] is True
    assert len(upstream.calls("GET", ACTIVITIES_BACKFILL)) == 1

    res = await client.get("/api/v1/backfill/status", headers=auth_headers)
    assert [r["periodStart"] for r in res.json()["requests"]] == ["2026-08-01T00:00:00+00:00"]


@pytest.mark.asyncio
async def test_reconcile_completes_rows_with_delivered_data(test_user, make_credential, upstream):
    user_id, _, _ = test_user
    await make_credential(user_id)
    request_id = await _add_request(user_id, status="in_progress", requested_at=NOW - timedelta(hours=7))
    async with async_session_maker() as session:
        session.add(
            GarminActivity(
                user_id=user_id,
                garmin_activity_id=1,
                name="Delivered",
                type="running",
                start_date=NOW - timedelta(days=10),
            )
        )
        await session.commit()

    async with async_session_maker() as session:
        result = await reconcile(session, now=NOW, delay=0)
    assert result["completed"] == 1
    assert result["retried"] == 0
    async with async_session_maker() as session:
        row = await session.get(BackfillRequest, request_id)
    assert row.status == "completed"
    assert row.activities_processed == 1
    assert upstream.requests == []


@pytest.mark.asyncio
async def test_reconcile_resubmits_stuck_pending(test_user, make_credential, upstream):
    user_id, _, _ = test_user
    await make_credential(user_id)
    upstream.add("GET", ACTIVITIES_BACKFILL, httpx.Response(202))
    request_id = await _add_request(user_id, requested_at=NOW - timedelta(hours=2))
    await _add_request(user_id, requested_at=NOW - timedelta(minutes=5))  # not stuck yet

    async with async_session_maker() as session:
        result = await reconcile(session, now=NOW, delay=0)
    assert result["retried"] == 1
    assert result["processed"] == 1
    async with async_session_maker() as session:
        row = await session.get(BackfillRequest, request_id)
    assert row.retry_count == 1
    assert row.status == "in_progress"
    assert row.next_retry_at == NOW + timedelta(seconds=backoff_seconds(1))


@pytest.mark.asyncio
async def test_reconcile_continues_after_a_row_raises(test_user, make_credential, upstream, monkeypatch):
    user_id, _, _ = test_user
    await make_credential(user_id)
    upstream.add("GET", ACTIVITIES_BACKFILL, httpx.Response(202))
    broken_id = await _add_request(user_id, requested_at=NOW - timedelta(hours=3))
    healthy_id = await _add_request(user_id, requested_at=NOW - timedelta(hours=2))

    real_submit = backfill.submit_period

    async def flaky_submit(creds, row):
        if row.id == broken_id:
            raise RuntimeError("connection reset mid-write")
        return await real_submit(creds, row)

    monkeypatch.setattr(backfill, "submit_period", flaky_submit)
    async with async_session_maker() as session:
        result = await reconcile(session, now=NOW, delay=0)
    assert result["failed"] == 1
    assert result["retried"] == 1
    assert result["processed"] == 1

    async with async_session_maker() as session:
        broken = await session.get(BackfillRequest, broken_id)
        healthy = await session.get(BackfillRequest, healthy_id)
    assert broken.status == "pending"
    assert broken.retry_count == 0
    assert healthy.status == "in_progress"
    assert healthy.retry_count == 1


@pytest.mark.asyncio
async def test_reconcile_records_resubmission_failure(test_user, make_credential, upstream):
    user_id, _, _ = test_user
    await make_credential(user_id)
    upstream.add("GET", ACTIVITIES_BACKFILL, httpx.Response(503, text="unavailable"))
    request_id = await _add_request(
        user_id, status="error", retry_count=1, next_retry_at=NOW - timedelta(minutes=1), error_message="old"
    )
    async with async_session_maker() as session:
        await reconcile(session, now=NOW, delay=0)
    async with async_session_maker() as session:
        row = await session.get(BackfillRequest, request_id)
    assert row.status == "error"
    assert row.retry_count == 2
    assert "503" in row.error_message
    assert row.next_retry_at > NOW


@pytest.mark.asyncio
async def test_reconcile_respects_retry_cap(test_user, make_credential, upstream):
    user_id, _, _ = test_user
    await make_credential(user_id)
    terminal_id = await _add_request(
        user_id, status="error", retry_count=3, next_retry_at=NOW - timedelta(hours=1)
    )
    exhausted_id = await _add_request(
        user_id, status="in_progress", retry_count=3, requested_at=NOW - timedelta(hours=7)
    )
    not_due_id = await _add_request(user_id, status="error", retry_count=1, next_retry_at=NOW + timedelta(hours=1))

    async with async_session_maker() as session:
        result = await reconcile(session, now=NOW, delay=0)
    assert result["timedOut"] == 1
    assert result["retried"] == 0
    assert upstream.requests == []

    async with async_session_maker() as session:
        terminal = await session.get(BackfillRequest, terminal_id)
        exhausted = await session.get(BackfillRequest, exhausted_id)
        not_due = await session.get(BackfillRequest, not_due_id)
    assert terminal.retry_count == 3
    assert exhausted.status == "error"
    assert exhausted.is_terminal
    assert not_due.retry_count == 1

    # a second pass leaves terminal rows alone
    async with async_session_maker() as session:
        result = await reconcile(session, now=NOW, delay=0)
    assert result["processed"] == 0


@pytest.mark.asyncio
async def test_reconcile_without_credential_marks_error(test_user, upstream):
    user_id, _, _ = test_user
    request_id = await _add_request(user_id, requested_at=NOW - timedelta(hours=2))
    async with async_session_maker() as session:
        result = await reconcile(session, now=NOW, delay=0)
    assert result["retried"] == 1
    async with async_session_maker() as session:
        row = await session.get(BackfillRequest, request_id)
    assert row.status == "error"
    assert row.retry_count == 1
    assert row.error_message == "Garmin is not connected"


@pytest.mark.asyncio
async def test_retry_cleanup_requires_cron_secret(client, monkeypatch):
    res = await client.post("/api/v1/backfill/retry-cleanup")
    assert res.status_code == 401
    res = await client.post("/api/v1/backfill/retry-cleanup", headers={"X-Cron-Secret": "wrong"})
    assert res.status_code == 401
    res = await client.post("/api/v1/backfill/retry-cleanup", headers={"X-Cron-Secret": "cron-test-secret"})
    assert res.status_code == 200
    assert res.json()["success"] is True

    monkeypatch.setattr(settings, "cron_secret", "")
    res = await client.post("/api/v1/backfill/retry-cleanup", headers={"X-Cron-Secret": "anything"})
    assert res.status_code == 503
