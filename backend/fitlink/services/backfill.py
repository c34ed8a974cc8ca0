"""
Garmin historical backfill.

The look-back window is cut into fixed-size chunks walking back from now;
each (chunk, summary type) is one BackfillRequest submitted sequentially
with a delay between calls. Garmin answers asynchronously by pushing data to
the webhook, so a request is only `completed` once data shows up, a 409 says
the period was already requested, or reconciliation observes downstream rows.

State machine: pending -> in_progress -> completed | error;
error -> in_progress on a scheduled retry while retry_count < max_retries.
"""
import asyncio
import logging
from datetime import datetime, timedelta, timezone
from email.utils import parsedate_to_datetime

from sqlalchemy import and_, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from fitlink.config import settings
from fitlink.db.session import async_session_maker
from fitlink.errors import BackfillValidationError, FitlinkError
from fitlink.models.activities import GarminActivity
from fitlink.models.backfill_request import COMPLETED, ERROR, IN_PROGRESS, PENDING, BackfillRequest
from fitlink.models.garmin_summaries import GarminDailySummary, GarminSleepSummary
from fitlink.models.provider_credential import ProviderCredential
from fitlink.services import garmin_client
from fitlink.services.credentials import ensure_fresh, get_credential, require_credential
from fitlink.services.metrics import BACKFILL_SUBMISSIONS
from fitlink.services.provider_config import GARMIN

logger = logging.getLogger(__name__)

DUPLICATE_MESSAGE = "Duplicate backfill request: period already requested"


def compute_periods(months_back: int | None, now: datetime | None = None) -> list[tuple[datetime, datetime]]:
    """Contiguous half-open [start, end) chunks, newest first, never reaching before now - max months."""
    now = now or datetime.now(timezone.utc)
    months = min(max(months_back or settings.backfill_default_months, 1), settings.backfill_max_months)
    earliest = now - timedelta(days=months * settings.backfill_days_per_month)
    chunk = timedelta(days=settings.backfill_chunk_days)
    periods = []
    end = now
    while end > earliest:
        start = max(end - chunk, earliest)
        periods.append((start, end))
        end = start
    return periods


def backoff_seconds(retry_count: int) -> int:
    return min(settings.backfill_backoff_base_seconds * 2 ** max(retry_count, 0), settings.backfill_backoff_max_seconds)


def parse_retry_after(value: str | None, now: datetime) -> int | None:
    """Retry-After as delay-seconds or HTTP-date."""
    if not value:
        return None
    value = value.strip()
    if value.isdigit():
        return int(value)
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(int((when - now).total_seconds()), 0)


def next_retry_time(row: BackfillRequest, now: datetime, retry_after: int | None = None) -> datetime:
    """now + backoff (or Retry-After if longer); never earlier than a previously scheduled retry."""
    delay = max(backoff_seconds(row.retry_count), retry_after or 0)
    candidate = now + timedelta(seconds=delay)
    if row.next_retry_at is not None and row.next_retry_at > candidate:
        return row.next_retry_at
    return candidate


def _record_error(row: BackfillRequest, message: str, now: datetime, retry_after: int | None = None) -> None:
    row.status = ERROR
    row.error_message = message[:500]
    row.next_retry_at = next_retry_time(row, now, retry_after)


async def submit_period(creds: ProviderCredential, row: BackfillRequest) -> bool:
    """
    Submit one chunk and record the outcome on the row.
    Returns True if Garmin accepted it (202) or already had it (409).
    """
    now = datetime.now(timezone.utc)
    start_epoch = int(row.period_start.timestamp())
    end_epoch = int(row.period_end.timestamp())
    try:
        r = await garmin_client.submit_backfill(creds, row.summary_type, start_epoch, end_epoch)
    except FitlinkError as e:
        _record_error(row, e.message, now)
        BACKFILL_SUBMISSIONS.labels(summary_type=row.summary_type, outcome="error").inc()
        logger.warning("Backfill submit failed id=%s user_id=%s: %s", row.id, row.user_id, e.message)
        return False

    if r.status_code == 202:
        row.status = IN_PROGRESS
        row.requested_at = now
        row.error_message = None
        outcome = IN_PROGRESS
    elif r.status_code == 409:
        row.status = COMPLETED
        row.completed_at = now
        row.error_message = DUPLICATE_MESSAGE
        outcome = "duplicate"
    elif r.status_code == 429:
        retry_after = parse_retry_after(r.headers.get("Retry-After"), now)
        _record_error(row, "Rate limited by Garmin", now, retry_after)
        outcome = "rate_limited"
    else:
        _record_error(row, f"Upstream error: {r.status_code} - {r.text[:500]}", now)
        outcome = ERROR
    BACKFILL_SUBMISSIONS.labels(summary_type=row.summary_type, outcome=outcome).inc()
    logger.info(
        "Backfill submit id=%s user_id=%s type=%s %s..%s -> %s",
        row.id,
        row.user_id,
        row.summary_type,
        row.period_start.date(),
        row.period_end.date(),
        r.status_code,
    )
    return row.status in (IN_PROGRESS, COMPLETED)


def serialize(row: BackfillRequest) -> dict:
    return {
        "id": row.id,
        "summaryType": row.summary_type,
        "periodStart": row.period_start.isoformat(),
        "periodEnd": row.period_end.isoformat(),
        "status": row.status,
        "retryCount": row.retry_count,
        "maxRetries": row.max_retries,
        "nextRetryAt": row.next_retry_at.isoformat() if row.next_retry_at else None,
        "requestedAt": row.requested_at.isoformat() if row.requested_at else None,
        "completedAt": row.completed_at.isoformat() if row.completed_at else None,
        "activitiesProcessed": row.activities_processed,
        "errorMessage": row.error_message,
    }


async def _submit_all(
    session: AsyncSession,
    creds: ProviderCredential,
    rows: list[BackfillRequest],
    delay: float,
) -> list[dict]:
    results = []
    for i, row in enumerate(rows):
        if i and delay > 0:
            await asyncio.sleep(delay)
        ok = await submit_period(creds, row)
        await session.commit()
        results.append({**serialize(row), "success": ok})
    return results


async def initiate_backfill(
    session: AsyncSession,
    user_id: int,
    months_back: int | None = None,
    summary_types: list[str] | None = None,
    delay: float | None = None,
) -> dict:
    """Create and submit one request per (chunk, summary type) unless the user already has backfill rows."""
    existing = await session.scalar(
        select(func.count()).select_from(BackfillRequest).where(BackfillRequest.user_id == user_id)
    )
    if existing:
        logger.info("Backfill initiate skipped user_id=%s: %s existing rows", user_id, existing)
        return {
            "success": True,
            "message": "User already has backfill records",
            "alreadyInitiated": True,
            "results": [],
            "totalPeriods": 0,
            "successfulPeriods": 0,
        }

    creds = await ensure_fresh(session, await require_credential(session, user_id, GARMIN))
    types = summary_types or ["activities"]
    rows = []
    for start, end in compute_periods(months_back):
        for summary_type in types:
            row = BackfillRequest(
                user_id=user_id,
                summary_type=summary_type,
                period_start=start,
                period_end=end,
                status=PENDING,
                retry_count=0,
                max_retries=settings.backfill_max_retries,
                requested_at=datetime.now(timezone.utc),
            )
            session.add(row)
            rows.append(row)
    await session.commit()

    results = await _submit_all(
        session, creds, rows, settings.backfill_request_delay_seconds if delay is None else delay
    )
    successful = sum(1 for r in results if r["success"])
    logger.info("Backfill initiated user_id=%s periods=%s successful=%s", user_id, len(results), successful)
    return {
        "success": True,
        "results": results,
        "totalPeriods": len(results),
        "successfulPeriods": successful,
    }


async def manual_backfill(
    session: AsyncSession,
    user_id: int,
    start: datetime,
    end: datetime,
    summary_types: list[str] | None = None,
) -> dict:
    """Submit one explicit period; periods already requested (and not failed) are reported as existing."""
    start = start if start.tzinfo else start.replace(tzinfo=timezone.utc)
    end = end if end.tzinfo else end.replace(tzinfo=timezone.utc)
    now = datetime.now(timezone.utc)
    if start >= end:
        raise BackfillValidationError("start must be before end")
    if start > now:
        raise BackfillValidationError("start must not be in the future")
    if end - start > timedelta(days=settings.backfill_chunk_days):
        raise BackfillValidationError(f"Period must not exceed {settings.backfill_chunk_days} days")

    creds = await ensure_fresh(session, await require_credential(session, user_id, GARMIN))
    results = []
    to_submit = []
    for summary_type in summary_types or ["activities"]:
        r = await session.execute(
            select(BackfillRequest)
            .where(
                BackfillRequest.user_id == user_id,
                BackfillRequest.summary_type == summary_type,
                BackfillRequest.period_start == start,
                BackfillRequest.period_end == end,
            )
            .order_by(BackfillRequest.id.desc())
            .limit(1)
        )
        row = r.scalar_one_or_none()
        if row is not None and row.status != ERROR:
            results.append({**serialize(row), "success": True, "existing": True})
            continue
        if row is None:
            row = BackfillRequest(
                user_id=user_id,
                summary_type=summary_type,
                period_start=start,
                period_end=end,
                status=PENDING,
                retry_count=0,
                max_retries=settings.backfill_max_retries,
                requested_at=now,
            )
            session.add(row)
        to_submit.append(row)
    await session.commit()
    results.extend(await _submit_all(session, creds, to_submit, settings.backfill_request_delay_seconds))
    return {
        "success": True,
        "results": results,
        "totalPeriods": len(results),
        "successfulPeriods": sum(1 for r in results if r["success"]),
    }


async def list_requests(session: AsyncSession, user_id: int) -> list[BackfillRequest]:
    r = await session.execute(
        select(BackfillRequest)
        .where(BackfillRequest.user_id == user_id)
        .order_by(BackfillRequest.requested_at.desc(), BackfillRequest.id.desc())
    )
    return list(r.scalars().all())


async def downstream_count(session: AsyncSession, row: BackfillRequest) -> int:
    """Rows already delivered for the request's user, summary type and period."""
    if row.summary_type == "activities":
        stmt = select(func.count()).select_from(GarminActivity).where(
            GarminActivity.user_id == row.user_id,
            GarminActivity.start_date >= row.period_start,
            GarminActivity.start_date < row.period_end,
        )
    else:
        model = GarminDailySummary if row.summary_type == "dailies" else GarminSleepSummary
        stmt = select(func.count()).select_from(model).where(
            model.user_id == row.user_id,
            model.calendar_date >= row.period_start.date(),
            model.calendar_date < row.period_end.date(),
        )
    return int(await session.scalar(stmt) or 0)


def _stuck_filter(now: datetime):
    pending_cutoff = now - timedelta(minutes=settings.backfill_pending_stuck_minutes)
    in_progress_cutoff = now - timedelta(minutes=settings.backfill_in_progress_stuck_minutes)
    return or_(
        and_(BackfillRequest.status == PENDING, BackfillRequest.requested_at < pending_cutoff),
        and_(BackfillRequest.status == IN_PROGRESS, BackfillRequest.requested_at < in_progress_cutoff),
        and_(
            BackfillRequest.status == ERROR,
            BackfillRequest.retry_count < BackfillRequest.max_retries,
            or_(BackfillRequest.next_retry_at.is_(None), BackfillRequest.next_retry_at <= now),
        ),
    )


async def _reconcile_one(session: AsyncSession, row: BackfillRequest, now: datetime) -> str:
    observed = await downstream_count(session, row)
    if observed > 0:
        row.status = COMPLETED
        row.activities_processed = observed
        row.completed_at = now
        row.error_message = None
        return "completed"
    if row.retry_count >= row.max_retries:
        row.status = ERROR
        row.error_message = f"Backfill timed out after {row.retry_count} retries"
        return "timed_out"

    row.retry_count += 1
    row.next_retry_at = next_retry_time(row, now)
    creds = await get_credential(session, row.user_id, GARMIN)
    if creds is None:
        row.status = ERROR
        row.error_message = "Garmin is not connected"
        return "retried"
    try:
        creds = await ensure_fresh(session, creds)
    except FitlinkError as e:
        row.status = ERROR
        row.error_message = e.message[:500]
        return "retried"
    await submit_period(creds, row)
    return "retried"


async def reconcile(session: AsyncSession, now: datetime | None = None, delay: float | None = None) -> dict:
    """
    One reconciliation pass over stuck requests. Each row is handled and
    committed on its own; a failure on one row does not stop the scan.
    """
    now = now or datetime.now(timezone.utc)
    delay = settings.backfill_request_delay_seconds if delay is None else delay
    r = await session.execute(select(BackfillRequest.id).where(_stuck_filter(now)).order_by(BackfillRequest.id))
    ids = [row[0] for row in r.all()]
    counts = {"completed": 0, "timed_out": 0, "retried": 0}
    processed = failed = 0
    for request_id in ids:
        row = await session.get(BackfillRequest, request_id)
        if row is None:
            continue
        if counts["retried"] and delay > 0 and row.retry_count < row.max_retries:
            await asyncio.sleep(delay)
        try:
            outcome = await _reconcile_one(session, row, now)
            await session.commit()
        except Exception as e:
            await session.rollback()
            failed += 1
            logger.exception("Backfill reconcile failed for request id=%s: %s", request_id, e)
            continue
        counts[outcome] += 1
        processed += 1
    if ids:
        logger.info(
            "Backfill reconcile: candidates=%s retried=%s timedOut=%s completed=%s failed=%s",
            len(ids),
            counts["retried"],
            counts["timed_out"],
            counts["completed"],
            failed,
        )
    return {
        "success": True,
        "retried": counts["retried"],
        "timedOut": counts["timed_out"],
        "completed": counts["completed"],
        "processed": processed,
        "failed": failed,
    }


async def scheduled_reconcile() -> None:
    """APScheduler entry point."""
    async with async_session_maker() as session:
        await reconcile(session)


async def note_delivery(session: AsyncSession, user_id: int, summary_type: str, moments: list[datetime]) -> int:
    """Complete open requests whose period received pushed data. Returns the number of rows completed."""
    if not moments:
        return 0
    r = await session.execute(
        select(BackfillRequest).where(
            BackfillRequest.user_id == user_id,
            BackfillRequest.summary_type == summary_type,
            BackfillRequest.status.in_((PENDING, IN_PROGRESS, ERROR)),
            BackfillRequest.period_start <= max(moments),
            BackfillRequest.period_end > min(moments),
        )
    )
    completed = 0
    for row in r.scalars().all():
        if not any(row.period_start <= m < row.period_end for m in moments):
            continue
        row.status = COMPLETED
        row.completed_at = datetime.now(timezone.utc)
        row.activities_processed = await downstream_count(session, row)
        row.error_message = None
        completed += 1
    return completed
