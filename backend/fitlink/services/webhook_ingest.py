"""
Garmin push notification ingestion.

The payload's top-level keys name the notification kind. Every list element
is validated into its variant and handled on its own: the owning user is the
one whose Garmin access token matches `userAccessToken`, writes are upserts
that overwrite earlier deliveries, and a failing element is logged and
counted without affecting the rest.
"""
import logging
from datetime import datetime, time, timezone

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from fitlink.db.types import utcnow
from fitlink.db.upsert import upsert_rows
from fitlink.errors import FitlinkError, InvalidRequest, UserNotFound
from fitlink.models.activities import GarminActivity
from fitlink.models.garmin_summaries import GarminDailySummary, GarminSleepSummary
from fitlink.models.provider_credential import ProviderCredential
from fitlink.schemas.webhook import (
    NOTIFICATION_KINDS,
    ActivityNotification,
    DailyNotification,
    DeregistrationNotification,
    SleepNotification,
    parse_notification,
)
from fitlink.services import garmin_client
from fitlink.services.activity_rows import GARMIN_CONFLICT_KEYS, garmin_row, garmin_row_from_notification
from fitlink.services.audit import PROVIDER_DEREGISTERED, log_provider_event
from fitlink.services.backfill import note_delivery
from fitlink.services.credentials import delete_credential, ensure_fresh, require_credential
from fitlink.services.metrics import WEBHOOK_NOTIFICATIONS
from fitlink.services.provider_config import GARMIN

logger = logging.getLogger(__name__)

SUMMARY_CONFLICT_KEYS = ["user_id", "summary_id"]


async def resolve_credential(session: AsyncSession, access_token: str | None) -> ProviderCredential:
    if not access_token:
        raise UserNotFound("Notification carries no userAccessToken")
    r = await session.execute(
        select(ProviderCredential).where(
            ProviderCredential.provider == GARMIN,
            ProviderCredential.access_token == access_token,
        )
    )
    creds = r.scalars().first()
    if creds is None:
        raise UserNotFound()
    return creds


def _day_start(d) -> datetime:
    return datetime.combine(d, time.min, tzinfo=timezone.utc)


async def _handle_activity(session: AsyncSession, n: ActivityNotification) -> None:
    creds = await resolve_credential(session, n.user_access_token)
    if n.is_ping:
        items = await garmin_client.fetch_callback(creds, n.callback_url)
        rows = [r for r in (garmin_row(creds.user_id, item) for item in items) if r]
    else:
        row = garmin_row_from_notification(creds.user_id, n)
        if row is None:
            raise InvalidRequest("Activity notification has no id or start time")
        rows = [row]
    await upsert_rows(session, GarminActivity, rows, GARMIN_CONFLICT_KEYS)
    await note_delivery(session, creds.user_id, "activities", [r["start_date"] for r in rows])


async def _handle_daily(session: AsyncSession, n: DailyNotification, raw: dict) -> None:
    creds = await resolve_credential(session, n.user_access_token)
    if not n.summary_id or n.calendar_date is None:
        raise InvalidRequest("Daily summary has no summaryId or calendarDate")
    row = {
        "user_id": creds.user_id,
        "summary_id": n.summary_id,
        "calendar_date": n.calendar_date,
        "steps": n.steps,
        "active_kilocalories": n.active_kilocalories,
        "resting_heart_rate": n.resting_heart_rate_in_beats_per_minute,
        "average_stress_level": n.average_stress_level,
        "raw": raw,
        "synced_at": utcnow(),
    }
    await upsert_rows(session, GarminDailySummary, [row], SUMMARY_CONFLICT_KEYS)
    await note_delivery(session, creds.user_id, "dailies", [_day_start(n.calendar_date)])


async def _handle_sleep(session: AsyncSession, n: SleepNotification, raw: dict) -> None:
    creds = await resolve_credential(session, n.user_access_token)
    if not n.summary_id or n.calendar_date is None:
        raise InvalidRequest("Sleep summary has no summaryId or calendarDate")
    row = {
        "user_id": creds.user_id,
        "summary_id": n.summary_id,
        "calendar_date": n.calendar_date,
        "duration_seconds": n.duration_in_seconds,
        "deep_sleep_seconds": n.deep_sleep_duration_in_seconds,
        "light_sleep_seconds": n.light_sleep_duration_in_seconds,
        "rem_sleep_seconds": n.rem_sleep_in_seconds,
        "awake_seconds": n.awake_duration_in_seconds,
        "raw": raw,
        "synced_at": utcnow(),
    }
    await upsert_rows(session, GarminSleepSummary, [row], SUMMARY_CONFLICT_KEYS)
    await note_delivery(session, creds.user_id, "sleeps", [_day_start(n.calendar_date)])


async def _handle_deregistration(session: AsyncSession, n: DeregistrationNotification) -> None:
    creds = await resolve_credential(session, n.user_access_token)
    user_id = creds.user_id
    await delete_credential(session, user_id, GARMIN)
    await log_provider_event(session, user_id, PROVIDER_DEREGISTERED, GARMIN)
    logger.info("Garmin deregistration: credential removed for user_id=%s", user_id)


async def _dispatch(session: AsyncSession, kind: str, element: dict) -> None:
    n = parse_notification(kind, element)
    if isinstance(n, ActivityNotification):
        await _handle_activity(session, n)
    elif isinstance(n, DailyNotification):
        await _handle_daily(session, n, element)
    elif isinstance(n, SleepNotification):
        await _handle_sleep(session, n, element)
    else:
        await _handle_deregistration(session, n)


async def ingest(session: AsyncSession, payload) -> dict:
    """Process a whole push payload. Never raises for per-element problems."""
    processed = failed = ignored = 0
    if not isinstance(payload, dict):
        logger.warning("Garmin webhook payload is not an object: %s", type(payload).__name__)
        return {"success": False, "processed": 0, "failed": 0, "ignored": 0}

    for kind, elements in payload.items():
        if kind not in NOTIFICATION_KINDS:
            count = len(elements) if isinstance(elements, list) else 1
            ignored += count
            WEBHOOK_NOTIFICATIONS.labels(kind="unknown", outcome="ignored").inc(count)
            logger.info("Garmin webhook: ignoring unknown notification kind %r", kind)
            continue
        if not isinstance(elements, list):
            failed += 1
            WEBHOOK_NOTIFICATIONS.labels(kind=kind, outcome="failed").inc()
            logger.warning("Garmin webhook: %s is not a list", kind)
            continue
        for element in elements:
            try:
                if not isinstance(element, dict):
                    raise InvalidRequest(f"{kind} element is not an object")
                await _dispatch(session, kind, element)
                await session.commit()
            except UserNotFound as e:
                await session.rollback()
                failed += 1
                WEBHOOK_NOTIFICATIONS.labels(kind=kind, outcome="user_not_found").inc()
                logger.warning("Garmin webhook %s: %s", kind, e.message)
                continue
            except (FitlinkError, ValidationError, SQLAlchemyError) as e:
                await session.rollback()
                failed += 1
                WEBHOOK_NOTIFICATIONS.labels(kind=kind, outcome="failed").inc()
                logger.warning("Garmin webhook %s element failed: %s", kind, e)
                continue
            processed += 1
            WEBHOOK_NOTIFICATIONS.labels(kind=kind, outcome="processed").inc()

    logger.info("Garmin webhook: processed=%s failed=%s ignored=%s", processed, failed, ignored)
    return {"success": failed == 0, "processed": processed, "failed": failed, "ignored": ignored}


async def register_webhooks(session: AsyncSession, user_id: int, webhook_url: str) -> list[dict]:
    """Subscribe ACTIVITY, DAILY_SUMMARY and SLEEP pushes; one failure does not stop the others."""
    creds = await ensure_fresh(session, await require_credential(session, user_id, GARMIN))
    results = []
    for summary_type in garmin_client.SUBSCRIPTION_TYPES:
        try:
            r = await garmin_client.register_webhook(creds, webhook_url, summary_type)
        except FitlinkError as e:
            logger.warning("Webhook registration %s failed for user_id=%s: %s", summary_type, user_id, e.message)
            results.append({"summaryType": summary_type, "status": "error", "error": e.message})
            continue
        if r.status_code < 300:
            results.append({"summaryType": summary_type, "status": "success"})
        else:
            logger.warning("Webhook registration %s rejected: status=%s", summary_type, r.status_code)
            results.append({"summaryType": summary_type, "status": "error", "error": r.text[:500]})
    return results
