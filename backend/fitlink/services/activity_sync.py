"""
Incremental activity sync: pull from the provider page by page, upsert into
the provider's raw table and commit each page before fetching the next.
SyncStatus.last_activity_date is the cursor; it only moves on success, so a
failed run resumes from where the last good run ended.
"""
import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from fitlink.config import settings
from fitlink.db.upsert import upsert_rows
from fitlink.errors import FitlinkError, PersistenceError
from fitlink.models.activities import GarminActivity, StravaActivity
from fitlink.models.provider_credential import ProviderCredential
from fitlink.models.sync_status import SyncStatus
from fitlink.services import garmin_client, strava_client
from fitlink.services.activity_rows import (
    GARMIN_CONFLICT_KEYS,
    STRAVA_CONFLICT_KEYS,
    garmin_row,
    strava_row,
)
from fitlink.services.credentials import ensure_fresh, require_credential
from fitlink.services.metrics import SYNC_RUNS
from fitlink.services.oauth_signing import sign_request
from fitlink.services.provider_config import STRAVA, ensure_provider

logger = logging.getLogger(__name__)


class _Progress:
    def __init__(self) -> None:
        self.synced = 0
        self.fetched = 0
        self.newest: datetime | None = None

    def add(self, rows: list[dict], fetched: int, written: int) -> None:
        self.fetched += fetched
        self.synced += written
        for row in rows:
            if self.newest is None or row["start_date"] > self.newest:
                self.newest = row["start_date"]


async def get_sync_status(session: AsyncSession, user_id: int, provider: str) -> SyncStatus | None:
    r = await session.execute(
        select(SyncStatus).where(SyncStatus.user_id == user_id, SyncStatus.provider == provider)
    )
    return r.scalar_one_or_none()


async def _pull_strava(
    session: AsyncSession,
    creds: ProviderCredential,
    since: datetime,
    progress: _Progress,
) -> None:
    authorization = sign_request(creds, "GET", f"{strava_client.STRAVA_API_BASE}/athlete/activities")
    after_epoch = int(since.timestamp())
    limit = settings.strava_max_activities_per_sync
    page = 1
    while progress.fetched < limit:
        batch = await strava_client.get_activities_page(authorization, after_epoch, page=page)
        if not batch:
            break
        batch = batch[: limit - progress.fetched]
        rows = [r for r in (strava_row(creds.user_id, item) for item in batch) if r]
        written = await upsert_rows(session, StravaActivity, rows, STRAVA_CONFLICT_KEYS)
        await session.commit()
        progress.add(rows, len(batch), written)
        logger.debug("Strava sync user_id=%s page=%s fetched=%s", creds.user_id, page, len(batch))
        if len(batch) < strava_client.PER_PAGE:
            break
        page += 1


async def _pull_garmin(
    session: AsyncSession,
    creds: ProviderCredential,
    since: datetime,
    progress: _Progress,
) -> None:
    start = int(since.timestamp())
    now = int(datetime.now(timezone.utc).timestamp())
    while start < now:
        end = min(start + garmin_client.MAX_WINDOW_SECONDS, now)
        batch = await garmin_client.fetch_activities(creds, start, end)
        rows = [r for r in (garmin_row(creds.user_id, item) for item in batch) if r]
        written = await upsert_rows(session, GarminActivity, rows, GARMIN_CONFLICT_KEYS)
        await session.commit()
        progress.add(rows, len(batch), written)
        start = end


async def sync_activities(session: AsyncSession, user_id: int, provider: str) -> dict:
    """
    Run one sync for (user, provider) and return {synced, total, isIncremental}.

    Raises NotConnected / CredentialExpired before touching SyncStatus. Upstream
    failures mark SyncStatus as error and propagate; pages already written stay.
    """
    ensure_provider(provider)
    creds = await require_credential(session, user_id, provider)
    creds = await ensure_fresh(session, creds)

    status = await get_sync_status(session, user_id, provider)
    if status is None:
        status = SyncStatus(user_id=user_id, provider=provider, total_activities_synced=0)
        session.add(status)
    cursor = status.last_activity_date
    is_incremental = cursor is not None
    status.status = "in_progress"
    status.error_message = None
    await session.commit()

    if cursor is not None:
        since = cursor
    else:
        days = settings.strava_full_sync_days if provider == STRAVA else settings.garmin_full_sync_days
        since = datetime.now(timezone.utc) - timedelta(days=days)

    progress = _Progress()
    try:
        if provider == STRAVA:
            await _pull_strava(session, creds, since, progress)
        else:
            await _pull_garmin(session, creds, since, progress)
    except Exception as e:
        # status must never stay in_progress
        if isinstance(e, FitlinkError):
            message = e.message
        elif isinstance(e, SQLAlchemyError):
            message = f"Storage error: {e.__class__.__name__}"
        else:
            message = f"Unexpected error: {e.__class__.__name__}"
        await session.rollback()
        status = await get_sync_status(session, user_id, provider)
        status.status = "error"
        status.error_message = message[:500]
        await session.commit()
        SYNC_RUNS.labels(provider=provider, outcome="error").inc()
        log = logger.warning if isinstance(e, FitlinkError) else logger.exception
        log("Sync failed user_id=%s provider=%s after %s activities: %s", user_id, provider, progress.synced, message)
        if isinstance(e, SQLAlchemyError):
            raise PersistenceError(message) from e
        raise

    status.last_sync_at = datetime.now(timezone.utc)
    if progress.newest is not None and (cursor is None or progress.newest > cursor):
        status.last_activity_date = progress.newest
    status.total_activities_synced = (status.total_activities_synced or 0) + progress.synced
    status.status = "completed"
    await session.commit()
    SYNC_RUNS.labels(provider=provider, outcome="completed").inc()
    logger.info(
        "Sync completed user_id=%s provider=%s synced=%s fetched=%s incremental=%s",
        user_id,
        provider,
        progress.synced,
        progress.fetched,
        is_incremental,
    )
    return {"synced": progress.synced, "total": progress.fetched, "isIncremental": is_incremental}


def status_payload(status: SyncStatus | None) -> dict:
    if status is None:
        return {"status": None, "lastSyncAt": None, "lastActivityDate": None, "totalActivitiesSynced": 0, "errorMessage": None}
    return {
        "status": status.status,
        "lastSyncAt": status.last_sync_at.isoformat() if status.last_sync_at else None,
        "lastActivityDate": status.last_activity_date.isoformat() if status.last_activity_date else None,
        "totalActivitiesSynced": status.total_activities_synced,
        "errorMessage": status.error_message,
    }
