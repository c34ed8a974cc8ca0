"""
Read-time merge of the two raw activity tables.

Each source is filtered and counted in SQL, then fetched newest first and
limited to page * page_size rows. Any item on the requested page of the
merged ordering is within the first page * page_size rows of its own source,
so merging the truncated lists and slicing gives the same page as merging
everything.
"""
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from fitlink.models.activities import GarminActivity, StravaActivity
from fitlink.schemas.activity import RawActivity
from fitlink.services.activity_rows import to_raw_activity

SOURCES = {"strava": StravaActivity, "garmin": GarminActivity}


@dataclass(frozen=True)
class ActivityFilters:
    activity_type: str | None = None
    date_from: date | None = None
    date_to: date | None = None
    keyword: str | None = None
    source: str = "all"

    def models(self):
        if self.source == "all":
            return list(SOURCES.values())
        return [SOURCES[self.source]]


def _day_start(d: date) -> datetime:
    return datetime.combine(d, time.min, tzinfo=timezone.utc)


def _conditions(model, user_id: int, f: ActivityFilters) -> list:
    conds = [model.user_id == user_id]
    if f.activity_type and f.activity_type != "all":
        conds.append(model.type == f.activity_type)
    if f.date_from:
        conds.append(model.start_date >= _day_start(f.date_from))
    if f.date_to:
        # inclusive end date
        conds.append(model.start_date < _day_start(f.date_to + timedelta(days=1)))
    if f.keyword:
        conds.append(model.name.ilike(f"%{f.keyword}%"))
    return conds


def _sort_key(a: RawActivity):
    return (a.start_date, a.source, a.source_activity_id)


def _newest_first(model) -> tuple:
    """SQL ordering matching _sort_key within one source, so a per-source LIMIT keeps a prefix of the merge."""
    source_id = model.strava_activity_id if model is StravaActivity else model.garmin_activity_id
    return (model.start_date.desc(), source_id.desc())


async def list_unified(
    session: AsyncSession,
    user_id: int,
    page: int,
    page_size: int,
    filters: ActivityFilters,
) -> dict:
    total = 0
    merged: list[RawActivity] = []
    limit = page * page_size
    for model in filters.models():
        conds = _conditions(model, user_id, filters)
        total += int(await session.scalar(select(func.count()).select_from(model).where(*conds)) or 0)
        r = await session.execute(select(model).where(*conds).order_by(*_newest_first(model)).limit(limit))
        merged.extend(to_raw_activity(row) for row in r.scalars().all())
    merged.sort(key=_sort_key, reverse=True)
    items = merged[(page - 1) * page_size : limit]
    return {
        "items": [a.model_dump(mode="json") for a in items],
        "totalCount": total,
        "page": page,
        "pageSize": page_size,
    }


async def activity_types(session: AsyncSession, user_id: int) -> list[str]:
    types: set[str] = set()
    for model in SOURCES.values():
        r = await session.execute(select(model.type).where(model.user_id == user_id, model.type.is_not(None)).distinct())
        types.update(row[0] for row in r.all())
    return sorted(types)


async def recent_activities(session: AsyncSession, user_id: int, limit: int) -> list[RawActivity]:
    """Newest `limit` activities across both sources."""
    merged: list[RawActivity] = []
    for model in SOURCES.values():
        r = await session.execute(
            select(model).where(model.user_id == user_id).order_by(*_newest_first(model)).limit(limit)
        )
        merged.extend(to_raw_activity(row) for row in r.scalars().all())
    merged.sort(key=_sort_key, reverse=True)
    return merged[:limit]
