"""
Per-provider adapters: upstream payload -> raw activity table row, and raw
row -> RawActivity. Every row dict carries the same keys so a batch can be
upserted in one statement.
"""
from datetime import datetime, timezone

from pydantic import ValidationError

from fitlink.db.types import utcnow
from fitlink.models.activities import GarminActivity, StravaActivity
from fitlink.schemas.activity import RawActivity
from fitlink.schemas.webhook import ActivityNotification, coerce_float, coerce_int

STRAVA_CONFLICT_KEYS = ["user_id", "strava_activity_id"]
GARMIN_CONFLICT_KEYS = ["user_id", "garmin_activity_id"]


def _parse_iso(raw) -> datetime | None:
    if not isinstance(raw, str) or not raw:
        return None
    try:
        dt = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return None
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def strava_row(user_id: int, item: dict) -> dict | None:
    """Map one /athlete/activities element; None if it has no id or start date."""
    strava_id = coerce_int(item.get("id"))
    start_date = _parse_iso(item.get("start_date"))
    if strava_id is None or start_date is None:
        return None
    return {
        "user_id": user_id,
        "strava_activity_id": strava_id,
        "name": item.get("name"),
        "type": item.get("type") or item.get("sport_type"),
        "start_date": start_date,
        "distance": coerce_float(item.get("distance")),
        "moving_time": coerce_int(item.get("moving_time")),
        "elapsed_time": coerce_int(item.get("elapsed_time")),
        "average_speed": coerce_float(item.get("average_speed")),
        "max_speed": coerce_float(item.get("max_speed")),
        "average_heartrate": coerce_float(item.get("average_heartrate")),
        "max_heartrate": coerce_float(item.get("max_heartrate")),
        "calories": coerce_float(item.get("calories")),
        "total_elevation_gain": coerce_float(item.get("total_elevation_gain")),
        "synced_at": utcnow(),
    }


def garmin_row_from_notification(user_id: int, n: ActivityNotification) -> dict | None:
    activity_id = n.garmin_activity_id
    if activity_id is None or n.start_time_in_seconds is None:
        return None
    return {
        "user_id": user_id,
        "garmin_activity_id": activity_id,
        "name": n.activity_name or n.activity_type or f"Activity {activity_id}",
        "type": (n.activity_type or "unknown").lower(),
        "start_date": datetime.fromtimestamp(n.start_time_in_seconds, tz=timezone.utc),
        "distance": n.distance_in_meters,
        "moving_time": n.duration_in_seconds,
        "elapsed_time": n.duration_in_seconds,
        "average_speed": n.average_speed_in_meters_per_second,
        "max_speed": n.max_speed_in_meters_per_second,
        "average_heartrate": n.average_heart_rate_in_beats_per_minute,
        "max_heartrate": n.max_heart_rate_in_beats_per_minute,
        "calories": n.active_kilocalories,
        "total_elevation_gain": n.elevation_gain_in_meters,
        "synced_at": utcnow(),
    }


def garmin_row(user_id: int, item: dict) -> dict | None:
    """Map one wellness-api activity summary; None if it cannot be keyed or dated."""
    if not isinstance(item, dict):
        return None
    try:
        n = ActivityNotification.model_validate({**item, "kind": "activities"})
    except ValidationError:
        return None
    return garmin_row_from_notification(user_id, n)


def to_raw_activity(row: StravaActivity | GarminActivity) -> RawActivity:
    if isinstance(row, StravaActivity):
        source, source_id = "strava", row.strava_activity_id
    else:
        source, source_id = "garmin", row.garmin_activity_id
    return RawActivity(
        source=source,
        source_activity_id=source_id,
        name=row.name,
        type=row.type,
        start_date=row.start_date,
        distance=row.distance,
        moving_time=row.moving_time,
        elapsed_time=row.elapsed_time,
        average_speed=row.average_speed,
        max_speed=row.max_speed,
        average_heartrate=row.average_heartrate,
        max_heartrate=row.max_heartrate,
        calories=row.calories,
        total_elevation_gain=row.total_elevation_gain,
    )
