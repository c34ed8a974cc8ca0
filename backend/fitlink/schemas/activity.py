"""Normalized activity shape shared by both providers."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict


class RawActivity(BaseModel):
    """One provider activity, tagged with its source. Read-model only; never persisted as such."""

    model_config = ConfigDict(from_attributes=True)

    source: str
    source_activity_id: int
    name: str | None = None
    type: str | None = None
    start_date: datetime
    distance: float | None = None
    moving_time: int | None = None
    elapsed_time: int | None = None
    average_speed: float | None = None
    max_speed: float | None = None
    average_heartrate: float | None = None
    max_heartrate: float | None = None
    calories: float | None = None
    total_elevation_gain: float | None = None
