"""Per-provider raw activity tables. Same column set, independently keyed."""

from datetime import datetime

from sqlalchemy import BigInteger, Float, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, declared_attr, mapped_column

from fitlink.db.base import Base
from fitlink.db.types import UTCDateTime, utcnow


class _ActivityColumns:
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    name: Mapped[str | None] = mapped_column(String(512), nullable=True)
    type: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    start_date: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, index=True)
    distance: Mapped[float | None] = mapped_column(Float, nullable=True)
    moving_time: Mapped[int | None] = mapped_column(Integer, nullable=True)
    elapsed_time: Mapped[int | None] = mapped_column(Integer, nullable=True)
    average_speed: Mapped[float | None] = mapped_column(Float, nullable=True)
    max_speed: Mapped[float | None] = mapped_column(Float, nullable=True)
    average_heartrate: Mapped[float | None] = mapped_column(Float, nullable=True)
    max_heartrate: Mapped[float | None] = mapped_column(Float, nullable=True)
    calories: Mapped[float | None] = mapped_column(Float, nullable=True)
    total_elevation_gain: Mapped[float | None] = mapped_column(Float, nullable=True)
    synced_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, onupdate=utcnow)

    @declared_attr
    def user_id(cls) -> Mapped[int]:
        return mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)


class StravaActivity(_ActivityColumns, Base):
    __tablename__ = "strava_activities"
    __table_args__ = (UniqueConstraint("user_id", "strava_activity_id", name="uq_strava_activities_user_activity"),)

    strava_activity_id: Mapped[int] = mapped_column(BigInteger, nullable=False)


class GarminActivity(_ActivityColumns, Base):
    __tablename__ = "garmin_activities"
    __table_args__ = (UniqueConstraint("user_id", "garmin_activity_id", name="uq_garmin_activities_user_activity"),)

    garmin_activity_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
