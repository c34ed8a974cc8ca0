"""Garmin daily and sleep summaries delivered by push notifications or backfill."""

from datetime import date, datetime

from sqlalchemy import Date, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import JSON

from fitlink.db.base import Base
from fitlink.db.types import UTCDateTime, utcnow


class GarminDailySummary(Base):
    __tablename__ = "garmin_daily_summaries"
    __table_args__ = (UniqueConstraint("user_id", "summary_id", name="uq_garmin_daily_summaries_user_summary"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    summary_id: Mapped[str] = mapped_column(String(128), nullable=False)
    calendar_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    steps: Mapped[int | None] = mapped_column(Integer, nullable=True)
    active_kilocalories: Mapped[int | None] = mapped_column(Integer, nullable=True)
    resting_heart_rate: Mapped[int | None] = mapped_column(Integer, nullable=True)
    average_stress_level: Mapped[int | None] = mapped_column(Integer, nullable=True)
    raw: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    synced_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, onupdate=utcnow)


class GarminSleepSummary(Base):
    __tablename__ = "garmin_sleep_summaries"
    __table_args__ = (UniqueConstraint("user_id", "summary_id", name="uq_garmin_sleep_summaries_user_summary"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    summary_id: Mapped[str] = mapped_column(String(128), nullable=False)
    calendar_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    duration_seconds: Mapped[int | None] = mapped_column(Integer, nullable=True)
    deep_sleep_seconds: Mapped[int | None] = mapped_column(Integer, nullable=True)
    light_sleep_seconds: Mapped[int | None] = mapped_column(Integer, nullable=True)
    rem_sleep_seconds: Mapped[int | None] = mapped_column(Integer, nullable=True)
    awake_seconds: Mapped[int | None] = mapped_column(Integer, nullable=True)
    raw: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    synced_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, onupdate=utcnow)
