from datetime import datetime

from sqlalchemy import ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from fitlink.db.base import Base
from fitlink.db.types import UTCDateTime


class SyncStatus(Base):
    __tablename__ = "sync_status"
    __table_args__ = (UniqueConstraint("user_id", "provider", name="uq_sync_status_user_provider"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    provider: Mapped[str] = mapped_column(String(16), nullable=False)
    last_sync_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    last_activity_date: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    total_activities_synced: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="completed")  # completed, in_progress, error
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
