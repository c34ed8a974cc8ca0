from __future__ import annotations

from datetime import datetime

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fitlink.db.base import Base
from fitlink.db.types import UTCDateTime, utcnow


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)

    credentials: Mapped[list["ProviderCredential"]] = relationship(
        "ProviderCredential", back_populates="user", cascade="all, delete-orphan"
    )
    backfill_requests: Mapped[list["BackfillRequest"]] = relationship(
        "BackfillRequest", back_populates="user", cascade="all, delete-orphan"
    )
