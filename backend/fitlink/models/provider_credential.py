from datetime import datetime

from sqlalchemy import ForeignKey, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fitlink.db.base import Base
from fitlink.db.types import UTCDateTime, utcnow


class ProviderCredential(Base):
    """OAuth material for one (user, provider). Secrets (refresh token / OAuth1 token secret) are Fernet-encrypted."""

    __tablename__ = "provider_credentials"
    __table_args__ = (UniqueConstraint("user_id", "provider", name="uq_provider_credentials_user_provider"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    provider: Mapped[str] = mapped_column(String(16), nullable=False)  # strava | garmin
    auth_scheme: Mapped[str] = mapped_column(String(16), nullable=False)  # oauth2 | oauth2_pkce | oauth1
    access_token: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    encrypted_secret: Mapped[str | None] = mapped_column(Text, nullable=True)  # refresh token or token secret
    consumer_key: Mapped[str | None] = mapped_column(String(128), nullable=True)
    provider_user_id: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)
    scope: Mapped[str | None] = mapped_column(String(255), nullable=True)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, onupdate=utcnow)

    user: Mapped["User"] = relationship("User", back_populates="credentials")

    def is_expired(self, now: datetime | None = None) -> bool:
        return self.expires_at <= (now or utcnow())
