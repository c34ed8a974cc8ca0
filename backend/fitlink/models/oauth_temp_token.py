from datetime import datetime

from sqlalchemy import ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from fitlink.db.base import Base
from fitlink.db.types import UTCDateTime, utcnow


class OAuthTempToken(Base):
    """
    Pending authorization attempt: server-issued state plus the PKCE code_verifier
    or the OAuth1 request token/secret. Consumed (deleted) exactly once.
    """

    __tablename__ = "oauth_temp_tokens"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    provider: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    state: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    code_verifier: Mapped[str | None] = mapped_column(String(128), nullable=True)
    oauth_token: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    encrypted_token_secret: Mapped[str | None] = mapped_column(Text, nullable=True)
    redirect_uri: Mapped[str | None] = mapped_column(String(512), nullable=True)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, index=True)
