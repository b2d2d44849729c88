# salesync/models/platform_connection.py
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, Text, DateTime, UniqueConstraint

from ..database import Base


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class PlatformConnection(Base):
    """A user's credentials for one marketplace. At most one per (user, platform)."""

    __tablename__ = "platform_connections"
    __table_args__ = (
        UniqueConstraint("user_id", "platform", name="uq_platform_connections_user_platform"),
    )

    id = Column(Integer, primary_key=True)
    user_id = Column(String, index=True, nullable=False)
    platform = Column(String, nullable=False)

    access_token = Column(Text, nullable=False)
    refresh_token = Column(Text, nullable=False, default="")
    token_expires_at = Column(DateTime(timezone=True), nullable=True)

    # Etsy shop id, eBay user id, ... (required by some platforms only)
    platform_account_id = Column(String, nullable=True)
    platform_username = Column(String, nullable=True)

    connected_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)

    def __repr__(self) -> str:
        return (
            f"<PlatformConnection id={self.id} user={self.user_id} platform={self.platform} "
            f"expires_at={self.token_expires_at}>"
        )
