"""Local key-value cache table."""

from datetime import datetime, timezone

from sqlalchemy import DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from thefit.core.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CacheEntry(Base):
    """One key/value pair of the local cache.

    Values are JSON text. Keys follow the mobile client's storage layout,
    e.g. ``exerciseSets_{userId}_{YYYY-MM-DD}`` or ``notifications_{userId}``.
    """

    __tablename__ = "cache_entries"

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    value: Mapped[str] = mapped_column(Text)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        onupdate=_utcnow,
    )

    def __repr__(self) -> str:
        return f"<CacheEntry(key={self.key}, updated_at={self.updated_at})>"
