"""Database model for the storage mode singleton."""

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from reelshop.core.database import Base

# Values written before the backend was renamed
_LEGACY_ALIASES = {
    "bunny": "remote",
    "bunnycdn": "remote",
    "cdn": "remote",
}


class StorageMode(str, Enum):
    """Where newly ingested assets are stored."""
    REMOTE = "remote"
    LOCAL = "local"

    @classmethod
    def _missing_(cls, value):
        if isinstance(value, str):
            normalized = value.strip().lower()
            normalized = _LEGACY_ALIASES.get(normalized, normalized)
            for member in cls:
                if member.value == normalized:
                    return member
        return None


class StorageConfig(Base):
    """Process-wide storage mode.

    Logically a singleton: readers use the lowest id and writers update it in
    place, so a single row exists once the mode has been set.
    """

    __tablename__ = "storage_config"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    mode: Mapped[str] = mapped_column(
        String(20), nullable=False, default=StorageMode.REMOTE.value
    )
    updated_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    def __repr__(self) -> str:
        return f"<StorageConfig(id={self.id}, mode={self.mode})>"
