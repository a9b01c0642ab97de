"""Compression columns of the marketplace ``videos`` table.

The table belongs to the catalog; the ingestion pipeline is the only writer
of the columns mapped here.
"""

from enum import Enum
from typing import Optional

from sqlalchemy import BigInteger, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from reelshop.core.database import Base


class CompressionStatus(str, Enum):
    """Compression lifecycle of an uploaded video.

    pending -> processing -> completed | skipped | error
    """
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    SKIPPED = "skipped"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({
    CompressionStatus.COMPLETED,
    CompressionStatus.SKIPPED,
    CompressionStatus.ERROR,
})


class Video(Base):
    __tablename__ = "videos"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    video_url: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    thumbnail_url: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    compression_status: Mapped[Optional[str]] = mapped_column(
        String(20), nullable=True, default=CompressionStatus.PENDING.value, index=True
    )
    # remote | local, tag for video_url
    storage_backend: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    original_size: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    compressed_size: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)

    def __repr__(self) -> str:
        return f"<Video(id={self.id}, compression_status={self.compression_status})>"
