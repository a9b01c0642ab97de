"""Schemas for compression jobs and diagnostics."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field

from reelshop.core.storage import StorageBackend
from reelshop.modules.compression.models import CompressionStatus


@dataclass
class IngestionJob:
    """One queued video: compress ``source_path`` into ``working_path`` and store it.

    ``id`` is the video's entity id. When ``thumbnail_path`` is set a poster
    frame is written there and stored under ``thumbnail_folder``.
    """
    id: int
    source_path: str
    working_path: str
    delete_source_on_success: bool = True
    folder: str = "videos"
    thumbnail_path: Optional[str] = None
    thumbnail_folder: str = "thumbnails"
    enqueued_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    correlation_id: str = field(default_factory=lambda: uuid.uuid4().hex)


@dataclass(frozen=True)
class EntityStatus:
    """Persisted compression state of one entity."""
    status: Optional[CompressionStatus]
    final_url: Optional[str] = None
    storage_backend: Optional[StorageBackend] = None
    original_size: Optional[int] = None
    compressed_size: Optional[int] = None
    thumbnail_url: Optional[str] = None


def savings_percent(original_size: Optional[int], compressed_size: Optional[int]) -> Optional[float]:
    """Percent saved, one decimal place; None unless both sizes are known."""
    if not original_size or compressed_size is None:
        return None
    return round((1 - compressed_size / original_size) * 100, 1)


class QueueStatus(BaseModel):
    """Compression queue snapshot for diagnostics."""
    queue_length: int = Field(description="Jobs waiting, excluding the running one")
    is_processing: bool
    pending_job_ids: list[int] = Field(default_factory=list)
    current_job_id: Optional[int] = None


class UploadAccepted(BaseModel):
    """Response returned to the uploader once the job is queued."""
    entity_id: int
    compression: str = "processing"
    message: str = "Video uploaded. Compression is running in the background."
    queue_position: int


class CompressionStatusResponse(BaseModel):
    entity_id: int
    status: Optional[CompressionStatus] = None
    original_size: Optional[int] = None
    compressed_size: Optional[int] = None
    savings_percent: Optional[float] = None
    storage_backend: Optional[StorageBackend] = None
