"""Video compression: job queue, ingestion pipeline and status persistence."""

from reelshop.modules.compression.models import CompressionStatus, TERMINAL_STATUSES, Video
from reelshop.modules.compression.pipeline import IngestionPipeline, store_with_fallback
from reelshop.modules.compression.queue import CompressionJobQueue, QueueClosedError
from reelshop.modules.compression.repository import (
    EntityNotFoundError,
    EntityStatusStore,
    SqlEntityStatusStore,
    VideoStatusRepository,
)
from reelshop.modules.compression.schemas import (
    CompressionStatusResponse,
    EntityStatus,
    IngestionJob,
    QueueStatus,
    UploadAccepted,
    savings_percent,
)
from reelshop.modules.compression.service import (
    MediaIngestService,
    thumbnail_path_for,
    working_path_for,
)

__all__ = [
    "CompressionStatus",
    "TERMINAL_STATUSES",
    "Video",
    "IngestionPipeline",
    "store_with_fallback",
    "CompressionJobQueue",
    "QueueClosedError",
    "EntityNotFoundError",
    "EntityStatusStore",
    "SqlEntityStatusStore",
    "VideoStatusRepository",
    "CompressionStatusResponse",
    "EntityStatus",
    "IngestionJob",
    "QueueStatus",
    "UploadAccepted",
    "savings_percent",
    "MediaIngestService",
    "thumbnail_path_for",
    "working_path_for",
]
