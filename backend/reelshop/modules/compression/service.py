"""Upload-facing facade of the media ingestion pipeline.

Upload handlers validate and save the file to temp storage, then call
``accept_upload``; the response is returned immediately while the queue
compresses and stores the video in the background.
"""

import logging
from pathlib import Path
from typing import Iterable, Optional, Union

from reelshop.core.logging import log_info
from reelshop.core.storage import StorageBackend, StoredObject, StoreResolver, delete_quietly
from reelshop.modules.compression.models import CompressionStatus
from reelshop.modules.compression.pipeline import store_with_fallback
from reelshop.modules.compression.queue import CompressionJobQueue
from reelshop.modules.compression.repository import EntityStatusStore
from reelshop.modules.compression.schemas import (
    CompressionStatusResponse,
    IngestionJob,
    QueueStatus,
    UploadAccepted,
    savings_percent,
)
from reelshop.modules.storage_mode.service import StorageModeRegistry

logger = logging.getLogger(__name__)

WORKING_SUFFIX = "_opt"
THUMBNAIL_SUFFIX = "_thumb"


def working_path_for(source_path: Union[str, Path]) -> str:
    """``uploads/temp/videos/abc.mov`` -> ``uploads/temp/videos/abc_opt.mp4``."""
    source = Path(source_path)
    return str(source.with_name(f"{source.stem}{WORKING_SUFFIX}.mp4"))


def thumbnail_path_for(source_path: Union[str, Path]) -> str:
    """``uploads/temp/videos/abc.mov`` -> ``uploads/temp/videos/abc_thumb.jpg``."""
    source = Path(source_path)
    return str(source.with_name(f"{source.stem}{THUMBNAIL_SUFFIX}.jpg"))


class MediaIngestService:
    """Service for accepting uploads and reporting compression progress."""

    def __init__(
        self,
        queue: CompressionJobQueue,
        status_store: EntityStatusStore,
        registry: StorageModeRegistry,
        resolver: StoreResolver,
        videos_folder: str = "videos",
        thumbnails_folder: str = "thumbnails",
        delete_source_on_success: bool = True,
    ):
        self.queue = queue
        self.status_store = status_store
        self.registry = registry
        self.resolver = resolver
        self.videos_folder = videos_folder
        self.thumbnails_folder = thumbnails_folder
        self.delete_source_on_success = delete_source_on_success

    async def accept_upload(
        self,
        entity_id: int,
        source_path: Union[str, Path],
        *,
        generate_thumbnail: bool = False,
    ) -> UploadAccepted:
        """Mark the video pending and queue it for compression.

        Pass ``generate_thumbnail`` when the upload came without a thumbnail;
        a poster frame is then taken from the final video.

        Raises:
            FileNotFoundError: The uploaded file is not on disk
            EntityNotFoundError: The video row does not exist
        """
        source = Path(source_path)
        if not source.is_file():
            raise FileNotFoundError(f"Uploaded file not found: {source}")

        await self.status_store.set_status(entity_id, CompressionStatus.PENDING)

        job = IngestionJob(
            id=entity_id,
            source_path=str(source),
            working_path=working_path_for(source),
            delete_source_on_success=self.delete_source_on_success,
            folder=self.videos_folder,
            thumbnail_path=thumbnail_path_for(source) if generate_thumbnail else None,
            thumbnail_folder=self.thumbnails_folder,
        )
        position = self.queue.enqueue(job)
        log_info(logger, "Upload accepted for compression", entity_id=entity_id, queue_position=position)
        return UploadAccepted(entity_id=entity_id, queue_position=position)

    async def store_thumbnail(self, local_path: Union[str, Path]) -> StoredObject:
        """Store an uploaded thumbnail with the same remote-then-local fallback as videos."""
        use_remote = await self.registry.should_use_remote()
        return await store_with_fallback(self.resolver, local_path, self.thumbnails_folder, use_remote)

    async def compression_status(self, entity_id: int) -> CompressionStatusResponse:
        """Raises EntityNotFoundError for unknown ids."""
        current = await self.status_store.get_status(entity_id)
        return CompressionStatusResponse(
            entity_id=entity_id,
            status=current.status or CompressionStatus.PENDING,
            original_size=current.original_size,
            compressed_size=current.compressed_size,
            savings_percent=savings_percent(current.original_size, current.compressed_size),
            storage_backend=current.storage_backend,
        )

    def queue_status(self) -> QueueStatus:
        return self.queue.status()

    async def delete_assets(
        self,
        urls: Iterable[Optional[str]],
        backend: Optional[Union[StorageBackend, str]] = None,
    ) -> int:
        """Best-effort delete of stored assets (video, thumbnail...). Returns how many were deleted."""
        deleted = 0
        for url in urls:
            if url and await delete_quietly(self.resolver, url, backend):
                deleted += 1
        return deleted
