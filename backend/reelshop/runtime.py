"""Composition root for the media ingestion service.

One MediaRuntime is built at startup and shared by every request through
``app.state.runtime``.
"""

import logging
from pathlib import Path
from typing import Optional

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from reelshop.core.config import Settings, settings as default_settings
from reelshop.core.database import get_session_maker
from reelshop.core.logging import log_info
from reelshop.core.storage import BunnyStorage, LocalStorage, ObjectStore, StoreResolver
from reelshop.modules.compression.pipeline import IngestionPipeline, Transcoder
from reelshop.modules.compression.queue import CompressionJobQueue
from reelshop.modules.compression.repository import EntityStatusStore, SqlEntityStatusStore
from reelshop.modules.compression.service import MediaIngestService
from reelshop.modules.storage_mode.service import (
    SqlStorageConfigSource,
    StorageConfigSource,
    StorageModeRegistry,
)
from reelshop.modules.transcoding.ffmpeg import FFmpegTranscoder
from reelshop.modules.transcoding.schemas import CompressionParams

logger = logging.getLogger(__name__)


class MediaRuntime:
    """Owns the stores, registry, transcoder, queue and service."""

    def __init__(
        self,
        *,
        local: LocalStorage,
        remote: ObjectStore,
        registry: StorageModeRegistry,
        transcoder: Transcoder,
        status_store: EntityStatusStore,
        params: Optional[CompressionParams] = None,
        temp_videos_dir: Optional[Path] = None,
        videos_folder: str = "videos",
        images_folder: str = "images",
        thumbnails_folder: str = "thumbnails",
        delete_source_on_success: bool = True,
    ):
        self.local = local
        self.remote = remote
        self.resolver = StoreResolver(remote=remote, local=local)
        self.registry = registry
        self.transcoder = transcoder
        self.status_store = status_store
        self.pipeline = IngestionPipeline(
            transcoder=transcoder,
            status_store=status_store,
            registry=registry,
            resolver=self.resolver,
            params=params,
        )
        self.queue = CompressionJobQueue(self.pipeline)
        self.service = MediaIngestService(
            queue=self.queue,
            status_store=status_store,
            registry=registry,
            resolver=self.resolver,
            videos_folder=videos_folder,
            thumbnails_folder=thumbnails_folder,
            delete_source_on_success=delete_source_on_success,
        )
        self.temp_videos_dir = temp_videos_dir or local.root / "temp" / "videos"
        self.served_folders = (videos_folder, images_folder, thumbnails_folder)

    @classmethod
    def from_settings(
        cls,
        settings: Optional[Settings] = None,
        session_maker: Optional[async_sessionmaker[AsyncSession]] = None,
        config_source: Optional[StorageConfigSource] = None,
        status_store: Optional[EntityStatusStore] = None,
        transcoder: Optional[Transcoder] = None,
    ) -> "MediaRuntime":
        s = settings or default_settings
        if session_maker is None and (config_source is None or status_store is None):
            session_maker = get_session_maker(s.DATABASE_URL)

        local = LocalStorage(s.UPLOADS_DIR, s.UPLOADS_URL_PREFIX)
        remote = BunnyStorage(
            storage_zone=s.BUNNY_STORAGE_ZONE,
            api_key=s.BUNNY_STORAGE_API_KEY,
            cdn_url=s.BUNNY_CDN_URL,
            endpoint=s.BUNNY_STORAGE_ENDPOINT,
            timeout=s.BUNNY_TIMEOUT_SECONDS,
        )
        registry = StorageModeRegistry(
            source=config_source or SqlStorageConfigSource(session_maker),
            remote_store=remote,
            ttl_seconds=s.STORAGE_MODE_CACHE_TTL_SECONDS,
        )
        return cls(
            local=local,
            remote=remote,
            registry=registry,
            transcoder=transcoder or FFmpegTranscoder(
                ffmpeg_path=s.FFMPEG_PATH,
                ffprobe_path=s.FFPROBE_PATH,
                timeout_seconds=s.FFMPEG_TIMEOUT_SECONDS,
            ),
            status_store=status_store or SqlEntityStatusStore(session_maker),
            params=CompressionParams.from_settings(s),
            temp_videos_dir=local.root / s.TEMP_VIDEOS_FOLDER,
            videos_folder=s.VIDEOS_FOLDER,
            images_folder=s.IMAGES_FOLDER,
            thumbnails_folder=s.THUMBNAILS_FOLDER,
            delete_source_on_success=s.DELETE_SOURCE_ON_SUCCESS,
        )

    def ensure_directories(self) -> None:
        """Create the temp upload directory and the served folders."""
        self.temp_videos_dir.mkdir(parents=True, exist_ok=True)
        for folder in self.served_folders:
            (self.local.root / folder).mkdir(parents=True, exist_ok=True)

    async def aclose(self, timeout: Optional[float] = None) -> None:
        """Drain the compression queue, then release the CDN client."""
        try:
            await self.queue.shutdown(timeout)
        finally:
            await self.remote.aclose()
        log_info(logger, "Media runtime closed")


def get_runtime(request: Request) -> MediaRuntime:
    """FastAPI dependency returning the app's MediaRuntime."""
    return request.app.state.runtime
