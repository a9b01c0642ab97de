"""Persistence of compression status on the videos table."""

from typing import Optional, Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from reelshop.core.storage import StorageBackend
from reelshop.modules.compression.models import CompressionStatus, Video
from reelshop.modules.compression.schemas import EntityStatus


class EntityNotFoundError(LookupError):
    """The entity the status belongs to does not exist."""

    def __init__(self, entity_id: int):
        super().__init__(f"Entity {entity_id} not found")
        self.entity_id = entity_id


class EntityStatusStore(Protocol):
    """Where the pipeline records compression progress and the final asset."""

    async def set_status(
        self,
        entity_id: int,
        status: CompressionStatus,
        *,
        final_url: Optional[str] = None,
        storage_backend: Optional[StorageBackend] = None,
        original_size: Optional[int] = None,
        compressed_size: Optional[int] = None,
        thumbnail_url: Optional[str] = None,
    ) -> None:
        ...

    async def get_status(self, entity_id: int) -> EntityStatus:
        ...


class VideoStatusRepository:
    """Repository for the compression columns of Video."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, video_id: int) -> Optional[Video]:
        result = await self.session.execute(select(Video).where(Video.id == video_id))
        return result.scalar_one_or_none()

    async def update_status(
        self,
        video_id: int,
        status: CompressionStatus,
        final_url: Optional[str] = None,
        storage_backend: Optional[StorageBackend] = None,
        original_size: Optional[int] = None,
        compressed_size: Optional[int] = None,
        thumbnail_url: Optional[str] = None,
    ) -> Video:
        """Update status; None arguments leave the column untouched.

        Raises:
            EntityNotFoundError: No video with this id
        """
        video = await self.get_by_id(video_id)
        if video is None:
            raise EntityNotFoundError(video_id)

        video.compression_status = status.value
        if final_url is not None:
            video.video_url = final_url
        if storage_backend is not None:
            video.storage_backend = StorageBackend(storage_backend).value
        if original_size is not None:
            video.original_size = original_size
        if compressed_size is not None:
            video.compressed_size = compressed_size
        if thumbnail_url is not None:
            video.thumbnail_url = thumbnail_url

        await self.session.flush()
        return video


class SqlEntityStatusStore:
    """EntityStatusStore over the videos table, one session per call."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    async def set_status(
        self,
        entity_id: int,
        status: CompressionStatus,
        *,
        final_url: Optional[str] = None,
        storage_backend: Optional[StorageBackend] = None,
        original_size: Optional[int] = None,
        compressed_size: Optional[int] = None,
        thumbnail_url: Optional[str] = None,
    ) -> None:
        async with self._session_maker() as session:
            await VideoStatusRepository(session).update_status(
                entity_id,
                status,
                final_url=final_url,
                storage_backend=storage_backend,
                original_size=original_size,
                compressed_size=compressed_size,
                thumbnail_url=thumbnail_url,
            )
            await session.commit()

    async def get_status(self, entity_id: int) -> EntityStatus:
        async with self._session_maker() as session:
            video = await VideoStatusRepository(session).get_by_id(entity_id)
            if video is None:
                raise EntityNotFoundError(entity_id)
            return EntityStatus(
                status=CompressionStatus(video.compression_status) if video.compression_status else None,
                final_url=video.video_url,
                storage_backend=StorageBackend(video.storage_backend) if video.storage_backend else None,
                original_size=video.original_size,
                compressed_size=video.compressed_size,
                thumbnail_url=video.thumbnail_url,
            )
