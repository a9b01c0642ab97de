"""Repository for the storage_config singleton."""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from reelshop.modules.storage_mode.models import StorageConfig, StorageMode


class StorageConfigRepository:
    """Repository for StorageConfig operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self) -> Optional[StorageConfig]:
        """Get the singleton row (lowest id), if any."""
        result = await self.session.execute(
            select(StorageConfig).order_by(StorageConfig.id).limit(1)
        )
        return result.scalar_one_or_none()

    async def upsert(self, mode: StorageMode, actor_id: Optional[str]) -> StorageConfig:
        """Create the singleton or update it in place.

        Args:
            mode: New storage mode
            actor_id: Admin who made the change

        Returns:
            The written row (flushed, not committed)
        """
        config = await self.get()
        now = datetime.now(timezone.utc)
        if config is None:
            config = StorageConfig(
                mode=mode.value,
                updated_by=actor_id,
                updated_at=now,
                created_at=now,
            )
            self.session.add(config)
        else:
            config.mode = mode.value
            config.updated_by = actor_id
            config.updated_at = now
        await self.session.flush()
        return config
