"""Storage mode registry.

Holds the process-wide choice between the remote CDN and local disk, read
from the ``storage_config`` singleton and cached in memory with a TTL so the
ingestion path does not hit the database for every upload.
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional, Protocol, Union

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from reelshop.core.logging import log_error, log_info
from reelshop.core.metrics import STORAGE_MODE_CACHE_REFRESHES_TOTAL
from reelshop.core.storage import ObjectStore
from reelshop.modules.storage_mode.models import StorageConfig, StorageMode
from reelshop.modules.storage_mode.repository import StorageConfigRepository

logger = logging.getLogger(__name__)

DEFAULT_MODE = StorageMode.REMOTE

MODE_DESCRIPTIONS = {
    StorageMode.REMOTE: "Files are uploaded to BunnyCDN",
    StorageMode.LOCAL: "Files are stored on the server disk",
}


class InvalidStorageModeError(ValueError):
    """Raised when a mode value is not one of the known storage modes."""


@dataclass(frozen=True)
class StorageConfigSnapshot:
    mode: StorageMode
    updated_by: Optional[str] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_model(cls, config: StorageConfig) -> "StorageConfigSnapshot":
        return cls(
            mode=StorageMode(config.mode),
            updated_by=config.updated_by,
            updated_at=config.updated_at,
        )


class StorageConfigSource(Protocol):
    """Backing store for the storage mode singleton."""

    async def read(self) -> Optional[StorageConfigSnapshot]:
        ...

    async def write(self, mode: StorageMode, actor_id: Optional[str]) -> StorageConfigSnapshot:
        ...


class SqlStorageConfigSource:
    """StorageConfigSource over the storage_config table, one session per call."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    async def read(self) -> Optional[StorageConfigSnapshot]:
        async with self._session_maker() as session:
            config = await StorageConfigRepository(session).get()
            if config is None:
                return None
            return StorageConfigSnapshot.from_model(config)

    async def write(self, mode: StorageMode, actor_id: Optional[str]) -> StorageConfigSnapshot:
        async with self._session_maker() as session:
            config = await StorageConfigRepository(session).upsert(mode, actor_id)
            snapshot = StorageConfigSnapshot.from_model(config)
            await session.commit()
            return snapshot


@dataclass(frozen=True)
class _CacheEntry:
    snapshot: StorageConfigSnapshot
    expires_at: float


def parse_mode(value: Union[StorageMode, str, None]) -> StorageMode:
    """Parse a mode value, raising InvalidStorageModeError for unknown ones."""
    try:
        return StorageMode(value)
    except ValueError as e:
        valid = ", ".join(m.value for m in StorageMode)
        raise InvalidStorageModeError(f"Invalid storage mode {value!r}. Must be one of: {valid}") from e


class StorageModeRegistry:
    """Cached view of the storage mode singleton.

    The cache is a single immutable entry replaced wholesale, so readers see
    either the old or the new value. Reads that fail fall back to the remote
    mode without caching, so the next call retries.
    """

    def __init__(
        self,
        source: StorageConfigSource,
        remote_store: ObjectStore,
        ttl_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._source = source
        self._remote_store = remote_store
        self._ttl = ttl_seconds
        self._clock = clock
        self._entry: Optional[_CacheEntry] = None
        # Bumped on every write/invalidate so a slow refresh cannot clobber it
        self._generation = 0

    @property
    def remote_configured(self) -> bool:
        return self._remote_store.is_configured()

    @property
    def remote_base_url(self) -> Optional[str]:
        return getattr(self._remote_store, "cdn_url", None) or None

    async def get_config(self) -> StorageConfigSnapshot:
        entry = self._entry
        if entry is not None and self._clock() < entry.expires_at:
            return entry.snapshot

        generation = self._generation
        try:
            snapshot = await self._source.read()
        except Exception as e:
            STORAGE_MODE_CACHE_REFRESHES_TOTAL.labels(result="error").inc()
            log_error(
                logger,
                "Failed to read storage mode, defaulting to remote",
                exception=e,
            )
            return StorageConfigSnapshot(mode=DEFAULT_MODE)

        STORAGE_MODE_CACHE_REFRESHES_TOTAL.labels(result="success").inc()
        if snapshot is None:
            snapshot = StorageConfigSnapshot(mode=DEFAULT_MODE)
        if generation == self._generation:
            self._entry = _CacheEntry(snapshot, self._clock() + self._ttl)
        return snapshot

    async def current_mode(self) -> StorageMode:
        return (await self.get_config()).mode

    async def set_mode(
        self,
        mode: Union[StorageMode, str],
        actor_id: Optional[str] = None,
    ) -> StorageConfigSnapshot:
        """Persist a new mode and make it visible to readers immediately."""
        parsed = parse_mode(mode)
        snapshot = await self._source.write(parsed, actor_id)
        self._generation += 1
        self._entry = _CacheEntry(snapshot, self._clock() + self._ttl)
        log_info(logger, "Storage mode updated", mode=parsed.value, updated_by=actor_id)
        return snapshot

    async def should_use_remote(self) -> bool:
        """Remote mode selected and the remote backend has credentials."""
        mode = await self.current_mode()
        return mode == StorageMode.REMOTE and self.remote_configured

    def invalidate(self) -> None:
        self._generation += 1
        self._entry = None

    def describe(self, mode: StorageMode) -> str:
        return MODE_DESCRIPTIONS[mode]
