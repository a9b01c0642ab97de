"""Storage mode registry: remote CDN or local disk for new assets."""

from reelshop.modules.storage_mode.models import StorageConfig, StorageMode
from reelshop.modules.storage_mode.service import (
    InvalidStorageModeError,
    SqlStorageConfigSource,
    StorageConfigSnapshot,
    StorageConfigSource,
    StorageModeRegistry,
    parse_mode,
)

__all__ = [
    "StorageConfig",
    "StorageMode",
    "InvalidStorageModeError",
    "SqlStorageConfigSource",
    "StorageConfigSnapshot",
    "StorageConfigSource",
    "StorageModeRegistry",
    "parse_mode",
]
