"""Reelshop media ingestion backend.

Modules:
    - core: Configuration, database, logging, tracing, metrics, object storage
    - modules.transcoding: FFmpeg compression to the mobile delivery profile
    - modules.storage_mode: Remote/local storage mode registry
    - modules.compression: Job queue, ingestion pipeline, status persistence
"""

__version__ = "0.1.0"
