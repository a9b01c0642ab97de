"""Ingestion pipeline for one uploaded video.

processing -> transcode (or keep the original) -> optional poster frame -> store
remotely or locally -> persist the terminal status -> reclaim local disk.

Each job gets exactly one terminal status write. Remote storage failures
fall back to local disk; transcoder failures end the job in ``error`` with
its files left in place for inspection.
"""

import asyncio
import logging
import time
from pathlib import Path
from typing import Optional, Protocol, Union

from reelshop.core.logging import log_error, log_info, log_warning
from reelshop.core.metrics import (
    COMPRESSION_BYTES_SAVED_TOTAL,
    COMPRESSION_JOB_DURATION_SECONDS,
    COMPRESSION_JOBS_TOTAL,
    STORAGE_FALLBACKS_TOTAL,
)
from reelshop.core.storage import (
    StorageBackend,
    StorageError,
    StoredObject,
    StoreResolver,
)
from reelshop.core.tracing import add_span_attributes, create_span, record_exception
from reelshop.modules.compression.models import CompressionStatus
from reelshop.modules.compression.repository import EntityStatusStore
from reelshop.modules.compression.schemas import IngestionJob
from reelshop.modules.storage_mode.service import StorageModeRegistry
from reelshop.modules.transcoding.ffmpeg import SourceMissingError, TranscodeError
from reelshop.modules.transcoding.schemas import CompressionParams, CompressionResult

logger = logging.getLogger(__name__)


class Transcoder(Protocol):
    async def is_available(self) -> bool:
        ...

    async def transcode(
        self,
        source_path: Union[str, Path],
        target_path: Union[str, Path],
        params: Optional[CompressionParams] = None,
    ) -> CompressionResult:
        ...

    async def generate_thumbnail(
        self,
        video_path: Union[str, Path],
        target_path: Union[str, Path],
    ) -> str:
        ...


class _TerminalGuard:
    """Tracks whether the job's terminal status has been written."""

    def __init__(self) -> None:
        self.written = False
        self.persisted = False
        self.status: Optional[CompressionStatus] = None


async def store_with_fallback(
    resolver: StoreResolver,
    local_path: Union[str, Path],
    folder: str,
    use_remote: bool,
) -> StoredObject:
    """Put a file on the remote store, falling back to local disk on failure.

    Raises:
        StorageError: The local store failed as well
    """
    if use_remote:
        with create_span("storage.put", attributes={"storage.backend": StorageBackend.REMOTE.value}):
            try:
                return await resolver.remote.put(local_path, folder)
            except StorageError as e:
                record_exception(e)
                STORAGE_FALLBACKS_TOTAL.inc()
                log_warning(
                    logger,
                    "Remote upload failed, falling back to local storage",
                    path=str(local_path),
                    error=str(e),
                )

    with create_span("storage.put", attributes={"storage.backend": StorageBackend.LOCAL.value}):
        return await resolver.local.put(local_path, folder)


class IngestionPipeline:
    """Runs one IngestionJob to a terminal state. Invoked only by the queue worker."""

    def __init__(
        self,
        transcoder: Transcoder,
        status_store: EntityStatusStore,
        registry: StorageModeRegistry,
        resolver: StoreResolver,
        params: Optional[CompressionParams] = None,
    ):
        self._transcoder = transcoder
        self._status_store = status_store
        self._registry = registry
        self._resolver = resolver
        self._params = params or CompressionParams()

    async def run(self, job: IngestionJob) -> CompressionStatus:
        """Process ``job`` and return its terminal status. Never raises Exception."""
        started = time.monotonic()
        guard = _TerminalGuard()

        with create_span(
            "compression.job",
            attributes={
                "job.id": str(job.id),
                "job.source_path": job.source_path,
                "job.folder": job.folder,
            },
        ):
            try:
                status = await self._run_steps(job, guard)
            except Exception as e:
                record_exception(e)
                log_error(
                    logger,
                    "Unexpected failure in ingestion job",
                    exception=e,
                    job_id=job.id,
                )
                if not guard.written:
                    await self._write_terminal(job, guard, CompressionStatus.ERROR)
                status = guard.status or CompressionStatus.ERROR

            add_span_attributes({"job.status": status.value})

        elapsed = time.monotonic() - started
        COMPRESSION_JOBS_TOTAL.labels(status=status.value).inc()
        COMPRESSION_JOB_DURATION_SECONDS.observe(elapsed)
        log_info(
            logger,
            "Ingestion job finished",
            job_id=job.id,
            status=status.value,
            elapsed_seconds=round(elapsed, 2),
        )
        return status

    async def _run_steps(self, job: IngestionJob, guard: _TerminalGuard) -> CompressionStatus:
        await self._set_status(job, CompressionStatus.PROCESSING)
        available = await self._transcoder.is_available()

        with create_span("compression.transcode"):
            try:
                result = await self._compress(job, available)
            except TranscodeError as e:
                record_exception(e)
                log_error(
                    logger,
                    "Transcode failed, leaving files in place",
                    exception=e,
                    job_id=job.id,
                    source=job.source_path,
                )
                return await self._write_terminal(job, guard, CompressionStatus.ERROR)
            add_span_attributes({
                "compression.used_original": result.used_original,
                "compression.original_size": result.original_size_bytes,
                "compression.compressed_size": result.compressed_size_bytes,
            })

        final_local_path = result.final_local_path
        # Taken before storing: the local backend moves the video away
        thumbnail_local_path = await self._make_thumbnail(job, final_local_path, available)
        use_remote = await self._registry.should_use_remote()

        try:
            stored = await store_with_fallback(
                self._resolver, final_local_path, job.folder, use_remote
            )
        except StorageError as e:
            log_error(
                logger,
                "Could not store final asset on any backend, leaving files in place",
                exception=e,
                job_id=job.id,
                path=final_local_path,
            )
            return await self._write_terminal(job, guard, CompressionStatus.ERROR)

        fields = {
            "final_url": stored.url,
            "storage_backend": stored.backend,
            "original_size": result.original_size_bytes,
            "compressed_size": result.compressed_size_bytes,
        }
        if thumbnail_local_path is not None:
            thumbnail = await self._store_thumbnail(job, thumbnail_local_path, use_remote)
            if thumbnail is not None:
                fields["thumbnail_url"] = thumbnail.url

        status = CompressionStatus.SKIPPED if result.used_original else CompressionStatus.COMPLETED
        await self._write_terminal(job, guard, status, **fields)
        if status == CompressionStatus.COMPLETED:
            COMPRESSION_BYTES_SAVED_TOTAL.inc(
                max(0, result.original_size_bytes - result.compressed_size_bytes)
            )

        if not guard.persisted:
            log_warning(
                logger,
                "Terminal status not persisted, keeping local files",
                job_id=job.id,
                final_url=stored.url,
            )
            return status

        await self._cleanup(job, stored)
        return status

    async def _compress(self, job: IngestionJob, available: bool) -> CompressionResult:
        if not available:
            log_warning(logger, "FFmpeg not available, storing original", job_id=job.id)
            try:
                size = Path(job.source_path).stat().st_size
            except OSError as e:
                raise SourceMissingError(f"Source file not found: {job.source_path}") from e
            return CompressionResult.original(job.source_path, size)

        return await self._transcoder.transcode(job.source_path, job.working_path, self._params)

    async def _make_thumbnail(
        self,
        job: IngestionJob,
        video_path: str,
        available: bool,
    ) -> Optional[str]:
        """Poster frame from the final video; a failure only costs the thumbnail."""
        if job.thumbnail_path is None or not available:
            return None
        with create_span("compression.thumbnail"):
            try:
                return await self._transcoder.generate_thumbnail(video_path, job.thumbnail_path)
            except TranscodeError as e:
                record_exception(e)
                log_warning(
                    logger,
                    "Thumbnail generation failed, continuing without one",
                    job_id=job.id,
                    error=str(e),
                )
                return None

    async def _store_thumbnail(
        self,
        job: IngestionJob,
        local_path: str,
        use_remote: bool,
    ) -> Optional[StoredObject]:
        try:
            return await store_with_fallback(
                self._resolver, local_path, job.thumbnail_folder, use_remote
            )
        except StorageError as e:
            log_warning(
                logger,
                "Could not store generated thumbnail",
                job_id=job.id,
                path=local_path,
                error=str(e),
            )
            return None

    async def _set_status(self, job: IngestionJob, status: CompressionStatus, **fields) -> bool:
        try:
            await self._status_store.set_status(job.id, status, **fields)
        except Exception as e:
            log_error(
                logger,
                "Failed to persist compression status",
                exception=e,
                job_id=job.id,
                status=status.value,
            )
            return False
        return True

    async def _write_terminal(
        self,
        job: IngestionJob,
        guard: _TerminalGuard,
        status: CompressionStatus,
        **fields,
    ) -> CompressionStatus:
        if guard.written:
            raise RuntimeError(f"Terminal status already written for job {job.id}")
        guard.written = True
        guard.status = status
        guard.persisted = await self._set_status(job, status, **fields)
        return status

    async def _cleanup(self, job: IngestionJob, stored: StoredObject) -> None:
        """Delete temp files and, if requested, the source, sparing the served asset."""
        kept = Path(stored.local_path).resolve() if stored.local_path else None

        candidates = [job.working_path]
        if job.thumbnail_path is not None:
            candidates.append(job.thumbnail_path)
        if job.delete_source_on_success:
            candidates.append(job.source_path)

        for candidate in candidates:
            path = Path(candidate)
            if kept is not None and path.resolve() == kept:
                continue
            try:
                await asyncio.to_thread(path.unlink, missing_ok=True)
            except OSError as e:
                log_warning(logger, "Could not delete temp file", path=str(path), error=str(e))
