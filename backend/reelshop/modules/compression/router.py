"""Diagnostics endpoints for video compression."""

from fastapi import APIRouter, Depends, HTTPException, status

from reelshop.core.auth import get_admin_id
from reelshop.modules.compression.repository import EntityNotFoundError
from reelshop.modules.compression.schemas import CompressionStatusResponse, QueueStatus
from reelshop.modules.compression.service import MediaIngestService
from reelshop.runtime import MediaRuntime, get_runtime

router = APIRouter(prefix="/videos", tags=["Video Compression"])


def get_ingest_service(runtime: MediaRuntime = Depends(get_runtime)) -> MediaIngestService:
    return runtime.service


@router.get(
    "/admin/compression-queue",
    response_model=QueueStatus,
    summary="Compression queue status",
)
async def get_compression_queue(
    admin_id: str = Depends(get_admin_id),
    service: MediaIngestService = Depends(get_ingest_service),
) -> QueueStatus:
    return service.queue_status()


@router.get(
    "/{video_id}/compression-status",
    response_model=CompressionStatusResponse,
    summary="Compression status of a video",
)
async def get_compression_status(
    video_id: int,
    service: MediaIngestService = Depends(get_ingest_service),
) -> CompressionStatusResponse:
    try:
        return await service.compression_status(video_id)
    except EntityNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Video not found")
