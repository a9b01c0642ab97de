"""Admin endpoints for the storage mode."""

from fastapi import APIRouter, Depends, HTTPException, status

from reelshop.core.auth import get_admin_id
from reelshop.modules.storage_mode.models import StorageMode
from reelshop.modules.storage_mode.schemas import (
    StorageConfigResponse,
    StorageConfigUpdate,
    StorageConfigUpdateResponse,
)
from reelshop.modules.storage_mode.service import (
    InvalidStorageModeError,
    StorageConfigSnapshot,
    StorageModeRegistry,
    parse_mode,
)
from reelshop.runtime import MediaRuntime, get_runtime

router = APIRouter(prefix="/admin/storage-config", tags=["Admin Storage"])


def get_registry(runtime: MediaRuntime = Depends(get_runtime)) -> StorageModeRegistry:
    return runtime.registry


def _to_response(registry: StorageModeRegistry, snapshot: StorageConfigSnapshot) -> StorageConfigResponse:
    return StorageConfigResponse(
        mode=snapshot.mode,
        description=registry.describe(snapshot.mode),
        remote_configured=registry.remote_configured,
        remote_base_url=registry.remote_base_url,
        updated_by=snapshot.updated_by,
        updated_at=snapshot.updated_at,
    )


@router.get(
    "",
    response_model=StorageConfigResponse,
    summary="Get storage mode",
)
async def get_storage_config(
    admin_id: str = Depends(get_admin_id),
    registry: StorageModeRegistry = Depends(get_registry),
) -> StorageConfigResponse:
    snapshot = await registry.get_config()
    return _to_response(registry, snapshot)


@router.put(
    "",
    response_model=StorageConfigUpdateResponse,
    summary="Switch storage mode",
    description="Switch where new uploads are stored. Remote mode requires BunnyCDN credentials.",
)
async def update_storage_config(
    data: StorageConfigUpdate,
    admin_id: str = Depends(get_admin_id),
    registry: StorageModeRegistry = Depends(get_registry),
) -> StorageConfigUpdateResponse:
    try:
        mode = parse_mode(data.mode)
    except InvalidStorageModeError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    if mode == StorageMode.REMOTE and not registry.remote_configured:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="BunnyCDN is not configured. Set the BunnyCDN credentials before enabling remote storage.",
        )

    snapshot = await registry.set_mode(mode, admin_id)
    return StorageConfigUpdateResponse(
        message=f"Storage mode switched to {mode.value}",
        config=_to_response(registry, snapshot),
    )
