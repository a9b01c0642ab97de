"""Pydantic schemas for the storage mode admin endpoints."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from reelshop.modules.storage_mode.models import StorageMode


class StorageConfigResponse(BaseModel):
    """Current storage mode with audit fields."""
    mode: StorageMode
    description: str
    remote_configured: bool = Field(description="Whether BunnyCDN credentials are set")
    remote_base_url: Optional[str] = Field(default=None, description="Public CDN base URL")
    updated_by: Optional[str] = None
    updated_at: Optional[datetime] = None


class StorageConfigUpdate(BaseModel):
    """Request body for switching the storage mode."""
    mode: str = Field(description="remote or local")


class StorageConfigUpdateResponse(BaseModel):
    message: str
    config: StorageConfigResponse
