"""
Tag Schemas

Request/response models for the global tag registry and tenant tags.
"""
from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime

from tenantcore.models.tag import GlobalTagStatus


class GlobalTagCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)


class GlobalTagUpdate(BaseModel):
    """Rename (only while no tenant copies exist) or archive/reactivate."""
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    status: Optional[GlobalTagStatus] = None


class GlobalTagResponse(BaseModel):
    id: str
    name: str
    status: str
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class GlobalTagListResponse(BaseModel):
    tags: List[GlobalTagResponse]


class TenantTagCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)


class TenantTagResponse(BaseModel):
    id: str
    tenant_id: str
    name: str
    global_tag_id: Optional[str]
    is_default: bool
    created_at: datetime

    class Config:
        from_attributes = True


class TenantTagListResponse(BaseModel):
    tags: List[TenantTagResponse]


class SyncGlobalTagsResponse(BaseModel):
    added: int
    total_active_global: int
