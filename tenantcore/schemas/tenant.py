"""
Tenant Schemas

Request/response models for tenant provisioning, the tenant profile and
tenant members.
"""
from pydantic import BaseModel, EmailStr, Field
from typing import List, Optional
from datetime import datetime

from tenantcore.models.membership import MembershipRole
from tenantcore.models.tenant import TenantStatus


class TenantCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    plan: Optional[str] = Field(None, max_length=50)
    billing_email: Optional[EmailStr] = None
    # Existing user to add as an admin of the new tenant
    owner_email: Optional[EmailStr] = None


class TenantCreated(BaseModel):
    tenantId: str
    tags_copied: int
    owner_user_id: Optional[str] = None


class TenantUpdate(BaseModel):
    """Platform admin update. All fields optional."""
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    status: Optional[TenantStatus] = None
    plan: Optional[str] = Field(None, max_length=50)
    billing_email: Optional[EmailStr] = None


class TenantProfileUpdate(BaseModel):
    """Tenant admin update of their own workspace."""
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    billing_email: Optional[EmailStr] = None


class TenantResponse(BaseModel):
    id: str
    name: str
    status: str
    plan: str
    billing_email: Optional[str]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class TenantSummary(BaseModel):
    id: str
    name: str
    status: str
    plan: str
    billing_email: Optional[str]
    created_at: datetime
    member_count: int
    tag_count: int


class TenantListResponse(BaseModel):
    tenants: List[TenantSummary]
    total: int
    limit: int
    offset: int


class MemberResponse(BaseModel):
    user_id: str
    email: str
    name: Optional[str]
    role: MembershipRole
    joined_at: datetime


class MemberListResponse(BaseModel):
    members: List[MemberResponse]


class MemberRoleUpdate(BaseModel):
    role: MembershipRole


class TenantMetrics(BaseModel):
    member_count: int
    tag_count: int


class TenantDetailResponse(BaseModel):
    tenant: TenantResponse
    metrics: TenantMetrics
    members: List[MemberResponse]
