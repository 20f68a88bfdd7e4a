"""
Platform Admin Schemas

Audit log views, platform configuration, users and their memberships,
and statistics.
"""
from pydantic import BaseModel
from typing import Any, Dict, List, Optional
from datetime import datetime

from tenantcore.models.membership import MembershipRole
from tenantcore.schemas.auth import TenantMembershipResponse


class AuditLogResponse(BaseModel):
    id: int
    created_at: datetime
    actor_user_id: Optional[str]
    actor_type: str
    tenant_id: Optional[str]
    action: str
    target_type: Optional[str]
    target_id: Optional[str]
    payload: Optional[Dict[str, Any]]
    ip_address: Optional[str]

    class Config:
        from_attributes = True


class Pagination(BaseModel):
    total: int
    limit: int
    offset: int
    pages: int


class AuditLogListResponse(BaseModel):
    logs: List[AuditLogResponse]
    pagination: Pagination


class ConfigUpdate(BaseModel):
    value: Any


class ConfigEntryResponse(BaseModel):
    key: str
    value: Any
    updated_by: Optional[str]
    updated_at: datetime

    class Config:
        from_attributes = True


class UserFlagsUpdate(BaseModel):
    is_active: Optional[bool] = None
    is_platform_admin: Optional[bool] = None


class AdminUserResponse(BaseModel):
    id: str
    email: str
    name: Optional[str]
    is_platform_admin: bool
    is_active: bool
    created_at: datetime
    last_login_at: Optional[datetime]

    class Config:
        from_attributes = True


class AdminUserListResponse(BaseModel):
    users: List[AdminUserResponse]
    total: int
    limit: int
    offset: int


class AdminUserDetailResponse(BaseModel):
    user: AdminUserResponse
    tenants: List[TenantMembershipResponse]


class MembershipAssign(BaseModel):
    role: MembershipRole = MembershipRole.MEMBER


class AdminMembershipResponse(BaseModel):
    user_id: str
    tenant_id: str
    role: MembershipRole

    class Config:
        from_attributes = True


class PlatformStats(BaseModel):
    tenants: int
    active_tenants: int
    users: int
    active_users: int
    platform_admins: int
    memberships: int
    global_tags: int
    audit_logs: int
    email_messages_sent: int
    sms_messages_sent: int
    whatsapp_messages_sent: int
