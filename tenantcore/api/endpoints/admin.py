"""
Platform Admin Endpoints

Tenant provisioning, the global tag registry, the audit trail, platform
configuration, users and their memberships, and statistics. Every route
requires platform scope; the caller's active tenant is irrelevant here.

Each mutation is committed together with its audit entry or not at all.
"""
from datetime import datetime
from typing import Optional
from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from tenantcore.database import get_db
from tenantcore.models.tag import GlobalTagStatus
from tenantcore.schemas.admin import (
    AdminMembershipResponse,
    AdminUserDetailResponse,
    AdminUserListResponse,
    AdminUserResponse,
    AuditLogListResponse,
    ConfigEntryResponse,
    ConfigUpdate,
    MembershipAssign,
    PlatformStats,
    UserFlagsUpdate,
)
from tenantcore.schemas.tag import (
    GlobalTagCreate,
    GlobalTagListResponse,
    GlobalTagResponse,
    GlobalTagUpdate,
    SyncGlobalTagsResponse,
)
from tenantcore.schemas.auth import TenantMembershipResponse
from tenantcore.schemas.tenant import (
    MemberRoleUpdate,
    TenantCreate,
    TenantCreated,
    TenantDetailResponse,
    TenantListResponse,
    TenantResponse,
    TenantUpdate,
)
from tenantcore.core.exceptions import TenantNotFoundError, UserNotFoundError
from tenantcore.models.audit_log import ActorType
from tenantcore.models.tenant import Tenant, TenantStatus
from tenantcore.models.user import User
from tenantcore.services import accounts, memberships, platform, tags, tenants
from tenantcore.services.audit import AuditQuery, AuditRecorder, get_audit_recorder
from tenantcore.api.deps import Principal, get_client_ip, require_platform_admin
from tenantcore.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/admin", tags=["platform-admin"])


# ============================================================================
# TENANTS
# ============================================================================

@router.get("/tenants", response_model=TenantListResponse)
async def list_tenants(
    status_filter: Optional[TenantStatus] = Query(None, alias="status"),
    search: Optional[str] = Query(None, max_length=255),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    principal: Principal = Depends(require_platform_admin),
    db: Session = Depends(get_db),
):
    result = tenants.list_tenants(
        db,
        status=status_filter.value if status_filter else None,
        search=search,
        limit=limit,
        offset=offset,
    )
    return {**result, "limit": limit, "offset": offset}


@router.get("/tenants/{tenant_id}", response_model=TenantDetailResponse)
async def get_tenant(
    tenant_id: str,
    principal: Principal = Depends(require_platform_admin),
    db: Session = Depends(get_db),
):
    """Tenant profile, member and tag counts, and the member list."""
    return tenants.get_tenant_detail(db, tenant_id)


@router.post("/tenants", response_model=TenantCreated, status_code=status.HTTP_201_CREATED)
async def create_tenant(
    body: TenantCreate,
    request: Request,
    principal: Principal = Depends(require_platform_admin),
    db: Session = Depends(get_db),
    audit: AuditRecorder = Depends(get_audit_recorder),
):
    """
    Provision a tenant with a copy of every active global tag.

    The requesting admin becomes an admin member; owner_email, if given,
    names an existing user who is added as admin as well.
    """
    result = tenants.create_tenant(
        db,
        name=body.name,
        requested_by=principal.user_id,
        audit=audit,
        plan=body.plan,
        billing_email=body.billing_email,
        owner_email=body.owner_email,
        ip_address=get_client_ip(request),
    )
    db.commit()

    return TenantCreated(
        tenantId=result.tenant.id,
        tags_copied=result.tags_copied,
        owner_user_id=result.owner_user_id,
    )


@router.patch("/tenants/{tenant_id}", response_model=TenantResponse)
async def update_tenant(
    tenant_id: str,
    body: TenantUpdate,
    request: Request,
    principal: Principal = Depends(require_platform_admin),
    db: Session = Depends(get_db),
    audit: AuditRecorder = Depends(get_audit_recorder),
):
    tenant = tenants.update_tenant(
        db,
        tenant_id,
        requested_by=principal.user_id,
        audit=audit,
        changes=body.model_dump(exclude_unset=True),
        ip_address=get_client_ip(request),
    )
    db.commit()
    return tenant


@router.post("/tenants/{tenant_id}/sync-global-tags", response_model=SyncGlobalTagsResponse)
async def sync_global_tags(
    tenant_id: str,
    request: Request,
    principal: Principal = Depends(require_platform_admin),
    db: Session = Depends(get_db),
    audit: AuditRecorder = Depends(get_audit_recorder),
):
    """Copy the active global tags this tenant is missing. Safe to repeat."""
    result = tags.sync_global_tags(
        db,
        tenant_id,
        requested_by=principal.user_id,
        audit=audit,
        ip_address=get_client_ip(request),
    )
    db.commit()
    return SyncGlobalTagsResponse(added=result.added, total_active_global=result.total_active_global)


# ============================================================================
# GLOBAL TAGS
# ============================================================================

@router.get("/global-tags", response_model=GlobalTagListResponse)
async def list_global_tags(
    status_filter: Optional[GlobalTagStatus] = Query(None, alias="status"),
    principal: Principal = Depends(require_platform_admin),
    db: Session = Depends(get_db),
):
    return {"tags": tags.list_global_tags(db, status_filter.value if status_filter else None)}


@router.post("/global-tags", response_model=GlobalTagResponse, status_code=status.HTTP_201_CREATED)
async def create_global_tag(
    body: GlobalTagCreate,
    request: Request,
    principal: Principal = Depends(require_platform_admin),
    db: Session = Depends(get_db),
    audit: AuditRecorder = Depends(get_audit_recorder),
):
    """
    Add a tag to the registry.

    Existing tenants do not receive it until they are synced; tenants
    created afterwards get it at provisioning.
    """
    tag = tags.create_global_tag(
        db,
        body.name,
        requested_by=principal.user_id,
        audit=audit,
        ip_address=get_client_ip(request),
    )
    db.commit()
    return tag


@router.patch("/global-tags/{tag_id}", response_model=GlobalTagResponse)
async def update_global_tag(
    tag_id: str,
    body: GlobalTagUpdate,
    request: Request,
    principal: Principal = Depends(require_platform_admin),
    db: Session = Depends(get_db),
    audit: AuditRecorder = Depends(get_audit_recorder),
):
    tag = tags.update_global_tag(
        db,
        tag_id,
        requested_by=principal.user_id,
        audit=audit,
        name=body.name,
        status=body.status,
        ip_address=get_client_ip(request),
    )
    db.commit()
    return tag


# ============================================================================
# AUDIT LOG
# ============================================================================

@router.get("/audit-logs", response_model=AuditLogListResponse)
async def list_audit_logs(
    action: Optional[str] = Query(None, max_length=100),
    action_prefix: Optional[str] = Query(None, max_length=100),
    actor_user_id: Optional[str] = None,
    tenant_id: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: Optional[int] = Query(None, ge=1),
    offset: int = Query(0, ge=0),
    principal: Principal = Depends(require_platform_admin),
    db: Session = Depends(get_db),
    audit: AuditRecorder = Depends(get_audit_recorder),
):
    """
    Filtered audit trail, newest first.

    ``action=tenant.*`` matches every tenant action. limit above the
    configured maximum is clamped, not rejected.
    """
    page = audit.query(
        db,
        AuditQuery(
            action=action,
            action_prefix=action_prefix,
            actor_user_id=actor_user_id,
            tenant_id=tenant_id,
            start=start,
            end=end,
            limit=limit,
            offset=offset,
        ),
    )
    return {
        "logs": page.logs,
        "pagination": {
            "total": page.total,
            "limit": page.limit,
            "offset": page.offset,
            "pages": page.pages,
        },
    }


@router.get("/audit-logs/stats")
async def audit_log_stats(
    principal: Principal = Depends(require_platform_admin),
    db: Session = Depends(get_db),
    audit: AuditRecorder = Depends(get_audit_recorder),
):
    return audit.stats(db)


# ============================================================================
# CONFIG
# ============================================================================

@router.get("/config")
async def get_config(
    principal: Principal = Depends(require_platform_admin),
    db: Session = Depends(get_db),
):
    return {
        "config": [ConfigEntryResponse.model_validate(entry) for entry in platform.list_config(db)]
    }


@router.patch("/config/{key}", response_model=ConfigEntryResponse)
async def update_config(
    key: str,
    body: ConfigUpdate,
    request: Request,
    principal: Principal = Depends(require_platform_admin),
    db: Session = Depends(get_db),
    audit: AuditRecorder = Depends(get_audit_recorder),
):
    entry = platform.set_config(
        db,
        key,
        body.value,
        requested_by=principal.user_id,
        audit=audit,
        ip_address=get_client_ip(request),
    )
    db.commit()
    return entry


# ============================================================================
# USERS
# ============================================================================

@router.get("/users", response_model=AdminUserListResponse)
async def list_users(
    search: Optional[str] = Query(None, max_length=255),
    is_active: Optional[bool] = None,
    is_platform_admin: Optional[bool] = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    principal: Principal = Depends(require_platform_admin),
    db: Session = Depends(get_db),
):
    result = platform.list_users(
        db,
        search=search,
        is_active=is_active,
        is_platform_admin=is_platform_admin,
        limit=limit,
        offset=offset,
    )
    return {**result, "limit": limit, "offset": offset}


@router.get("/users/{user_id}", response_model=AdminUserDetailResponse)
async def get_user(
    user_id: str,
    principal: Principal = Depends(require_platform_admin),
    db: Session = Depends(get_db),
):
    """A user and every tenant they belong to."""
    user = db.get(User, user_id)
    if not user:
        raise UserNotFoundError(user_id)

    return {
        "user": user,
        "tenants": [
            TenantMembershipResponse(tenant_id=m.tenant_id, name=m.tenant_name, status=m.tenant_status, role=m.role)
            for m in memberships.list_memberships(db, user_id)
        ],
    }


@router.patch("/users/{user_id}", response_model=AdminUserResponse)
async def update_user_flags(
    user_id: str,
    body: UserFlagsUpdate,
    request: Request,
    principal: Principal = Depends(require_platform_admin),
    db: Session = Depends(get_db),
    audit: AuditRecorder = Depends(get_audit_recorder),
):
    """
    Activate/deactivate a user or grant/revoke platform admin.

    Takes effect at the user's next login; live sessions are not rewritten.
    """
    user = accounts.set_user_flags(
        db,
        user_id,
        requested_by=principal.user_id,
        audit=audit,
        is_active=body.is_active,
        is_platform_admin=body.is_platform_admin,
        ip_address=get_client_ip(request),
    )
    db.commit()
    return user


@router.post(
    "/users/{user_id}/tenants/{tenant_id}/assign",
    response_model=AdminMembershipResponse,
    status_code=status.HTTP_201_CREATED,
)
async def assign_user_to_tenant(
    user_id: str,
    tenant_id: str,
    body: MembershipAssign,
    request: Request,
    principal: Principal = Depends(require_platform_admin),
    db: Session = Depends(get_db),
    audit: AuditRecorder = Depends(get_audit_recorder),
):
    """Add an existing user to a tenant. 409 if they already belong to it."""
    membership = memberships.assign_membership(
        db,
        user_id,
        tenant_id,
        body.role,
        requested_by=principal.user_id,
        audit=audit,
        ip_address=get_client_ip(request),
    )
    db.commit()
    return membership


@router.patch("/users/{user_id}/tenants/{tenant_id}", response_model=AdminMembershipResponse)
async def update_user_tenant_role(
    user_id: str,
    tenant_id: str,
    body: MemberRoleUpdate,
    request: Request,
    principal: Principal = Depends(require_platform_admin),
    db: Session = Depends(get_db),
    audit: AuditRecorder = Depends(get_audit_recorder),
):
    """
    Change a user's role in any tenant.

    The user's live sessions pick up the new role on their next tenant request.
    """
    if db.get(Tenant, tenant_id) is None:
        raise TenantNotFoundError(tenant_id)

    membership = memberships.change_role(
        db,
        tenant_id,
        user_id,
        body.role,
        requested_by=principal.user_id,
        audit=audit,
        actor_type=ActorType.PLATFORM_USER,
        ip_address=get_client_ip(request),
    )
    db.commit()
    return membership


# ============================================================================
# STATS
# ============================================================================

@router.get("/stats", response_model=PlatformStats)
async def stats(
    principal: Principal = Depends(require_platform_admin),
    db: Session = Depends(get_db),
):
    return platform.platform_stats(db)
