"""
Tenant Workspace Endpoints

Everything here acts on the session's active tenant; no route takes a
tenant id from the client. Reads need membership, writes need the admin
role, and profile/role edits are reserved for the tenant's own admins.
"""
from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from tenantcore.database import get_db
from tenantcore.models.tenant import Tenant
from tenantcore.schemas.tag import TenantTagCreate, TenantTagListResponse, TenantTagResponse
from tenantcore.schemas.tenant import (
    MemberListResponse,
    MemberResponse,
    MemberRoleUpdate,
    TenantProfileUpdate,
    TenantResponse,
)
from tenantcore.core.exceptions import TenantNotFoundError
from tenantcore.services import memberships, tags, tenants
from tenantcore.services.audit import AuditRecorder, get_audit_recorder
from tenantcore.api.deps import (
    Principal,
    get_client_ip,
    require_tenant_admin,
    require_tenant_admin_reserved,
    require_tenant_member,
)
from tenantcore.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/tenant", tags=["tenant"])


@router.get("/profile", response_model=TenantResponse)
async def get_profile(
    principal: Principal = Depends(require_tenant_member),
    db: Session = Depends(get_db),
):
    tenant = db.get(Tenant, principal.tenant_id)
    if not tenant:
        raise TenantNotFoundError(principal.tenant_id)
    return tenant


@router.patch("/profile", response_model=TenantResponse)
async def update_profile(
    body: TenantProfileUpdate,
    request: Request,
    principal: Principal = Depends(require_tenant_admin_reserved),
    db: Session = Depends(get_db),
    audit: AuditRecorder = Depends(get_audit_recorder),
):
    """Rename the workspace or change its billing contact."""
    tenant = tenants.update_tenant(
        db,
        principal.tenant_id,
        requested_by=principal.user_id,
        audit=audit,
        changes=body.model_dump(exclude_unset=True),
        actor_type=principal.actor_type,
        ip_address=get_client_ip(request),
    )
    db.commit()
    return tenant


@router.get("/tags", response_model=TenantTagListResponse)
async def list_tags(
    principal: Principal = Depends(require_tenant_member),
    db: Session = Depends(get_db),
):
    return {"tags": tags.list_tenant_tags(db, principal.tenant_id)}


@router.post("/tags", response_model=TenantTagResponse, status_code=status.HTTP_201_CREATED)
async def create_tag(
    body: TenantTagCreate,
    request: Request,
    principal: Principal = Depends(require_tenant_admin),
    db: Session = Depends(get_db),
    audit: AuditRecorder = Depends(get_audit_recorder),
):
    """Tenant-local tag. 409 if the name already exists in this tenant."""
    tag = tags.create_tenant_tag(
        db,
        principal.tenant_id,
        body.name,
        requested_by=principal.user_id,
        audit=audit,
        actor_type=principal.actor_type,
        ip_address=get_client_ip(request),
    )
    db.commit()
    return tag


@router.get("/members", response_model=MemberListResponse)
async def list_members(
    principal: Principal = Depends(require_tenant_member),
    db: Session = Depends(get_db),
):
    return {"members": memberships.list_members(db, principal.tenant_id)}


@router.patch("/members/{user_id}/role", response_model=MemberResponse)
async def change_member_role(
    user_id: str,
    body: MemberRoleUpdate,
    request: Request,
    principal: Principal = Depends(require_tenant_admin_reserved),
    db: Session = Depends(get_db),
    audit: AuditRecorder = Depends(get_audit_recorder),
):
    membership = memberships.change_role(
        db,
        principal.tenant_id,
        user_id,
        body.role,
        requested_by=principal.user_id,
        audit=audit,
        actor_type=principal.actor_type,
        ip_address=get_client_ip(request),
    )
    db.commit()

    member = next(m for m in memberships.list_members(db, principal.tenant_id) if m["user_id"] == user_id)
    logger.info(
        f"Member {user_id} is now {membership.role}",
        extra={"tenant_id": principal.tenant_id, "user_id": principal.user_id},
    )
    return member
