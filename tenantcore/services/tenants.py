"""
Tenant Provisioner

Creates tenants and seeds them with a snapshot of the active global tags.
Later registry additions are not applied retroactively; that is what
sync_global_tags is for.
"""
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from tenantcore.config import get_settings
from tenantcore.core.exceptions import InvalidInputError, TenantNotFoundError
from tenantcore.models.audit_log import AuditAction, ActorType
from tenantcore.models.membership import Membership, MembershipRole
from tenantcore.models.tag import TenantTag
from tenantcore.models.tenant import Tenant, TenantStatus
from tenantcore.models.user import User, normalize_email
from tenantcore.services.audit import AuditRecorder
from tenantcore.services.memberships import ensure_membership, list_members
from tenantcore.services.tags import copy_active_global_tags
from tenantcore.utils.logging import get_logger

logger = get_logger(__name__)
settings = get_settings()


@dataclass
class ProvisionResult:
    tenant: Tenant
    tags_copied: int
    owner_user_id: Optional[str] = None


def create_tenant(
    db: Session,
    name: str,
    requested_by: str,
    audit: AuditRecorder,
    plan: Optional[str] = None,
    billing_email: Optional[str] = None,
    owner_email: Optional[str] = None,
    actor_type: ActorType = ActorType.PLATFORM_USER,
    ip_address: Optional[str] = None,
) -> ProvisionResult:
    """
    Create a tenant, copy active global tags into it, make the requester an
    admin member, and record one tenant.create entry. The caller commits.

    owner_email, when given, must name an existing user, who is also added
    as an admin.
    """
    name = (name or "").strip()
    if not name:
        raise InvalidInputError("Tenant name is required")

    owner = None
    if owner_email:
        owner = db.query(User).filter(User.email == normalize_email(owner_email)).first()
        if not owner:
            raise InvalidInputError(f"No user with email {normalize_email(owner_email)}")

    tenant = Tenant(
        name=name,
        status=TenantStatus.ACTIVE.value,
        plan=plan or settings.DEFAULT_TENANT_PLAN,
        billing_email=billing_email,
    )
    db.add(tenant)
    db.flush()

    tags_copied = copy_active_global_tags(db, tenant.id)

    ensure_membership(db, requested_by, tenant.id, MembershipRole.ADMIN)
    if owner and owner.id != requested_by:
        ensure_membership(db, owner.id, tenant.id, MembershipRole.ADMIN)

    payload: Dict[str, Any] = {"name": name, "plan": tenant.plan, "tags_copied": tags_copied}
    if owner:
        payload["owner_user_id"] = owner.id

    audit.record(
        db,
        actor_user_id=requested_by,
        action=AuditAction.TENANT_CREATE,
        target_type="tenant",
        target_id=tenant.id,
        actor_type=actor_type,
        payload=payload,
        ip_address=ip_address,
    )

    logger.info(f"Tenant provisioned: {tenant.id} ({name}) with {tags_copied} tags")
    return ProvisionResult(tenant=tenant, tags_copied=tags_copied, owner_user_id=owner.id if owner else None)


def update_tenant(
    db: Session,
    tenant_id: str,
    requested_by: str,
    audit: AuditRecorder,
    changes: Dict[str, Any],
    actor_type: ActorType = ActorType.PLATFORM_USER,
    ip_address: Optional[str] = None,
) -> Tenant:
    """
    Apply name/status/plan/billing_email changes. The caller commits.

    A transition to suspended is recorded as tenant.suspend, anything else
    as tenant.update.
    """
    tenant = db.get(Tenant, tenant_id)
    if not tenant:
        raise TenantNotFoundError(tenant_id)

    applied = {}
    for field in ("name", "status", "plan", "billing_email"):
        if field not in changes or changes[field] is None:
            continue
        value = changes[field]
        if isinstance(value, TenantStatus):
            value = value.value
        if field == "name":
            value = value.strip()
            if not value:
                raise InvalidInputError("Tenant name cannot be empty")
        if getattr(tenant, field) != value:
            applied[field] = {"from": getattr(tenant, field), "to": value}
            setattr(tenant, field, value)

    if not applied:
        return tenant

    db.flush()

    suspended = applied.get("status", {}).get("to") == TenantStatus.SUSPENDED.value
    audit.record(
        db,
        actor_user_id=requested_by,
        action=AuditAction.TENANT_SUSPEND if suspended else AuditAction.TENANT_UPDATE,
        target_type="tenant",
        target_id=tenant.id,
        tenant_id=tenant.id,
        actor_type=actor_type,
        payload=applied,
        ip_address=ip_address,
    )
    return tenant


def list_tenants(
    db: Session,
    status: Optional[str] = None,
    search: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> Dict[str, Any]:
    """Tenants with member and tag counts, newest first."""
    member_count = (
        db.query(func.count(Membership.id))
        .filter(Membership.tenant_id == Tenant.id)
        .correlate(Tenant)
        .scalar_subquery()
    )
    tag_count = (
        db.query(func.count(TenantTag.id))
        .filter(TenantTag.tenant_id == Tenant.id)
        .correlate(Tenant)
        .scalar_subquery()
    )

    query = db.query(Tenant, member_count.label("member_count"), tag_count.label("tag_count"))
    if status:
        query = query.filter(Tenant.status == status)
    if search:
        query = query.filter(Tenant.name.ilike(f"%{search}%"))

    total = query.count()
    rows = query.order_by(Tenant.created_at.desc(), Tenant.id).offset(offset).limit(limit).all()

    tenants: List[Dict[str, Any]] = [
        {
            "id": tenant.id,
            "name": tenant.name,
            "status": tenant.status,
            "plan": tenant.plan,
            "billing_email": tenant.billing_email,
            "created_at": tenant.created_at,
            "member_count": members or 0,
            "tag_count": tags or 0,
        }
        for tenant, members, tags in rows
    ]
    return {"tenants": tenants, "total": total}


def get_tenant_detail(db: Session, tenant_id: str) -> Dict[str, Any]:
    """One tenant with its counts and member list, for the platform console."""
    tenant = db.get(Tenant, tenant_id)
    if not tenant:
        raise TenantNotFoundError(tenant_id)

    members = list_members(db, tenant_id)
    tag_count = db.query(func.count(TenantTag.id)).filter(TenantTag.tenant_id == tenant_id).scalar()
    return {
        "tenant": tenant,
        "metrics": {"member_count": len(members), "tag_count": tag_count or 0},
        "members": members,
    }
