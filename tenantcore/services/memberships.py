"""
Membership Store

Source of truth for which tenants a user may act in, and with what role.
"""
from datetime import datetime
from typing import List, Optional, Tuple
import uuid

from pydantic import BaseModel
from sqlalchemy.orm import Session

from tenantcore.core.exceptions import (
    ConflictError,
    InvalidInputError,
    TenantNotFoundError,
    UserNotFoundError,
)
from tenantcore.database import insert_or_skip
from tenantcore.models.audit_log import AuditAction, ActorType
from tenantcore.models.membership import Membership, MembershipRole
from tenantcore.models.tenant import Tenant
from tenantcore.models.user import User
from tenantcore.services.audit import AuditRecorder
from tenantcore.utils.logging import get_logger

logger = get_logger(__name__)


class MembershipSnapshot(BaseModel):
    """A membership as copied into a session."""

    membership_id: str
    tenant_id: str
    tenant_name: str
    tenant_status: str
    role: MembershipRole


def list_memberships(db: Session, user_id: str) -> List[MembershipSnapshot]:
    """All memberships of a user, oldest first."""
    rows = (
        db.query(Membership, Tenant)
        .join(Tenant, Membership.tenant_id == Tenant.id)
        .filter(Membership.user_id == user_id)
        .order_by(Membership.created_at, Membership.id)
        .all()
    )
    return [
        MembershipSnapshot(
            membership_id=membership.id,
            tenant_id=tenant.id,
            tenant_name=tenant.name,
            tenant_status=tenant.status,
            role=MembershipRole(membership.role),
        )
        for membership, tenant in rows
    ]


def get_membership(db: Session, user_id: str, tenant_id: str) -> Optional[Membership]:
    return db.query(Membership).filter(
        Membership.user_id == user_id,
        Membership.tenant_id == tenant_id,
    ).first()


def get_membership_state(db: Session, user_id: str, tenant_id: str) -> Optional[Tuple[str, str]]:
    """(role, tenant status) for one membership, or None if there is none."""
    row = (
        db.query(Membership.role, Tenant.status)
        .join(Tenant, Membership.tenant_id == Tenant.id)
        .filter(Membership.user_id == user_id, Membership.tenant_id == tenant_id)
        .first()
    )
    return (row[0], row[1]) if row else None


def ensure_membership(
    db: Session,
    user_id: str,
    tenant_id: str,
    role: MembershipRole = MembershipRole.MEMBER,
) -> bool:
    """
    Idempotent upsert of a (user, tenant) membership.

    Returns True if this call created the row, False if it already existed.
    An existing row keeps its role. Concurrent callers race on the unique
    constraint, not on a prior read, so exactly one row ever exists.
    """
    inserted = insert_or_skip(
        db,
        Membership,
        [{
            "id": str(uuid.uuid4()),
            "user_id": user_id,
            "tenant_id": tenant_id,
            "role": MembershipRole(role).value,
            "created_at": datetime.utcnow(),
        }],
        conflict_columns=("user_id", "tenant_id"),
    )
    if inserted:
        logger.info(f"Membership created: user={user_id} tenant={tenant_id} role={MembershipRole(role).value}")
    return inserted == 1


def list_members(db: Session, tenant_id: str) -> List[dict]:
    """Users of a tenant with their role, in joining order."""
    rows = (
        db.query(Membership, User)
        .join(User, Membership.user_id == User.id)
        .filter(Membership.tenant_id == tenant_id)
        .order_by(Membership.created_at, Membership.id)
        .all()
    )
    return [
        {
            "user_id": user.id,
            "email": user.email,
            "name": user.name,
            "role": MembershipRole(membership.role),
            "joined_at": membership.created_at,
        }
        for membership, user in rows
    ]


def change_role(
    db: Session,
    tenant_id: str,
    user_id: str,
    role: MembershipRole,
    requested_by: str,
    audit: AuditRecorder,
    actor_type: ActorType = ActorType.TENANT_USER,
    ip_address: Optional[str] = None,
) -> Membership:
    """
    Set a member's role inside one tenant. The caller commits.

    Admins cannot change their own role. Live sessions of the affected user
    see the new role on their next tenant-scoped request.
    """
    if user_id == requested_by:
        raise InvalidInputError("You cannot change your own role")

    membership = get_membership(db, user_id, tenant_id)
    if membership is None:
        raise UserNotFoundError(user_id)

    role = MembershipRole(role)
    if membership.role == role.value:
        return membership

    previous = membership.role
    membership.role = role.value
    db.flush()

    audit.record(
        db,
        actor_user_id=requested_by,
        action=AuditAction.USER_ROLE_CHANGE,
        target_type="membership",
        target_id=membership.id,
        tenant_id=tenant_id,
        actor_type=actor_type,
        payload={"user_id": user_id, "from": previous, "to": role.value},
        ip_address=ip_address,
    )
    logger.info(f"Role change in tenant {tenant_id}: user={user_id} {previous} -> {role.value}")
    return membership


def assign_membership(
    db: Session,
    user_id: str,
    tenant_id: str,
    role: MembershipRole,
    requested_by: str,
    audit: AuditRecorder,
    ip_address: Optional[str] = None,
) -> Membership:
    """
    Platform-side assignment of a user to a tenant. The caller commits.

    An existing membership is a conflict; use change_role to move it.
    """
    if db.get(User, user_id) is None:
        raise UserNotFoundError(user_id)
    if db.get(Tenant, tenant_id) is None:
        raise TenantNotFoundError(tenant_id)

    role = MembershipRole(role)
    if not ensure_membership(db, user_id, tenant_id, role):
        raise ConflictError("User is already a member of this tenant")

    membership = get_membership(db, user_id, tenant_id)
    audit.record(
        db,
        actor_user_id=requested_by,
        action=AuditAction.MEMBERSHIP_ASSIGN,
        target_type="membership",
        target_id=membership.id,
        tenant_id=tenant_id,
        actor_type=ActorType.PLATFORM_USER,
        payload={"user_id": user_id, "role": role.value},
        ip_address=ip_address,
    )
    return membership
