"""
Global Tag Registry and Tag Synchronizer

Platform admins curate GlobalTag rows. Tenants hold independent TenantTag
copies: a one-time snapshot at provisioning, then explicit, non-destructive
syncs that only add what is missing.

Tenant tag names are compared exactly; (tenant_id, name) is the unique key
and the conflict target for every bulk copy.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Sequence
import uuid

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from tenantcore.core.exceptions import (
    ConflictError,
    InvalidInputError,
    TagNotFoundError,
    TenantNotFoundError,
)
from tenantcore.database import insert_or_skip
from tenantcore.models.audit_log import AuditAction, ActorType
from tenantcore.models.tag import GlobalTag, GlobalTagStatus, TenantTag
from tenantcore.models.tenant import Tenant
from tenantcore.services.audit import AuditRecorder
from tenantcore.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class SyncResult:
    added: int
    total_active_global: int


def _clean_name(name: Optional[str]) -> str:
    cleaned = (name or "").strip()
    if not cleaned:
        raise InvalidInputError("Tag name is required")
    return cleaned


def active_global_tags(db: Session) -> List[GlobalTag]:
    return (
        db.query(GlobalTag)
        .filter(GlobalTag.status == GlobalTagStatus.ACTIVE.value)
        .order_by(GlobalTag.name)
        .all()
    )


def insert_tenant_copies(db: Session, tenant_id: str, global_tags: Sequence[GlobalTag]) -> int:
    """
    Insert-or-skip tenant copies of the given global tags.

    Returns how many rows this call actually inserted. A name that already
    exists in the tenant (including one inserted by a concurrent call after
    our read) is skipped by the unique constraint.
    """
    now = datetime.utcnow()
    rows = [
        {
            "id": str(uuid.uuid4()),
            "tenant_id": tenant_id,
            "name": tag.name,
            "global_tag_id": tag.id,
            "is_default": True,
            "created_at": now,
            "updated_at": now,
        }
        for tag in global_tags
    ]
    return insert_or_skip(db, TenantTag, rows, conflict_columns=("tenant_id", "name"))


def copy_active_global_tags(db: Session, tenant_id: str) -> int:
    """One-time inheritance snapshot for a freshly created tenant."""
    return insert_tenant_copies(db, tenant_id, active_global_tags(db))


def sync_global_tags(
    db: Session,
    tenant_id: str,
    requested_by: str,
    audit: AuditRecorder,
    ip_address: Optional[str] = None,
) -> SyncResult:
    """
    Add the active global tags a tenant is missing. Never removes or edits.

    Idempotent: a second call with no registry change adds 0.
    The caller commits.
    """
    tenant = db.get(Tenant, tenant_id)
    if not tenant:
        raise TenantNotFoundError(tenant_id)

    active = active_global_tags(db)
    existing = {
        name for (name,) in db.query(TenantTag.name).filter(TenantTag.tenant_id == tenant_id)
    }
    missing = [tag for tag in active if tag.name not in existing]

    added = insert_tenant_copies(db, tenant_id, missing)

    audit.record(
        db,
        actor_user_id=requested_by,
        action=AuditAction.TAG_SYNC,
        target_type="tenant",
        target_id=tenant_id,
        tenant_id=tenant_id,
        payload={"added": added, "total_active_global": len(active)},
        ip_address=ip_address,
    )

    logger.info(f"Synced global tags into tenant {tenant_id}: added={added}")
    return SyncResult(added=added, total_active_global=len(active))


def list_global_tags(db: Session, status: Optional[str] = None) -> List[GlobalTag]:
    query = db.query(GlobalTag)
    if status:
        query = query.filter(GlobalTag.status == status)
    return query.order_by(GlobalTag.name, GlobalTag.created_at).all()


def _live_name_taken(db: Session, name: str, exclude_id: Optional[str] = None) -> bool:
    query = db.query(GlobalTag.id).filter(
        func.lower(GlobalTag.name) == name.lower(),
        GlobalTag.status != GlobalTagStatus.ARCHIVED.value,
    )
    if exclude_id:
        query = query.filter(GlobalTag.id != exclude_id)
    return query.first() is not None


def _flush_or_conflict(db: Session, detail: str) -> None:
    try:
        db.flush()
    except IntegrityError as e:
        db.rollback()
        raise ConflictError(detail) from e


def create_global_tag(
    db: Session,
    name: str,
    requested_by: str,
    audit: AuditRecorder,
    ip_address: Optional[str] = None,
) -> GlobalTag:
    name = _clean_name(name)
    if _live_name_taken(db, name):
        raise ConflictError("A global tag with this name already exists")

    tag = GlobalTag(name=name, status=GlobalTagStatus.ACTIVE.value)
    db.add(tag)
    _flush_or_conflict(db, "A global tag with this name already exists")

    audit.record(
        db,
        actor_user_id=requested_by,
        action=AuditAction.GLOBAL_TAG_CREATE,
        target_type="global_tag",
        target_id=tag.id,
        payload={"name": name},
        ip_address=ip_address,
    )
    return tag


def update_global_tag(
    db: Session,
    tag_id: str,
    requested_by: str,
    audit: AuditRecorder,
    name: Optional[str] = None,
    status: Optional[GlobalTagStatus] = None,
    ip_address: Optional[str] = None,
) -> GlobalTag:
    """
    Rename or archive/reactivate a global tag.

    Once tenant copies reference a tag only its status may change.
    Tenant copies are never touched.
    """
    tag = db.get(GlobalTag, tag_id)
    if not tag:
        raise TagNotFoundError(tag_id)

    changes = {}

    if name is not None:
        name = _clean_name(name)
        if name != tag.name:
            copies = db.query(TenantTag.id).filter(TenantTag.global_tag_id == tag.id).count()
            if copies:
                raise ConflictError("Tag is referenced by tenant copies; only its status can change")
            if tag.status != GlobalTagStatus.ARCHIVED.value and _live_name_taken(db, name, exclude_id=tag.id):
                raise ConflictError("A global tag with this name already exists")
            changes["name"] = {"from": tag.name, "to": name}
            tag.name = name

    if status is not None:
        status = GlobalTagStatus(status)
        if status.value != tag.status:
            if status == GlobalTagStatus.ACTIVE and _live_name_taken(db, tag.name, exclude_id=tag.id):
                raise ConflictError("Another live global tag already uses this name")
            changes["status"] = {"from": tag.status, "to": status.value}
            tag.status = status.value

    if not changes:
        return tag

    _flush_or_conflict(db, "A global tag with this name already exists")

    audit.record(
        db,
        actor_user_id=requested_by,
        action=AuditAction.GLOBAL_TAG_UPDATE,
        target_type="global_tag",
        target_id=tag.id,
        payload=changes,
        ip_address=ip_address,
    )
    return tag


def list_tenant_tags(db: Session, tenant_id: str) -> List[TenantTag]:
    return (
        db.query(TenantTag)
        .filter(TenantTag.tenant_id == tenant_id)
        .order_by(TenantTag.name)
        .all()
    )


def create_tenant_tag(
    db: Session,
    tenant_id: str,
    name: str,
    requested_by: str,
    audit: AuditRecorder,
    actor_type: ActorType = ActorType.TENANT_USER,
    ip_address: Optional[str] = None,
) -> TenantTag:
    """A tenant-local tag with no global origin."""
    name = _clean_name(name)

    tag = TenantTag(tenant_id=tenant_id, name=name, is_default=False)
    db.add(tag)
    _flush_or_conflict(db, f"Tag already exists in this tenant: {name}")

    audit.record(
        db,
        actor_user_id=requested_by,
        action=AuditAction.TAG_CREATE,
        target_type="tag",
        target_id=tag.id,
        tenant_id=tenant_id,
        actor_type=actor_type,
        payload={"name": name},
        ip_address=ip_address,
    )
    return tag
