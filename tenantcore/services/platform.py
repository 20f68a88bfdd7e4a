"""
Platform Administration

Platform-wide configuration, the user directory and headline counters
for the admin console.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from tenantcore.core.exceptions import InvalidInputError
from tenantcore.models.audit_log import AuditAction, AuditLog
from tenantcore.models.membership import Membership
from tenantcore.models.platform import PlatformConfig, UsageCounter
from tenantcore.models.tag import GlobalTag, GlobalTagStatus
from tenantcore.models.tenant import Tenant, TenantStatus
from tenantcore.models.user import User
from tenantcore.services.audit import AuditRecorder
from tenantcore.utils.logging import get_logger

logger = get_logger(__name__)


def list_config(db: Session) -> List[PlatformConfig]:
    return db.query(PlatformConfig).order_by(PlatformConfig.key).all()


def set_config(
    db: Session,
    key: str,
    value: Any,
    requested_by: str,
    audit: AuditRecorder,
    ip_address: Optional[str] = None,
) -> PlatformConfig:
    """Create or replace one config entry, recording old and new value."""
    key = (key or "").strip()
    if not key:
        raise InvalidInputError("Config key is required")

    entry = db.get(PlatformConfig, key)
    previous = entry.value if entry else None
    if entry is None:
        entry = PlatformConfig(key=key)
        db.add(entry)

    entry.value = value
    entry.updated_by = requested_by
    entry.updated_at = datetime.utcnow()
    db.flush()

    audit.record(
        db,
        actor_user_id=requested_by,
        action=AuditAction.CONFIG_UPDATE,
        target_type="config",
        target_id=key,
        payload={"key": key, "from": previous, "to": value},
        ip_address=ip_address,
    )
    logger.info(f"Platform config updated: {key}")
    return entry


def list_users(
    db: Session,
    search: Optional[str] = None,
    is_active: Optional[bool] = None,
    is_platform_admin: Optional[bool] = None,
    limit: int = 50,
    offset: int = 0,
) -> Dict[str, Any]:
    query = db.query(User)
    if search:
        pattern = f"%{search}%"
        query = query.filter((User.email.ilike(pattern)) | (User.name.ilike(pattern)))
    if is_active is not None:
        query = query.filter(User.is_active == is_active)
    if is_platform_admin is not None:
        query = query.filter(User.is_platform_admin == is_platform_admin)

    total = query.count()
    users = query.order_by(User.created_at.desc(), User.id).offset(offset).limit(limit).all()
    return {"users": users, "total": total}


def _count(db: Session, column, *criteria) -> int:
    return db.query(func.count(column)).filter(*criteria).scalar() or 0


def platform_stats(db: Session) -> Dict[str, int]:
    """Fixed set of counters. Message totals are summed over all periods."""
    email, sms, whatsapp = db.query(
        func.coalesce(func.sum(UsageCounter.email_messages_sent), 0),
        func.coalesce(func.sum(UsageCounter.sms_messages_sent), 0),
        func.coalesce(func.sum(UsageCounter.whatsapp_messages_sent), 0),
    ).one()

    return {
        "tenants": _count(db, Tenant.id),
        "active_tenants": _count(db, Tenant.id, Tenant.status == TenantStatus.ACTIVE.value),
        "users": _count(db, User.id),
        "active_users": _count(db, User.id, User.is_active.is_(True)),
        "platform_admins": _count(db, User.id, User.is_platform_admin.is_(True)),
        "memberships": _count(db, Membership.id),
        "global_tags": _count(db, GlobalTag.id, GlobalTag.status == GlobalTagStatus.ACTIVE.value),
        "audit_logs": _count(db, AuditLog.id),
        "email_messages_sent": int(email),
        "sms_messages_sent": int(sms),
        "whatsapp_messages_sent": int(whatsapp),
    }
