"""
Audit Log Model

Immutable, append-only record of every privileged mutation.

Nothing in the service updates or deletes these rows.
The integer primary key breaks timestamp ties so newest-first ordering
stays deterministic under concurrent writers.
"""
from sqlalchemy import Column, String, DateTime, Integer, Index, JSON
from datetime import datetime
from tenantcore.database import Base
import enum


class ActorType(str, enum.Enum):
    PLATFORM_USER = "platform_user"
    TENANT_USER = "tenant_user"
    SYSTEM = "system"


class AuditAction:
    """Action names used across the codebase, kept in one place."""

    USER_SIGNUP = "user.signup"
    USER_ROLE_CHANGE = "user.role_change"
    USER_ACTIVATE = "user.activate"
    USER_DEACTIVATE = "user.deactivate"
    USER_PLATFORM_ROLE_CHANGE = "user.platform_role_change"

    MEMBERSHIP_AUTO_JOIN = "membership.auto_join"
    MEMBERSHIP_ASSIGN = "membership.assign"

    TENANT_CREATE = "tenant.create"
    TENANT_UPDATE = "tenant.update"
    TENANT_SUSPEND = "tenant.suspend"

    TAG_CREATE = "tag.create"
    TAG_SYNC = "tag.sync"

    GLOBAL_TAG_CREATE = "global_tag.create"
    GLOBAL_TAG_UPDATE = "global_tag.update"

    CONFIG_UPDATE = "config.update"


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    actor_user_id = Column(String(36), nullable=True, index=True)
    actor_type = Column(String(20), nullable=False, default=ActorType.TENANT_USER.value)

    # NULL for platform-only actions
    tenant_id = Column(String(36), nullable=True, index=True)

    action = Column(String(100), nullable=False)
    target_type = Column(String(50), nullable=True)
    target_id = Column(String(255), nullable=True)

    # Action-specific data. NO SECRETS.
    payload = Column(JSON, nullable=True, default=dict)
    ip_address = Column(String(64), nullable=True)

    __table_args__ = (
        Index('idx_audit_created', 'created_at', 'id'),
        Index('idx_audit_action_created', 'action', 'created_at'),
        Index('idx_audit_actor_created', 'actor_user_id', 'created_at'),
    )

    def __repr__(self):
        return f"<AuditLog {self.id} {self.action} by {self.actor_user_id}>"
