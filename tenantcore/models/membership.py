"""
Membership Model

The (user, tenant, role) binding that grants tenant-scoped access.
Roles are tenant-scoped: the same user can be admin in one tenant and
member in another.

CRITICAL: at most one row per (user_id, tenant_id). Writes go through
insert_or_skip so concurrent creation never duplicates or errors.
Memberships are append-only; nothing in this service removes them.
"""
from sqlalchemy import Column, String, DateTime, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import relationship
from datetime import datetime
from tenantcore.database import Base
import enum
import uuid


class MembershipRole(str, enum.Enum):
    """
    Tenant roles.

    ADMIN: manages the tenant profile, tags and member roles
    MEMBER: standard access to tenant resources
    """
    MEMBER = "member"
    ADMIN = "admin"

    @property
    def rank(self) -> int:
        return _ROLE_RANK[self]

    def satisfies(self, required: "MembershipRole") -> bool:
        """Simple hierarchy: ADMIN > MEMBER."""
        return self.rank >= required.rank


_ROLE_RANK = {
    MembershipRole.MEMBER: 1,
    MembershipRole.ADMIN: 2,
}


class Membership(Base):
    __tablename__ = "memberships"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    user_id = Column(
        String(36),
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )
    tenant_id = Column(
        String(36),
        ForeignKey("tenants.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )

    role = Column(String(20), nullable=False, default=MembershipRole.MEMBER.value)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    user = relationship("User", back_populates="memberships")
    tenant = relationship("Tenant", back_populates="memberships")

    __table_args__ = (
        UniqueConstraint('user_id', 'tenant_id', name='uq_membership_user_tenant'),
        Index('idx_membership_tenant_role', 'tenant_id', 'role'),
    )

    def __repr__(self):
        return f"<Membership user={self.user_id} tenant={self.tenant_id} role={self.role}>"
