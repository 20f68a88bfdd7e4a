"""
Tenant Model

The tenant is the primary isolation boundary in our multi-tenant architecture.
Each tenant represents a separate customer workspace that owns its own tags,
contacts and campaigns.

ARCHITECTURAL DECISION: shared database, shared schema with tenant_id filter.
Tenants are never deleted by this service; suspension is the off switch.
"""
from sqlalchemy import Column, String, DateTime, Index
from sqlalchemy.orm import relationship
from datetime import datetime
from tenantcore.database import Base
import enum
import uuid


class TenantStatus(str, enum.Enum):
    ACTIVE = "active"
    SUSPENDED = "suspended"


class Tenant(Base):
    __tablename__ = "tenants"

    # Using UUID for tenant IDs to avoid enumeration attacks
    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    name = Column(String(255), nullable=False)
    status = Column(
        String(20),
        default=TenantStatus.ACTIVE.value,
        nullable=False,
        index=True
    )  # active, suspended

    # Billing metadata
    # HACK: plan should live in a subscriptions table once billing is integrated
    plan = Column(String(50), nullable=False, default="free")
    billing_email = Column(String(255), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    memberships = relationship("Membership", back_populates="tenant")
    tags = relationship("TenantTag", back_populates="tenant")

    __table_args__ = (
        Index('idx_tenant_status_created', 'status', 'created_at'),
    )

    def __repr__(self):
        return f"<Tenant {self.name} ({self.id})>"

    @property
    def is_active(self) -> bool:
        return self.status == TenantStatus.ACTIVE.value
