"""
Tag Models

GlobalTag is the platform-curated registry of shared label definitions.
TenantTag is a tenant's own, independent copy.

A tenant receives a snapshot of the active global tags when it is created;
later registry additions only arrive through an explicit sync. Editing a
tenant tag never touches the global one, and vice versa.
"""
from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey, Index, UniqueConstraint, func, text
from sqlalchemy.orm import relationship
from datetime import datetime
from tenantcore.database import Base
import enum
import uuid


class GlobalTagStatus(str, enum.Enum):
    ACTIVE = "active"
    ARCHIVED = "archived"


class GlobalTag(Base):
    __tablename__ = "global_tags"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(100), nullable=False)
    status = Column(
        String(20),
        default=GlobalTagStatus.ACTIVE.value,
        nullable=False,
        index=True
    )  # active, archived

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    copies = relationship("TenantTag", back_populates="global_tag")

    def __repr__(self):
        return f"<GlobalTag {self.name} ({self.status})>"

    @property
    def is_active(self) -> bool:
        return self.status == GlobalTagStatus.ACTIVE.value


# Name is unique case-insensitively among non-archived tags only, so an
# archived "vip" does not block creating a fresh "VIP"
Index(
    'uq_global_tag_live_name',
    func.lower(GlobalTag.name),
    unique=True,
    postgresql_where=text("status <> 'archived'"),
    sqlite_where=text("status <> 'archived'"),
)


class TenantTag(Base):
    __tablename__ = "tags"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    # CRITICAL: Tenant foreign key for isolation
    tenant_id = Column(
        String(36),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    name = Column(String(100), nullable=False)

    # Origin only, the copy has its own lifecycle after creation
    global_tag_id = Column(
        String(36),
        ForeignKey("global_tags.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )
    is_default = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    tenant = relationship("Tenant", back_populates="tags")
    global_tag = relationship("GlobalTag", back_populates="copies")

    __table_args__ = (
        # Also the conflict target for insert-or-skip during provisioning and sync
        UniqueConstraint('tenant_id', 'name', name='uq_tag_tenant_name'),
    )

    def __repr__(self):
        return f"<TenantTag {self.name} (tenant={self.tenant_id})>"
