"""
Platform Models

Platform-wide configuration and read-only usage counters.

UsageCounter rows are written by the messaging collaborator that delivers
e-mail/SMS/WhatsApp; this service only aggregates them for /admin/stats.
"""
from sqlalchemy import Column, String, DateTime, Integer, ForeignKey, JSON, UniqueConstraint
from datetime import datetime
from tenantcore.database import Base
import uuid


class PlatformConfig(Base):
    __tablename__ = "platform_config"

    key = Column(String(100), primary_key=True)
    value = Column(JSON, nullable=True)
    updated_by = Column(String(36), nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<PlatformConfig {self.key}>"


class UsageCounter(Base):
    __tablename__ = "usage_counters"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    tenant_id = Column(
        String(36),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    period = Column(String(7), nullable=False)  # YYYY-MM

    email_messages_sent = Column(Integer, default=0, nullable=False)
    sms_messages_sent = Column(Integer, default=0, nullable=False)
    whatsapp_messages_sent = Column(Integer, default=0, nullable=False)

    __table_args__ = (
        UniqueConstraint('tenant_id', 'period', name='uq_usage_tenant_period'),
    )
