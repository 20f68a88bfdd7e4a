"""
User Model

A user is a global identity. Access to tenants is granted through
Membership rows, never through a column on the user itself.

IMPORTANT: email is stored lower-cased so the unique index doubles as a
case-insensitive uniqueness check.
"""
from sqlalchemy import Column, String, Boolean, DateTime, Index
from sqlalchemy.orm import relationship, validates
from datetime import datetime
from tenantcore.database import Base
import uuid


def normalize_email(email: str) -> str:
    return email.strip().lower()


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    # Credentials
    email = Column(String(255), nullable=False, unique=True)
    hashed_password = Column(String(255), nullable=False)

    # Profile
    name = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    timezone = Column(String(64), nullable=True)

    # Cross-tenant administrative scope, independent of any membership.
    # Copied into the session at login, not re-derived per request.
    is_platform_admin = Column(Boolean, default=False, nullable=False, index=True)

    # Soft-disable only, users are never hard-deleted
    is_active = Column(Boolean, default=True, nullable=False, index=True)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
    last_login_at = Column(DateTime, nullable=True)

    memberships = relationship("Membership", back_populates="user")

    __table_args__ = (
        Index('idx_user_active_platform', 'is_active', 'is_platform_admin'),
    )

    def __repr__(self):
        return f"<User {self.email}>"

    @validates("email")
    def _normalize_email(self, key, value):
        return normalize_email(value) if value else value
