"""
Database Models

Tenant-owned rows carry tenant_id for isolation. Users are global
identities joined to tenants through Membership.
"""
from tenantcore.models.tenant import Tenant, TenantStatus
from tenantcore.models.user import User
from tenantcore.models.membership import Membership, MembershipRole
from tenantcore.models.tag import GlobalTag, GlobalTagStatus, TenantTag
from tenantcore.models.audit_log import AuditLog, AuditAction, ActorType
from tenantcore.models.platform import PlatformConfig, UsageCounter

__all__ = [
    "Tenant",
    "TenantStatus",
    "User",
    "Membership",
    "MembershipRole",
    "GlobalTag",
    "GlobalTagStatus",
    "TenantTag",
    "AuditLog",
    "AuditAction",
    "ActorType",
    "PlatformConfig",
    "UsageCounter",
]
