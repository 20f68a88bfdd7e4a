"""
Authorization Guard

One decision function for every request: (session, scope, target tenant)
→ allow or deny. Handlers never check roles or flags themselves.

Scopes form a small closed set:
- TENANT_MEMBER: any membership in the target tenant, if the tenant is active
- TENANT_ADMIN: admin membership in the target tenant
- PLATFORM_ADMIN: the session's is_platform_admin flag, whatever the active tenant

Platform admins pass tenant scopes too, except for actions marked
``reserved``: those belong to tenant-local administrators and must be
exercised through the caller's own membership role (a platform admin
gets one by switching into the tenant).
"""
from dataclasses import dataclass
from typing import Optional
import enum

from tenantcore.core.exceptions import (
    AuthenticationError,
    PermissionDenied,
    TenantIsolationError,
    TenantSelectionRequired,
)
from tenantcore.core.session import SessionContext
from tenantcore.models.audit_log import ActorType
from tenantcore.models.membership import MembershipRole
from tenantcore.models.tenant import TenantStatus
from tenantcore.utils.logging import get_logger, log_security_event

logger = get_logger(__name__)


class Scope(str, enum.Enum):
    TENANT_MEMBER = "tenant_member"
    TENANT_ADMIN = "tenant_admin"
    PLATFORM_ADMIN = "platform_admin"


_REQUIRED_ROLE = {
    Scope.TENANT_MEMBER: MembershipRole.MEMBER,
    Scope.TENANT_ADMIN: MembershipRole.ADMIN,
}


@dataclass(frozen=True)
class Decision:
    allowed: bool
    scope: Scope
    reason: str
    tenant_id: Optional[str] = None
    role: Optional[MembershipRole] = None
    via_platform_admin: bool = False
    denial: Optional[type] = None

    @property
    def actor_type(self) -> ActorType:
        """How audit entries written under this decision label the actor."""
        if self.scope == Scope.PLATFORM_ADMIN or self.via_platform_admin:
            return ActorType.PLATFORM_USER
        return ActorType.TENANT_USER


def authorize(
    session: Optional[SessionContext],
    scope: Scope,
    tenant_id: Optional[str] = None,
    reserved: bool = False,
) -> Decision:
    """
    Decide whether ``session`` may perform an action needing ``scope``.

    tenant_id defaults to the session's active tenant. Missing sessions are
    never a Decision: they raise AuthenticationError, so 401 and 403 stay
    distinguishable.
    """
    if session is None:
        raise AuthenticationError("Not authenticated")

    if scope == Scope.PLATFORM_ADMIN:
        if session.is_platform_admin:
            return Decision(True, scope, "platform_admin", tenant_id=tenant_id, via_platform_admin=True)
        return Decision(False, scope, "platform admin access required", tenant_id=tenant_id,
                        denial=PermissionDenied)

    target = tenant_id or session.active_tenant_id
    if target is None:
        return Decision(False, scope, "No active tenant selected", denial=TenantSelectionRequired)

    required = _REQUIRED_ROLE[scope]
    membership = session.membership_for(target) if target == session.active_tenant_id else None

    suspended = membership is not None and membership.tenant_status == TenantStatus.SUSPENDED.value
    if suspended and not session.is_platform_admin:
        return Decision(False, scope, "Tenant is suspended", tenant_id=target, role=membership.role,
                        denial=PermissionDenied)

    if membership is not None and membership.role.satisfies(required):
        return Decision(True, scope, "membership", tenant_id=target, role=membership.role)

    if session.is_platform_admin and not reserved:
        return Decision(True, scope, "platform_admin_override", tenant_id=target,
                        role=membership.role if membership else None, via_platform_admin=True)

    if membership is None:
        return Decision(False, scope, "Tenant is not the session's active tenant", tenant_id=target,
                        denial=TenantIsolationError)

    return Decision(
        False,
        scope,
        f"This action requires {required.value} role or higher",
        tenant_id=target,
        role=membership.role,
        denial=PermissionDenied,
    )


def require_scope(
    session: Optional[SessionContext],
    scope: Scope,
    tenant_id: Optional[str] = None,
    reserved: bool = False,
) -> Decision:
    """authorize() that raises the matching 401/403 exception on denial."""
    decision = authorize(session, scope, tenant_id=tenant_id, reserved=reserved)
    if decision.allowed:
        return decision

    log_security_event(
        "access_denied",
        {
            "user_id": session.user_id,
            "session_id": session.session_id,
            "tenant_id": decision.tenant_id,
            "scope": scope.value,
            "reason": decision.reason,
        },
        logger,
    )
    raise decision.denial(decision.reason)
