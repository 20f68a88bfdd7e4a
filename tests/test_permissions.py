"""Tests for the authorization guard."""

import pytest

from tenantcore.core.exceptions import (
    AuthenticationError,
    PermissionDenied,
    TenantIsolationError,
    TenantSelectionRequired,
)
from tenantcore.core.permissions import Scope, authorize, require_scope
from tenantcore.core.session import SessionContext
from tenantcore.models.audit_log import ActorType
from tenantcore.models.membership import MembershipRole
from tenantcore.services.memberships import MembershipSnapshot


def _snapshot(tenant_id: str, role: MembershipRole) -> MembershipSnapshot:
    return MembershipSnapshot(
        membership_id=f"m-{tenant_id}",
        tenant_id=tenant_id,
        tenant_name=tenant_id.title(),
        tenant_status="active",
        role=role,
    )


def _session(active=None, platform=False, **roles) -> SessionContext:
    return SessionContext(
        session_id="s1",
        user_id="u1",
        email="u1@example.com",
        is_platform_admin=platform,
        memberships=[_snapshot(tenant_id, role) for tenant_id, role in roles.items()],
        active_tenant_id=active,
    )


def test_missing_session_is_unauthenticated():
    with pytest.raises(AuthenticationError):
        authorize(None, Scope.TENANT_MEMBER)


def test_member_allowed_in_active_tenant():
    decision = authorize(_session(active="acme", acme=MembershipRole.MEMBER), Scope.TENANT_MEMBER)

    assert decision.allowed
    assert decision.tenant_id == "acme"
    assert decision.actor_type == ActorType.TENANT_USER


def test_member_denied_admin_scope():
    decision = authorize(_session(active="acme", acme=MembershipRole.MEMBER), Scope.TENANT_ADMIN)

    assert not decision.allowed
    assert decision.denial is PermissionDenied


def test_membership_in_other_tenant_does_not_count():
    """Admin in beta, active in acme: acting on beta is a cross-tenant request."""
    session = _session(active="acme", acme=MembershipRole.MEMBER, beta=MembershipRole.ADMIN)

    decision = authorize(session, Scope.TENANT_ADMIN, tenant_id="beta")

    assert not decision.allowed
    assert decision.denial is TenantIsolationError


def test_no_active_tenant_requires_selection():
    session = _session(acme=MembershipRole.ADMIN, beta=MembershipRole.ADMIN)

    with pytest.raises(TenantSelectionRequired):
        require_scope(session, Scope.TENANT_MEMBER)


def test_platform_scope_ignores_active_tenant():
    session = _session(active="acme", platform=True, acme=MembershipRole.MEMBER)

    decision = authorize(session, Scope.PLATFORM_ADMIN)

    assert decision.allowed
    assert decision.actor_type == ActorType.PLATFORM_USER


def test_platform_scope_denied_without_flag():
    with pytest.raises(PermissionDenied):
        require_scope(_session(active="acme", acme=MembershipRole.ADMIN), Scope.PLATFORM_ADMIN)


def test_platform_admin_passes_tenant_scope():
    session = _session(active="acme", platform=True, acme=MembershipRole.MEMBER)

    decision = authorize(session, Scope.TENANT_ADMIN)

    assert decision.allowed
    assert decision.via_platform_admin


def test_reserved_action_needs_own_admin_role():
    """Platform admins exercise tenant-local administration through their membership."""
    as_member = _session(active="acme", platform=True, acme=MembershipRole.MEMBER)
    as_admin = _session(active="acme", platform=True, acme=MembershipRole.ADMIN)

    assert not authorize(as_member, Scope.TENANT_ADMIN, reserved=True).allowed
    assert authorize(as_admin, Scope.TENANT_ADMIN, reserved=True).allowed


def test_suspended_tenant_denies_its_own_admins():
    session = _session(active="acme", acme=MembershipRole.ADMIN)
    session.memberships[0].tenant_status = "suspended"

    for scope in (Scope.TENANT_MEMBER, Scope.TENANT_ADMIN):
        decision = authorize(session, scope)
        assert not decision.allowed
        assert decision.denial is PermissionDenied
        assert decision.reason == "Tenant is suspended"


def test_platform_admin_still_acts_in_suspended_tenant():
    session = _session(active="acme", platform=True, acme=MembershipRole.ADMIN)
    session.memberships[0].tenant_status = "suspended"

    assert authorize(session, Scope.TENANT_ADMIN, reserved=True).allowed


def test_require_scope_raises_matching_denial():
    session = _session(active="acme", acme=MembershipRole.MEMBER)

    with pytest.raises(TenantIsolationError):
        require_scope(session, Scope.TENANT_MEMBER, tenant_id="beta")
