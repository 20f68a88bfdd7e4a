"""Tests for SessionContext lifecycle and tenant switching."""

import threading
import time

import pytest
from sqlalchemy.orm import sessionmaker

from tenantcore.core.exceptions import (
    AuthenticationError,
    PermissionDenied,
    TenantIsolationError,
    TenantNotFoundError,
)
from tenantcore.api import deps
from tenantcore.core import session as session_module
from tenantcore.core.session import MemorySessionStore, SessionContext, SessionManager
from tenantcore.models import AuditLog, Membership, MembershipRole, Tenant, User
from tenantcore.services.audit import audit_recorder


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


# ============================================================================
# MEMORY STORE
# ============================================================================

def test_memory_store_expires_idle_sessions():
    clock = FakeClock()
    store = MemorySessionStore(ttl_seconds=60, clock=clock)
    store.save(SessionContext(session_id="s1", user_id="u1", email="a@example.com"))

    clock.now += 59
    assert store.load("s1") is not None

    clock.now += 2
    assert store.load("s1") is None
    assert store.touch("s1") is False


def test_memory_store_touch_extends_window():
    clock = FakeClock()
    store = MemorySessionStore(ttl_seconds=60, clock=clock)
    store.save(SessionContext(session_id="s1", user_id="u1", email="a@example.com"))

    clock.now += 50
    assert store.touch("s1") is True
    clock.now += 50
    assert store.load("s1") is not None


def test_memory_store_drops_expired_sessions_on_save():
    """Sessions that are never read again do not pile up."""
    clock = FakeClock()
    store = MemorySessionStore(ttl_seconds=10, clock=clock)
    for i in range(1000):
        store.save(SessionContext(session_id=f"s{i}", user_id="u1", email="a@example.com"))
        with store.lock(f"s{i}"):
            pass

    clock.now += 11
    store.save(SessionContext(session_id="fresh", user_id="u2", email="b@example.com"))

    assert list(store._data) == ["fresh"]
    assert store._locks == {}


# ============================================================================
# CREATE / GET / INVALIDATE
# ============================================================================

def test_single_membership_selects_tenant(db_session, session_manager, make_user, make_tenant, add_member):
    user = make_user("solo@example.com")
    tenant = make_tenant("Solo Co")
    add_member(user, tenant, MembershipRole.ADMIN)

    context = session_manager.create_session(db_session, user)

    assert context.active_tenant_id == tenant.id
    assert context.active_role == MembershipRole.ADMIN
    assert context.must_select_tenant is False


def test_multiple_memberships_require_selection(db_session, session_manager, make_user, make_tenant, add_member):
    user = make_user("multi@example.com")
    add_member(user, make_tenant("One"))
    add_member(user, make_tenant("Two"))

    context = session_manager.create_session(db_session, user)

    assert context.active_tenant_id is None
    assert context.must_select_tenant is True
    assert len(context.memberships) == 2


def test_single_suspended_membership_is_not_selected(db_session, session_manager, make_user, make_tenant, add_member):
    user = make_user("frozen@example.com")
    add_member(user, make_tenant("Frozen", status="suspended"), MembershipRole.ADMIN)

    context = session_manager.create_session(db_session, user)

    assert context.active_tenant_id is None
    assert len(context.memberships) == 1


def test_platform_admin_lands_in_single_suspended_tenant(db_session, session_manager, make_user, make_tenant,
                                                         add_member):
    admin = make_user("ops@example.com", is_platform_admin=True)
    tenant = make_tenant("Frozen", status="suspended")
    add_member(admin, tenant, MembershipRole.ADMIN)

    context = session_manager.create_session(db_session, admin)

    assert context.active_tenant_id == tenant.id


def test_zero_memberships_leave_tenant_unset(db_session, session_manager, make_user):
    context = session_manager.create_session(db_session, make_user("nobody@example.com"))

    assert context.active_tenant_id is None
    assert context.must_select_tenant is False


def test_invalidated_session_is_unauthenticated(db_session, session_manager, make_user):
    context = session_manager.create_session(db_session, make_user("bye@example.com"))

    session_manager.invalidate(context.session_id)

    with pytest.raises(AuthenticationError):
        session_manager.get_session(context.session_id)


# ============================================================================
# SELECT TENANT
# ============================================================================

def test_member_switches_between_tenants(db_session, session_manager, make_user, make_tenant, add_member):
    user = make_user("switch@example.com")
    first, second = make_tenant("First"), make_tenant("Second")
    add_member(user, first)
    add_member(user, second, MembershipRole.ADMIN)
    context = session_manager.create_session(db_session, user)

    session_manager.select_tenant(db_session, context.session_id, first.id)
    switched = session_manager.select_tenant(db_session, context.session_id, second.id)

    assert switched.active_tenant_id == second.id
    assert session_manager.get_session(context.session_id).active_role == MembershipRole.ADMIN


def test_non_member_cannot_switch(db_session, session_manager, make_user, make_tenant, add_member):
    """No membership, no platform flag: 403 and no row is created."""
    user = make_user("outsider@example.com")
    add_member(user, make_tenant("Home"))
    foreign = make_tenant("Foreign")
    context = session_manager.create_session(db_session, user)

    with pytest.raises(TenantIsolationError):
        session_manager.select_tenant(db_session, context.session_id, foreign.id)

    assert db_session.query(Membership).filter_by(user_id=user.id, tenant_id=foreign.id).count() == 0
    assert session_manager.get_session(context.session_id).active_tenant_id != foreign.id


def test_unknown_tenant_looks_forbidden_to_non_admins(db_session, session_manager, make_user):
    context = session_manager.create_session(db_session, make_user("guess@example.com"))

    with pytest.raises(TenantIsolationError):
        session_manager.select_tenant(db_session, context.session_id, "no-such-tenant")


def test_unknown_tenant_is_not_found_for_platform_admin(db_session, session_manager, make_user):
    admin = make_user("root@example.com", is_platform_admin=True)
    context = session_manager.create_session(db_session, admin)

    with pytest.raises(TenantNotFoundError):
        session_manager.select_tenant(db_session, context.session_id, "no-such-tenant")


def test_platform_admin_auto_joins_once(db_session, session_manager, make_user, make_tenant):
    """Repeated switches create exactly one admin membership and one audit entry."""
    admin = make_user("ops@example.com", is_platform_admin=True)
    tenant = make_tenant("Customer")
    context = session_manager.create_session(db_session, admin)

    for _ in range(3):
        switched = session_manager.select_tenant(db_session, context.session_id, tenant.id)

    rows = db_session.query(Membership).filter_by(user_id=admin.id, tenant_id=tenant.id).all()
    assert len(rows) == 1
    assert rows[0].role == MembershipRole.ADMIN.value
    assert switched.active_tenant_id == tenant.id
    assert switched.active_role == MembershipRole.ADMIN
    assert db_session.query(AuditLog).filter_by(action="membership.auto_join").count() == 1


def test_suspended_tenant_blocks_members(db_session, session_manager, make_user, make_tenant, add_member):
    user = make_user("member@example.com")
    add_member(user, make_tenant("Active"))
    suspended = make_tenant("Frozen", status="suspended")
    add_member(user, suspended)
    context = session_manager.create_session(db_session, user)

    with pytest.raises(PermissionDenied):
        session_manager.select_tenant(db_session, context.session_id, suspended.id)


def test_refresh_memberships_picks_up_new_rows(db_session, session_manager, make_user, make_tenant, add_member):
    user = make_user("grow@example.com")
    add_member(user, make_tenant("Original"))
    context = session_manager.create_session(db_session, user)

    add_member(user, make_tenant("Added Later"))
    refreshed = session_manager.refresh_memberships(db_session, context.session_id)

    assert len(refreshed.memberships) == 2


def test_ensure_current_follows_role_and_status(db_session, session_manager, make_user, make_tenant, add_member):
    """A demotion or suspension reaches a live session on its next check."""
    user = make_user("owner@example.com")
    tenant = make_tenant("Acme")
    membership = add_member(user, tenant, MembershipRole.ADMIN)
    context = session_manager.create_session(db_session, user)

    assert session_manager.ensure_current(db_session, context) is context

    membership.role = MembershipRole.MEMBER.value
    db_session.commit()
    demoted = session_manager.ensure_current(db_session, context)
    assert demoted.active_role == MembershipRole.MEMBER

    tenant.status = "suspended"
    db_session.commit()
    frozen = session_manager.ensure_current(db_session, demoted)
    assert frozen.membership_for(tenant.id).tenant_status == "suspended"
    assert session_manager.get_session(context.session_id).membership_for(tenant.id).tenant_status == "suspended"


# ============================================================================
# CONCURRENCY
# ============================================================================

def _run_together(*targets):
    barrier = threading.Barrier(len(targets))
    errors = []

    def wrap(target):
        def run():
            try:
                barrier.wait()
                target()
            except Exception as e:  # surfaced by the callers' assertions
                errors.append(e)
        return run

    threads = [threading.Thread(target=wrap(t)) for t in targets]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return errors


def test_concurrent_admin_switches_join_once(file_engine, session_manager):
    """Two sessions of one platform admin enter the same tenant at the same time."""
    Session = sessionmaker(bind=file_engine, expire_on_commit=False)
    with Session() as setup:
        admin = User(email="ops@example.com", hashed_password="x", is_platform_admin=True)
        tenant = Tenant(name="Customer", status="active", plan="free")
        setup.add_all([admin, tenant])
        setup.commit()
        first = session_manager.create_session(setup, admin)
        second = session_manager.create_session(setup, admin)

    def switch(context):
        def run():
            with Session() as db:
                session_manager.select_tenant(db, context.session_id, tenant.id)
        return run

    errors = _run_together(switch(first), switch(second))

    assert errors == []
    with Session() as db:
        assert db.query(Membership).filter_by(user_id=admin.id, tenant_id=tenant.id).count() == 1
        assert db.query(AuditLog).filter_by(action="membership.auto_join").count() == 1
    for context in (first, second):
        assert session_manager.get_session(context.session_id).active_tenant_id == tenant.id


def test_join_that_loses_the_insert_race_writes_no_audit(db_session, session_manager, make_user, make_tenant,
                                                         monkeypatch):
    """The second session saw no membership, but the row exists by the time it inserts."""
    admin = make_user("ops@example.com", is_platform_admin=True)
    tenant = make_tenant("Customer")
    first = session_manager.create_session(db_session, admin)
    second = session_manager.create_session(db_session, admin)

    session_manager.select_tenant(db_session, first.session_id, tenant.id)
    monkeypatch.setattr(session_module, "get_membership", lambda db, user_id, tenant_id: None)
    switched = session_manager.select_tenant(db_session, second.session_id, tenant.id)

    assert switched.active_tenant_id == tenant.id
    assert switched.active_role == MembershipRole.ADMIN
    assert db_session.query(Membership).filter_by(user_id=admin.id, tenant_id=tenant.id).count() == 1
    assert db_session.query(AuditLog).filter_by(action="membership.auto_join").count() == 1


class TrackingStore(MemorySessionStore):
    """Counts callers between reading a context and writing it back."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.inside = 0
        self.max_inside = 0
        self._counter = threading.Lock()

    def load(self, session_id):
        with self._counter:
            self.inside += 1
            self.max_inside = max(self.max_inside, self.inside)
        time.sleep(0.05)
        return super().load(session_id)

    def save(self, context):
        super().save(context)
        with self._counter:
            self.inside -= 1


def test_switches_on_one_session_are_serialized(file_engine):
    store = TrackingStore(ttl_seconds=1800)
    manager = SessionManager(store, audit_recorder)
    Session = sessionmaker(bind=file_engine, expire_on_commit=False)
    with Session() as setup:
        user = User(email="multi@example.com", hashed_password="x")
        one = Tenant(name="One", status="active", plan="free")
        two = Tenant(name="Two", status="active", plan="free")
        setup.add_all([user, one, two])
        setup.flush()
        setup.add_all([
            Membership(user_id=user.id, tenant_id=one.id, role="member"),
            Membership(user_id=user.id, tenant_id=two.id, role="member"),
        ])
        setup.commit()
        context = manager.create_session(setup, user)
    store.inside = store.max_inside = 0

    def switch(tenant_id):
        def run():
            with Session() as db:
                manager.select_tenant(db, context.session_id, tenant_id)
        return run

    errors = _run_together(switch(one.id), switch(two.id))

    assert errors == []
    assert store.max_inside == 1
    final = store.load(context.session_id)
    assert final.active_tenant_id in (one.id, two.id)
    assert len(final.memberships) == 2


# ============================================================================
# PROCESS-WIDE MANAGER
# ============================================================================

def test_first_concurrent_calls_share_one_manager(monkeypatch):
    built = []

    def slow_build(settings):
        time.sleep(0.05)
        store = MemorySessionStore(ttl_seconds=60)
        built.append(store)
        return store

    monkeypatch.setattr(deps, "_session_manager", None)
    monkeypatch.setattr(deps, "build_session_store", slow_build)
    managers = []

    errors = _run_together(*[lambda: managers.append(deps.get_session_manager()) for _ in range(8)])

    assert errors == []
    assert len(built) == 1
    assert all(manager is managers[0] for manager in managers)
