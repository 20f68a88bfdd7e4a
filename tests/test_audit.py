"""Tests for the audit recorder and audit queries."""

from datetime import datetime, timedelta

import pytest
from sqlalchemy.exc import OperationalError

from tenantcore.config import get_settings
from tenantcore.core.exceptions import AuditWriteFailure
from tenantcore.models import AuditLog, Tenant
from tenantcore.services import tenants
from tenantcore.services.audit import AuditQuery, AuditRecorder, audit_recorder, clamp_limit

settings = get_settings()


class BrokenRecorder(AuditRecorder):
    """Recorder whose storage is unavailable."""

    def _write(self, db, entry):
        raise OperationalError("INSERT INTO audit_logs", {}, Exception("disk I/O error"))


def _entry(db, action, created_at, actor="u1", tenant_id=None):
    db.add(AuditLog(action=action, created_at=created_at, actor_user_id=actor,
                    actor_type="platform_user", tenant_id=tenant_id, payload={}))
    db.commit()


def test_record_appends_entry(db_session):
    entry = audit_recorder.record(
        db_session,
        actor_user_id="u1",
        action="config.update",
        target_type="config",
        target_id="signup_enabled",
        payload={"to": False},
        ip_address="10.0.0.1",
    )
    db_session.commit()

    stored = db_session.get(AuditLog, entry.id)
    assert stored.actor_type == "platform_user"
    assert stored.payload == {"to": False}
    assert stored.ip_address == "10.0.0.1"


def test_failed_audit_write_rolls_back_the_action(db_session, make_user):
    """A privileged mutation never completes unaudited."""
    admin = make_user("ops@example.com", is_platform_admin=True)

    with pytest.raises(AuditWriteFailure):
        tenants.create_tenant(db_session, "Ghost", requested_by=admin.id, audit=BrokenRecorder())

    assert db_session.query(Tenant).filter_by(name="Ghost").count() == 0


def test_query_newest_first_with_id_tiebreak(db_session):
    moment = datetime(2024, 1, 1, 12, 0, 0)
    _entry(db_session, "tenant.create", moment - timedelta(minutes=1))
    _entry(db_session, "tenant.update", moment)
    _entry(db_session, "tenant.suspend", moment)

    page = audit_recorder.query(db_session, AuditQuery())

    assert [log.action for log in page.logs] == ["tenant.suspend", "tenant.update", "tenant.create"]
    assert page.total == 3


def test_query_filters(db_session):
    now = datetime.utcnow()
    _entry(db_session, "tenant.create", now - timedelta(days=2), actor="a")
    _entry(db_session, "tenant.update", now - timedelta(hours=1), actor="b", tenant_id="t1")
    _entry(db_session, "global_tag.create", now, actor="a")

    by_prefix = audit_recorder.query(db_session, AuditQuery(action="tenant.*"))
    by_prefix_param = audit_recorder.query(db_session, AuditQuery(action_prefix="tenant."))
    by_actor = audit_recorder.query(db_session, AuditQuery(actor_user_id="a"))
    by_tenant = audit_recorder.query(db_session, AuditQuery(tenant_id="t1"))
    recent = audit_recorder.query(db_session, AuditQuery(start=now - timedelta(days=1)))

    assert by_prefix.total == by_prefix_param.total == 2
    assert {log.action for log in by_actor.logs} == {"tenant.create", "global_tag.create"}
    assert [log.action for log in by_tenant.logs] == ["tenant.update"]
    assert recent.total == 2


def test_prefix_match_treats_wildcards_literally(db_session):
    _entry(db_session, "tenant_x.create", datetime.utcnow())

    assert audit_recorder.query(db_session, AuditQuery(action_prefix="tenant_")).total == 1
    assert audit_recorder.query(db_session, AuditQuery(action_prefix="tenant%")).total == 0


def test_limit_is_clamped():
    assert clamp_limit(None) == settings.AUDIT_LOG_DEFAULT_LIMIT
    assert clamp_limit(0) == settings.AUDIT_LOG_DEFAULT_LIMIT
    assert clamp_limit(10) == 10
    assert clamp_limit(100000) == settings.AUDIT_LOG_MAX_LIMIT


def test_pagination(db_session):
    start = datetime(2024, 1, 1)
    for i in range(5):
        _entry(db_session, "tag.create", start + timedelta(minutes=i))

    page = audit_recorder.query(db_session, AuditQuery(limit=2, offset=2))

    assert page.total == 5
    assert page.pages == 3
    assert [log.created_at for log in page.logs] == [start + timedelta(minutes=2), start + timedelta(minutes=1)]


def test_stats_counts_actions(db_session):
    now = datetime.utcnow()
    _entry(db_session, "tenant.create", now, actor="a")
    _entry(db_session, "tenant.create", now, actor="a", tenant_id="t1")
    _entry(db_session, "config.update", now, actor="b")

    stats = audit_recorder.stats(db_session)

    assert stats["summary"]["total_logs"] == 3
    assert stats["summary"]["tenant_actions"] == 1
    assert stats["actions"][0] == {"action": "tenant.create", "count": 2}
    assert stats["actors"][0] == {"actor_user_id": "a", "count": 2}
