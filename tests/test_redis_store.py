"""Tests for the Redis session store, against fakeredis."""

import fakeredis
import pytest

from tenantcore.core.session import RedisSessionStore, SessionContext, SessionManager
from tenantcore.models import MembershipRole
from tenantcore.services.audit import audit_recorder


@pytest.fixture
def redis_client():
    client = fakeredis.FakeRedis(decode_responses=True)
    try:
        yield client
    finally:
        client.flushall()


@pytest.fixture
def redis_store(redis_client) -> RedisSessionStore:
    return RedisSessionStore(redis_client, ttl_seconds=1800, lock_timeout=2)


def test_save_and_load(redis_store, redis_client):
    context = SessionContext(session_id="s1", user_id="u1", email="a@example.com", active_tenant_id="t1")

    redis_store.save(context)
    loaded = redis_store.load("s1")

    assert loaded == context
    assert 0 < redis_client.ttl("tenantcore:session:s1") <= 1800


def test_touch_and_delete(redis_store, redis_client):
    redis_store.save(SessionContext(session_id="s1", user_id="u1", email="a@example.com"))
    redis_client.expire("tenantcore:session:s1", 5)

    assert redis_store.touch("s1") is True
    assert redis_client.ttl("tenantcore:session:s1") > 5

    redis_store.delete("s1")
    assert redis_store.load("s1") is None
    assert redis_store.touch("s1") is False


def test_lock_is_exclusive(redis_store, redis_client):
    with redis_store.lock("s1"):
        other = redis_client.lock("tenantcore:session:lock:s1", timeout=2)
        assert other.acquire(blocking=False) is False


def test_manager_switch_with_redis_store(db_session, redis_store, make_user, make_tenant, add_member):
    """Full tenant switch round-trips through the Redis store."""
    user = make_user("redis@example.com")
    first, second = make_tenant("First"), make_tenant("Second")
    add_member(user, first)
    add_member(user, second, MembershipRole.ADMIN)
    manager = SessionManager(redis_store, audit_recorder)

    context = manager.create_session(db_session, user)
    manager.select_tenant(db_session, context.session_id, second.id)

    reloaded = manager.get_session(context.session_id)
    assert reloaded.active_tenant_id == second.id
    assert reloaded.active_role == MembershipRole.ADMIN
