"""Pytest configuration and fixtures."""

import os
import sys
from pathlib import Path

# Settings are cached on first import: configure the environment first
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SESSION_BACKEND"] = "memory"
os.environ["ENVIRONMENT"] = "test"
os.environ.setdefault("SECRET_KEY", "test-secret-key")

sys.path.insert(0, str(Path(__file__).parent.parent))

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

import tenantcore.models  # noqa: F401
from tenantcore.api.deps import get_session_manager
from tenantcore.core.security import get_password_hash
from tenantcore.core.session import MemorySessionStore, SessionManager
from tenantcore.database import Base, get_db
from tenantcore.main import app
from tenantcore.models import Membership, MembershipRole, Tenant, User
from tenantcore.services.audit import audit_recorder

DEFAULT_PASSWORD = "password123"


@pytest.fixture(scope="session")
def password_hash() -> str:
    """bcrypt is slow; hash the shared test password once."""
    return get_password_hash(DEFAULT_PASSWORD)


@pytest.fixture(scope="function")
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture(scope="function")
def file_engine(tmp_path):
    """SQLite file database that several threads can write to at once."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'race.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )

    # pysqlite's deferred BEGIN can deadlock two writers; take the write lock up front
    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    Base.metadata.create_all(engine)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture(scope="function")
def db_session(engine) -> Session:
    """Fresh in-memory database per test."""
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)
    session = SessionLocal()
    try:
        yield session
        session.rollback()
    finally:
        session.close()


@pytest.fixture(scope="function")
def session_store() -> MemorySessionStore:
    return MemorySessionStore(ttl_seconds=1800)


@pytest.fixture(scope="function")
def session_manager(session_store) -> SessionManager:
    return SessionManager(session_store, audit_recorder)


@pytest.fixture(scope="function")
def client(db_session, session_manager) -> TestClient:
    """TestClient wired to the test database and session manager."""

    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_manager] = lambda: session_manager
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def make_user(db_session, password_hash):
    def _make_user(email: str, name: str = None, is_platform_admin: bool = False, is_active: bool = True) -> User:
        user = User(
            email=email,
            hashed_password=password_hash,
            name=name or email.split("@")[0],
            is_platform_admin=is_platform_admin,
            is_active=is_active,
        )
        db_session.add(user)
        db_session.commit()
        return user

    return _make_user


@pytest.fixture
def make_tenant(db_session):
    def _make_tenant(name: str, status: str = "active") -> Tenant:
        tenant = Tenant(name=name, status=status, plan="free")
        db_session.add(tenant)
        db_session.commit()
        return tenant

    return _make_tenant


@pytest.fixture
def add_member(db_session):
    def _add_member(user: User, tenant: Tenant, role: MembershipRole = MembershipRole.MEMBER) -> Membership:
        membership = Membership(user_id=user.id, tenant_id=tenant.id, role=MembershipRole(role).value)
        db_session.add(membership)
        db_session.commit()
        return membership

    return _add_member


@pytest.fixture
def login(client):
    """Log in through the API and return Authorization headers."""

    def _login(email: str, password: str = DEFAULT_PASSWORD) -> dict:
        response = client.post("/api/v1/auth/login", json={"email": email, "password": password})
        assert response.status_code == 200, response.text
        return {"Authorization": f"Bearer {response.json()['access_token']}"}

    return _login
