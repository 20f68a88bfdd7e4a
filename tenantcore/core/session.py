"""
Session Context Manager

One SessionContext per login, holding the identity, a snapshot of the
user's memberships and exactly one active-tenant pointer.

CONCURRENCY: every mutation of a context happens under that session's
lock (a threading.Lock in memory, a redis Lock in Redis), so readers never
observe an active_tenant_id that disagrees with the membership set.
Different sessions never share state and never contend.

Sessions expire after an inactivity window; every authorized request
extends it. Expiry and logout are indistinguishable to callers.
"""
from contextlib import contextmanager
from datetime import datetime
from typing import Callable, Dict, Iterator, List, Optional, Tuple
import secrets
import threading
import time

import redis
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from tenantcore.config import Settings
from tenantcore.core.exceptions import (
    AuthenticationError,
    PermissionDenied,
    TenantIsolationError,
    TenantNotFoundError,
)
from tenantcore.models.audit_log import AuditAction, ActorType
from tenantcore.models.membership import MembershipRole
from tenantcore.models.tenant import Tenant, TenantStatus
from tenantcore.models.user import User
from tenantcore.services.audit import AuditRecorder
from tenantcore.services.memberships import (
    MembershipSnapshot,
    ensure_membership,
    get_membership,
    get_membership_state,
    list_memberships,
)
from tenantcore.utils.logging import get_logger, log_security_event

logger = get_logger(__name__)


class SessionContext(BaseModel):
    session_id: str
    user_id: str
    email: str
    is_platform_admin: bool = False
    memberships: List[MembershipSnapshot] = Field(default_factory=list)
    active_tenant_id: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)

    def membership_for(self, tenant_id: Optional[str]) -> Optional[MembershipSnapshot]:
        if not tenant_id:
            return None
        for membership in self.memberships:
            if membership.tenant_id == tenant_id:
                return membership
        return None

    @property
    def active_role(self) -> Optional[MembershipRole]:
        membership = self.membership_for(self.active_tenant_id)
        return membership.role if membership else None

    @property
    def must_select_tenant(self) -> bool:
        return self.active_tenant_id is None and len(self.memberships) > 1


# ============================================================================
# STORES
# ============================================================================

class SessionStore:
    """Persistence for SessionContext values, keyed by session id."""

    def load(self, session_id: str) -> Optional[SessionContext]:
        raise NotImplementedError

    def save(self, context: SessionContext) -> None:
        raise NotImplementedError

    def delete(self, session_id: str) -> None:
        raise NotImplementedError

    def touch(self, session_id: str) -> bool:
        """Extend the inactivity window. Returns False if the session is gone."""
        raise NotImplementedError

    def lock(self, session_id: str):
        """Context manager giving exclusive mutation rights on one session."""
        raise NotImplementedError


class MemorySessionStore(SessionStore):
    """
    In-process store for a single worker and for tests.

    Sessions are not shared between processes; use RedisSessionStore
    whenever more than one worker serves requests.
    """

    def __init__(self, ttl_seconds: int, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._data: Dict[str, Tuple[str, float]] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def load(self, session_id: str) -> Optional[SessionContext]:
        with self._guard:
            entry = self._data.get(session_id)
            if entry is None:
                return None
            raw, expires_at = entry
            if expires_at <= self._clock():
                self._data.pop(session_id, None)
                self._locks.pop(session_id, None)
                return None
        return SessionContext.model_validate_json(raw)

    def _purge_expired(self) -> None:
        # Caller holds _guard
        now = self._clock()
        expired = [sid for sid, (_, expires_at) in self._data.items() if expires_at <= now]
        for sid in expired:
            del self._data[sid]
            self._locks.pop(sid, None)

    def save(self, context: SessionContext) -> None:
        with self._guard:
            self._purge_expired()
            self._data[context.session_id] = (
                context.model_dump_json(),
                self._clock() + self.ttl_seconds,
            )

    def delete(self, session_id: str) -> None:
        with self._guard:
            self._data.pop(session_id, None)
            self._locks.pop(session_id, None)

    def touch(self, session_id: str) -> bool:
        with self._guard:
            entry = self._data.get(session_id)
            if entry is None or entry[1] <= self._clock():
                return False
            self._data[session_id] = (entry[0], self._clock() + self.ttl_seconds)
            return True

    @contextmanager
    def lock(self, session_id: str) -> Iterator[None]:
        with self._guard:
            session_lock = self._locks.setdefault(session_id, threading.Lock())
        with session_lock:
            yield


class RedisSessionStore(SessionStore):
    """
    Redis-backed store. The key TTL is the inactivity window, so Redis
    itself expires idle sessions.
    """

    def __init__(
        self,
        client: redis.Redis,
        ttl_seconds: int,
        lock_timeout: int = 10,
        key_prefix: str = "tenantcore:session:",
    ):
        self.client = client
        self.ttl_seconds = ttl_seconds
        self.lock_timeout = lock_timeout
        self.key_prefix = key_prefix

    def _key(self, session_id: str) -> str:
        return f"{self.key_prefix}{session_id}"

    def load(self, session_id: str) -> Optional[SessionContext]:
        raw = self.client.get(self._key(session_id))
        if raw is None:
            return None
        return SessionContext.model_validate_json(raw)

    def save(self, context: SessionContext) -> None:
        self.client.set(self._key(context.session_id), context.model_dump_json(), ex=self.ttl_seconds)

    def delete(self, session_id: str) -> None:
        self.client.delete(self._key(session_id))

    def touch(self, session_id: str) -> bool:
        return bool(self.client.expire(self._key(session_id), self.ttl_seconds))

    def lock(self, session_id: str):
        # Raises redis.exceptions.LockError if not acquired within lock_timeout
        return self.client.lock(
            f"{self.key_prefix}lock:{session_id}",
            timeout=self.lock_timeout,
            blocking_timeout=self.lock_timeout,
        )


def build_session_store(settings: Settings) -> SessionStore:
    ttl = settings.SESSION_IDLE_TIMEOUT_MINUTES * 60

    if settings.SESSION_BACKEND == "memory":
        logger.info("Using in-memory session store")
        return MemorySessionStore(ttl_seconds=ttl)

    if settings.SESSION_BACKEND == "redis":
        client = redis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            socket_connect_timeout=5,
        )
        logger.info("Using Redis session store")
        return RedisSessionStore(client, ttl_seconds=ttl, lock_timeout=settings.SESSION_LOCK_TIMEOUT_SECONDS)

    raise ValueError(f"Unknown SESSION_BACKEND: {settings.SESSION_BACKEND}")


# ============================================================================
# MANAGER
# ============================================================================

class SessionManager:
    """Owns every SessionContext: creation, tenant switching, invalidation."""

    def __init__(self, store: SessionStore, audit: AuditRecorder):
        self.store = store
        self.audit = audit

    def create_session(self, db: Session, user: User) -> SessionContext:
        """
        Build a session from the user's full membership set.

        Exactly one membership selects that tenant immediately, unless the
        tenant is suspended and the user is not a platform admin; zero or
        several leave active_tenant_id unset until select_tenant is called.
        """
        memberships = list_memberships(db, user.id)
        active_tenant_id = None
        if len(memberships) == 1:
            only = memberships[0]
            if only.tenant_status != TenantStatus.SUSPENDED.value or user.is_platform_admin:
                active_tenant_id = only.tenant_id

        context = SessionContext(
            session_id=secrets.token_urlsafe(32),
            user_id=user.id,
            email=user.email,
            is_platform_admin=bool(user.is_platform_admin),
            memberships=memberships,
            active_tenant_id=active_tenant_id,
        )
        self.store.save(context)

        logger.info(
            f"Session created for user {user.id} ({len(memberships)} memberships)",
            extra={"user_id": user.id, "tenant_id": active_tenant_id},
        )
        return context

    def _require(self, session_id: str) -> SessionContext:
        context = self.store.load(session_id)
        if context is None:
            raise AuthenticationError("Session expired or logged out")
        return context

    def get_session(self, session_id: str) -> SessionContext:
        """Return the live session and extend its inactivity window."""
        context = self._require(session_id)
        if not self.store.touch(session_id):
            raise AuthenticationError("Session expired or logged out")
        return context

    def select_tenant(
        self,
        db: Session,
        session_id: str,
        tenant_id: str,
        ip_address: Optional[str] = None,
    ) -> SessionContext:
        """
        Make tenant_id the session's active tenant.

        Members switch freely (unless the tenant is suspended). A platform
        admin who is not a member is joined as admin first; the upsert is
        conflict-safe so concurrent switches create exactly one row.
        Anyone else gets TenantIsolationError and no row is written.
        """
        with self.store.lock(session_id):
            context = self._require(session_id)
            tenant = db.get(Tenant, tenant_id)

            if tenant is None:
                if context.is_platform_admin:
                    raise TenantNotFoundError(tenant_id)
                # Unknown and foreign tenants look the same to non-admins
                raise TenantIsolationError("You do not have access to this tenant")

            is_member = (
                context.membership_for(tenant_id) is not None
                or get_membership(db, context.user_id, tenant_id) is not None
            )

            if not is_member:
                if not context.is_platform_admin:
                    log_security_event(
                        "tenant_isolation_violation",
                        {"user_id": context.user_id, "tenant_id": tenant_id, "session_id": session_id},
                        logger,
                    )
                    raise TenantIsolationError("You do not have access to this tenant")

                created = ensure_membership(db, context.user_id, tenant_id, MembershipRole.ADMIN)
                if created:
                    self.audit.record(
                        db,
                        actor_user_id=context.user_id,
                        action=AuditAction.MEMBERSHIP_AUTO_JOIN,
                        target_type="membership",
                        target_id=f"{context.user_id}:{tenant_id}",
                        tenant_id=tenant_id,
                        actor_type=ActorType.PLATFORM_USER,
                        payload={"role": MembershipRole.ADMIN.value},
                        ip_address=ip_address,
                    )
                    log_security_event(
                        "platform_admin_auto_join",
                        {"user_id": context.user_id, "tenant_id": tenant_id},
                        logger,
                    )
                db.commit()

            elif not tenant.is_active and not context.is_platform_admin:
                raise PermissionDenied("Tenant is suspended")

            context.memberships = list_memberships(db, context.user_id)
            context.active_tenant_id = tenant_id
            self.store.save(context)

        logger.info(
            f"Session {session_id[:8]}... switched to tenant {tenant_id}",
            extra={"user_id": context.user_id, "tenant_id": tenant_id},
        )
        return context

    def refresh_memberships(self, db: Session, session_id: str) -> SessionContext:
        """Reload the membership snapshot, e.g. after a role change."""
        with self.store.lock(session_id):
            context = self._require(session_id)
            context.memberships = list_memberships(db, context.user_id)
            if context.active_tenant_id and not context.membership_for(context.active_tenant_id):
                if not context.is_platform_admin:
                    context.active_tenant_id = None
            self.store.save(context)
        return context

    def ensure_current(self, db: Session, context: SessionContext) -> SessionContext:
        """
        Re-read the active tenant's role and status from the database.

        The snapshot is reloaded only when either has moved, so a demotion
        or a suspension takes effect on the caller's next request.
        """
        snapshot = context.membership_for(context.active_tenant_id)
        if snapshot is None:
            return context

        state = get_membership_state(db, context.user_id, context.active_tenant_id)
        if state == (snapshot.role.value, snapshot.tenant_status):
            return context

        logger.info(
            f"Session {context.session_id[:8]}... membership snapshot is stale, reloading",
            extra={"user_id": context.user_id, "tenant_id": context.active_tenant_id},
        )
        return self.refresh_memberships(db, context.session_id)

    def invalidate(self, session_id: str) -> None:
        """Destroy the session. Later use fails as unauthenticated."""
        with self.store.lock(session_id):
            self.store.delete(session_id)
        logger.info(f"Session {session_id[:8]}... invalidated")
