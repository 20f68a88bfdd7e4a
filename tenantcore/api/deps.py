"""
API Dependencies

Reusable FastAPI dependencies for authentication and authorization.
These are used across all API endpoints to ensure consistent security.

Every protected route depends on exactly one scope dependency below; the
decision itself lives in core.permissions.
"""
from dataclasses import dataclass
from typing import Optional
from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from tenantcore.config import get_settings
from tenantcore.database import get_db
from tenantcore.models.audit_log import ActorType
from tenantcore.models.user import User
from tenantcore.core.exceptions import AuthenticationError
from tenantcore.core.permissions import Decision, Scope, require_scope
from tenantcore.core.security import decode_session_token
from tenantcore.core.session import SessionContext, SessionManager, build_session_store
from tenantcore.services.audit import get_audit_recorder
import logging
import threading

logger = logging.getLogger(__name__)
settings = get_settings()

# Bearer header is optional: browsers send the session cookie instead
security = HTTPBearer(auto_error=False)

_session_manager: Optional[SessionManager] = None
_session_manager_lock = threading.Lock()


def get_session_manager() -> SessionManager:
    """
    Process-wide SessionManager, built once. Tests override this dependency.

    Sync dependencies run on the threadpool, so first calls may be concurrent.
    """
    global _session_manager
    if _session_manager is None:
        with _session_manager_lock:
            if _session_manager is None:
                _session_manager = SessionManager(build_session_store(settings), get_audit_recorder())
    return _session_manager


def get_client_ip(request: Request) -> Optional[str]:
    """Client address, honouring the first X-Forwarded-For hop."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


def _extract_token(request: Request, credentials: Optional[HTTPAuthorizationCredentials]) -> Optional[str]:
    if credentials and credentials.credentials:
        return credentials.credentials
    return request.cookies.get(settings.SESSION_COOKIE_NAME)


async def get_current_session(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    manager: SessionManager = Depends(get_session_manager),
) -> SessionContext:
    """
    Resolve the caller's live SessionContext.

    The token only proves identity and names a session; everything about
    tenants comes from the server-side context. Any failure is a 401.
    """
    token = _extract_token(request, credentials)
    if not token:
        raise AuthenticationError("Not authenticated")

    payload = decode_session_token(token)
    if not payload:
        raise AuthenticationError("Invalid or expired token")

    context = manager.get_session(payload["sid"])

    if context.user_id != payload["sub"]:
        logger.error(
            "Session token subject does not match session owner",
            extra={"user_id": payload["sub"], "session_id": payload["sid"]},
        )
        raise AuthenticationError("Invalid or expired token")

    request.state.user_id = context.user_id
    request.state.tenant_id = context.active_tenant_id
    return context


async def get_current_user(
    session: SessionContext = Depends(get_current_session),
    db: Session = Depends(get_db),
) -> User:
    """The User row behind the session."""
    user = db.get(User, session.user_id)
    if not user:
        raise AuthenticationError("User not found")
    return user


@dataclass
class Principal:
    """A session together with the guard decision that admitted it."""

    session: SessionContext
    decision: Decision

    @property
    def user_id(self) -> str:
        return self.session.user_id

    @property
    def tenant_id(self) -> Optional[str]:
        return self.decision.tenant_id

    @property
    def actor_type(self) -> ActorType:
        return self.decision.actor_type


async def get_tenant_session(
    session: SessionContext = Depends(get_current_session),
    db: Session = Depends(get_db),
    manager: SessionManager = Depends(get_session_manager),
) -> SessionContext:
    """The session with its active-tenant role and status checked against the database."""
    return manager.ensure_current(db, session)


async def require_tenant_member(
    session: SessionContext = Depends(get_tenant_session),
) -> Principal:
    """Any membership in the active tenant."""
    return Principal(session, require_scope(session, Scope.TENANT_MEMBER))


async def require_tenant_admin(
    session: SessionContext = Depends(get_tenant_session),
) -> Principal:
    """Admin membership in the active tenant, or platform admin."""
    return Principal(session, require_scope(session, Scope.TENANT_ADMIN))


async def require_tenant_admin_reserved(
    session: SessionContext = Depends(get_tenant_session),
) -> Principal:
    """
    Admin membership in the active tenant, with no platform override.

    Platform admins reach these routes only after switching into the
    tenant, which gives them an admin membership.
    """
    return Principal(session, require_scope(session, Scope.TENANT_ADMIN, reserved=True))


async def require_platform_admin(
    session: SessionContext = Depends(get_current_session),
) -> Principal:
    """Platform scope, independent of the active tenant."""
    return Principal(session, require_scope(session, Scope.PLATFORM_ADMIN))
