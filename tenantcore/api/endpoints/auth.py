"""
Authentication Endpoints

Signup, login, tenant switching, logout, and the caller's own profile and
password.

Login hands back a signed token naming a server-side session; the session
(not the token) holds the membership snapshot and the active tenant.
"""
from fastapi import APIRouter, Depends, Request, Response, status
from sqlalchemy.orm import Session

from tenantcore.database import get_db
from tenantcore.models.user import User
from tenantcore.schemas.auth import (
    ChangePasswordRequest,
    LoginRequest,
    LoginResponse,
    ProfileUpdate,
    SessionResponse,
    SignupRequest,
    SwitchTenantRequest,
    SwitchTenantResponse,
    TenantMembershipResponse,
    UserResponse,
)
from tenantcore.core.security import create_session_token
from tenantcore.core.session import SessionContext, SessionManager
from tenantcore.services import accounts
from tenantcore.services.audit import AuditRecorder, get_audit_recorder
from tenantcore.api.deps import (
    get_client_ip,
    get_current_session,
    get_current_user,
    get_session_manager,
)
from tenantcore.config import get_settings
from tenantcore.utils.logging import log_security_event, get_logger

logger = get_logger(__name__)
settings = get_settings()

router = APIRouter(prefix="/auth", tags=["authentication"])


def _tenants(context: SessionContext):
    return [
        TenantMembershipResponse(
            tenant_id=m.tenant_id,
            name=m.tenant_name,
            status=m.tenant_status,
            role=m.role,
        )
        for m in context.memberships
    ]


def _session_view(user: User, context: SessionContext) -> dict:
    return {
        "user": UserResponse.model_validate(user),
        "tenants": _tenants(context),
        "active_tenant_id": context.active_tenant_id,
        "active_tenant_role": context.active_role,
        "must_select_tenant": context.must_select_tenant,
    }


def _start_session(response: Response, db: Session, user: User, manager: SessionManager) -> LoginResponse:
    context = manager.create_session(db, user)
    token = create_session_token(user.id, context.session_id)

    response.set_cookie(
        key=settings.SESSION_COOKIE_NAME,
        value=token,
        max_age=settings.SESSION_MAX_AGE_HOURS * 3600,
        httponly=True,
        secure=settings.SESSION_COOKIE_SECURE,
        samesite="lax",
    )
    return LoginResponse(access_token=token, **_session_view(user, context))


@router.post("/signup", response_model=LoginResponse, status_code=status.HTTP_201_CREATED)
async def signup(
    body: SignupRequest,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    manager: SessionManager = Depends(get_session_manager),
    audit: AuditRecorder = Depends(get_audit_recorder),
):
    """
    Create an account and its first workspace, then sign the user in.

    The new user is admin of the new tenant, which starts with a copy of
    every active global tag.
    """
    result = accounts.signup(
        db,
        email=body.email,
        password=body.password,
        name=body.name,
        company_name=body.company_name,
        phone=body.phone,
        audit=audit,
        ip_address=get_client_ip(request),
    )
    db.commit()

    return _start_session(response, db, result.user, manager)


@router.post("/login", response_model=LoginResponse)
async def login(
    credentials: LoginRequest,
    response: Response,
    db: Session = Depends(get_db),
    manager: SessionManager = Depends(get_session_manager),
):
    """
    Authenticate and open a session.

    A user with exactly one membership lands in that tenant; with several,
    must_select_tenant is true until /auth/switch-tenant is called.
    """
    user = accounts.authenticate(db, credentials.email, credentials.password)
    db.commit()

    logger.info(f"Successful login: user={user.id}", extra={"user_id": user.id})
    return _start_session(response, db, user, manager)


@router.post("/switch-tenant", response_model=SwitchTenantResponse)
async def switch_tenant(
    body: SwitchTenantRequest,
    request: Request,
    session: SessionContext = Depends(get_current_session),
    db: Session = Depends(get_db),
    manager: SessionManager = Depends(get_session_manager),
):
    """
    Make another tenant the active one.

    Members switch freely. Platform admins are joined as admin on first
    entry (audited as membership.auto_join). Anyone else gets 403.
    """
    context = manager.select_tenant(
        db,
        session.session_id,
        body.tenant_id,
        ip_address=get_client_ip(request),
    )
    return SwitchTenantResponse(tenants=_tenants(context), active_tenant_id=context.active_tenant_id)


@router.post("/logout")
async def logout(
    response: Response,
    session: SessionContext = Depends(get_current_session),
    manager: SessionManager = Depends(get_session_manager),
):
    manager.invalidate(session.session_id)
    response.delete_cookie(settings.SESSION_COOKIE_NAME)

    log_security_event(
        "session_invalidated",
        {"user_id": session.user_id, "session_id": session.session_id},
        logger,
    )
    return {"message": "Logged out successfully"}


@router.get("/me", response_model=SessionResponse)
async def me(
    session: SessionContext = Depends(get_current_session),
    user: User = Depends(get_current_user),
):
    """Current user plus the session's tenant view."""
    return SessionResponse(**_session_view(user, session))


@router.put("/profile", response_model=UserResponse)
async def update_profile(
    body: ProfileUpdate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    accounts.update_profile(db, user, body.model_dump(exclude_unset=True))
    db.commit()
    return user


@router.post("/change-password")
async def change_password(
    body: ChangePasswordRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Set a new password. The current one must be supplied again."""
    accounts.change_password(db, user, body.current_password, body.new_password)
    db.commit()
    return {"message": "Password updated"}
