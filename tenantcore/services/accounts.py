"""
Account Management

Signup, credential checks, profile edits and platform-level user flags.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from tenantcore.core.exceptions import (
    AuthenticationError,
    ConflictError,
    InvalidInputError,
    UserNotFoundError,
)
from tenantcore.core.security import get_password_hash, verify_password
from tenantcore.models.audit_log import AuditAction, ActorType
from tenantcore.models.user import User, normalize_email
from tenantcore.services.audit import AuditRecorder
from tenantcore.services.tenants import ProvisionResult, create_tenant
from tenantcore.utils.logging import get_logger, log_security_event

logger = get_logger(__name__)


@dataclass
class SignupResult:
    user: User
    provision: ProvisionResult


def signup(
    db: Session,
    email: str,
    password: str,
    name: str,
    company_name: str,
    audit: AuditRecorder,
    phone: Optional[str] = None,
    ip_address: Optional[str] = None,
) -> SignupResult:
    """
    Create a user and their first tenant, with the user as its admin.
    The caller commits.
    """
    email = normalize_email(email)
    if db.query(User.id).filter(User.email == email).first():
        raise ConflictError("This email is already registered")

    user = User(
        email=email,
        hashed_password=get_password_hash(password),
        name=name.strip(),
        phone=phone.strip() if phone else None,
        is_platform_admin=False,
        is_active=True,
    )
    db.add(user)
    try:
        db.flush()
    except IntegrityError as e:
        db.rollback()
        raise ConflictError("This email is already registered") from e

    provision = create_tenant(
        db,
        name=company_name,
        requested_by=user.id,
        audit=audit,
        actor_type=ActorType.TENANT_USER,
        ip_address=ip_address,
    )

    audit.record(
        db,
        actor_user_id=user.id,
        action=AuditAction.USER_SIGNUP,
        target_type="user",
        target_id=user.id,
        tenant_id=provision.tenant.id,
        actor_type=ActorType.TENANT_USER,
        payload={"email": email},
        ip_address=ip_address,
    )

    logger.info(f"New user signed up: {user.id} with tenant {provision.tenant.id}")
    return SignupResult(user=user, provision=provision)


def authenticate(db: Session, email: str, password: str) -> User:
    """
    Return the user for a valid email/password pair.

    Every failure raises the same generic AuthenticationError so responses
    cannot be used for account enumeration.
    """
    email = normalize_email(email)
    user = db.query(User).filter(User.email == email).first()

    if not user:
        log_security_event("failed_login", {"reason": "user_not_found", "email": email}, logger)
        raise AuthenticationError("Invalid credentials")

    if not verify_password(password, user.hashed_password):
        log_security_event("failed_login", {"reason": "invalid_password", "user_id": user.id}, logger)
        raise AuthenticationError("Invalid credentials")

    if not user.is_active:
        log_security_event("failed_login", {"reason": "user_inactive", "user_id": user.id}, logger)
        raise AuthenticationError("User account is inactive")

    user.last_login_at = datetime.utcnow()
    return user


def update_profile(db: Session, user: User, changes: Dict[str, Any]) -> User:
    """Self-service profile edit. Not a privileged mutation, so not audited."""
    for field in ("name", "phone", "timezone"):
        if field in changes and changes[field] is not None:
            setattr(user, field, changes[field].strip() or None)
    db.flush()
    return user


def set_user_flags(
    db: Session,
    user_id: str,
    requested_by: str,
    audit: AuditRecorder,
    is_active: Optional[bool] = None,
    is_platform_admin: Optional[bool] = None,
    ip_address: Optional[str] = None,
) -> User:
    """
    Platform-admin edit of a user's active flag or platform role.

    Admins cannot change their own flags. Existing sessions keep the
    platform flag they were issued with until they end.
    """
    user = db.get(User, user_id)
    if not user:
        raise UserNotFoundError(user_id)
    if user.id == requested_by:
        raise InvalidInputError("You cannot change your own account flags")

    if is_active is not None and is_active != user.is_active:
        user.is_active = is_active
        audit.record(
            db,
            actor_user_id=requested_by,
            action=AuditAction.USER_ACTIVATE if is_active else AuditAction.USER_DEACTIVATE,
            target_type="user",
            target_id=user.id,
            payload={"is_active": is_active},
            ip_address=ip_address,
        )

    if is_platform_admin is not None and is_platform_admin != user.is_platform_admin:
        user.is_platform_admin = is_platform_admin
        audit.record(
            db,
            actor_user_id=requested_by,
            action=AuditAction.USER_PLATFORM_ROLE_CHANGE,
            target_type="user",
            target_id=user.id,
            payload={"is_platform_admin": is_platform_admin},
            ip_address=ip_address,
        )

    db.flush()
    return user


def change_password(db: Session, user: User, current_password: str, new_password: str) -> None:
    """Replace the caller's password after re-checking the current one."""
    if not verify_password(current_password, user.hashed_password):
        log_security_event("failed_password_change", {"user_id": user.id}, logger)
        raise AuthenticationError("Current password is incorrect")

    user.hashed_password = get_password_hash(new_password)
    db.flush()
    log_security_event("password_changed", {"user_id": user.id}, logger)
