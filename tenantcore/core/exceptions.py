"""
Custom Exceptions

Centralized exception definitions for better error handling.
FastAPI converts these to HTTP responses; main.py adds a stable "type"
code per family so callers can tell 401 from 403 without parsing text.
"""
from fastapi import HTTPException, status


class AuthenticationError(HTTPException):
    """No session, an expired session, or a credential mismatch."""

    error_type = "authentication_error"

    def __init__(self, detail: str = "Could not validate credentials"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"},
        )


class PermissionDenied(HTTPException):
    """Valid session, insufficient role or tenant scope."""

    error_type = "permission_denied"

    def __init__(self, detail: str = "Permission denied"):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=detail
        )


class TenantIsolationError(PermissionDenied):
    """
    Raised when a request targets a tenant other than the session's
    active tenant without platform scope.

    This is a security event and is logged as one.
    """

    error_type = "tenant_isolation_error"

    def __init__(self, detail: str = "Tenant isolation violation"):
        super().__init__(detail=detail)


class TenantSelectionRequired(PermissionDenied):
    """Tenant-scoped action attempted before a tenant was selected."""

    error_type = "tenant_selection_required"

    def __init__(self, detail: str = "No active tenant selected"):
        super().__init__(detail=detail)


class TenantNotFoundError(HTTPException):
    """Raised when tenant cannot be found."""

    error_type = "not_found"

    def __init__(self, tenant_identifier: str = ""):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Tenant not found: {tenant_identifier}" if tenant_identifier else "Tenant not found"
        )


class UserNotFoundError(HTTPException):
    """Raised when user cannot be found."""

    error_type = "not_found"

    def __init__(self, user_id: str = ""):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"User not found: {user_id}" if user_id else "User not found"
        )


class TagNotFoundError(HTTPException):
    """Raised when a global or tenant tag cannot be found."""

    error_type = "not_found"

    def __init__(self, tag_id: str = ""):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Tag not found: {tag_id}" if tag_id else "Tag not found"
        )


class ConflictError(HTTPException):
    """
    Uniqueness violation surfaced to the client.

    Idempotent writes (membership upsert, tag sync) never raise this;
    their conflicts are folded into the success path.
    """

    error_type = "conflict"

    def __init__(self, detail: str = "Resource already exists"):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=detail
        )


class InvalidInputError(HTTPException):
    """Raised when input validation fails."""

    error_type = "validation_error"

    def __init__(self, detail: str = "Invalid input"):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail
        )


class AuditWriteFailure(HTTPException):
    """
    The audit entry for a privileged mutation could not be written.

    The enclosing transaction is rolled back: a privileged action never
    completes unaudited.
    """

    error_type = "audit_write_failure"

    def __init__(self, detail: str = "Audit log write failed; action was not applied"):
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=detail
        )
