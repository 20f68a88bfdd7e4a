"""
Main FastAPI Application

Entry point for the tenant membership and session service.
Configures middleware, routes, error handlers, and startup/shutdown events.

Every error family maps to a stable {"detail", "type"} body so clients can
tell "log in again" (401) from "not allowed here" (403).
"""
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from redis.exceptions import LockError
import time
from contextlib import asynccontextmanager

from tenantcore.config import get_settings
from tenantcore.database import engine, init_db
from tenantcore.utils.logging import setup_logging, get_logger
from tenantcore.core.exceptions import (
    AuditWriteFailure,
    AuthenticationError,
    ConflictError,
    InvalidInputError,
    PermissionDenied,
    TagNotFoundError,
    TenantIsolationError,
    TenantNotFoundError,
    UserNotFoundError,
)

# Import routers
from tenantcore.api.endpoints import admin, auth, tenant

settings = get_settings()

# Setup logging
setup_logging(
    log_level=settings.LOG_LEVEL,
    json_format=(settings.ENVIRONMENT == "production")
)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Handles startup and shutdown events.
    """
    logger.info(f"Starting application in {settings.ENVIRONMENT} mode")

    # Initialize database tables (dev only - use migrations in production)
    if settings.ENVIRONMENT == "development":
        logger.warning("Initializing database tables (dev mode)")
        init_db()

    logger.info("Application startup complete")

    yield

    logger.info("Shutting down application")
    engine.dispose()
    logger.info("Application shutdown complete")


app = FastAPI(
    title="Tenant Core",
    description="Tenant membership, session context and platform administration API",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)


# ============================================================================
# MIDDLEWARE CONFIGURATION
# ============================================================================

allowed_origins = [
    "http://localhost:3000",
    "http://localhost:8000",
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def add_process_time_header(request: Request, call_next):
    """Add X-Process-Time header to track request duration."""
    start_time = time.time()
    response = await call_next(request)
    process_time = time.time() - start_time
    response.headers["X-Process-Time"] = str(process_time)
    return response


# ============================================================================
# EXCEPTION HANDLERS
# ============================================================================

def _error_response(exc) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "type": exc.error_type},
        headers=exc.headers or {}
    )


@app.exception_handler(TenantIsolationError)
async def tenant_isolation_error_handler(request: Request, exc: TenantIsolationError):
    """
    Handle tenant isolation violations.

    These are security events: log them with the request context.
    """
    logger.error(
        f"TENANT ISOLATION VIOLATION: {exc.detail}",
        extra={
            "path": request.url.path,
            "method": request.method,
            "user_id": getattr(request.state, "user_id", None),
            "tenant_id": getattr(request.state, "tenant_id", None)
        }
    )
    return _error_response(exc)


@app.exception_handler(AuthenticationError)
async def authentication_error_handler(request: Request, exc: AuthenticationError):
    return _error_response(exc)


@app.exception_handler(PermissionDenied)
async def permission_denied_handler(request: Request, exc: PermissionDenied):
    return _error_response(exc)


@app.exception_handler(TenantNotFoundError)
@app.exception_handler(UserNotFoundError)
@app.exception_handler(TagNotFoundError)
async def not_found_handler(request: Request, exc):
    return _error_response(exc)


@app.exception_handler(ConflictError)
@app.exception_handler(InvalidInputError)
async def client_error_handler(request: Request, exc):
    return _error_response(exc)


@app.exception_handler(AuditWriteFailure)
async def audit_write_failure_handler(request: Request, exc: AuditWriteFailure):
    logger.error(
        f"Privileged action aborted: {exc.detail}",
        extra={"path": request.url.path, "user_id": getattr(request.state, "user_id", None)}
    )
    return _error_response(exc)


@app.exception_handler(LockError)
async def session_lock_error_handler(request: Request, exc: LockError):
    """Another request is mutating the same session."""
    logger.warning(
        f"Session lock not acquired: {request.url.path}",
        extra={"user_id": getattr(request.state, "user_id", None)}
    )
    return JSONResponse(
        status_code=409,
        content={"detail": "Session is busy, retry the request", "type": "conflict"}
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """
    Catch-all exception handler.

    Log full details but return a generic error to the client.
    """
    logger.error(
        f"Unhandled exception: {type(exc).__name__}: {str(exc)}",
        exc_info=True,
        extra={
            "path": request.url.path,
            "method": request.method,
            "tenant_id": getattr(request.state, "tenant_id", None)
        }
    )

    if settings.DEBUG:
        return JSONResponse(
            status_code=500,
            content={
                "detail": str(exc),
                "type": type(exc).__name__,
            }
        )
    return JSONResponse(
        status_code=500,
        content={
            "detail": "Internal server error",
            "type": "internal_error"
        }
    )


# ============================================================================
# ROUTES
# ============================================================================

@app.get("/health", tags=["health"])
async def health_check():
    """Health check endpoint for load balancers."""
    return {
        "status": "healthy",
        "environment": settings.ENVIRONMENT,
        "version": "1.0.0"
    }


@app.get("/", tags=["root"])
async def root():
    """Root endpoint with API information."""
    return {
        "message": "Tenant Core API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health"
    }


# All routes live under /api/v1
app.include_router(auth.router, prefix="/api/v1")
app.include_router(tenant.router, prefix="/api/v1")
app.include_router(admin.router, prefix="/api/v1")


if __name__ == "__main__":
    import uvicorn

    logger.info("=" * 80)
    logger.info("Tenant Core")
    logger.info("=" * 80)
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Debug: {settings.DEBUG}")
    logger.info(f"Session backend: {settings.SESSION_BACKEND}")
    logger.info("=" * 80)

    uvicorn.run(
        "tenantcore.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower()
    )
