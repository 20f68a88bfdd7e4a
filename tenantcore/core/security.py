"""
Security Module

Handles password hashing and session token signing.
Uses industry-standard libraries (passlib with bcrypt, python-jose).

SECURITY NOTES:
- Passwords are hashed with bcrypt
- The bearer token only names a server-side session; logout and idle
  expiry delete that session, which invalidates the token immediately
- Token payload carries no tenant or role data
"""
from datetime import datetime, timedelta
from typing import Optional, Dict, Any
from jose import JWTError, jwt
from passlib.context import CryptContext
from tenantcore.config import get_settings
import logging

logger = logging.getLogger(__name__)

settings = get_settings()

# Using bcrypt with default rounds (12)
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """
    Verify a password against its hash.

    Uses constant-time comparison to prevent timing attacks.

    Fails closed: a malformed hash, an unknown scheme or a backend error
    counts as a mismatch instead of propagating and skipping the check.
    """
    if not plain_password or not hashed_password:
        return False
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except Exception as e:
        logger.warning(f"Password verification error treated as mismatch: {type(e).__name__}")
        return False


def get_password_hash(password: str) -> str:
    """
    Hash a password using bcrypt.

    NOTE: This is intentionally slow (100ms+). Don't call it in hot paths.
    """
    return pwd_context.hash(password)


def create_session_token(user_id: str, session_id: str, expires_delta: Optional[timedelta] = None) -> str:
    """
    Create the signed bearer token handed to the client at login.

    Payload:
    - sub: user_id
    - sid: server-side session id
    - exp: absolute lifetime (the idle window is enforced by the session store)
    - iat: issued at
    """
    now = datetime.utcnow()
    expire = now + (expires_delta or timedelta(hours=settings.SESSION_MAX_AGE_HOURS))

    to_encode = {
        "sub": user_id,
        "sid": session_id,
        "exp": expire,
        "iat": now,
    }
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_session_token(token: str) -> Optional[Dict[str, Any]]:
    """
    Decode and verify a session token.

    Returns the payload if valid, None if invalid, expired or tampered with.
    """
    try:
        payload = jwt.decode(
            token,
            settings.SECRET_KEY,
            algorithms=[settings.ALGORITHM]
        )
    except JWTError:
        return None

    if not payload.get("sub") or not payload.get("sid"):
        return None
    return payload
