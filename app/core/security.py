"""
Security Module

Handles password hashing, JWT token generation/validation and the
one-time secrets used by 2FA, password reset, invitations and API keys.
Uses industry-standard libraries (passlib with bcrypt, python-jose).

SECURITY NOTES:
- Passwords are hashed with bcrypt
- JWT tokens carry tenant_id; TenantMiddleware resolves the tenant from it
- Reset and invitation tokens are only ever stored as sha256 digests
"""
from datetime import datetime, timedelta
from typing import Optional, Dict, Any
import hashlib
import re
import secrets
import uuid

from jose import JWTError, jwt
from passlib.context import CryptContext
from app.config import get_settings

settings = get_settings()

# Password hashing context
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

PASSWORD_MIN_LENGTH = 8
PASSWORD_MAX_LENGTH = 100
TWO_FACTOR_CODE_PATTERN = re.compile(r"^\d{6}$")
API_KEY_PREFIX = "mb_"


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """
    Verify a password against its hash.

    Uses constant-time comparison to prevent timing attacks.
    """
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    """
    Hash a password using bcrypt.

    NOTE: This is intentionally slow (100ms+). Don't call it in tight loops.
    """
    return pwd_context.hash(password)


def password_policy_errors(password: str) -> list[str]:
    """Return the password rules a candidate password breaks."""
    errors = []
    if len(password) < PASSWORD_MIN_LENGTH:
        errors.append(f"Password must be at least {PASSWORD_MIN_LENGTH} characters")
    if len(password) > PASSWORD_MAX_LENGTH:
        errors.append(f"Password must not exceed {PASSWORD_MAX_LENGTH} characters")
    if not re.search(r"[A-Z]", password):
        errors.append("Password must contain at least one uppercase letter")
    if not re.search(r"[a-z]", password):
        errors.append("Password must contain at least one lowercase letter")
    if not re.search(r"[0-9]", password):
        errors.append("Password must contain at least one digit")
    return errors


def create_access_token(
    user_id: str,
    email: str,
    role: str,
    tenant_id: str,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Create a JWT access token.

    Token payload includes:
    - sub: user_id
    - email, role
    - tenant_id: used by TenantMiddleware to resolve the tenant database
    - jti: unique token id
    - iss/aud, exp, iat
    """
    now = datetime.utcnow()
    expire = now + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))

    to_encode = {
        "sub": user_id,
        "email": email,
        "role": role,
        "tenant_id": tenant_id,
        "jti": str(uuid.uuid4()),
        "iss": settings.JWT_ISSUER,
        "aud": settings.JWT_AUDIENCE,
        "iat": now,
        "exp": expire,
    }

    return jwt.encode(
        to_encode,
        settings.SECRET_KEY,
        algorithm=settings.ALGORITHM
    )


def decode_access_token(token: str) -> Optional[Dict[str, Any]]:
    """
    Decode and verify a JWT token.

    Returns the payload if valid, None if invalid/expired.
    Signature, expiration, issuer and audience are all verified.
    """
    try:
        return jwt.decode(
            token,
            settings.SECRET_KEY,
            algorithms=[settings.ALGORITHM],
            audience=settings.JWT_AUDIENCE,
            issuer=settings.JWT_ISSUER,
        )
    except JWTError:
        # Token invalid, expired, or tampered with
        return None


def verify_token_tenant(token_payload: Dict[str, Any], expected_tenant_id: str) -> bool:
    """Check that the token's tenant_id matches the tenant resolved for the request."""
    return token_payload.get("tenant_id") == expected_tenant_id


def generate_two_factor_code() -> str:
    """Six decimal digits, never with a leading zero."""
    return str(100000 + secrets.randbelow(900000))


def is_valid_two_factor_code_format(code: Optional[str]) -> bool:
    return bool(code) and TWO_FACTOR_CODE_PATTERN.match(code) is not None


def generate_secure_token() -> str:
    """32 random bytes, URL-safe. Used for password reset and invitations."""
    return secrets.token_urlsafe(32)


def generate_api_key() -> str:
    return API_KEY_PREFIX + secrets.token_urlsafe(30)


def hash_token(token: str) -> str:
    """Digest stored in place of a one-time token."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def constant_time_equals(a: Optional[str], b: Optional[str]) -> bool:
    if a is None or b is None:
        return False
    return secrets.compare_digest(a, b)
