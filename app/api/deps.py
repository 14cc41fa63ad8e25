"""
API Dependencies

Reusable FastAPI dependencies for authentication, authorization and
tenant-scoped database access.

PATTERN: FastAPI's dependency injection system is powerful and clean.
Dependencies can be composed and reused easily.
"""
from typing import Iterator
from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from app.database import get_db
from app.models.user import ApplicationUser, UserRole
from app.models.tenant import Tenant
from app.core.security import decode_access_token, verify_token_tenant
from app.core.exceptions import AuthenticationError, TenantIsolationError
from app.core.permissions import require_role
from app.core.tenant_context import TenantContext
from app.core.tenant_db import tenant_engines
from app.services.auth_service import AuthService
from app.services.email_service import EmailService, get_email_service
from app.services.invitation_service import InvitationService
from app.services.tenant_service import TenantService
from app.utils.logging import get_logger, log_security_event

logger = get_logger(__name__)

# auto_error=False: a missing header becomes our 401 instead of FastAPI's 403
security = HTTPBearer(auto_error=False)


def get_current_tenant(request: Request) -> TenantContext:
    """
    Get the tenant context resolved by TenantMiddleware.

    CRITICAL: This is a key part of tenant isolation.
    """
    tenant = getattr(request.state, "tenant", None)
    if not tenant:
        logger.warning(f"No tenant context for {request.url.path}")
        raise TenantIsolationError("Tenant context not available")
    return tenant


def get_tenant_record(
    ctx: TenantContext = Depends(get_current_tenant),
    db: Session = Depends(get_db)
) -> Tenant:
    """The tenant row behind the request's context."""
    return get_tenant_service(db).get_active_tenant(ctx.tenant_id)


def get_tenant_db(ctx: TenantContext = Depends(get_current_tenant)) -> Iterator[Session]:
    """
    Session on the current tenant's database.

    Shared tenants get a master database session; queries must still
    filter on tenant_id.
    """
    with tenant_engines.session_scope(ctx.database_url) as session:
        yield session


def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db)
) -> ApplicationUser:
    """
    Get current authenticated user.

    This dependency:
    1. Validates JWT token (before the tenant check, so bad tokens get 401)
    2. Verifies the token's tenant matches the request tenant (CRITICAL)
    3. Loads user from the master database
    4. Checks user is active
    """
    if credentials is None:
        raise AuthenticationError("Not authenticated")

    payload = decode_access_token(credentials.credentials)
    if not payload:
        raise AuthenticationError("Invalid or expired token")

    user_id = payload.get("sub")
    token_tenant_id = payload.get("tenant_id")

    if not user_id:
        raise AuthenticationError("Invalid token payload")

    tenant = get_current_tenant(request)

    # A valid token from one tenant must not be usable against another
    if not verify_token_tenant(payload, tenant.tenant_id):
        log_security_event(
            "tenant_isolation_violation",
            {"user_id": user_id, "token_tenant_id": token_tenant_id, "tenant_id": tenant.tenant_id},
            logger
        )
        raise TenantIsolationError("Token tenant mismatch")

    user = db.query(ApplicationUser).filter(
        ApplicationUser.id == user_id,
        ApplicationUser.tenant_id == tenant.tenant_id  # Double-check tenant isolation
    ).first()

    if not user:
        logger.warning(f"User not found: {user_id} in tenant {tenant.tenant_id}")
        raise AuthenticationError("User not found")

    if not user.is_active:
        raise AuthenticationError("User account is inactive")

    return user


def require_admin(
    current_user: ApplicationUser = Depends(get_current_user)
) -> ApplicationUser:
    """
    Require admin role.

    Use this dependency for admin-only endpoints.
    """
    require_role(current_user, UserRole.ADMIN)
    return current_user


def get_tenant_service(db: Session = Depends(get_db)) -> TenantService:
    return TenantService(db)


def get_auth_service(
    db: Session = Depends(get_db),
    email_service: EmailService = Depends(get_email_service)
) -> AuthService:
    return AuthService(db, email_service)


def get_invitation_service(
    db: Session = Depends(get_db),
    email_service: EmailService = Depends(get_email_service)
) -> InvitationService:
    return InvitationService(db, email_service)
