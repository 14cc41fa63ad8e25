"""
Tenant Middleware

Resolves which tenant a request belongs to and makes it available
throughout the request lifecycle. This is CRITICAL for multi-tenant
isolation.

Resolution order:
1. X-API-Key header (machine clients)
2. tenant_id claim of a valid Bearer JWT (logged-in users)
3. No tenant: public endpoints (register, login, ...) run without one

An unknown API key is rejected here. A missing or invalid JWT is not:
the authentication dependencies reject it on protected routes.
"""
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from typing import Optional
import logging

from app.config import get_settings
from app.database import SessionLocal
from app.core.exceptions import APIError, AuthenticationError, TenantIsolationError, error_response
from app.services.tenant_service import TenantService
from app.core.security import decode_access_token
from app.core.tenant_context import TenantContext, set_tenant_context, reset_tenant_context
from app.utils.logging import log_security_event

logger = logging.getLogger(__name__)
settings = get_settings()


class TenantMiddleware(BaseHTTPMiddleware):
    """
    Middleware to resolve and validate the tenant of a request.

    On success the TenantContext is stored in request.state.tenant and in
    the tenant ContextVar, which is reset when the request finishes.

    SECURITY: This is the first line of defense for tenant isolation.
    """

    def __init__(self, app):
        super().__init__(app)
        self.excluded_paths = [
            "/docs",
            "/redoc",
            "/openapi.json",
            "/health",
        ]

    async def dispatch(self, request: Request, call_next):
        """Process each request and inject tenant context."""
        request.state.tenant = None
        request.state.tenant_id = None

        # Skip tenant resolution for excluded paths
        if any(request.url.path.startswith(path) for path in self.excluded_paths):
            return await call_next(request)

        api_key = request.headers.get(settings.API_KEY_HEADER)
        token_tenant_id = self._extract_token_tenant_id(request)

        if not api_key and not token_tenant_id:
            # Public request, no tenant context
            return await call_next(request)

        # Middleware runs outside FastAPI's exception handlers
        try:
            ctx = await run_in_threadpool(self._resolve, request.url.path, api_key, token_tenant_id)
        except APIError as exc:
            return error_response(exc)

        if ctx is None:
            return await call_next(request)

        # Inject tenant context into request state
        request.state.tenant = ctx
        request.state.tenant_id = ctx.tenant_id

        logger.debug(f"Request for tenant: {ctx.name} ({ctx.tenant_id}) via {ctx.source}")

        token = set_tenant_context(ctx)
        try:
            return await call_next(request)
        finally:
            reset_tenant_context(token)

    def _resolve(self, path: str, api_key: Optional[str], token_tenant_id: Optional[str]) -> Optional[TenantContext]:
        """
        Look the tenant up in the master database.

        Returns None when only a JWT was given and it names an unknown
        tenant. Raises AuthenticationError or TenantIsolationError for
        requests that must be rejected.
        """
        with SessionLocal() as db:
            tenants = TenantService(db)
            if api_key:
                tenant = tenants.get_by_api_key(api_key)
                if not tenant:
                    log_security_event("invalid_api_key", {"path": path}, logger)
                    raise AuthenticationError("Invalid API key")
                source = "api_key"

                if token_tenant_id and token_tenant_id != tenant.id:
                    log_security_event(
                        "tenant_isolation_violation",
                        {
                            "tenant_id": tenant.id,
                            "token_tenant_id": token_tenant_id,
                            "path": path,
                        },
                        logger
                    )
                    raise TenantIsolationError("Token tenant mismatch")
            else:
                tenant = tenants.get_by_id(token_tenant_id)
                source = "jwt"

            if tenant is None:
                logger.warning(f"Token names unknown tenant: {token_tenant_id}")
                return None
            if not tenant.is_active:
                logger.warning(f"Inactive tenant attempted access: {tenant.id}")
                raise TenantIsolationError("Tenant account is inactive")

            return TenantContext(
                tenant_id=tenant.id,
                name=tenant.name,
                database_url=tenant.database_url,
                source=source,
            )

    def _extract_token_tenant_id(self, request: Request) -> Optional[str]:
        """tenant_id claim of a valid Bearer token, or None."""
        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return None

        payload = decode_access_token(auth_header[len("Bearer "):])
        if not payload:
            return None
        return payload.get("tenant_id")
