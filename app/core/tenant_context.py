"""
Request-scoped tenant context.

TenantMiddleware resolves the tenant for a request and stores it here.
A ContextVar rather than a thread-local: async handlers share threads,
and each request runs in its own context copy.

Usage:
    # In middleware
    token = set_tenant_context(ctx)
    try:
        ...
    finally:
        reset_tenant_context(token)

    # In services or background work
    with tenant_context(ctx):
        database_url = get_current_database_url()
"""
from contextvars import ContextVar, Token
from contextlib import contextmanager
from typing import NamedTuple, Optional


class TenantContext(NamedTuple):
    """Immutable snapshot of the tenant a request operates on."""

    tenant_id: str
    name: str
    database_url: Optional[str]  # None = shared master database
    source: str  # "api_key" or "jwt"

    @property
    def is_shared(self) -> bool:
        return self.database_url is None


# None means no tenant context (public endpoints, system operations)
_current_tenant: ContextVar[Optional[TenantContext]] = ContextVar(
    "current_tenant",
    default=None,
)


def get_current_tenant() -> Optional[TenantContext]:
    return _current_tenant.get()


def get_current_tenant_id() -> Optional[str]:
    ctx = _current_tenant.get()
    return ctx.tenant_id if ctx else None


def get_current_database_url() -> Optional[str]:
    """
    Get the database URL for the current tenant.

    Returns None both for shared tenants and when no context is set;
    either way the master database is the right target.
    """
    ctx = _current_tenant.get()
    return ctx.database_url if ctx else None


def set_tenant_context(ctx: TenantContext) -> Token:
    """Set the current tenant. Keep the returned token for reset_tenant_context."""
    return _current_tenant.set(ctx)


def reset_tenant_context(token: Token) -> None:
    _current_tenant.reset(token)


@contextmanager
def tenant_context(ctx: TenantContext):
    """
    Scope a block to a tenant.

    Restores the previous context on exit, even on exception.
    """
    token = _current_tenant.set(ctx)
    try:
        yield ctx
    finally:
        _current_tenant.reset(token)


@contextmanager
def system_context():
    """
    Temporarily clear the tenant context.

    Used for cross-tenant work such as searching every tenant database
    for an invitation token.
    """
    token = _current_tenant.set(None)
    try:
        yield
    finally:
        _current_tenant.reset(token)
