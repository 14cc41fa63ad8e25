"""
Custom Exceptions

Domain errors raised by services and dependencies. They are
HTTPExceptions, so FastAPI turns them into responses without any
per-route handling.
"""
from typing import Dict, Optional

from fastapi import HTTPException, status
from fastapi.responses import JSONResponse


class APIError(HTTPException):
    """HTTPException with a per-class status code and default message."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Bad request"
    # "type" field of the JSON error body
    error_type = "bad_request"
    headers: Optional[Dict[str, str]] = None

    def __init__(self, detail: str = None):
        super().__init__(
            status_code=type(self).status_code,
            detail=detail or self.default_detail,
            headers=type(self).headers,
        )


class NotFoundError(APIError):
    """Lookup by id, email or token found nothing."""

    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "Not found"
    error_type = "not_found"


class TenantNotFoundError(NotFoundError):
    def __init__(self, tenant_id: str = ""):
        super().__init__(f"Tenant not found: {tenant_id}" if tenant_id else "Tenant not found")


class UserNotFoundError(NotFoundError):
    def __init__(self, user_id: str = ""):
        super().__init__(f"User not found: {user_id}" if user_id else "User not found")


class AuthenticationError(APIError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_detail = "Could not validate credentials"
    error_type = "authentication_error"
    headers = {"WWW-Authenticate": "Bearer"}


class TenantIsolationError(APIError):
    """
    A request tried to reach data of a tenant other than its own.

    This is a CRITICAL security error and is logged as such.
    """

    status_code = status.HTTP_403_FORBIDDEN
    default_detail = "Tenant isolation violation"
    error_type = "tenant_isolation_error"


class InvalidInputError(APIError):
    default_detail = "Invalid input"
    error_type = "invalid_input"


class DuplicateResourceError(APIError):
    """A unique value (email, pending invitation) already exists."""

    status_code = status.HTTP_409_CONFLICT
    default_detail = "Resource already exists"
    error_type = "duplicate_resource"


class RateLimitExceeded(APIError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    default_detail = "Rate limit exceeded. Please try again later."
    error_type = "rate_limit_exceeded"

    def __init__(self, retry_after: int = 60):
        super().__init__()
        self.retry_after = retry_after
        self.headers = {"Retry-After": str(retry_after)}


class TenantProvisioningError(APIError):
    """
    A tenant database could not be created or registered.

    The cause is logged where it happens; clients get a generic message.
    """

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = "An error occurred during registration"
    error_type = "provisioning_error"


def error_response(exc: APIError, **extra) -> JSONResponse:
    """
    JSON body for a domain error: {"detail", "type"} plus any extra fields.

    Used by the app-level handler and by middleware, which runs outside
    FastAPI's exception handling and has to build its responses itself.
    """
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "type": exc.error_type, **extra},
        headers=exc.headers or {},
    )
