"""
Permission System (RBAC)

Implements role-based access control with a simple hierarchy:
Admin > Manager > User.

Role checks are done against the user loaded from the master database,
not against the role claim in the JWT, so a demotion takes effect on
the next request.
"""
from fastapi import status

from app.core.exceptions import APIError
from app.models.user import ApplicationUser, UserRole


class PermissionDenied(APIError):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = "Permission denied"
    error_type = "permission_denied"


def require_role(user: ApplicationUser, required_role: UserRole) -> None:
    """
    Check if user has required role level.

    Raises PermissionDenied if user doesn't have sufficient permissions.
    """
    if not user.has_permission(required_role):
        raise PermissionDenied(
            detail=f"This action requires {required_role.value} role or higher"
        )


def require_admin(user: ApplicationUser) -> None:
    """Shorthand for requiring admin role."""
    require_role(user, UserRole.ADMIN)


def can_view_user(current_user: ApplicationUser, target_user: ApplicationUser) -> bool:
    """
    Users may see anyone in their own tenant.

    Cross-tenant reads are refused here as well as by the query filter.
    """
    return current_user.tenant_id == target_user.tenant_id
