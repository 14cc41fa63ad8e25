"""
User Management Endpoints

Users and invitations of the current tenant.
All operations are scoped to the current tenant (enforced by middleware).

RBAC:
- List users / get user: All authenticated users
- Invite user / list invitations: Admin only
"""
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import Optional

from app.database import get_db
from app.models.tenant import Tenant
from app.models.user import ApplicationUser, UserRole
from app.schemas.auth import MessageResponse
from app.schemas.user import (
    InvitationListResponse,
    InviteUserRequest,
    UserListResponse,
    UserResponse,
)
from app.api.deps import (
    get_current_tenant,
    get_current_user,
    get_invitation_service,
    get_tenant_db,
    get_tenant_record,
    require_admin,
)
from app.core.exceptions import UserNotFoundError
from app.core.permissions import can_view_user
from app.core.tenant_context import TenantContext
from app.services.invitation_service import InvitationService
from app.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/users", tags=["users"])


@router.post("/invite", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
def invite_user(
    request: InviteUserRequest,
    current_user: ApplicationUser = Depends(require_admin),
    tenant: Tenant = Depends(get_tenant_record),
    invitations: InvitationService = Depends(get_invitation_service)
):
    """
    Invite a user into the current tenant.

    Requires admin role. The invitation link is emailed and expires
    after a week.
    """
    invitations.invite_user(tenant, current_user, request.email, request.role)
    return MessageResponse(message="Invitation sent successfully")


@router.get("/invitations", response_model=InvitationListResponse)
def list_invitations(
    include_accepted: bool = False,
    current_user: ApplicationUser = Depends(require_admin),
    tenant: TenantContext = Depends(get_current_tenant),
    tenant_db: Session = Depends(get_tenant_db),
    invitations: InvitationService = Depends(get_invitation_service)
):
    items = invitations.list_invitations(tenant.tenant_id, tenant_db, include_accepted)
    return InvitationListResponse(invitations=items, total=len(items))


@router.get("", response_model=UserListResponse)
def list_users(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    role: Optional[UserRole] = Query(None),
    is_active: Optional[bool] = Query(None),
    current_user: ApplicationUser = Depends(get_current_user),
    tenant: TenantContext = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    """
    List users in current tenant.

    Supports filtering by role and active status.

    TENANT_ISOLATION: Automatically filtered by current tenant.
    """
    # Build query with tenant filter (CRITICAL for isolation)
    query = db.query(ApplicationUser).filter(ApplicationUser.tenant_id == tenant.tenant_id)

    if role:
        query = query.filter(ApplicationUser.role == role)
    if is_active is not None:
        query = query.filter(ApplicationUser.is_active == is_active)

    total = query.count()

    offset = (page - 1) * page_size
    users = query.order_by(ApplicationUser.created_at).offset(offset).limit(page_size).all()

    logger.debug(f"Listed {len(users)} users for tenant {tenant.tenant_id}")

    return UserListResponse(
        users=users,
        total=total,
        page=page,
        page_size=page_size
    )


@router.get("/{user_id}", response_model=UserResponse)
def get_user(
    user_id: str,
    current_user: ApplicationUser = Depends(get_current_user),
    tenant: TenantContext = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    """
    Get user by ID.

    TENANT_ISOLATION: Can only access users in same tenant.
    """
    user = db.query(ApplicationUser).filter(
        ApplicationUser.id == user_id,
        ApplicationUser.tenant_id == tenant.tenant_id  # CRITICAL: Tenant isolation
    ).first()

    if not user or not can_view_user(current_user, user):
        raise UserNotFoundError(user_id)

    return user
