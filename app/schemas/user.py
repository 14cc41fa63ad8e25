"""
User Schemas

Request/response models for user and invitation operations.
"""
from pydantic import AfterValidator, BaseModel, EmailStr
from typing import Annotated, Optional
from datetime import datetime
from app.models.user import UserRole


class InviteUserRequest(BaseModel):
    """Invite someone into the caller's tenant."""
    email: Annotated[EmailStr, AfterValidator(lambda value: value.strip().lower())]
    role: UserRole = UserRole.USER


class UserResponse(BaseModel):
    """User response schema (excludes sensitive data)."""
    id: str
    tenant_id: str
    email: str
    first_name: str
    last_name: str
    role: UserRole
    is_active: bool
    two_factor_enabled: bool
    created_at: datetime
    last_login_at: Optional[datetime] = None

    class Config:
        from_attributes = True  # Allows creating from ORM models


class UserListResponse(BaseModel):
    """Paginated list of users."""
    users: list[UserResponse]
    total: int
    page: int
    page_size: int


class InvitationResponse(BaseModel):
    id: str
    email: str
    role: UserRole
    invited_by_user_id: str
    created_at: datetime
    expires_at: datetime
    is_accepted: bool
    accepted_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class InvitationListResponse(BaseModel):
    invitations: list[InvitationResponse]
    total: int
