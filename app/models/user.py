"""
User Model

Users belong to a tenant and have role-based access control.

Accounts live in the master database so that login, 2FA and password
recovery can find a user by email without knowing the tenant first.
Email addresses are therefore unique across all tenants.
"""
from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey, Index, Enum as SQLEnum
from sqlalchemy.orm import relationship
from datetime import datetime
from app.database import MasterBase
import uuid
import enum


class UserRole(str, enum.Enum):
    """
    User roles for RBAC.

    ADMIN: Full access to the tenant, can invite users and rotate API keys
    MANAGER: Elevated access to tenant data
    USER: Standard access
    """
    ADMIN = "Admin"
    MANAGER = "Manager"
    USER = "User"


ROLE_HIERARCHY = {
    UserRole.USER: 1,
    UserRole.MANAGER: 2,
    UserRole.ADMIN: 3,
}


class ApplicationUser(MasterBase):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    # Every user belongs to exactly one tenant
    tenant_id = Column(
        String(36),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    # Stored lower-cased; unique across all tenants
    email = Column(String(255), nullable=False, unique=True, index=True)
    hashed_password = Column(String(255), nullable=False)
    first_name = Column(String(100), nullable=False, default="")
    last_name = Column(String(100), nullable=False, default="")

    role = Column(
        SQLEnum(UserRole),
        default=UserRole.USER,
        nullable=False,
        index=True
    )

    # Two-factor authentication by emailed code
    two_factor_enabled = Column(Boolean, default=False, nullable=False)
    two_factor_code = Column(String(6), nullable=True)
    two_factor_code_expires = Column(DateTime, nullable=True)

    # Password reset; only the sha256 of the emailed token is kept
    password_reset_token_hash = Column(String(64), nullable=True, index=True)
    password_reset_expires = Column(DateTime, nullable=True)

    is_active = Column(Boolean, default=True, nullable=False, index=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
    last_login_at = Column(DateTime, nullable=True)

    tenant = relationship("Tenant", back_populates="users")

    __table_args__ = (
        # Common query: active users in a tenant
        Index('idx_user_tenant_active', 'tenant_id', 'is_active'),
    )

    def __repr__(self):
        return f"<ApplicationUser {self.email} (tenant={self.tenant_id})>"

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def has_permission(self, required_role: UserRole) -> bool:
        """
        Check if user has required permission level.

        Simple hierarchy: ADMIN > MANAGER > USER
        """
        return ROLE_HIERARCHY[self.role] >= ROLE_HIERARCHY[required_role]

    def clear_two_factor_code(self) -> None:
        self.two_factor_code = None
        self.two_factor_code_expires = None

    def clear_password_reset(self) -> None:
        self.password_reset_token_hash = None
        self.password_reset_expires = None
