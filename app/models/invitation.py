"""
User Invitation Model

Invitations are tenant-scoped and live in the tenant's database.
tenant_id is still stored on every row: tenants provisioned in shared
mode keep their invitations in the master database next to each other.
"""
from sqlalchemy import Column, String, Boolean, DateTime, Index, Enum as SQLEnum
from datetime import datetime
from app.database import TenantBase
from app.models.user import UserRole
import uuid


class UserInvitation(TenantBase):
    __tablename__ = "user_invitations"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    # No foreign key: the tenants table is not present in dedicated databases
    tenant_id = Column(String(36), nullable=False, index=True)

    email = Column(String(255), nullable=False, index=True)
    role = Column(SQLEnum(UserRole), default=UserRole.USER, nullable=False)

    # sha256 of the emailed token
    token_hash = Column(String(64), nullable=False, unique=True)

    invited_by_user_id = Column(String(36), nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    is_accepted = Column(Boolean, default=False, nullable=False)
    accepted_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index('idx_invitation_tenant_email', 'tenant_id', 'email', 'is_accepted'),
    )

    def __repr__(self):
        return f"<UserInvitation {self.email} (tenant={self.tenant_id})>"

    def is_pending(self, now: datetime = None) -> bool:
        now = now or datetime.utcnow()
        return not self.is_accepted and self.expires_at > now

    def mark_accepted(self) -> None:
        self.is_accepted = True
        self.accepted_at = datetime.utcnow()
