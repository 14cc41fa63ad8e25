"""
Tenant Model

The tenant is the primary isolation boundary in our multi-tenant architecture.
Each tenant represents a separate customer/organization.

ARCHITECTURAL DECISION: Database-per-tenant with a shared fallback.
- Tenants with a database_url get their own database, created at registration
- Tenants without one live in the master database, isolated by tenant_id
The tenant row itself always lives in the master database.
"""
from sqlalchemy import Column, String, Boolean, DateTime, Index
from sqlalchemy.orm import relationship
from datetime import datetime
from app.database import MasterBase
import uuid


class Tenant(MasterBase):
    __tablename__ = "tenants"

    # Using UUID for tenant IDs to avoid enumeration attacks
    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    name = Column(String(100), nullable=False)

    # API key for machine clients; resolved by TenantMiddleware
    api_key = Column(String(100), unique=True, nullable=False, index=True)

    # NULL = shared mode (tenant data lives in the master database)
    database_url = Column(String(500), nullable=True)

    is_active = Column(Boolean, default=True, nullable=False, index=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    users = relationship("ApplicationUser", back_populates="tenant", cascade="all, delete-orphan")

    __table_args__ = (
        Index('idx_tenant_active_api_key', 'is_active', 'api_key'),
    )

    def __repr__(self):
        return f"<Tenant {self.name} ({self.id})>"

    @property
    def has_dedicated_database(self) -> bool:
        return bool(self.database_url)
