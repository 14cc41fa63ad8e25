"""
Database Models

Master models (Tenant, ApplicationUser) live in the master database.
Tenant models (UserInvitation) live in each tenant's database.
"""
from app.models.tenant import Tenant
from app.models.user import ApplicationUser, UserRole
from app.models.invitation import UserInvitation

__all__ = ["Tenant", "ApplicationUser", "UserRole", "UserInvitation"]
