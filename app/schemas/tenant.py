"""
Tenant Schemas
"""
from pydantic import BaseModel
from datetime import datetime


class TenantResponse(BaseModel):
    """
    Tenant details visible to its own members.

    The API key is only returned at registration and when rotated.
    """
    id: str
    name: str
    is_active: bool
    has_dedicated_database: bool
    created_at: datetime

    class Config:
        from_attributes = True


class ApiKeyResponse(BaseModel):
    tenant_id: str
    api_key: str
