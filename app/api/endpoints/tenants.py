"""
Tenant Endpoints

Read the current tenant and rotate its API key.
"""
from fastapi import APIRouter, Depends

from app.models.tenant import Tenant
from app.models.user import ApplicationUser
from app.schemas.tenant import ApiKeyResponse, TenantResponse
from app.api.deps import get_tenant_record, get_tenant_service, require_admin
from app.services.tenant_service import TenantService

router = APIRouter(prefix="/tenants", tags=["tenants"])


@router.get("/current", response_model=TenantResponse)
def get_current_tenant_info(tenant: Tenant = Depends(get_tenant_record)):
    """Works with either the tenant's API key or a user's bearer token."""
    return tenant


@router.post("/current/api-key", response_model=ApiKeyResponse)
def rotate_api_key(
    current_user: ApplicationUser = Depends(require_admin),
    tenant: Tenant = Depends(get_tenant_record),
    tenants: TenantService = Depends(get_tenant_service)
):
    """
    Issue a new API key. The old key stops working immediately.

    Requires admin role.
    """
    api_key = tenants.rotate_api_key(tenant)
    return ApiKeyResponse(tenant_id=tenant.id, api_key=api_key)
