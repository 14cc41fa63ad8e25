"""Tests for tenant resolution: API key first, then the JWT claim, then none."""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.core.tenant_context import get_current_tenant
from app.database import SessionLocal
from app.middleware.tenant import TenantMiddleware
from app.models.tenant import Tenant


@pytest.fixture
def echo_client():
    """Bare app that reports the tenant context its route sees."""
    echo_app = FastAPI()
    echo_app.add_middleware(TenantMiddleware)

    @echo_app.get("/whoami")
    def read_context():
        ctx = get_current_tenant()
        if ctx is None:
            return {"tenant_id": None, "source": None}
        return {"tenant_id": ctx.tenant_id, "source": ctx.source}

    @echo_app.get("/health")
    def health():
        return {"tenant_id": getattr(get_current_tenant(), "tenant_id", None)}

    return TestClient(echo_app)


def _deactivate(tenant_id: str) -> None:
    with SessionLocal() as db:
        db.query(Tenant).filter(Tenant.id == tenant_id).update({"is_active": False})
        db.commit()


def test_no_credentials_means_no_tenant(echo_client):
    response = echo_client.get("/whoami")

    assert response.status_code == 200
    assert response.json() == {"tenant_id": None, "source": None}


def test_api_key_resolves_tenant(echo_client, admin):
    response = echo_client.get("/whoami", headers={"X-API-Key": admin["api_key"]})

    assert response.json() == {"tenant_id": admin["tenant_id"], "source": "api_key"}


def test_jwt_claim_resolves_tenant(echo_client, admin, admin_headers):
    response = echo_client.get("/whoami", headers=admin_headers)

    assert response.json() == {"tenant_id": admin["tenant_id"], "source": "jwt"}


def test_api_key_takes_precedence_over_matching_jwt(echo_client, admin, admin_headers):
    headers = {**admin_headers, "X-API-Key": admin["api_key"]}

    response = echo_client.get("/whoami", headers=headers)

    assert response.json()["source"] == "api_key"


def test_unknown_api_key_is_rejected(echo_client):
    response = echo_client.get("/whoami", headers={"X-API-Key": "mb_unknown"})

    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid API key"
    assert response.json()["type"] == "authentication_error"


def test_invalid_jwt_resolves_no_tenant(echo_client):
    response = echo_client.get("/whoami", headers={"Authorization": "Bearer not-a-jwt"})

    assert response.status_code == 200
    assert response.json()["tenant_id"] is None


def test_api_key_and_jwt_from_different_tenants_is_rejected(echo_client, register_tenant, bearer):
    acme = register_tenant(email="owner@acme.com", tenant_name="Acme")
    globex = register_tenant(email="owner@globex.com", tenant_name="Globex")

    headers = {**bearer(globex["token"]), "X-API-Key": acme["api_key"]}
    response = echo_client.get("/whoami", headers=headers)

    assert response.status_code == 403
    assert response.json()["detail"] == "Token tenant mismatch"
    assert response.json()["type"] == "tenant_isolation_error"


def test_inactive_tenant_is_rejected_by_api_key(echo_client, admin):
    _deactivate(admin["tenant_id"])

    response = echo_client.get("/whoami", headers={"X-API-Key": admin["api_key"]})

    assert response.status_code == 403
    assert response.json()["detail"] == "Tenant account is inactive"


def test_inactive_tenant_is_rejected_by_jwt(echo_client, admin, admin_headers):
    _deactivate(admin["tenant_id"])

    response = echo_client.get("/whoami", headers=admin_headers)

    assert response.status_code == 403


def test_excluded_paths_skip_resolution(echo_client):
    response = echo_client.get("/health", headers={"X-API-Key": "mb_unknown"})

    assert response.status_code == 200
    assert response.json() == {"tenant_id": None}


def test_context_does_not_leak_after_request(echo_client, admin):
    echo_client.get("/whoami", headers={"X-API-Key": admin["api_key"]})

    assert get_current_tenant() is None
    assert echo_client.get("/whoami").json()["tenant_id"] is None


def test_protected_route_without_tenant_is_forbidden(client):
    response = client.get("/api/v1/tenants/current")

    assert response.status_code == 403
    assert response.json()["detail"] == "Tenant context not available"


def test_current_tenant_by_api_key(client, admin):
    response = client.get("/api/v1/tenants/current", headers={"X-API-Key": admin["api_key"]})

    assert response.status_code == 200
    body = response.json()
    assert body["id"] == admin["tenant_id"]
    assert body["name"] == "Acme Corp"
    assert body["has_dedicated_database"] is True
    assert "api_key" not in body


def test_token_from_other_tenant_cannot_use_api_key_of_another(client, register_tenant, bearer):
    acme = register_tenant(email="owner@acme.com", tenant_name="Acme")
    globex = register_tenant(email="owner@globex.com", tenant_name="Globex")

    headers = {**bearer(globex["token"]), "X-API-Key": acme["api_key"]}
    response = client.get("/api/v1/auth/me", headers=headers)

    assert response.status_code == 403
