"""Tests for registration, login and the authenticated account endpoints."""

from pathlib import Path

import pytest
from sqlalchemy import inspect

from app.core.exceptions import TenantProvisioningError
from app.core.tenant_db import tenant_engines
from app.database import SessionLocal
from app.models.tenant import Tenant
from app.models.user import ApplicationUser, UserRole
from app.services.auth_service import AuthService
from app.services.tenant_service import TenantService

PASSWORD = "Secur3Password"


def _login(client, email="owner@acme.com", password=PASSWORD, **extra):
    return client.post("/api/v1/auth/login", json={"email": email, "password": password, **extra})


# ----------------------------------------------------------------------
# Registration
# ----------------------------------------------------------------------

def test_register_creates_tenant_admin_and_dedicated_database(admin, outbox):
    assert admin["success"] is True
    assert admin["token"]
    assert admin["api_key"].startswith("mb_")
    assert admin["user"]["role"] == "Admin"
    assert admin["user"]["email"] == "owner@acme.com"

    with SessionLocal() as db:
        tenant = db.get(Tenant, admin["tenant_id"])
        user = db.query(ApplicationUser).filter(ApplicationUser.email == "owner@acme.com").one()

    assert tenant.name == "Acme Corp"
    assert tenant.api_key == admin["api_key"]
    assert tenant.database_url.startswith("sqlite:///")
    assert Path(tenant.database_url[len("sqlite:///"):]).exists()
    assert user.tenant_id == tenant.id
    assert user.role == UserRole.ADMIN

    # Tenant schema was created in the new database
    tables = inspect(tenant_engines.get_engine(tenant.database_url)).get_table_names()
    assert "user_invitations" in tables
    assert "users" not in tables

    assert outbox.last_to("owner@acme.com").subject == "Welcome to MasterBackup!"


def test_register_in_shared_mode_uses_master_database(shared_mode, register_tenant):
    body = register_tenant()

    with SessionLocal() as db:
        tenant = db.get(Tenant, body["tenant_id"])

    assert tenant.database_url is None
    assert not tenant.has_dedicated_database


def test_register_normalizes_email(register_tenant):
    body = register_tenant(email="Owner@ACME.com")

    assert body["user"]["email"] == "owner@acme.com"


def test_register_duplicate_email_is_rejected(client, admin):
    response = client.post(
        "/api/v1/auth/register",
        json={
            "email": "OWNER@acme.com",
            "password": PASSWORD,
            "first_name": "Grace",
            "last_name": "Hopper",
            "tenant_name": "Other Corp",
        },
    )

    assert response.status_code == 409
    assert response.json()["detail"] == "Email already registered"
    assert response.json()["type"] == "duplicate_resource"


def test_register_racing_the_same_email_returns_conflict(client, admin, monkeypatch):
    # The first account is committed after the second request passed its existence check
    monkeypatch.setattr(AuthService, "email_exists", lambda self, email: False)

    response = client.post(
        "/api/v1/auth/register",
        json={
            "email": "owner@acme.com",
            "password": PASSWORD,
            "first_name": "Grace",
            "last_name": "Hopper",
            "tenant_name": "Other Corp",
        },
    )

    assert response.status_code == 409
    assert response.json()["type"] == "duplicate_resource"
    with SessionLocal() as db:
        assert db.query(Tenant).count() == 1


@pytest.mark.parametrize("password", ["short1A", "nouppercase1", "NOLOWERCASE1", "NoDigitsHere"])
def test_register_rejects_weak_passwords(client, password):
    response = client.post(
        "/api/v1/auth/register",
        json={
            "email": "owner@acme.com",
            "password": password,
            "first_name": "Ada",
            "last_name": "Lovelace",
            "tenant_name": "Acme Corp",
        },
    )

    assert response.status_code == 422


def test_failed_provisioning_persists_nothing(client, monkeypatch):
    def fail(self, tenant_id, tenant_name):
        raise TenantProvisioningError()

    monkeypatch.setattr(TenantService, "create_tenant_database", fail)

    response = client.post(
        "/api/v1/auth/register",
        json={
            "email": "owner@acme.com",
            "password": PASSWORD,
            "first_name": "Ada",
            "last_name": "Lovelace",
            "tenant_name": "Acme Corp",
        },
    )

    assert response.status_code == 500
    assert response.json()["detail"] == "An error occurred during registration"
    assert response.json()["type"] == "provisioning_error"
    with SessionLocal() as db:
        assert db.query(Tenant).count() == 0
        assert db.query(ApplicationUser).count() == 0


# ----------------------------------------------------------------------
# Email validation and login
# ----------------------------------------------------------------------

def test_validate_email_for_known_and_unknown_addresses(client, admin):
    known = client.post("/api/v1/auth/validate-email", json={"email": "owner@acme.com"}).json()
    unknown = client.post("/api/v1/auth/validate-email", json={"email": "nobody@acme.com"}).json()

    assert known == {
        "exists": True,
        "two_factor_enabled": False,
        "first_name": "Ada",
        "last_name": "Lovelace",
    }
    assert unknown["exists"] is False


def test_login_returns_token_for_tenant(client, admin):
    response = _login(client)

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["token"]
    assert body["tenant_id"] == admin["tenant_id"]
    assert body["two_factor_required"] is False
    assert body["api_key"] is None

    with SessionLocal() as db:
        user = db.query(ApplicationUser).filter(ApplicationUser.email == "owner@acme.com").one()
    assert user.last_login_at is not None


def test_login_is_case_insensitive_on_email(client, admin):
    assert _login(client, email="Owner@Acme.COM").status_code == 200


@pytest.mark.parametrize(
    "email,password",
    [("owner@acme.com", "Wr0ngPassword"), ("nobody@acme.com", PASSWORD)],
)
def test_login_with_bad_credentials(client, admin, email, password):
    response = _login(client, email=email, password=password)

    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid credentials"


def test_login_inactive_user(client, admin):
    with SessionLocal() as db:
        db.query(ApplicationUser).update({"is_active": False})
        db.commit()

    assert _login(client).status_code == 401


def test_login_inactive_tenant(client, admin):
    with SessionLocal() as db:
        db.query(Tenant).filter(Tenant.id == admin["tenant_id"]).update({"is_active": False})
        db.commit()

    response = _login(client)

    assert response.status_code == 401
    assert response.json()["detail"] == "Tenant account is inactive"


# ----------------------------------------------------------------------
# Authenticated account endpoints
# ----------------------------------------------------------------------

def test_me_returns_token_claims(client, admin, admin_headers):
    response = client.get("/api/v1/auth/me", headers=admin_headers)

    assert response.status_code == 200
    assert response.json() == {
        "user_id": admin["user"]["id"],
        "email": "owner@acme.com",
        "role": "Admin",
        "tenant_id": admin["tenant_id"],
        "two_factor_enabled": False,
    }


def test_me_requires_token(client):
    assert client.get("/api/v1/auth/me").status_code == 401


def test_me_rejects_invalid_token(client):
    response = client.get("/api/v1/auth/me", headers={"Authorization": "Bearer garbage"})

    assert response.status_code == 401
    assert response.json()["type"] == "authentication_error"


def test_api_key_alone_does_not_authenticate_a_user(client, admin):
    response = client.get("/api/v1/auth/me", headers={"X-API-Key": admin["api_key"]})

    assert response.status_code == 401


def test_enable_and_disable_two_factor(client, admin_headers):
    enabled = client.post("/api/v1/auth/enable-2fa", headers=admin_headers)
    assert enabled.status_code == 200
    assert client.get("/api/v1/auth/me", headers=admin_headers).json()["two_factor_enabled"] is True

    disabled = client.post("/api/v1/auth/disable-2fa", headers=admin_headers)
    assert disabled.status_code == 200
    assert client.get("/api/v1/auth/me", headers=admin_headers).json()["two_factor_enabled"] is False


def test_rotate_api_key(client, admin, admin_headers):
    response = client.post("/api/v1/tenants/current/api-key", headers=admin_headers)

    assert response.status_code == 200
    new_key = response.json()["api_key"]
    assert new_key != admin["api_key"]

    old = client.get("/api/v1/tenants/current", headers={"X-API-Key": admin["api_key"]})
    new = client.get("/api/v1/tenants/current", headers={"X-API-Key": new_key})
    assert old.status_code == 401
    assert new.status_code == 200


def test_health_and_root(client):
    assert client.get("/health").json()["status"] == "healthy"
    assert client.get("/").json()["message"] == "MasterBackup API"
