"""Test fixtures and configuration."""

import os
import shutil
import tempfile

# Settings are read once at import time; point them at throwaway SQLite
# files before anything from app is imported.
TEST_DIR = tempfile.mkdtemp(prefix="masterbackup-tests-")
TENANT_DIR = os.path.join(TEST_DIR, "tenants")

os.environ["MASTER_DATABASE_URL"] = f"sqlite:///{os.path.join(TEST_DIR, 'master.db')}"
os.environ["TENANT_DATABASE_MODE"] = "dedicated"
os.environ["TENANT_SQLITE_DIR"] = TENANT_DIR
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["EMAIL_BACKEND"] = "memory"
os.environ["ENVIRONMENT"] = "test"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["APP_URL"] = "https://app.example.com"

from collections.abc import Callable  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from app.config import get_settings  # noqa: E402
from app.core.tenant_db import tenant_engines  # noqa: E402
from app.database import MasterBase, TenantBase, engine  # noqa: E402
from app.main import app  # noqa: E402
from app.services.email_service import EmailService, MemoryEmailBackend, get_email_service  # noqa: E402

PASSWORD = "Secur3Password"


@pytest.fixture(autouse=True)
def reset_databases():
    """Fresh master database and no tenant databases for every test."""
    tenant_engines.dispose_all()
    shutil.rmtree(TENANT_DIR, ignore_errors=True)
    TenantBase.metadata.drop_all(bind=engine)
    MasterBase.metadata.drop_all(bind=engine)
    MasterBase.metadata.create_all(bind=engine)
    TenantBase.metadata.create_all(bind=engine)
    yield
    tenant_engines.dispose_all()


@pytest.fixture
def settings():
    return get_settings()


@pytest.fixture
def shared_mode(monkeypatch, settings):
    """Provision new tenants in the master database."""
    monkeypatch.setattr(settings, "TENANT_DATABASE_MODE", "shared")


@pytest.fixture
def outbox() -> MemoryEmailBackend:
    """Capture outgoing email instead of sending it."""
    backend = MemoryEmailBackend()
    service = EmailService(backend)
    app.dependency_overrides[get_email_service] = lambda: service
    yield backend
    app.dependency_overrides.pop(get_email_service, None)


@pytest.fixture
def client(outbox) -> TestClient:
    return TestClient(app)


@pytest.fixture
def register_tenant(client) -> Callable[..., dict]:
    """Register a tenant through the API and return the response body."""

    def _register(
        email: str = "owner@acme.com",
        tenant_name: str = "Acme Corp",
        password: str = PASSWORD,
        enable_two_factor: bool = False,
    ) -> dict:
        response = client.post(
            "/api/v1/auth/register",
            json={
                "email": email,
                "password": password,
                "first_name": "Ada",
                "last_name": "Lovelace",
                "tenant_name": tenant_name,
                "enable_two_factor": enable_two_factor,
            },
        )
        assert response.status_code == 201, response.text
        return response.json()

    return _register


@pytest.fixture
def admin(register_tenant) -> dict:
    """A registered tenant with its admin's token and API key."""
    return register_tenant()


def _bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def bearer() -> Callable[[str], dict[str, str]]:
    return _bearer


@pytest.fixture
def admin_headers(admin) -> dict[str, str]:
    return _bearer(admin["token"])
