"""Tests for inviting users into a tenant and accepting invitations."""

from datetime import datetime, timedelta

import pytest

from app.core.security import hash_token
from app.core.tenant_db import tenant_engines
from app.database import SessionLocal
from app.models.invitation import UserInvitation
from app.models.tenant import Tenant
from app.models.user import ApplicationUser
from app.services.invitation_service import InvitationService

INVITEE = "grace@acme.com"
INVITEE_PASSWORD = "Inv1tedPassword"


def _invite(client, headers, email=INVITEE, role="User"):
    return client.post("/api/v1/users/invite", json={"email": email, "role": role}, headers=headers)


def _accept(client, token, password=INVITEE_PASSWORD):
    return client.post(
        "/api/v1/auth/accept-invitation",
        json={
            "token": token,
            "password": password,
            "first_name": "Grace",
            "last_name": "Hopper",
        },
    )


def _tenant_database_url(tenant_id):
    with SessionLocal() as db:
        return db.get(Tenant, tenant_id).database_url


def test_admin_invites_user(client, outbox, admin, admin_headers):
    response = _invite(client, admin_headers, role="Manager")

    assert response.status_code == 201
    assert response.json()["success"] is True

    message = outbox.last_to(INVITEE)
    assert message.context["inviter"] == "Ada Lovelace"
    assert message.context["url"].startswith("https://app.example.com/accept-invitation?token=")

    listed = client.get("/api/v1/users/invitations", headers=admin_headers).json()
    assert listed["total"] == 1
    invitation = listed["invitations"][0]
    assert invitation["email"] == INVITEE
    assert invitation["role"] == "Manager"
    assert invitation["invited_by_user_id"] == admin["user"]["id"]
    assert invitation["is_accepted"] is False


def test_invitation_lives_in_the_tenant_database(client, outbox, admin, admin_headers):
    _invite(client, admin_headers)
    token = outbox.last_to(INVITEE).context["token"]

    with tenant_engines.session_scope(_tenant_database_url(admin["tenant_id"])) as session:
        stored = session.query(UserInvitation).one()
    with SessionLocal() as db:
        assert db.query(UserInvitation).count() == 0

    assert stored.tenant_id == admin["tenant_id"]
    assert stored.token_hash == hash_token(token)
    assert timedelta(days=6, hours=23) < stored.expires_at - stored.created_at <= timedelta(days=7)


def test_accept_invitation_creates_user_in_inviting_tenant(client, outbox, admin, admin_headers):
    _invite(client, admin_headers, role="Manager")
    token = outbox.last_to(INVITEE).context["token"]

    response = _accept(client, token)

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["token"]
    assert body["tenant_id"] == admin["tenant_id"]
    assert body["user"]["role"] == "Manager"
    assert outbox.last_to(INVITEE).subject == "Welcome to MasterBackup!"

    login = client.post("/api/v1/auth/login", json={"email": INVITEE, "password": INVITEE_PASSWORD})
    assert login.status_code == 200
    assert login.json()["tenant_id"] == admin["tenant_id"]

    users = client.get("/api/v1/users", headers=admin_headers).json()
    assert users["total"] == 2

    pending = client.get("/api/v1/users/invitations", headers=admin_headers).json()
    everything = client.get(
        "/api/v1/users/invitations", params={"include_accepted": True}, headers=admin_headers
    ).json()
    assert pending["total"] == 0
    assert everything["invitations"][0]["is_accepted"] is True


def test_invitation_token_is_single_use(client, outbox, admin_headers):
    _invite(client, admin_headers)
    token = outbox.last_to(INVITEE).context["token"]
    assert _accept(client, token).status_code == 200

    response = _accept(client, token)

    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid or expired invitation"


def test_unknown_invitation_token(client, admin):
    assert _accept(client, "made-up-token").status_code == 400


def test_expired_invitation_is_rejected(client, outbox, admin, admin_headers):
    _invite(client, admin_headers)
    token = outbox.last_to(INVITEE).context["token"]

    with tenant_engines.session_scope(_tenant_database_url(admin["tenant_id"])) as session:
        session.query(UserInvitation).update({"expires_at": datetime.utcnow() - timedelta(minutes=1)})
        session.commit()

    assert _accept(client, token).status_code == 400
    with SessionLocal() as db:
        assert db.query(ApplicationUser).filter(ApplicationUser.email == INVITEE).count() == 0


def test_invitation_of_inactive_tenant_is_rejected(client, outbox, admin, admin_headers):
    _invite(client, admin_headers)
    token = outbox.last_to(INVITEE).context["token"]
    with SessionLocal() as db:
        db.query(Tenant).update({"is_active": False})
        db.commit()

    assert _accept(client, token).status_code == 400


def test_duplicate_pending_invitation_is_rejected(client, admin_headers):
    assert _invite(client, admin_headers).status_code == 201

    response = _invite(client, admin_headers)

    assert response.status_code == 409


def test_expired_invitation_can_be_reissued(client, admin, admin_headers):
    _invite(client, admin_headers)
    with tenant_engines.session_scope(_tenant_database_url(admin["tenant_id"])) as session:
        session.query(UserInvitation).update({"expires_at": datetime.utcnow() - timedelta(minutes=1)})
        session.commit()

    assert _invite(client, admin_headers).status_code == 201


def test_inviting_existing_account_is_rejected(client, register_tenant, admin_headers):
    register_tenant(email="someone@globex.com", tenant_name="Globex")

    response = _invite(client, admin_headers, email="Someone@Globex.com")

    assert response.status_code == 409


def test_accept_fails_if_email_registered_meanwhile(client, outbox, register_tenant, admin_headers):
    _invite(client, admin_headers)
    token = outbox.last_to(INVITEE).context["token"]
    register_tenant(email=INVITEE, tenant_name="Grace Corp")

    assert _accept(client, token).status_code == 409


def test_accept_racing_a_registration_returns_conflict(
    client, outbox, register_tenant, admin, admin_headers, monkeypatch
):
    _invite(client, admin_headers)
    token = outbox.last_to(INVITEE).context["token"]
    register_tenant(email=INVITEE, tenant_name="Grace Corp")
    # The account appears after the existence check, so the insert hits the unique index
    monkeypatch.setattr(InvitationService, "email_exists", lambda self, email: False)

    response = _accept(client, token)

    assert response.status_code == 409
    assert response.json()["detail"] == "User with this email already exists"
    with tenant_engines.session_scope(_tenant_database_url(admin["tenant_id"])) as session:
        invitation = session.query(UserInvitation).filter(UserInvitation.email == INVITEE).one()
        assert invitation.is_accepted is False


def test_accept_enforces_password_policy(client, outbox, admin_headers):
    _invite(client, admin_headers)
    token = outbox.last_to(INVITEE).context["token"]

    assert _accept(client, token, password="weak").status_code == 422


@pytest.mark.usefixtures("shared_mode")
def test_shared_tenants_only_see_their_own_invitations(client, outbox, register_tenant, bearer):
    acme = register_tenant(email="owner@acme.com", tenant_name="Acme")
    globex = register_tenant(email="owner@globex.com", tenant_name="Globex")

    _invite(client, bearer(acme["token"]), email="a@acme.com")
    _invite(client, bearer(globex["token"]), email="g@globex.com")
    token = outbox.last_to("g@globex.com").context["token"]

    acme_list = client.get("/api/v1/users/invitations", headers=bearer(acme["token"])).json()
    assert [i["email"] for i in acme_list["invitations"]] == ["a@acme.com"]

    # Same email may be invited by another tenant in the same database
    assert _invite(client, bearer(acme["token"]), email="g@globex.com").status_code == 201

    accepted = _accept(client, token).json()
    assert accepted["tenant_id"] == globex["tenant_id"]
