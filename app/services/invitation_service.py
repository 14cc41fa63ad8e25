"""
Invitation Service

Admins invite people into their tenant by email. The invitation row is
stored in the tenant's database; the account created on acceptance
lives in the master database like every other account.

An invitation token does not say which tenant issued it, so acceptance
searches every active tenant database for the token hash.
"""
from datetime import datetime, timedelta
from typing import List

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.config import get_settings
from app.core.exceptions import DuplicateResourceError, InvalidInputError
from app.core.security import generate_secure_token, get_password_hash, hash_token
from app.core.tenant_context import system_context
from app.models.invitation import UserInvitation
from app.models.tenant import Tenant
from app.models.user import ApplicationUser, UserRole
from app.schemas.auth import AuthResponse
from app.services.auth_service import build_auth_response
from app.services.email_service import EmailService
from app.services.tenant_service import TenantService
from app.utils.logging import get_logger, log_security_event

logger = get_logger(__name__)
settings = get_settings()


class InvitationService:
    def __init__(self, db: Session, email_service: EmailService, tenants: TenantService = None):
        self.db = db
        self.email = email_service
        self.tenants = tenants or TenantService(db)

    def email_exists(self, email: str) -> bool:
        return self.db.query(ApplicationUser.id).filter(ApplicationUser.email == email).first() is not None

    def invite_user(
        self,
        tenant: Tenant,
        inviter: ApplicationUser,
        email: str,
        role: UserRole = UserRole.USER,
    ) -> UserInvitation:
        """
        Invite email into tenant with the given role.

        Rejected when the address already has an account anywhere, or when
        a pending invitation for it exists in this tenant.
        """
        email = email.strip().lower()
        if self.email_exists(email):
            raise DuplicateResourceError("User with this email already exists")

        token = generate_secure_token()
        now = datetime.utcnow()

        with self.tenants.tenant_session(tenant) as session:
            pending = session.query(UserInvitation).filter(
                UserInvitation.tenant_id == tenant.id,  # CRITICAL: shared databases hold other tenants too
                UserInvitation.email == email,
                UserInvitation.is_accepted == False,  # noqa: E712
                UserInvitation.expires_at > now
            ).first()
            if pending:
                raise DuplicateResourceError("A pending invitation already exists for this email")

            invitation = UserInvitation(
                tenant_id=tenant.id,
                email=email,
                role=role,
                token_hash=hash_token(token),
                invited_by_user_id=inviter.id,
                created_at=now,
                expires_at=now + timedelta(days=settings.INVITATION_EXPIRE_DAYS),
            )
            session.add(invitation)
            session.commit()

        self.email.send_invitation(email, token, inviter.full_name)
        logger.info(f"Invitation sent to {email} by {inviter.id}")
        return invitation

    def list_invitations(
        self,
        tenant_id: str,
        session: Session,
        include_accepted: bool = False,
    ) -> List[UserInvitation]:
        """Invitations of one tenant, newest first. session must be on its database."""
        query = session.query(UserInvitation).filter(UserInvitation.tenant_id == tenant_id)
        if not include_accepted:
            query = query.filter(UserInvitation.is_accepted == False)  # noqa: E712
        return query.order_by(UserInvitation.created_at.desc()).all()

    def accept_invitation(
        self,
        token: str,
        password: str,
        first_name: str,
        last_name: str,
        enable_two_factor: bool = False,
    ) -> AuthResponse:
        """
        Turn a pending invitation into an account and log the user in.

        The invitation is marked accepted only after the account is
        committed, so a failure leaves the token usable.
        """
        token_hash = hash_token(token)
        now = datetime.utcnow()

        with system_context():
            for database_url, tenants in self.tenants.iter_active_tenant_databases():
                tenant_ids = [t.id for t in tenants]
                with self.tenants.engines.session_scope(database_url) as session:
                    invitation = session.query(UserInvitation).filter(
                        UserInvitation.token_hash == token_hash,
                        UserInvitation.tenant_id.in_(tenant_ids),
                        UserInvitation.is_accepted == False,  # noqa: E712
                        UserInvitation.expires_at > now
                    ).first()
                    if invitation is None:
                        continue

                    user = self._create_invited_user(
                        invitation, password, first_name, last_name, enable_two_factor
                    )
                    invitation.mark_accepted()
                    session.commit()
                    break
            else:
                log_security_event("invalid_invitation_token", {}, logger)
                raise InvalidInputError("Invalid or expired invitation")

        logger.info(f"Invitation accepted: user={user.id}, tenant={user.tenant_id}")
        try:
            self.email.send_welcome(user.email, user.full_name)
        except Exception:
            logger.warning(f"Welcome email to user {user.id} failed", exc_info=True)

        return build_auth_response(user, "Invitation accepted")

    def _create_invited_user(
        self,
        invitation: UserInvitation,
        password: str,
        first_name: str,
        last_name: str,
        enable_two_factor: bool,
    ) -> ApplicationUser:
        if self.email_exists(invitation.email):
            raise DuplicateResourceError("User with this email already exists")

        user = ApplicationUser(
            tenant_id=invitation.tenant_id,
            email=invitation.email,
            hashed_password=get_password_hash(password),
            first_name=first_name,
            last_name=last_name,
            role=invitation.role,
            two_factor_enabled=enable_two_factor,
        )
        self.db.add(user)
        try:
            self.db.commit()
        except IntegrityError:
            # Same email registered between the check and the commit
            self.db.rollback()
            raise DuplicateResourceError("User with this email already exists")
        return user
