"""
Authentication Service

Registration, password login with optional emailed 2FA codes, and
password recovery.

Accounts live in the master database, so none of these operations need
a tenant context: the tenant is found through the user.
"""
from datetime import datetime, timedelta
from typing import Optional
import uuid

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import get_settings
from app.core.exceptions import (
    AuthenticationError,
    DuplicateResourceError,
    InvalidInputError,
    NotFoundError,
    TenantProvisioningError,
)
from app.core.security import (
    constant_time_equals,
    create_access_token,
    generate_api_key,
    generate_secure_token,
    generate_two_factor_code,
    get_password_hash,
    hash_token,
    verify_password,
)
from app.models.tenant import Tenant
from app.models.user import ApplicationUser, UserRole
from app.schemas.auth import AuthResponse, EmailValidationResponse, UserSummary
from app.services.email_service import EmailService
from app.services.tenant_service import TenantService
from app.utils.logging import get_logger, log_security_event

logger = get_logger(__name__)
settings = get_settings()


def build_auth_response(
    user: ApplicationUser,
    message: str,
    api_key: Optional[str] = None,
) -> AuthResponse:
    """Issue a token for user and wrap it in the standard response."""
    role = user.role.value
    token = create_access_token(
        user_id=user.id,
        email=user.email,
        role=role,
        tenant_id=user.tenant_id,
    )
    return AuthResponse(
        success=True,
        message=message,
        token=token,
        api_key=api_key,
        tenant_id=user.tenant_id,
        user=UserSummary(
            id=user.id,
            email=user.email,
            first_name=user.first_name,
            last_name=user.last_name,
            role=role,
        ),
    )


class AuthService:
    def __init__(self, db: Session, email_service: EmailService, tenants: TenantService = None):
        self.db = db
        self.email = email_service
        self.tenants = tenants or TenantService(db)

    def find_active_user(self, email: str) -> Optional[ApplicationUser]:
        return self.db.query(ApplicationUser).filter(
            ApplicationUser.email == email.strip().lower(),
            ApplicationUser.is_active == True  # noqa: E712
        ).first()

    def email_exists(self, email: str) -> bool:
        return self.db.query(ApplicationUser.id).filter(
            ApplicationUser.email == email.strip().lower()
        ).first() is not None

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(
        self,
        email: str,
        password: str,
        first_name: str,
        last_name: str,
        tenant_name: str,
        enable_two_factor: bool = False,
    ) -> AuthResponse:
        """
        Create a tenant, its database and its first admin user.

        The tenant database is provisioned before anything is written to
        the master database; a provisioning failure leaves no rows behind.
        """
        email = email.strip().lower()
        if self.email_exists(email):
            raise DuplicateResourceError("Email already registered")

        tenant_id = str(uuid.uuid4())
        database_url = self.tenants.create_tenant_database(tenant_id, tenant_name)

        tenant = Tenant(
            id=tenant_id,
            name=tenant_name,
            api_key=generate_api_key(),
            database_url=database_url,
            is_active=True,
        )
        user = ApplicationUser(
            tenant_id=tenant_id,
            email=email,
            hashed_password=get_password_hash(password),
            first_name=first_name,
            last_name=last_name,
            role=UserRole.ADMIN,
            two_factor_enabled=enable_two_factor,
        )

        try:
            self.db.add(tenant)
            self.db.add(user)
            self.db.commit()
        except IntegrityError:
            # Same email registered between the check and the commit
            self.db.rollback()
            raise DuplicateResourceError("Email already registered")
        except SQLAlchemyError:
            self.db.rollback()
            logger.error(f"Error saving tenant {tenant_name}", exc_info=True)
            raise TenantProvisioningError()

        logger.info(f"Tenant registered: {tenant.id} ({tenant_name}) by {user.id}")
        self._send_welcome(user)

        return build_auth_response(user, "Registration successful", api_key=tenant.api_key)

    def validate_email(self, email: str) -> EmailValidationResponse:
        """Tell the login screen whether to ask for a password and a 2FA code."""
        user = self.find_active_user(email)
        if not user:
            return EmailValidationResponse(exists=False)
        return EmailValidationResponse(
            exists=True,
            two_factor_enabled=user.two_factor_enabled,
            first_name=user.first_name,
            last_name=user.last_name,
        )

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    def login(self, email: str, password: str, two_factor_code: Optional[str] = None) -> AuthResponse:
        """
        Password login.

        With 2FA enabled and no code supplied, a fresh code is emailed and
        the response asks for it instead of carrying a token.
        """
        user = self._authenticate(email, password)
        self._check_tenant_active(user)

        if user.two_factor_enabled:
            if not two_factor_code:
                self._issue_two_factor_code(user)
                return AuthResponse(
                    success=False,
                    two_factor_required=True,
                    message="2FA code sent to your email",
                )
            self._consume_two_factor_code(user, two_factor_code)

        return self._complete_login(user)

    def verify_two_factor(self, email: str, password: str, code: str) -> AuthResponse:
        user = self._authenticate(email, password)
        self._check_tenant_active(user)
        self._consume_two_factor_code(user, code)
        return self._complete_login(user)

    def _authenticate(self, email: str, password: str) -> ApplicationUser:
        user = self.find_active_user(email)
        if not user:
            # SECURITY: Generic error prevents user enumeration
            log_security_event("failed_login", {"reason": "user_not_found", "email": email}, logger)
            raise AuthenticationError("Invalid credentials")

        if not verify_password(password, user.hashed_password):
            log_security_event(
                "failed_login",
                {"reason": "invalid_password", "user_id": user.id, "tenant_id": user.tenant_id},
                logger
            )
            raise AuthenticationError("Invalid credentials")

        return user

    def _check_tenant_active(self, user: ApplicationUser) -> None:
        tenant = self.tenants.get_by_id(user.tenant_id)
        if not tenant or not tenant.is_active:
            log_security_event(
                "failed_login",
                {"reason": "tenant_inactive", "user_id": user.id, "tenant_id": user.tenant_id},
                logger
            )
            raise AuthenticationError("Tenant account is inactive")

    def _issue_two_factor_code(self, user: ApplicationUser) -> None:
        code = generate_two_factor_code()
        user.two_factor_code = code
        user.two_factor_code_expires = datetime.utcnow() + timedelta(
            minutes=settings.TWO_FACTOR_CODE_EXPIRE_MINUTES
        )
        self.db.commit()

        self.email.send_two_factor_code(user.email, code)
        logger.info(f"2FA code sent to user {user.id}")

    def _consume_two_factor_code(self, user: ApplicationUser, code: str) -> None:
        """Check a submitted code; a matching code can only be used once."""
        expires = user.two_factor_code_expires
        if (
            not constant_time_equals(user.two_factor_code, code)
            or expires is None
            or expires < datetime.utcnow()
        ):
            log_security_event(
                "failed_two_factor",
                {"user_id": user.id, "tenant_id": user.tenant_id},
                logger
            )
            raise AuthenticationError("Invalid or expired 2FA code")

        user.clear_two_factor_code()

    def _complete_login(self, user: ApplicationUser) -> AuthResponse:
        user.last_login_at = datetime.utcnow()
        self.db.commit()
        logger.info(f"Successful login: user={user.id}, tenant={user.tenant_id}")
        return build_auth_response(user, "Login successful")

    # ------------------------------------------------------------------
    # Password recovery
    # ------------------------------------------------------------------

    def forgot_password(self, email: str) -> None:
        user = self.find_active_user(email)
        if not user:
            raise NotFoundError("No account is registered with this email")

        reset_token = generate_secure_token()
        user.password_reset_token_hash = hash_token(reset_token)
        user.password_reset_expires = datetime.utcnow() + timedelta(
            minutes=settings.PASSWORD_RESET_EXPIRE_MINUTES
        )
        self.db.commit()

        self.email.send_password_reset(user.email, reset_token)
        logger.info(f"Password reset requested for user {user.id}")

    def reset_password(self, token: str, new_password: str) -> None:
        user = self.db.query(ApplicationUser).filter(
            ApplicationUser.password_reset_token_hash == hash_token(token),
            ApplicationUser.is_active == True  # noqa: E712
        ).first()

        if not user or not user.password_reset_expires or user.password_reset_expires < datetime.utcnow():
            log_security_event("invalid_reset_token", {"user_id": user.id if user else None}, logger)
            raise InvalidInputError("Invalid or expired reset token")

        user.hashed_password = get_password_hash(new_password)
        user.clear_password_reset()
        self.db.commit()
        logger.info(f"Password reset for user {user.id}")

    # ------------------------------------------------------------------
    # Two-factor settings
    # ------------------------------------------------------------------

    def enable_two_factor(self, user: ApplicationUser) -> None:
        user.two_factor_enabled = True
        self.db.commit()
        logger.info(f"2FA enabled for user {user.id}")

    def disable_two_factor(self, user: ApplicationUser) -> None:
        user.two_factor_enabled = False
        user.clear_two_factor_code()
        self.db.commit()
        logger.info(f"2FA disabled for user {user.id}")

    def _send_welcome(self, user: ApplicationUser) -> None:
        # The account already exists; a failed welcome email must not undo it
        try:
            self.email.send_welcome(user.email, user.full_name)
        except Exception:
            logger.warning(f"Welcome email to user {user.id} failed", exc_info=True)
