"""
Authentication Endpoints

Registration of new tenants, login with optional emailed 2FA codes,
password recovery and invitation acceptance.

All routes except enable-2fa, disable-2fa and me are public: accounts
are looked up by email in the master database, so no tenant context is
needed to find them.
"""
from fastapi import APIRouter, Depends, status

from app.models.user import ApplicationUser
from app.schemas.auth import (
    AcceptInvitationRequest,
    AuthResponse,
    CurrentUserResponse,
    EmailValidationResponse,
    ForgotPasswordRequest,
    LoginRequest,
    MessageResponse,
    RegisterRequest,
    ResetPasswordRequest,
    ValidateEmailRequest,
    Verify2FARequest,
)
from app.api.deps import get_auth_service, get_current_user, get_invitation_service
from app.services.auth_service import AuthService
from app.services.invitation_service import InvitationService

router = APIRouter(prefix="/auth", tags=["authentication"])


@router.post("/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
def register(
    registration: RegisterRequest,
    auth: AuthService = Depends(get_auth_service)
):
    """
    Register a new tenant and its first user.

    Process:
    1. Reject emails that already have an account
    2. Provision the tenant database
    3. Create the tenant (with its API key) and an Admin user
    4. Return a JWT and the API key
    """
    return auth.register(
        email=registration.email,
        password=registration.password,
        first_name=registration.first_name,
        last_name=registration.last_name,
        tenant_name=registration.tenant_name,
        enable_two_factor=registration.enable_two_factor,
    )


@router.post("/validate-email", response_model=EmailValidationResponse)
def validate_email(
    request: ValidateEmailRequest,
    auth: AuthService = Depends(get_auth_service)
):
    """Check whether an email has an account and whether it uses 2FA."""
    return auth.validate_email(request.email)


@router.post("/login", response_model=AuthResponse)
def login(
    credentials: LoginRequest,
    auth: AuthService = Depends(get_auth_service)
):
    """
    Authenticate user and return JWT token.

    If the user has 2FA enabled and no code was sent, the response has
    two_factor_required=true and a code is emailed. The code can be sent
    back here or to /auth/verify-2fa.
    """
    return auth.login(credentials.email, credentials.password, credentials.two_factor_code)


@router.post("/verify-2fa", response_model=AuthResponse)
def verify_two_factor(
    request: Verify2FARequest,
    auth: AuthService = Depends(get_auth_service)
):
    return auth.verify_two_factor(request.email, request.password, request.two_factor_code)


@router.post("/forgot-password", response_model=MessageResponse)
def forgot_password(
    request: ForgotPasswordRequest,
    auth: AuthService = Depends(get_auth_service)
):
    auth.forgot_password(request.email)
    return MessageResponse(message="Password reset email sent")


@router.post("/reset-password", response_model=MessageResponse)
def reset_password(
    request: ResetPasswordRequest,
    auth: AuthService = Depends(get_auth_service)
):
    auth.reset_password(request.token, request.new_password)
    return MessageResponse(message="Password reset successful")


@router.post("/accept-invitation", response_model=AuthResponse)
def accept_invitation(
    request: AcceptInvitationRequest,
    invitations: InvitationService = Depends(get_invitation_service)
):
    """Create an account from an emailed invitation token."""
    return invitations.accept_invitation(
        token=request.token,
        password=request.password,
        first_name=request.first_name,
        last_name=request.last_name,
        enable_two_factor=request.enable_two_factor,
    )


@router.post("/enable-2fa", response_model=MessageResponse)
def enable_two_factor(
    current_user: ApplicationUser = Depends(get_current_user),
    auth: AuthService = Depends(get_auth_service)
):
    auth.enable_two_factor(current_user)
    return MessageResponse(message="Two-factor authentication enabled")


@router.post("/disable-2fa", response_model=MessageResponse)
def disable_two_factor(
    current_user: ApplicationUser = Depends(get_current_user),
    auth: AuthService = Depends(get_auth_service)
):
    auth.disable_two_factor(current_user)
    return MessageResponse(message="Two-factor authentication disabled")


@router.get("/me", response_model=CurrentUserResponse)
def me(current_user: ApplicationUser = Depends(get_current_user)):
    return CurrentUserResponse(
        user_id=current_user.id,
        email=current_user.email,
        role=current_user.role.value,
        tenant_id=current_user.tenant_id,
        two_factor_enabled=current_user.two_factor_enabled,
    )
