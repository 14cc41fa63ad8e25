"""
Authentication Schemas

Request/response models for authentication endpoints.
"""
from pydantic import AfterValidator, BaseModel, EmailStr, Field, field_validator
from typing import Annotated, Optional

from app.core.security import password_policy_errors, is_valid_two_factor_code_format


def _check_password(value: str) -> str:
    errors = password_policy_errors(value)
    if errors:
        raise ValueError("; ".join(errors))
    return value


def _normalize_email(value: str) -> str:
    return value.strip().lower()


NormalizedEmail = Annotated[EmailStr, AfterValidator(_normalize_email)]
Password = Annotated[str, Field(min_length=8, max_length=100), AfterValidator(_check_password)]


class UserSummary(BaseModel):
    """Public view of an account, embedded in auth responses."""
    id: str
    email: str
    first_name: str
    last_name: str
    role: str


class AuthResponse(BaseModel):
    """
    Result of register, login, 2FA verification and invitation acceptance.

    success=False with two_factor_required=True means a code was emailed
    and the client should call /auth/verify-2fa next.
    """
    success: bool
    message: Optional[str] = None
    token: Optional[str] = None
    token_type: str = "bearer"
    two_factor_required: bool = False
    api_key: Optional[str] = None
    tenant_id: Optional[str] = None
    user: Optional[UserSummary] = None


class MessageResponse(BaseModel):
    success: bool = True
    message: str


class RegisterRequest(BaseModel):
    """Register a new tenant together with its first (admin) user."""
    email: NormalizedEmail
    password: Password
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    tenant_name: str = Field(..., min_length=1, max_length=100)
    enable_two_factor: bool = False
    class Config:
        json_schema_extra = {
            "example": {
                "email": "owner@acme.com",
                "password": "Secur3Password",
                "first_name": "Ada",
                "last_name": "Lovelace",
                "tenant_name": "Acme Corp",
                "enable_two_factor": False
            }
        }


class ValidateEmailRequest(BaseModel):
    email: NormalizedEmail


class EmailValidationResponse(BaseModel):
    exists: bool
    two_factor_enabled: bool = False
    first_name: Optional[str] = None
    last_name: Optional[str] = None


class LoginRequest(BaseModel):
    """Login request body. two_factor_code completes a 2FA login in one call."""
    email: NormalizedEmail
    password: str = Field(..., min_length=1, max_length=100)
    two_factor_code: Optional[str] = None

    @field_validator("two_factor_code")
    @classmethod
    def _code_format(cls, value: Optional[str]) -> Optional[str]:
        if value and not is_valid_two_factor_code_format(value):
            raise ValueError("2FA code must be 6 digits")
        return value or None


class Verify2FARequest(BaseModel):
    email: NormalizedEmail
    password: str = Field(..., min_length=1, max_length=100)
    two_factor_code: str

    @field_validator("two_factor_code")
    @classmethod
    def _code_format(cls, value: str) -> str:
        if not is_valid_two_factor_code_format(value):
            raise ValueError("2FA code must be 6 digits")
        return value


class ForgotPasswordRequest(BaseModel):
    email: NormalizedEmail


class ResetPasswordRequest(BaseModel):
    token: str = Field(..., min_length=1)
    new_password: Password


class AcceptInvitationRequest(BaseModel):
    token: str = Field(..., min_length=1)
    password: Password
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    enable_two_factor: bool = False


class CurrentUserResponse(BaseModel):
    """Claims of the authenticated caller."""
    user_id: str
    email: str
    role: str
    tenant_id: str
    two_factor_enabled: bool
