from datetime import datetime
from typing import Annotated, Optional
from uuid import UUID

from pydantic import AfterValidator, BaseModel, EmailStr, Field

from app.core.sanitization import validate_phone


def _check_phone(value: str) -> str:
    value = value.strip()
    if not validate_phone(value):
        raise ValueError("Phone must be a Rwandan mobile number, e.g. +250788123456 or 0788123456")
    return value


RwandanPhone = Annotated[str, AfterValidator(_check_phone)]


# Request schemas
class RegisterRequest(BaseModel):
    phone: RwandanPhone
    password: str
    full_name: str = Field(..., min_length=2, max_length=255)
    email: Optional[EmailStr] = None
    role: Optional[str] = Field(default=None, description="'donor' or 'beneficiary' (default)")
    language: Optional[str] = Field(default=None, max_length=20, description="'en' or 'rw'")
    device_id: Optional[str] = Field(default=None, max_length=255)


class LoginRequest(BaseModel):
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    password: str
    device_id: Optional[str] = Field(default=None, max_length=255)


class RefreshTokenRequest(BaseModel):
    refresh_token: str


class LogoutRequest(BaseModel):
    refresh_token: Optional[str] = None


class VerifyAccountRequest(BaseModel):
    code: str = Field(..., min_length=1, max_length=16)


class ResendVerificationRequest(BaseModel):
    phone: RwandanPhone


class ForgotPasswordRequest(BaseModel):
    email: Optional[EmailStr] = None
    phone: Optional[str] = None


class ResetPasswordRequest(BaseModel):
    token: str
    new_password: str
    confirm_password: str


# Response schemas
class UserResponse(BaseModel):
    id: UUID
    email: Optional[str]
    phone: str
    full_name: str
    role: str
    language: str
    is_verified: bool
    is_active: bool
    last_login_at: Optional[datetime] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    expires_in: int
    token_type: str = "Bearer"

    model_config = {"from_attributes": True}


class LoginResponse(BaseModel):
    user: UserResponse
    tokens: TokenResponse
    requires_verification: bool = False
    requires_staff_profile: bool = False


class RegisterResponse(BaseModel):
    user: UserResponse
    tokens: TokenResponse
    verification_required: bool = True


class MessageResponse(BaseModel):
    message: str
