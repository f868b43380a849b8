from typing import Optional

from fastapi import APIRouter, Depends, Request, status

from app.api.deps import (
    get_account_service,
    get_bearer_token,
    get_current_user,
    get_session_service,
)
from app.core.rate_limit import (
    LOGIN_LIMIT,
    PASSWORD_RESET_LIMIT,
    REFRESH_LIMIT,
    REGISTER_LIMIT,
    VERIFICATION_LIMIT,
    public_limiter,
)
from app.models import User
from app.schemas.auth import (
    ForgotPasswordRequest,
    LoginRequest,
    LoginResponse,
    LogoutRequest,
    MessageResponse,
    RefreshTokenRequest,
    RegisterRequest,
    RegisterResponse,
    ResendVerificationRequest,
    ResetPasswordRequest,
    TokenResponse,
    UserResponse,
    VerifyAccountRequest,
)
from app.services.account_service import AccountService
from app.services.auth_service import SessionService


router = APIRouter(prefix="/auth", tags=["Authentication"])


@router.post("/register", response_model=RegisterResponse, status_code=status.HTTP_201_CREATED)
@public_limiter.limit(REGISTER_LIMIT)
def register(
    request: Request,
    data: RegisterRequest,
    accounts: AccountService = Depends(get_account_service),
):
    """
    Self-register a donor or beneficiary.
    The account starts unverified and inactive; a verification code is sent
    by email when one is given, otherwise by SMS.
    """
    result = accounts.register(
        phone=data.phone,
        password=data.password,
        full_name=data.full_name,
        email=data.email,
        role=data.role,
        language=data.language,
        device_id=data.device_id,
    )

    return RegisterResponse(
        user=UserResponse.model_validate(result.user),
        tokens=TokenResponse.model_validate(result.tokens),
        verification_required=result.verification_required,
    )


@router.post("/login", response_model=LoginResponse)
@public_limiter.limit(LOGIN_LIMIT)
def login(
    request: Request,
    data: LoginRequest,
    sessions: SessionService = Depends(get_session_service),
):
    """
    Authenticate with email or phone and a password.
    """
    result = sessions.login(
        password=data.password,
        email=data.email,
        phone=data.phone,
        device_id=data.device_id,
    )

    return LoginResponse(
        user=UserResponse.model_validate(result.user),
        tokens=TokenResponse.model_validate(result.tokens),
        requires_verification=result.requires_verification,
        requires_staff_profile=result.requires_staff_profile,
    )


@router.post("/refresh", response_model=TokenResponse)
@public_limiter.limit(REFRESH_LIMIT)
def refresh_tokens(
    request: Request,
    data: RefreshTokenRequest,
    sessions: SessionService = Depends(get_session_service),
):
    """
    Exchange a refresh token for a new pair.
    Refresh tokens are single-use: the presented one is revoked.
    """
    return TokenResponse.model_validate(sessions.refresh(data.refresh_token))


@router.post("/logout", response_model=MessageResponse)
def logout(
    data: Optional[LogoutRequest] = None,
    token: str = Depends(get_bearer_token),
    current_user: User = Depends(get_current_user),
    sessions: SessionService = Depends(get_session_service),
):
    """
    Revoke the current access token, the given refresh token, and every
    other session of the user.
    """
    refresh_token = data.refresh_token if data else None
    return sessions.logout(str(current_user.id), token, refresh_token)


@router.get("/me", response_model=UserResponse)
def get_current_user_info(current_user: User = Depends(get_current_user)):
    """
    Get current authenticated user's info.
    """
    return UserResponse.model_validate(current_user)


@router.post("/verify", response_model=dict)
@public_limiter.limit(VERIFICATION_LIMIT)
def verify_account(
    request: Request,
    data: VerifyAccountRequest,
    accounts: AccountService = Depends(get_account_service),
):
    return accounts.verify_account(data.code)


@router.post("/resend-verification", response_model=MessageResponse)
@public_limiter.limit(VERIFICATION_LIMIT)
def resend_verification(
    request: Request,
    data: ResendVerificationRequest,
    accounts: AccountService = Depends(get_account_service),
):
    return accounts.resend_verification_code(data.phone)


@router.post("/forgot-password", response_model=MessageResponse)
@public_limiter.limit(PASSWORD_RESET_LIMIT)
def forgot_password(
    request: Request,
    data: ForgotPasswordRequest,
    accounts: AccountService = Depends(get_account_service),
):
    """
    Start a password reset. The response is identical whether or not an
    account matched.
    """
    return accounts.forgot_password(email=data.email, phone=data.phone)


@router.post("/reset-password", response_model=MessageResponse)
@public_limiter.limit(PASSWORD_RESET_LIMIT)
def reset_password(
    request: Request,
    data: ResetPasswordRequest,
    accounts: AccountService = Depends(get_account_service),
):
    """
    Set a new password with a reset token. Ends every session of the user.
    """
    return accounts.reset_password(data.token, data.new_password, data.confirm_password)
