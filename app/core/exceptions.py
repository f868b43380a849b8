"""Custom exceptions and error handling for the identity API."""

from fastapi import HTTPException, status


class IdentityException(HTTPException):
    """Base exception for the identity API."""

    def __init__(
        self,
        status_code: int,
        detail: str,
        error_code: str | None = None,
        headers: dict | None = None,
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.error_code = error_code


# Authentication Errors (401, 403)
class InvalidCredentialsError(IdentityException):
    """Raised when login credentials are invalid."""

    def __init__(self, detail: str = "Invalid credentials"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            error_code="INVALID_CREDENTIALS",
            headers={"WWW-Authenticate": "Bearer"},
        )


class InvalidTokenError(IdentityException):
    """Raised when a token is malformed, expired, revoked or signed with the wrong key."""

    def __init__(self, detail: str = "Invalid token"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            error_code="INVALID_TOKEN",
            headers={"WWW-Authenticate": "Bearer"},
        )


class AccountNotVerifiedError(IdentityException):
    """Raised when a non-staff account logs in before verifying."""

    def __init__(self, detail: str = "Please verify your account first"):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=detail,
            error_code="ACCOUNT_NOT_VERIFIED",
        )


class AccountInactiveError(IdentityException):
    """Raised when an account has not been activated (or was deactivated)."""

    def __init__(self, detail: str = "Account is pending admin activation"):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=detail,
            error_code="ACCOUNT_INACTIVE",
        )


class ForbiddenError(IdentityException):
    """Raised when user lacks permission for an action."""

    def __init__(self, detail: str = "You do not have permission to perform this action"):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=detail,
            error_code="FORBIDDEN",
        )


# One-time code errors (400)
class CodeExpiredError(IdentityException):
    """Raised when a verification code exists but has expired."""

    def __init__(self, detail: str = "Verification code has expired. Please request a new one."):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail,
            error_code="CODE_EXPIRED",
        )


# Resource Errors (404, 409)
class NotFoundError(IdentityException):
    """Raised when a resource is not found."""

    def __init__(self, resource: str = "Resource", detail: str | None = None):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=detail or f"{resource} not found",
            error_code="NOT_FOUND",
        )


class AlreadyExistsError(IdentityException):
    """Raised when trying to create a resource that already exists."""

    def __init__(self, resource: str = "Resource", detail: str | None = None):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=detail or f"{resource} already exists",
            error_code="ALREADY_EXISTS",
        )


# Validation Errors (400)
class ValidationError(IdentityException):
    """Raised when input validation fails."""

    def __init__(self, detail: str = "Invalid input"):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail,
            error_code="VALIDATION_ERROR",
        )


# Server Errors (503)
class ServiceUnavailableError(IdentityException):
    """Raised when a backing store is unavailable."""

    def __init__(self, service: str = "Service", detail: str | None = None):
        super().__init__(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=detail or f"{service} is temporarily unavailable. Please try again.",
            error_code="SERVICE_UNAVAILABLE",
        )
