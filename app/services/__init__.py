from app.services.auth_service import SessionService
from app.services.account_service import AccountService
from app.services.token_service import TokenIssuer
from app.services.credential_validator import CredentialValidator

__all__ = [
    "SessionService",
    "AccountService",
    "TokenIssuer",
    "CredentialValidator",
]
