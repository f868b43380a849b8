import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional, TypeVar

from app.core.exceptions import (
    AccountInactiveError,
    AccountNotVerifiedError,
    InvalidCredentialsError,
    InvalidTokenError,
    ServiceUnavailableError,
    ValidationError,
)
from app.core.security import TOKEN_TYPE_ACCESS, TOKEN_TYPE_REFRESH, token_fingerprint
from app.models import User
from app.services.audit import AuditSink, LoggedOut, LoginSucceeded, TokenRefreshed
from app.services.credential_validator import CredentialValidator
from app.services.revocation_store import RevocationStore, RevocationStoreError, with_retries
from app.services.token_service import TokenIssuer, TokenPair
from app.services.user_directory import StaffProfileDirectory, UserDirectory

logger = logging.getLogger(__name__)

T = TypeVar("T")

INVALID_REFRESH_TOKEN = "Invalid refresh token"


@dataclass
class LoginResult:
    user: User
    tokens: TokenPair
    requires_verification: bool = False
    requires_staff_profile: bool = False


class SessionService:
    """
    Login, refresh, logout and the per-request bearer check.

    A token is trusted only after its signature verifies, the revocation store
    confirms it is not blacklisted, and its owner is still active. Refresh
    tokens must also still be indexed as a live session of their owner.
    """

    def __init__(
        self,
        users: UserDirectory,
        staff_profiles: StaffProfileDirectory,
        validator: CredentialValidator,
        tokens: TokenIssuer,
        store: RevocationStore,
        audit: AuditSink,
    ):
        self.users = users
        self.staff_profiles = staff_profiles
        self.validator = validator
        self.tokens = tokens
        self.store = store
        self.audit = audit

    def login(
        self,
        password: str,
        email: Optional[str] = None,
        phone: Optional[str] = None,
        device_id: Optional[str] = None,
    ) -> LoginResult:
        if not email and not phone:
            raise ValidationError("Email or phone is required")

        user = self.validator.validate(password, email=email, phone=phone)
        if not user:
            raise InvalidCredentialsError()

        # Staff skip email/SMS verification but not activation
        if not user.is_staff and not user.is_verified:
            raise AccountNotVerifiedError()
        if not user.is_active:
            raise AccountInactiveError()

        user.last_login_at = datetime.utcnow()
        self.users.save(user)

        requires_staff_profile = False
        if user.is_staff:
            requires_staff_profile = not self.staff_profiles.exists(user.id)

        tokens = self.tokens.issue(user)

        self.audit.record(LoginSucceeded(user_id=str(user.id), device_id=device_id))
        logger.info(f"User {user.id} logged in")

        return LoginResult(
            user=user,
            tokens=tokens,
            requires_verification=not user.is_staff and not user.is_verified,
            requires_staff_profile=requires_staff_profile,
        )

    def refresh(self, refresh_token: str) -> TokenPair:
        """
        Exchange a refresh token for a new pair. The presented token is
        blacklisted with an atomic set-if-absent before the new pair is minted,
        so two concurrent refreshes with the same token cannot both succeed.
        """
        fingerprint = token_fingerprint(refresh_token)

        try:
            if self.store.is_blacklisted(refresh_token):
                logger.info(f"Refresh with blacklisted token {fingerprint}")
                raise InvalidTokenError(INVALID_REFRESH_TOKEN)
        except RevocationStoreError as e:
            logger.error(f"Revocation check failed during refresh, rejecting token {fingerprint}: {e}")
            raise InvalidTokenError(INVALID_REFRESH_TOKEN)

        try:
            payload = self.tokens.verify_refresh(refresh_token)
        except InvalidTokenError:
            raise InvalidTokenError(INVALID_REFRESH_TOKEN)
        user_id = payload["sub"]

        try:
            indexed = self.store.is_user_token_active(user_id, refresh_token)
        except RevocationStoreError as e:
            logger.error(f"Session index check failed during refresh, rejecting token {fingerprint}: {e}")
            raise InvalidTokenError(INVALID_REFRESH_TOKEN)
        if not indexed:
            logger.info(f"Refresh token {fingerprint} is no longer a live session of user {user_id}")
            raise InvalidTokenError(INVALID_REFRESH_TOKEN)

        user = self.users.find_by_id(user_id)
        if not user or not user.is_active:
            logger.info(f"Refresh rejected for missing or inactive user {user_id}")
            raise InvalidTokenError(INVALID_REFRESH_TOKEN)

        ttl = self.tokens.remaining_refresh_lifetime(refresh_token)
        try:
            claimed = with_retries(
                lambda: self.store.blacklist_if_absent(refresh_token, ttl, user_id, TOKEN_TYPE_REFRESH),
                description="refresh token rotation",
            )
        except RevocationStoreError as e:
            logger.error(f"SECURITY: could not blacklist rotated refresh token {fingerprint}: {e}")
            raise ServiceUnavailableError("Session store")
        if not claimed:
            logger.warning(f"Refresh token {fingerprint} was already rotated by a concurrent request")
            raise InvalidTokenError(INVALID_REFRESH_TOKEN)

        try:
            with_retries(
                lambda: self.store.remove_user_token(user_id, refresh_token),
                description="session index cleanup",
            )
        except RevocationStoreError as e:
            # Already blacklisted above, the stale index entry expires on its own
            logger.warning(f"Could not drop rotated refresh token {fingerprint} from index: {e}")

        tokens = self.tokens.issue(user)
        self.audit.record(TokenRefreshed(user_id=str(user.id)))
        return tokens

    def logout(self, user_id: str, access_token: str, refresh_token: Optional[str] = None) -> dict:
        """
        Blacklist the presented tokens and end every indexed session of the user.
        Store failures are logged as security anomalies; logout still succeeds.
        """
        user_id = str(user_id)

        self._security_write(
            lambda: self.store.blacklist(
                access_token,
                self.tokens.remaining_access_lifetime(access_token),
                user_id,
                TOKEN_TYPE_ACCESS,
            ),
            f"blacklist access token {token_fingerprint(access_token)}",
        )

        if refresh_token and self._owns_refresh_token(user_id, refresh_token):
            self._security_write(
                lambda: self.store.blacklist(
                    refresh_token,
                    self.tokens.remaining_refresh_lifetime(refresh_token),
                    user_id,
                    TOKEN_TYPE_REFRESH,
                ),
                f"blacklist refresh token {token_fingerprint(refresh_token)}",
            )

        revoked = self._security_write(
            lambda: self.store.revoke_all_user_tokens(user_id),
            f"revoke all sessions of user {user_id}",
        )

        self.audit.record(LoggedOut(user_id=user_id, sessions_revoked=revoked or 0))
        return {"message": "Logged out successfully"}

    def authenticate(self, bearer_token: str) -> User:
        """Resolve a bearer access token to its active owner, or raise InvalidTokenError."""
        if not bearer_token:
            raise InvalidTokenError("Could not validate credentials")

        payload = self.tokens.verify_access(bearer_token)

        try:
            blacklisted = self.store.is_blacklisted(bearer_token)
        except RevocationStoreError as e:
            logger.error(f"Revocation check failed, rejecting access token {token_fingerprint(bearer_token)}: {e}")
            raise InvalidTokenError("Could not validate credentials")
        if blacklisted:
            raise InvalidTokenError("Could not validate credentials")

        user = self.users.find_by_id(payload["sub"])
        if not user or not user.is_active:
            raise InvalidTokenError("Could not validate credentials")
        return user

    def _owns_refresh_token(self, user_id: str, refresh_token: str) -> bool:
        try:
            claims = self.tokens.verify_refresh(refresh_token)
        except InvalidTokenError:
            logger.warning(f"Ignoring invalid refresh token {token_fingerprint(refresh_token)} on logout of user {user_id}")
            return False
        if str(claims["sub"]) != user_id:
            logger.warning(
                f"SECURITY: user {user_id} presented refresh token {token_fingerprint(refresh_token)} "
                f"of another user on logout; not revoking it"
            )
            return False
        return True

    @staticmethod
    def _security_write(operation: Callable[[], T], description: str) -> Optional[T]:
        try:
            return with_retries(operation, description=description)
        except RevocationStoreError as e:
            logger.error(
                f"SECURITY: failed to {description} after retries; "
                f"the token may stay usable until it expires: {e}"
            )
            return None
