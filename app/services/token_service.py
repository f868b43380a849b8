import logging
from dataclasses import dataclass
from datetime import timedelta

from jose import JWTError

from app.core.config import settings
from app.core.exceptions import InvalidTokenError, ServiceUnavailableError
from app.core.security import (
    TOKEN_TYPE_ACCESS,
    TOKEN_TYPE_REFRESH,
    create_token,
    decode_token,
    remaining_lifetime,
    token_fingerprint,
)
from app.models import User
from app.services.revocation_store import RevocationStore, RevocationStoreError, with_retries

logger = logging.getLogger(__name__)


@dataclass
class TokenPair:
    access_token: str
    refresh_token: str
    expires_in: int
    token_type: str = "Bearer"


def build_claims(user: User) -> dict:
    return {
        "sub": str(user.id),
        "email": user.email,
        "phone": user.phone,
        "role": user.role,
        "is_verified": bool(user.is_verified),
    }


class TokenIssuer:
    """
    Mints and verifies access/refresh pairs.

    Issuing only creates: it indexes the new refresh token but never revokes
    an older one. Rotation is the caller's job.
    """

    def __init__(self, store: RevocationStore):
        self.store = store
        self.access_ttl = settings.access_token_ttl_seconds
        self.refresh_ttl = settings.refresh_token_ttl_seconds

    def issue(self, user: User) -> TokenPair:
        claims = build_claims(user)
        access_token = create_token(claims, TOKEN_TYPE_ACCESS, timedelta(seconds=self.access_ttl))
        refresh_token = create_token(claims, TOKEN_TYPE_REFRESH, timedelta(seconds=self.refresh_ttl))

        try:
            with_retries(
                lambda: self.store.index_user_token(str(user.id), refresh_token, self.refresh_ttl),
                description="refresh token index",
            )
        except RevocationStoreError as e:
            # An unindexed refresh token could never be used, so fail the issuance
            logger.error(f"Could not index refresh token for user {user.id}: {e}")
            raise ServiceUnavailableError("Session store")

        return TokenPair(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=self.access_ttl,
        )

    def _verify(self, token: str, token_type: str) -> dict:
        try:
            payload = decode_token(token, token_type)
        except JWTError as e:
            logger.info(f"Rejected {token_type} token {token_fingerprint(token or '')}: {e}")
            raise InvalidTokenError()
        if not payload.get("sub"):
            logger.info(f"Rejected {token_type} token {token_fingerprint(token)}: missing subject")
            raise InvalidTokenError()
        return payload

    def verify_access(self, token: str) -> dict:
        return self._verify(token, TOKEN_TYPE_ACCESS)

    def verify_refresh(self, token: str) -> dict:
        return self._verify(token, TOKEN_TYPE_REFRESH)

    def remaining_access_lifetime(self, token: str) -> int:
        return remaining_lifetime(token, self.access_ttl)

    def remaining_refresh_lifetime(self, token: str) -> int:
        return remaining_lifetime(token, self.refresh_ttl)
