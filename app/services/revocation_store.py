"""
Revocation store: TTL-bound blacklist of token strings plus a per-user index
of live refresh token hashes.

Entries only need to outlive the token they refer to, so every write carries
the token's remaining lifetime as its TTL.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Callable, List, Optional, TypeVar
from uuid import UUID

import redis
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.security import hash_token
from app.models.token_blacklist import TokenBlacklist, UserRefreshToken

logger = logging.getLogger(__name__)

T = TypeVar("T")

BLACKLIST_PREFIX = "blacklist"
USER_TOKENS_PREFIX = "user_tokens"
BLACKLIST_MARKER = "blacklisted"
ACTIVE_MARKER = "active"


class RevocationStoreError(Exception):
    """The backing store could not be reached or rejected the operation."""


def _clamp_ttl(ttl_seconds: int) -> int:
    return max(1, int(ttl_seconds))


def with_retries(operation: Callable[[], T], attempts: Optional[int] = None, description: str = "write") -> T:
    """
    Run a revocation store call, retrying on store failures.
    Re-raises the last RevocationStoreError once attempts are exhausted.
    """
    attempts = max(1, attempts or settings.REVOCATION_WRITE_RETRIES)
    last_error: Optional[RevocationStoreError] = None
    for attempt in range(1, attempts + 1):
        try:
            return operation()
        except RevocationStoreError as e:
            last_error = e
            logger.warning(f"Revocation store {description} failed (attempt {attempt}/{attempts}): {e}")
    raise last_error


class RevocationStore(ABC):
    """Contract shared by the database and Redis backends."""

    @abstractmethod
    def blacklist(self, token: str, ttl_seconds: int, user_id: Optional[str] = None,
                  token_type: Optional[str] = None) -> None:
        """Idempotently mark a token unusable for ``ttl_seconds``."""

    @abstractmethod
    def blacklist_if_absent(self, token: str, ttl_seconds: int, user_id: Optional[str] = None,
                            token_type: Optional[str] = None) -> bool:
        """Atomically blacklist a token. Returns False if it was already blacklisted."""

    @abstractmethod
    def is_blacklisted(self, token: str) -> bool:
        ...

    @abstractmethod
    def index_user_token(self, user_id: str, token: str, ttl_seconds: int) -> None:
        ...

    @abstractmethod
    def remove_user_token(self, user_id: str, token: str) -> None:
        ...

    @abstractmethod
    def is_user_token_active(self, user_id: str, token: str) -> bool:
        ...

    @abstractmethod
    def revoke_all_user_tokens(self, user_id: str) -> int:
        """Delete every indexed token of a user. Returns the number removed."""

    @abstractmethod
    def list_user_tokens(self, user_id: str) -> List[str]:
        """Hashes of the user's live refresh tokens. Raw tokens are never stored."""

    def purge_expired(self) -> int:
        """Drop entries whose TTL has elapsed. Backends with native expiry do nothing."""
        return 0

    def ping(self) -> bool:
        return True


class DatabaseRevocationStore(RevocationStore):
    """Revocation store on the application database; expiry is an ``expires_at`` column."""

    def __init__(self, db: Session):
        self.db = db

    @staticmethod
    def _expiry(ttl_seconds: int) -> datetime:
        return datetime.utcnow() + timedelta(seconds=_clamp_ttl(ttl_seconds))

    @staticmethod
    def _user_uuid(user_id: Optional[str]) -> Optional[UUID]:
        if user_id is None:
            return None
        return user_id if isinstance(user_id, UUID) else UUID(str(user_id))

    def _fail(self, operation: str, error: SQLAlchemyError) -> RevocationStoreError:
        self.db.rollback()
        return RevocationStoreError(f"{operation} failed: {error}")

    def _live_blacklist_row(self, token_hash: str) -> Optional[TokenBlacklist]:
        return self.db.query(TokenBlacklist).filter(
            TokenBlacklist.token_hash == token_hash,
            TokenBlacklist.expires_at > datetime.utcnow(),
        ).first()

    def blacklist(self, token, ttl_seconds, user_id=None, token_type=None) -> None:
        token_hash = hash_token(token)
        expires_at = self._expiry(ttl_seconds)
        try:
            existing = self.db.query(TokenBlacklist).filter(
                TokenBlacklist.token_hash == token_hash
            ).first()
            if existing:
                if existing.expires_at < expires_at:
                    existing.expires_at = expires_at
            else:
                self.db.add(TokenBlacklist(
                    token_hash=token_hash,
                    token_type=token_type,
                    user_id=self._user_uuid(user_id),
                    expires_at=expires_at,
                ))
            self.db.commit()
        except IntegrityError:
            # Concurrent insert of the same token; the entry exists either way.
            self.db.rollback()
        except SQLAlchemyError as e:
            raise self._fail("blacklist", e)

    def blacklist_if_absent(self, token, ttl_seconds, user_id=None, token_type=None) -> bool:
        token_hash = hash_token(token)
        now = datetime.utcnow()
        expires_at = self._expiry(ttl_seconds)
        try:
            # Reclaim a row left behind by an earlier, already expired blacklisting
            reclaimed = self.db.query(TokenBlacklist).filter(
                TokenBlacklist.token_hash == token_hash,
                TokenBlacklist.expires_at <= now,
            ).update({"expires_at": expires_at, "blacklisted_at": now}, synchronize_session=False)
            if reclaimed:
                self.db.commit()
                return True

            self.db.add(TokenBlacklist(
                token_hash=token_hash,
                token_type=token_type,
                user_id=self._user_uuid(user_id),
                expires_at=expires_at,
            ))
            self.db.commit()
            return True
        except IntegrityError:
            self.db.rollback()
            return False
        except SQLAlchemyError as e:
            raise self._fail("blacklist_if_absent", e)

    def is_blacklisted(self, token: str) -> bool:
        try:
            return self._live_blacklist_row(hash_token(token)) is not None
        except SQLAlchemyError as e:
            raise self._fail("is_blacklisted", e)

    def index_user_token(self, user_id, token, ttl_seconds) -> None:
        token_hash = hash_token(token)
        try:
            existing = self.db.query(UserRefreshToken).filter(
                UserRefreshToken.token_hash == token_hash
            ).first()
            if existing:
                existing.expires_at = self._expiry(ttl_seconds)
            else:
                self.db.add(UserRefreshToken(
                    user_id=self._user_uuid(user_id),
                    token_hash=token_hash,
                    expires_at=self._expiry(ttl_seconds),
                ))
            self.db.commit()
        except SQLAlchemyError as e:
            raise self._fail("index_user_token", e)

    def remove_user_token(self, user_id, token) -> None:
        try:
            self.db.query(UserRefreshToken).filter(
                UserRefreshToken.user_id == self._user_uuid(user_id),
                UserRefreshToken.token_hash == hash_token(token),
            ).delete(synchronize_session=False)
            self.db.commit()
        except SQLAlchemyError as e:
            raise self._fail("remove_user_token", e)

    def is_user_token_active(self, user_id, token) -> bool:
        try:
            return self.db.query(UserRefreshToken).filter(
                UserRefreshToken.user_id == self._user_uuid(user_id),
                UserRefreshToken.token_hash == hash_token(token),
                UserRefreshToken.expires_at > datetime.utcnow(),
            ).first() is not None
        except SQLAlchemyError as e:
            raise self._fail("is_user_token_active", e)

    def revoke_all_user_tokens(self, user_id) -> int:
        try:
            removed = self.db.query(UserRefreshToken).filter(
                UserRefreshToken.user_id == self._user_uuid(user_id)
            ).delete(synchronize_session=False)
            self.db.commit()
            return removed
        except SQLAlchemyError as e:
            raise self._fail("revoke_all_user_tokens", e)

    def list_user_tokens(self, user_id) -> List[str]:
        try:
            rows = self.db.query(UserRefreshToken).filter(
                UserRefreshToken.user_id == self._user_uuid(user_id),
                UserRefreshToken.expires_at > datetime.utcnow(),
            ).order_by(UserRefreshToken.created_at).all()
            return [row.token_hash for row in rows]
        except SQLAlchemyError as e:
            raise self._fail("list_user_tokens", e)

    def purge_expired(self) -> int:
        now = datetime.utcnow()
        try:
            blacklist_deleted = self.db.query(TokenBlacklist).filter(
                TokenBlacklist.expires_at <= now
            ).delete(synchronize_session=False)
            index_deleted = self.db.query(UserRefreshToken).filter(
                UserRefreshToken.expires_at <= now
            ).delete(synchronize_session=False)
            self.db.commit()
            return blacklist_deleted + index_deleted
        except SQLAlchemyError as e:
            raise self._fail("purge_expired", e)


class RedisRevocationStore(RevocationStore):
    """Revocation store on Redis; keys expire natively."""

    def __init__(self, client: redis.Redis):
        self.client = client

    @staticmethod
    def _blacklist_key(token: str) -> str:
        return f"{BLACKLIST_PREFIX}:{token}"

    @staticmethod
    def _user_token_key(user_id, token: str) -> str:
        return f"{USER_TOKENS_PREFIX}:{user_id}:{hash_token(token)}"

    @staticmethod
    def _user_pattern(user_id) -> str:
        return f"{USER_TOKENS_PREFIX}:{user_id}:*"

    def blacklist(self, token, ttl_seconds, user_id=None, token_type=None) -> None:
        try:
            self.client.set(self._blacklist_key(token), BLACKLIST_MARKER, ex=_clamp_ttl(ttl_seconds))
        except redis.RedisError as e:
            raise RevocationStoreError(f"blacklist failed: {e}") from e

    def blacklist_if_absent(self, token, ttl_seconds, user_id=None, token_type=None) -> bool:
        try:
            created = self.client.set(
                self._blacklist_key(token), BLACKLIST_MARKER, ex=_clamp_ttl(ttl_seconds), nx=True
            )
        except redis.RedisError as e:
            raise RevocationStoreError(f"blacklist_if_absent failed: {e}") from e
        return bool(created)

    def is_blacklisted(self, token: str) -> bool:
        try:
            return bool(self.client.exists(self._blacklist_key(token)))
        except redis.RedisError as e:
            raise RevocationStoreError(f"is_blacklisted failed: {e}") from e

    def index_user_token(self, user_id, token, ttl_seconds) -> None:
        try:
            self.client.set(self._user_token_key(user_id, token), ACTIVE_MARKER, ex=_clamp_ttl(ttl_seconds))
        except redis.RedisError as e:
            raise RevocationStoreError(f"index_user_token failed: {e}") from e

    def remove_user_token(self, user_id, token) -> None:
        try:
            self.client.delete(self._user_token_key(user_id, token))
        except redis.RedisError as e:
            raise RevocationStoreError(f"remove_user_token failed: {e}") from e

    def is_user_token_active(self, user_id, token) -> bool:
        try:
            return bool(self.client.exists(self._user_token_key(user_id, token)))
        except redis.RedisError as e:
            raise RevocationStoreError(f"is_user_token_active failed: {e}") from e

    def _user_keys(self, user_id) -> List[str]:
        return list(self.client.scan_iter(match=self._user_pattern(user_id), count=500))

    def revoke_all_user_tokens(self, user_id) -> int:
        try:
            keys = self._user_keys(user_id)
            if not keys:
                return 0
            return int(self.client.delete(*keys))
        except redis.RedisError as e:
            raise RevocationStoreError(f"revoke_all_user_tokens failed: {e}") from e

    def list_user_tokens(self, user_id) -> List[str]:
        try:
            keys = self._user_keys(user_id)
        except redis.RedisError as e:
            raise RevocationStoreError(f"list_user_tokens failed: {e}") from e
        prefix_length = len(f"{USER_TOKENS_PREFIX}:{user_id}:")
        return [key[prefix_length:] for key in keys]

    def ping(self) -> bool:
        try:
            return bool(self.client.ping())
        except redis.RedisError:
            return False


def create_redis_client(redis_url: str, socket_timeout: Optional[float] = None) -> redis.Redis:
    """Build the shared Redis client once at startup."""
    timeout = socket_timeout if socket_timeout is not None else settings.REDIS_SOCKET_TIMEOUT
    return redis.Redis.from_url(
        redis_url,
        decode_responses=True,
        socket_timeout=timeout,
        socket_connect_timeout=timeout,
    )


def build_revocation_store(db: Session, redis_client: Optional[redis.Redis] = None) -> RevocationStore:
    """Select the configured backend. Redis is used only when a client was constructed."""
    if settings.REVOCATION_BACKEND == "redis" and redis_client is not None:
        return RedisRevocationStore(redis_client)
    return DatabaseRevocationStore(db)
