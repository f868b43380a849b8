"""Revocation tables backing the database revocation store."""

from datetime import datetime
from uuid import uuid4
from sqlalchemy import Column, String, DateTime, Index
from sqlalchemy.dialects.postgresql import UUID

from app.core.database import Base


class TokenBlacklist(Base):
    """Blacklisted token strings, kept until the token would have expired anyway."""

    __tablename__ = "token_blacklist"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    token_hash = Column(String(64), unique=True, nullable=False, index=True)  # SHA-256 hash
    token_type = Column(String(20), nullable=True)  # 'access' or 'refresh'
    user_id = Column(UUID(as_uuid=True), nullable=True)
    expires_at = Column(DateTime, nullable=False)
    blacklisted_at = Column(DateTime, default=datetime.utcnow)

    # Index for cleanup of expired tokens
    __table_args__ = (
        Index("ix_token_blacklist_expires_at", "expires_at"),
    )


class UserRefreshToken(Base):
    """Hashes of the live refresh tokens of each user. Revoke-all deletes a user's rows."""

    __tablename__ = "user_refresh_tokens"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    token_hash = Column(String(64), unique=True, nullable=False)  # SHA-256 hash
    expires_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_user_refresh_tokens_expires_at", "expires_at"),
    )
