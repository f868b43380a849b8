from datetime import datetime, timedelta
from typing import Optional
from uuid import uuid4
import hashlib
import secrets
import time

from jose import JWTError, jwt
from passlib.context import CryptContext

from app.core.config import settings

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

# Token type constants
TOKEN_TYPE_ACCESS = "access"
TOKEN_TYPE_REFRESH = "refresh"


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a plain password against a hashed password."""
    return pwd_context.verify(plain_password, hashed_password)


def dummy_verify_password() -> None:
    """Spend the same time as a real verification when no user matched."""
    pwd_context.dummy_verify()


def get_password_hash(password: str) -> str:
    """Hash a password using bcrypt."""
    return pwd_context.hash(password)


def hash_token(token: str) -> str:
    """Create SHA-256 hash of a token for storage."""
    return hashlib.sha256(token.encode()).hexdigest()


def token_fingerprint(token: str) -> str:
    """Short, non-reversible token identifier safe for log lines."""
    return hash_token(token)[:12]


def _secret_for(token_type: str) -> str:
    if token_type == TOKEN_TYPE_REFRESH:
        return settings.JWT_REFRESH_SECRET
    return settings.JWT_SECRET


def create_token(data: dict, token_type: str, expires_delta: timedelta) -> str:
    """
    Sign a JWT of the given type.

    Every token carries a unique ``jti`` so two tokens minted in the same
    second for the same subject are still distinct strings.
    """
    to_encode = data.copy()
    now = datetime.utcnow()

    to_encode.update({
        "iat": now,
        "exp": now + expires_delta,
        "type": token_type,
        "jti": str(uuid4()),
    })

    return jwt.encode(to_encode, _secret_for(token_type), algorithm=settings.ALGORITHM)


def decode_token(token: str, expected_type: str) -> dict:
    """
    Verify a JWT and return its payload.

    Raises JWTError on a bad signature, expiry, malformed input or a token
    of the wrong type.
    """
    payload = jwt.decode(
        token, _secret_for(expected_type), algorithms=[settings.ALGORITHM]
    )
    if payload.get("type") != expected_type:
        raise JWTError(f"Expected a {expected_type} token")
    return payload


def remaining_lifetime(token: str, default: int) -> int:
    """
    Seconds until the token's ``exp`` claim, read without verification.
    Falls back to ``default`` when the token cannot be parsed.
    """
    try:
        claims = jwt.get_unverified_claims(token)
    except JWTError:
        return max(1, default)

    exp = claims.get("exp")
    if not isinstance(exp, (int, float)):
        return max(1, default)
    return max(1, int(exp - time.time()))


def generate_numeric_code(length: Optional[int] = None) -> str:
    """Generate a zero-padded numeric one-time code."""
    length = length or settings.VERIFICATION_CODE_LENGTH
    return "".join(secrets.choice("0123456789") for _ in range(length))


def generate_reset_token() -> str:
    """Generate an opaque URL-safe password reset token."""
    return secrets.token_urlsafe(32)
