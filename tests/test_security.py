"""Tests for token signing, the token issuer and input sanitization."""

from datetime import timedelta
from unittest.mock import MagicMock

import pytest
from jose import JWTError

from app.core.config import settings
from app.core.exceptions import InvalidTokenError, ServiceUnavailableError
from app.core.sanitization import (
    normalize_phone,
    password_policy_violation,
    sanitize_email,
    sanitize_name,
    validate_phone,
)
from app.core.security import (
    TOKEN_TYPE_ACCESS,
    TOKEN_TYPE_REFRESH,
    create_token,
    decode_token,
    generate_numeric_code,
    remaining_lifetime,
)
from app.models import User
from app.services.revocation_store import RevocationStore, RevocationStoreError
from app.services.token_service import TokenIssuer


def _user():
    return User(
        id="0c6f3b8e-3f0f-4f55-9a8d-7a4c2f1b9e10",
        email="aline.uwase@gmail.com",
        phone="+250788000111",
        role="beneficiary",
        is_verified=True,
    )


class TestTokens:
    """Test JWT signing and decoding."""

    def test_access_and_refresh_use_separate_secrets(self):
        """Test that access and refresh tokens are signed with different secrets."""
        refresh = create_token({"sub": "u1"}, TOKEN_TYPE_REFRESH, timedelta(minutes=5))

        with pytest.raises(JWTError):
            decode_token(refresh, TOKEN_TYPE_ACCESS)
        assert decode_token(refresh, TOKEN_TYPE_REFRESH)["sub"] == "u1"

    def test_expired_token_rejected(self):
        """Test that an expired token fails to decode."""
        token = create_token({"sub": "u1"}, TOKEN_TYPE_ACCESS, timedelta(seconds=-10))

        with pytest.raises(JWTError):
            decode_token(token, TOKEN_TYPE_ACCESS)

    def test_tokens_are_unique(self):
        """Test that two tokens for the same claims differ."""
        first = create_token({"sub": "u1"}, TOKEN_TYPE_ACCESS, timedelta(minutes=5))
        second = create_token({"sub": "u1"}, TOKEN_TYPE_ACCESS, timedelta(minutes=5))

        assert first != second

    def test_remaining_lifetime(self):
        """Test the remaining lifetime of a token and the fallback for garbage."""
        token = create_token({"sub": "u1"}, TOKEN_TYPE_ACCESS, timedelta(minutes=10))

        assert 590 <= remaining_lifetime(token, 5) <= 600
        assert remaining_lifetime("garbage", 42) == 42

    def test_remaining_lifetime_never_below_one(self):
        """Test that an expired token reports one second."""
        token = create_token({"sub": "u1"}, TOKEN_TYPE_ACCESS, timedelta(seconds=-30))

        assert remaining_lifetime(token, 100) == 1

    def test_numeric_code(self):
        """Test verification code format."""
        code = generate_numeric_code()

        assert len(code) == settings.VERIFICATION_CODE_LENGTH
        assert code.isdigit()


class TestTokenIssuer:
    """Test the token pair issuer."""

    def test_issue_indexes_refresh_token(self):
        """Test that issuing indexes the refresh token with its TTL."""
        store = MagicMock(spec=RevocationStore)
        issuer = TokenIssuer(store)

        pair = issuer.issue(_user())

        store.index_user_token.assert_called_once_with(
            "0c6f3b8e-3f0f-4f55-9a8d-7a4c2f1b9e10", pair.refresh_token, settings.refresh_token_ttl_seconds
        )
        assert pair.expires_in == settings.access_token_ttl_seconds
        assert pair.token_type == "Bearer"

    def test_claims(self):
        """Test the access token claims."""
        issuer = TokenIssuer(MagicMock(spec=RevocationStore))

        claims = issuer.verify_access(issuer.issue(_user()).access_token)

        assert claims["sub"] == "0c6f3b8e-3f0f-4f55-9a8d-7a4c2f1b9e10"
        assert claims["phone"] == "+250788000111"
        assert claims["role"] == "beneficiary"
        assert claims["is_verified"] is True

    def test_issue_fails_when_index_is_down(self):
        """Test that issuing fails when the index cannot be written."""
        store = MagicMock(spec=RevocationStore)
        store.index_user_token.side_effect = RevocationStoreError("down")

        with pytest.raises(ServiceUnavailableError):
            TokenIssuer(store).issue(_user())

    def test_verify_rejects_wrong_type(self):
        """Test that token types are not interchangeable."""
        issuer = TokenIssuer(MagicMock(spec=RevocationStore))
        pair = issuer.issue(_user())

        with pytest.raises(InvalidTokenError):
            issuer.verify_refresh(pair.access_token)
        with pytest.raises(InvalidTokenError):
            issuer.verify_access(pair.refresh_token)

    def test_verify_rejects_missing_subject(self):
        """Test that a token without a subject is rejected."""
        issuer = TokenIssuer(MagicMock(spec=RevocationStore))
        token = create_token({"role": "donor"}, TOKEN_TYPE_ACCESS, timedelta(minutes=5))

        with pytest.raises(InvalidTokenError):
            issuer.verify_access(token)


class TestSanitization:
    """Test input sanitization helpers."""

    @pytest.mark.parametrize("raw", ["+250788123456", "250788123456", "0788123456", "0722 123 456"])
    def test_valid_phones(self, raw):
        """Test accepted Rwandan phone formats."""
        assert validate_phone(raw)

    @pytest.mark.parametrize("raw", ["", "0788", "+15551234567", "0688123456", "07881234567"])
    def test_invalid_phones(self, raw):
        """Test rejected phone numbers."""
        assert not validate_phone(raw)

    @pytest.mark.parametrize("raw", ["+250788123456", "250788123456", "0788123456", "788123456", "0788-123-456"])
    def test_normalize_phone(self, raw):
        """Test normalization to +250 form."""
        assert normalize_phone(raw) == "+250788123456"

    def test_password_policy(self):
        """Test each password policy rule."""
        assert password_policy_violation("Passw0rd!") is None
        assert "at least 8" in password_policy_violation("Pa0!")
        assert "uppercase" in password_policy_violation("passw0rd!")
        assert "lowercase" in password_policy_violation("PASSW0RD!")
        assert "number" in password_policy_violation("Password!")
        assert "special" in password_policy_violation("Passw0rdX")

    def test_sanitize_email(self):
        """Test email normalization."""
        assert sanitize_email("  Aline@Gmail.COM ") == "aline@gmail.com"
        assert sanitize_email("") is None
        assert sanitize_email(None) is None

    def test_sanitize_name_strips_html(self):
        """Test that names lose markup and extra whitespace."""
        assert sanitize_name("  <b>Aline</b>   Uwase ") == "Aline Uwase"
