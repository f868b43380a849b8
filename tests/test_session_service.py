"""Tests for SessionService behaviour when the revocation store misbehaves."""

import logging
from unittest.mock import MagicMock

import pytest

from app.core.exceptions import InvalidTokenError, ServiceUnavailableError
from app.core.security import get_password_hash
from app.models import ActivityLog, User, UserRole
from app.services.audit import DatabaseAuditSink
from app.services.auth_service import SessionService
from app.services.credential_validator import CredentialValidator
from app.services.revocation_store import DatabaseRevocationStore, RevocationStoreError
from app.services.token_service import TokenIssuer
from app.services.user_directory import StaffProfileDirectory, UserDirectory


@pytest.fixture
def user(db_session):
    user = User(
        phone="+250788000222",
        full_name="Jean Mugisha",
        password_hash=get_password_hash("Passw0rd!"),
        role=UserRole.DONOR.value,
        is_verified=True,
        is_active=True,
    )
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture
def other_user(db_session):
    user = User(
        phone="+250788000555",
        full_name="Claudine Ingabire",
        password_hash=get_password_hash("Passw0rd!"),
        role=UserRole.BENEFICIARY.value,
        is_verified=True,
        is_active=True,
    )
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture
def store(db_session):
    return DatabaseRevocationStore(db_session)


@pytest.fixture
def sessions(db_session, store):
    users = UserDirectory(db_session)
    return SessionService(
        users=users,
        staff_profiles=StaffProfileDirectory(db_session),
        validator=CredentialValidator(users),
        tokens=TokenIssuer(store),
        store=store,
        audit=DatabaseAuditSink(db_session),
    )


def _login(sessions, phone="0788000222"):
    return sessions.login("Passw0rd!", phone=phone, device_id="test-device").tokens


class TestAuthenticate:
    """Test bearer token resolution."""

    def test_valid_token(self, sessions, user):
        """Test that a fresh access token resolves to its owner."""
        tokens = _login(sessions)

        assert sessions.authenticate(tokens.access_token).id == user.id

    def test_fails_closed_when_store_is_down(self, sessions, store, user, monkeypatch):
        """Test that an unreachable store rejects the token."""
        tokens = _login(sessions)
        monkeypatch.setattr(store, "is_blacklisted", MagicMock(side_effect=RevocationStoreError("down")))

        with pytest.raises(InvalidTokenError):
            sessions.authenticate(tokens.access_token)

    def test_inactive_owner(self, sessions, db_session, user):
        """Test that tokens of a deactivated user are rejected."""
        tokens = _login(sessions)
        user.is_active = False
        db_session.commit()

        with pytest.raises(InvalidTokenError):
            sessions.authenticate(tokens.access_token)


class TestRefresh:
    """Test refresh rotation under store failures and races."""

    def test_fails_closed_when_store_is_down(self, sessions, store, user, monkeypatch):
        """Test that refresh is refused when the blacklist cannot be read."""
        tokens = _login(sessions)
        monkeypatch.setattr(store, "is_blacklisted", MagicMock(side_effect=RevocationStoreError("down")))

        with pytest.raises(InvalidTokenError):
            sessions.refresh(tokens.refresh_token)

    def test_concurrent_rotation_mints_nothing(self, sessions, store, user, monkeypatch):
        """Test that losing the rotation race issues no tokens."""
        tokens = _login(sessions)
        # Another request blacklisted the token between our check and our write
        monkeypatch.setattr(store, "blacklist_if_absent", MagicMock(return_value=False))
        issue = MagicMock()
        monkeypatch.setattr(sessions.tokens, "issue", issue)

        with pytest.raises(InvalidTokenError):
            sessions.refresh(tokens.refresh_token)
        issue.assert_not_called()

    def test_rotation_write_failure(self, sessions, store, user, monkeypatch):
        """Test that a failing rotation write is retried, then reported unavailable."""
        tokens = _login(sessions)
        failing = MagicMock(side_effect=RevocationStoreError("down"))
        monkeypatch.setattr(store, "blacklist_if_absent", failing)

        with pytest.raises(ServiceUnavailableError):
            sessions.refresh(tokens.refresh_token)
        assert failing.call_count == 3

    def test_unindexed_token_rejected(self, sessions, store, user):
        """Test that a revoked-all refresh token is refused."""
        tokens = _login(sessions)
        store.revoke_all_user_tokens(str(user.id))

        with pytest.raises(InvalidTokenError):
            sessions.refresh(tokens.refresh_token)


class TestLogout:
    """Test logout revocation."""

    def test_logout_survives_store_failure(self, sessions, store, user, monkeypatch, caplog):
        """Test that logout succeeds and logs when the store is down."""
        tokens = _login(sessions)
        monkeypatch.setattr(store, "blacklist", MagicMock(side_effect=RevocationStoreError("down")))
        monkeypatch.setattr(store, "revoke_all_user_tokens", MagicMock(side_effect=RevocationStoreError("down")))

        with caplog.at_level(logging.ERROR):
            result = sessions.logout(str(user.id), tokens.access_token, tokens.refresh_token)

        assert result == {"message": "Logged out successfully"}
        assert "SECURITY" in caplog.text

    def test_logout_retries_transient_failure(self, sessions, store, user, monkeypatch):
        """Test that a single store blip is retried."""
        tokens = _login(sessions)
        blacklist = MagicMock(side_effect=[RevocationStoreError("blip"), None])
        monkeypatch.setattr(store, "blacklist", blacklist)

        sessions.logout(str(user.id), tokens.access_token)

        assert blacklist.call_count == 2

    def test_logout_blacklists_both_tokens(self, sessions, store, user, db_session):
        """Test that both presented tokens are blacklisted."""
        tokens = _login(sessions)

        sessions.logout(str(user.id), tokens.access_token, tokens.refresh_token)

        assert store.is_blacklisted(tokens.access_token) is True
        assert store.is_blacklisted(tokens.refresh_token) is True
        assert store.list_user_tokens(str(user.id)) == []
        assert db_session.query(ActivityLog).filter(ActivityLog.action == "USER_LOGOUT").count() == 1

    def test_logout_skips_refresh_token_of_another_user(self, sessions, store, user, other_user):
        """Test that a foreign refresh token is neither blacklisted nor unindexed."""
        mine = _login(sessions)
        theirs = _login(sessions, phone="0788000555")

        sessions.logout(str(user.id), mine.access_token, theirs.refresh_token)

        assert store.is_blacklisted(theirs.refresh_token) is False
        assert store.is_user_token_active(str(other_user.id), theirs.refresh_token) is True
        assert sessions.refresh(theirs.refresh_token).access_token

    def test_logout_ignores_invalid_refresh_token(self, sessions, store, user):
        """Test that a malformed refresh token does not block logout."""
        mine = _login(sessions)

        result = sessions.logout(str(user.id), mine.access_token, "not-a-jwt")

        assert result == {"message": "Logged out successfully"}
        assert store.is_blacklisted("not-a-jwt") is False
        assert store.is_blacklisted(mine.access_token) is True


class TestLoginAudit:
    """Test what login writes to the activity log."""

    def test_login_audit_has_no_password(self, sessions, user, db_session):
        """Test that the login entry carries the device but never the password."""
        _login(sessions)

        log = db_session.query(ActivityLog).filter(ActivityLog.action == "USER_LOGIN").first()
        assert log.new_values["device_id"] == "test-device"
        assert "password" not in str(log.new_values).lower()
        assert log.actor_id == user.id


class TestCredentialValidator:
    """Test single-identifier credential checks."""

    def test_identifier_accepts_phone_or_email(self, db_session, user):
        """Test lookup by phone and by email through one field."""
        user.email = "jean.mugisha@gmail.com"
        db_session.commit()
        validator = CredentialValidator(UserDirectory(db_session))

        assert validator.validate_identifier("0788000222", "Passw0rd!").id == user.id
        assert validator.validate_identifier("Jean.Mugisha@gmail.com", "Passw0rd!").id == user.id

    def test_identifier_misses_look_alike(self, db_session, user):
        """Test that a wrong password and an unknown phone both give None."""
        validator = CredentialValidator(UserDirectory(db_session))

        assert validator.validate_identifier("0788000222", "Wr0ngPass!") is None
        assert validator.validate_identifier("0788999999", "Passw0rd!") is None
