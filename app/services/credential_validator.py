from typing import Optional

from app.core.security import dummy_verify_password, verify_password
from app.models import User
from app.services.user_directory import UserDirectory


class CredentialValidator:
    """
    Checks an identifier + password pair.

    Every miss (unknown identifier, password-less account, wrong password)
    returns None so callers cannot tell which one happened.
    """

    def __init__(self, users: UserDirectory):
        self.users = users

    def validate(
        self,
        password: str,
        email: Optional[str] = None,
        phone: Optional[str] = None,
    ) -> Optional[User]:
        """Look up by email when one is given, otherwise by phone."""
        if email:
            user = self.users.find_by_email(email)
        elif phone:
            user = self.users.find_by_phone(phone)
        else:
            user = None
        return self._check(user, password)

    def validate_identifier(self, identifier: str, password: str) -> Optional[User]:
        """Same as validate() for a single identifier field holding an email or a phone."""
        return self._check(self.users.find_by_email_or_phone(identifier), password)

    @staticmethod
    def _check(user: Optional[User], password: str) -> Optional[User]:
        if not user or not user.password_hash:
            dummy_verify_password()
            return None
        if not verify_password(password, user.password_hash):
            return None
        return user
