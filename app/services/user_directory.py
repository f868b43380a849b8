from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy.orm import Session

from app.core.sanitization import normalize_phone
from app.models import StaffProfile, User


def _as_uuid(value) -> Optional[UUID]:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except (TypeError, ValueError):
        return None


class UserDirectory:
    """Lookups and writes on the shared identity table."""

    def __init__(self, db: Session):
        self.db = db

    def find_by_id(self, user_id) -> Optional[User]:
        """Get a user by ID. Malformed IDs simply match nothing."""
        uid = _as_uuid(user_id)
        if uid is None:
            return None
        return self.db.query(User).filter(User.id == uid).first()

    def find_by_email(self, email: str) -> Optional[User]:
        return self.db.query(User).filter(User.email == email.strip().lower()).first()

    def find_by_phone(self, phone: str) -> Optional[User]:
        return self.db.query(User).filter(User.phone == normalize_phone(phone)).first()

    def find_by_email_or_phone(self, identifier: str) -> Optional[User]:
        """Resolve an identifier to a user, routing by its shape."""
        identifier = identifier.strip()
        if "@" in identifier:
            return self.find_by_email(identifier)
        return self.find_by_phone(identifier)

    def exists_for(self, email: Optional[str], phone: Optional[str]) -> bool:
        """True if either the email or the phone is already taken."""
        if email and self.find_by_email(email):
            return True
        if phone and self.find_by_phone(phone):
            return True
        return False

    def find_by_verification_code(self, code: str, unexpired_only: bool = True) -> Optional[User]:
        query = self.db.query(User).filter(User.verification_code == code)
        if unexpired_only:
            query = query.filter(User.verification_code_expires_at > datetime.utcnow())
        return query.first()

    def verification_code_in_use(self, code: str) -> bool:
        return self.find_by_verification_code(code) is not None

    def find_by_reset_token(self, token: str) -> Optional[User]:
        return self.db.query(User).filter(
            User.reset_token == token,
            User.reset_token_expires_at > datetime.utcnow(),
        ).first()

    def save(self, user: User) -> User:
        self.db.add(user)
        self.db.commit()
        self.db.refresh(user)
        return user

    def rollback(self) -> None:
        self.db.rollback()

    def update_activation(self, user_id, is_active: bool) -> Optional[User]:
        user = self.find_by_id(user_id)
        if not user:
            return None
        user.is_active = is_active
        return self.save(user)


class StaffProfileDirectory:
    """Staff accounts must complete this profile before full access."""

    def __init__(self, db: Session):
        self.db = db

    def exists(self, user_id) -> bool:
        uid = _as_uuid(user_id)
        if uid is None:
            return False
        return self.db.query(StaffProfile).filter(StaffProfile.user_id == uid).first() is not None

    def create(self, user_id, position: str, department: Optional[str] = None) -> StaffProfile:
        profile = StaffProfile(user_id=_as_uuid(user_id), position=position, department=department)
        self.db.add(profile)
        self.db.commit()
        self.db.refresh(profile)
        return profile
