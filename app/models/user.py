import enum
import uuid
from datetime import datetime

from sqlalchemy import Column, String, DateTime, Boolean, Index
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.core.database import Base


class UserRole(str, enum.Enum):
    """Roles sharing the identity table. ADMIN is the staff role."""

    DONOR = "donor"
    BENEFICIARY = "beneficiary"
    ADMIN = "admin"


class Language(str, enum.Enum):
    EN = "en"
    RW = "rw"


class User(Base):
    __tablename__ = "users"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email = Column(String(255), nullable=True, unique=True)
    phone = Column(String(20), nullable=False, unique=True)
    full_name = Column(String(255), nullable=False)
    password_hash = Column(String(255), nullable=True)
    role = Column(String(20), nullable=False, default=UserRole.BENEFICIARY.value)
    language = Column(String(5), nullable=False, default=Language.EN.value)

    # Verification state ("verified" is independent from "active")
    is_verified = Column(Boolean, nullable=False, default=False)
    verification_code = Column(String(16), nullable=True)
    verification_code_expires_at = Column(DateTime, nullable=True)
    verified_at = Column(DateTime, nullable=True)

    # Administrative activation switch
    is_active = Column(Boolean, nullable=False, default=False)

    # Password reset
    reset_token = Column(String(128), nullable=True)
    reset_token_expires_at = Column(DateTime, nullable=True)

    last_login_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    # Relationships
    staff_profile = relationship("StaffProfile", back_populates="user", uselist=False, cascade="all, delete-orphan")

    __table_args__ = (
        Index("ix_users_verification_code", "verification_code"),
        Index("ix_users_reset_token", "reset_token"),
    )

    @property
    def is_staff(self) -> bool:
        return self.role == UserRole.ADMIN.value

    def __repr__(self):
        return f"<User {self.phone} ({self.role})>"
