"""
Audit events and the sink that records them.

Each kind of event is its own dataclass carrying only the fields that kind
needs, so the ``activity_logs`` payloads are known ahead of time.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import ClassVar, Optional, Protocol
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models import ActivityLog

logger = logging.getLogger(__name__)

ENTITY_USERS = "users"


def _now_iso() -> str:
    return datetime.utcnow().isoformat()


def _as_uuid(value) -> Optional[UUID]:
    if value is None or isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        return None


@dataclass(frozen=True)
class AuditEvent:
    user_id: str
    timestamp: str = field(default_factory=_now_iso, kw_only=True)

    action: ClassVar[str] = ""
    description: ClassVar[str] = ""
    entity_type: ClassVar[str] = ENTITY_USERS

    @property
    def actor_id(self) -> Optional[str]:
        return self.user_id

    @property
    def entity_id(self) -> str:
        return str(self.user_id)

    @property
    def before(self) -> Optional[dict]:
        return None

    @property
    def after(self) -> dict:
        return {"timestamp": self.timestamp}


@dataclass(frozen=True)
class LoginSucceeded(AuditEvent):
    device_id: Optional[str] = None

    action: ClassVar[str] = "USER_LOGIN"
    description: ClassVar[str] = "User logged in successfully"

    @property
    def after(self) -> dict:
        return {"device_id": self.device_id, "timestamp": self.timestamp}


@dataclass(frozen=True)
class TokenRefreshed(AuditEvent):
    action: ClassVar[str] = "TOKEN_REFRESH"
    description: ClassVar[str] = "Refresh token used"


@dataclass(frozen=True)
class LoggedOut(AuditEvent):
    sessions_revoked: int = 0

    action: ClassVar[str] = "USER_LOGOUT"
    description: ClassVar[str] = "User logged out"

    @property
    def after(self) -> dict:
        return {"sessions_revoked": self.sessions_revoked, "timestamp": self.timestamp}


@dataclass(frozen=True)
class UserRegistered(AuditEvent):
    role: str = ""

    action: ClassVar[str] = "USER_REGISTER"
    description: ClassVar[str] = "New user registered"

    @property
    def after(self) -> dict:
        return {"role": self.role, "timestamp": self.timestamp}


@dataclass(frozen=True)
class AccountVerified(AuditEvent):
    activated: bool = False

    action: ClassVar[str] = "ACCOUNT_VERIFIED"
    description: ClassVar[str] = "Account verified successfully"

    @property
    def after(self) -> dict:
        return {"activated": self.activated, "timestamp": self.timestamp}


@dataclass(frozen=True)
class VerificationCodeResent(AuditEvent):
    action: ClassVar[str] = "VERIFICATION_CODE_RESENT"
    description: ClassVar[str] = "Verification code resent via SMS"


@dataclass(frozen=True)
class PasswordResetRequested(AuditEvent):
    method: str = "email"

    action: ClassVar[str] = "PASSWORD_RESET_REQUEST"
    description: ClassVar[str] = "Password reset requested"

    @property
    def after(self) -> dict:
        return {"method": self.method, "timestamp": self.timestamp}


@dataclass(frozen=True)
class PasswordResetCompleted(AuditEvent):
    action: ClassVar[str] = "PASSWORD_RESET_COMPLETE"
    description: ClassVar[str] = "Password reset completed"


@dataclass(frozen=True)
class ActivationChanged(AuditEvent):
    """Admin toggled ``is_active`` on ``user_id``. The actor is the admin, not the user."""

    is_active: bool = True
    admin_id: Optional[str] = None
    reason: Optional[str] = None
    role: str = ""

    description: ClassVar[str] = "User activation changed"

    @property
    def action(self) -> str:  # type: ignore[override]
        return "USER_ACTIVATED" if self.is_active else "USER_DEACTIVATED"

    @property
    def actor_id(self) -> Optional[str]:
        return self.admin_id

    @property
    def before(self) -> dict:
        return {"is_active": not self.is_active}

    @property
    def after(self) -> dict:
        return {
            "is_active": self.is_active,
            "reason": self.reason,
            "role": self.role,
            "action_by": "admin" if self.admin_id else "system",
            "timestamp": self.timestamp,
        }


class AuditSink(Protocol):
    def record(self, event: AuditEvent) -> None:
        ...


class DatabaseAuditSink:
    """Writes audit events to ``activity_logs``. A failed write is logged and dropped."""

    def __init__(self, db: Session):
        self.db = db

    def record(self, event: AuditEvent) -> None:
        try:
            self.db.add(ActivityLog(
                actor_id=_as_uuid(event.actor_id),
                action=event.action,
                entity_type=event.entity_type,
                entity_id=event.entity_id,
                old_values=event.before,
                new_values=event.after,
                description=event.description,
            ))
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to record audit event {event.action} for {event.entity_id}: {e}")
