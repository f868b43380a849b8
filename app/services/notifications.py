import enum
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import httpx

from app.core.config import settings
from app.models import User

logger = logging.getLogger(__name__)


class Channel(str, enum.Enum):
    EMAIL = "email"
    SMS = "sms"


def _mask(value: Optional[str]) -> str:
    if not value:
        return "-"
    return value[:3] + "***" + value[-2:]


@dataclass(frozen=True)
class Recipient:
    """Snapshot of the user fields a notification needs, safe to use after the request's session is gone."""

    id: str
    role: str
    language: str
    email: Optional[str] = None
    phone: Optional[str] = None

    @classmethod
    def from_user(cls, user: User) -> "Recipient":
        return cls(
            id=str(user.id),
            role=user.role,
            language=user.language,
            email=user.email,
            phone=user.phone,
        )


class NotificationGateway(ABC):
    """
    Outbound notification delivery. Delivery is queued and retried by the
    notification service; callers treat every send as fire-and-forget.
    """

    @abstractmethod
    def send_verification_code(self, user: Recipient, code: str, channel: Channel) -> None:
        ...

    @abstractmethod
    def send_password_reset(self, user: Recipient, token: str, channel: Channel) -> None:
        ...

    @abstractmethod
    def send_welcome(self, user: Recipient) -> None:
        """In-app welcome message."""
        ...

    def close(self) -> None:
        pass


class LoggingNotificationGateway(NotificationGateway):
    """Development gateway: logs what would have been sent."""

    def send_verification_code(self, user, code, channel):
        destination = user.email if channel == Channel.EMAIL else user.phone
        logger.info(f"[notify] verification code via {channel.value} to {_mask(destination)}")

    def send_password_reset(self, user, token, channel):
        destination = user.email if channel == Channel.EMAIL else user.phone
        logger.info(f"[notify] password reset via {channel.value} to {_mask(destination)}")

    def send_welcome(self, user):
        logger.info(f"[notify] welcome notification for user {user.id} ({user.role})")


class HttpNotificationGateway(NotificationGateway):
    """Posts notification jobs to the notification service's queue endpoint."""

    def __init__(self, base_url: str, api_key: Optional[str] = None, timeout: float = 5.0):
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self.client = httpx.Client(base_url=base_url.rstrip("/"), headers=headers, timeout=timeout)

    def _post(self, path: str, payload: dict) -> None:
        resp = self.client.post(path, json=payload)
        resp.raise_for_status()

    def send_verification_code(self, user, code, channel):
        self._post(f"/notifications/{channel.value}/verification", {
            "user_id": str(user.id),
            "to": user.email if channel == Channel.EMAIL else user.phone,
            "language": user.language,
            "code": code,
            "expires_in_minutes": settings.VERIFICATION_CODE_EXPIRE_MINUTES,
        })

    def send_password_reset(self, user, token, channel):
        self._post(f"/notifications/{channel.value}/password-reset", {
            "user_id": str(user.id),
            "to": user.email if channel == Channel.EMAIL else user.phone,
            "language": user.language,
            "token": token,
            "reset_url": f"{settings.FRONTEND_URL}/reset-password?token={token}",
        })

    def send_welcome(self, user):
        self._post("/notifications/in-app/welcome", {
            "user_id": str(user.id),
            "role": user.role,
            "language": user.language,
        })

    def close(self) -> None:
        self.client.close()


def build_notification_gateway() -> NotificationGateway:
    """Construct the gateway once at startup from settings."""
    if settings.NOTIFICATION_SERVICE_URL:
        return HttpNotificationGateway(
            settings.NOTIFICATION_SERVICE_URL,
            api_key=settings.NOTIFICATION_API_KEY,
            timeout=settings.NOTIFICATION_TIMEOUT_SECONDS,
        )
    return LoggingNotificationGateway()
