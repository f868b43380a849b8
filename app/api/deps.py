from typing import Optional

from fastapi import BackgroundTasks, Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.core.exceptions import ForbiddenError
from app.models import User
from app.services.account_service import AccountService
from app.services.audit import DatabaseAuditSink
from app.services.auth_service import SessionService
from app.services.credential_validator import CredentialValidator
from app.services.notifications import LoggingNotificationGateway, NotificationGateway
from app.services.revocation_store import RevocationStore, build_revocation_store
from app.services.token_service import TokenIssuer
from app.services.user_directory import StaffProfileDirectory, UserDirectory


# HTTP Bearer token scheme
security = HTTPBearer()


def get_revocation_store(request: Request, db: Session = Depends(get_db)) -> RevocationStore:
    """Revocation store for this request, backed by the shared Redis client when configured."""
    redis_client = getattr(request.app.state, "redis_client", None)
    return build_revocation_store(db, redis_client)


def get_notification_gateway(request: Request) -> NotificationGateway:
    """The gateway constructed at startup."""
    gateway: Optional[NotificationGateway] = getattr(request.app.state, "notification_gateway", None)
    if gateway is None:
        gateway = LoggingNotificationGateway()
        request.app.state.notification_gateway = gateway
    return gateway


def get_session_service(
    db: Session = Depends(get_db),
    store: RevocationStore = Depends(get_revocation_store),
) -> SessionService:
    users = UserDirectory(db)
    return SessionService(
        users=users,
        staff_profiles=StaffProfileDirectory(db),
        validator=CredentialValidator(users),
        tokens=TokenIssuer(store),
        store=store,
        audit=DatabaseAuditSink(db),
    )


def get_account_service(
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    store: RevocationStore = Depends(get_revocation_store),
    notifications: NotificationGateway = Depends(get_notification_gateway),
) -> AccountService:
    return AccountService(
        users=UserDirectory(db),
        staff_profiles=StaffProfileDirectory(db),
        tokens=TokenIssuer(store),
        store=store,
        notifications=notifications,
        audit=DatabaseAuditSink(db),
        background_tasks=background_tasks,
    )


def get_bearer_token(credentials: HTTPAuthorizationCredentials = Depends(security)) -> str:
    return credentials.credentials


def get_current_user(
    token: str = Depends(get_bearer_token),
    sessions: SessionService = Depends(get_session_service),
) -> User:
    """
    Dependency to get the current authenticated user from the bearer token.
    Raises InvalidTokenError if the token is invalid, revoked, or its owner is inactive.
    """
    return sessions.authenticate(token)


def require_admin(
    current_user: User = Depends(get_current_user),
) -> User:
    """
    Dependency to require the staff admin role.
    """
    if not current_user.is_staff:
        raise ForbiddenError("Admin access required")
    return current_user
