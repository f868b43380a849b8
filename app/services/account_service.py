import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from fastapi import BackgroundTasks
from sqlalchemy.exc import IntegrityError

from app.core.config import settings
from app.core.exceptions import (
    AlreadyExistsError,
    CodeExpiredError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from app.core.sanitization import (
    MAX_LENGTHS,
    normalize_phone,
    password_policy_violation,
    sanitize_email,
    sanitize_name,
    sanitize_string,
    validate_email,
    validate_phone,
)
from app.core.security import generate_numeric_code, generate_reset_token, get_password_hash
from app.models import Language, StaffProfile, User, UserRole
from app.services.audit import (
    AccountVerified,
    ActivationChanged,
    AuditSink,
    PasswordResetCompleted,
    PasswordResetRequested,
    UserRegistered,
    VerificationCodeResent,
)
from app.services.notifications import Channel, NotificationGateway, Recipient
from app.services.revocation_store import RevocationStore, RevocationStoreError, with_retries
from app.services.token_service import TokenIssuer, TokenPair
from app.services.user_directory import StaffProfileDirectory, UserDirectory

logger = logging.getLogger(__name__)

RESET_REQUESTED_MESSAGE = "If an account exists, password reset instructions have been sent"

LANGUAGE_ALIASES = {"english": Language.EN.value, "kinyarwanda": Language.RW.value}

# Attempts at drawing a verification code no other pending account holds
MAX_CODE_ATTEMPTS = 10


@dataclass
class RegistrationResult:
    user: User
    tokens: TokenPair
    verification_required: bool = True


class AccountService:
    """Registration, verification, password recovery and activation."""

    def __init__(
        self,
        users: UserDirectory,
        staff_profiles: StaffProfileDirectory,
        tokens: TokenIssuer,
        store: RevocationStore,
        notifications: NotificationGateway,
        audit: AuditSink,
        background_tasks: Optional[BackgroundTasks] = None,
    ):
        self.users = users
        self.staff_profiles = staff_profiles
        self.tokens = tokens
        self.store = store
        self.notifications = notifications
        self.audit = audit
        self.background_tasks = background_tasks

    # Registration and verification

    def register(
        self,
        phone: str,
        password: str,
        full_name: str,
        email: Optional[str] = None,
        role: Optional[str] = None,
        language: Optional[str] = None,
        device_id: Optional[str] = None,
    ) -> RegistrationResult:
        violation = password_policy_violation(password or "")
        if violation:
            raise ValidationError(violation)

        if not phone:
            raise ValidationError("Phone number is required")
        if not validate_phone(phone):
            raise ValidationError("Invalid Rwandan phone number")

        role = role or UserRole.BENEFICIARY.value
        if role == UserRole.ADMIN.value:
            raise ForbiddenError("Admin registration is not allowed")
        if role not in (UserRole.DONOR.value, UserRole.BENEFICIARY.value):
            raise ValidationError(f"Unknown role: {role}")

        language = (language or Language.EN.value).strip().lower()
        language = LANGUAGE_ALIASES.get(language, language)
        if language not in (Language.EN.value, Language.RW.value):
            raise ValidationError(f"Unsupported language: {language}")

        email = sanitize_email(email)
        if email and not validate_email(email):
            raise ValidationError("Invalid email address")

        full_name = sanitize_name(full_name)
        if not full_name:
            raise ValidationError("Full name is required")

        phone = normalize_phone(phone)
        if self.users.exists_for(email, phone):
            raise AlreadyExistsError("User", "User with this email or phone already exists")

        user = User(
            email=email,
            phone=phone,
            full_name=full_name,
            password_hash=get_password_hash(password),
            role=role,
            language=language,
            is_verified=False,
            is_active=False,
            verification_code=self._new_verification_code(),
            verification_code_expires_at=self._verification_expiry(),
        )
        try:
            user = self.users.save(user)
        except IntegrityError:
            # Lost a race with a concurrent registration of the same email or phone
            self.users.rollback()
            raise AlreadyExistsError("User", "User with this email or phone already exists")

        tokens = self.tokens.issue(user)

        recipient = Recipient.from_user(user)
        code = user.verification_code
        channel = Channel.EMAIL if user.email else Channel.SMS
        self._notify("welcome", lambda: self.notifications.send_welcome(recipient))
        self._notify(
            "verification code",
            lambda: self.notifications.send_verification_code(recipient, code, channel),
        )

        self.audit.record(UserRegistered(user_id=str(user.id), role=user.role))
        logger.info(f"Registered {user.role} {user.id} (device {device_id or '-'})")

        return RegistrationResult(user=user, tokens=tokens, verification_required=True)

    def verify_account(self, code: str) -> dict:
        code = (code or "").strip()
        if not code:
            raise ValidationError("Verification code is required")

        user = self.users.find_by_verification_code(code)
        if not user:
            # Same code but past its expiry gets a distinct error
            if self.users.find_by_verification_code(code, unexpired_only=False):
                raise CodeExpiredError()
            raise NotFoundError("Verification code", "Invalid verification code")

        user.is_verified = True
        user.verified_at = datetime.utcnow()
        user.verification_code = None
        user.verification_code_expires_at = None
        activated = False
        if settings.ACTIVATE_ON_VERIFICATION and not user.is_active:
            user.is_active = True
            activated = True
        self.users.save(user)

        self.audit.record(AccountVerified(user_id=str(user.id), activated=activated))
        logger.info(f"User {user.id} verified (activated={activated})")

        return {"message": "Account verified successfully", "is_active": user.is_active}

    def resend_verification_code(self, phone: str) -> dict:
        if not phone:
            raise ValidationError("Phone number is required")

        user = self.users.find_by_phone(phone)
        if not user:
            raise NotFoundError("User")
        if user.is_verified:
            raise ValidationError("Account is already verified")

        user.verification_code = self._new_verification_code()
        user.verification_code_expires_at = self._verification_expiry()
        self.users.save(user)

        recipient = Recipient.from_user(user)
        code = user.verification_code
        self._notify(
            "verification code",
            lambda: self.notifications.send_verification_code(recipient, code, Channel.SMS),
        )
        self.audit.record(VerificationCodeResent(user_id=str(user.id)))

        return {"message": "Verification code sent successfully"}

    # Password recovery

    def forgot_password(self, email: Optional[str] = None, phone: Optional[str] = None) -> dict:
        """Start a reset. The response never reveals whether an account matched."""
        if not email and not phone:
            raise ValidationError("Email or phone is required")

        user = None
        method = "email"
        if email:
            user = self.users.find_by_email(email)
        if not user and phone:
            user = self.users.find_by_phone(phone)
            method = "phone"

        if not user:
            logger.info("Password reset requested for an unknown identifier")
            return {"message": RESET_REQUESTED_MESSAGE}

        user.reset_token = generate_reset_token()
        user.reset_token_expires_at = datetime.utcnow() + timedelta(minutes=settings.RESET_TOKEN_EXPIRE_MINUTES)
        self.users.save(user)

        token = user.reset_token
        recipient = Recipient.from_user(user)
        if recipient.email:
            self._notify(
                "password reset email",
                lambda: self.notifications.send_password_reset(recipient, token, Channel.EMAIL),
            )
        if recipient.phone:
            self._notify(
                "password reset SMS",
                lambda: self.notifications.send_password_reset(recipient, token, Channel.SMS),
            )

        self.audit.record(PasswordResetRequested(user_id=str(user.id), method=method))
        return {"message": RESET_REQUESTED_MESSAGE}

    def reset_password(self, token: str, new_password: str, confirm_password: str) -> dict:
        if new_password != confirm_password:
            raise ValidationError("Passwords do not match")
        violation = password_policy_violation(new_password or "")
        if violation:
            raise ValidationError(violation)

        user = self.users.find_by_reset_token(token or "")
        if not user:
            raise NotFoundError("Reset token", "Invalid or expired reset token")

        user.password_hash = get_password_hash(new_password)
        user.reset_token = None
        user.reset_token_expires_at = None
        self.users.save(user)

        try:
            revoked = with_retries(
                lambda: self.store.revoke_all_user_tokens(str(user.id)),
                description="revoke sessions after password reset",
            )
            logger.info(f"Password reset for user {user.id} ended {revoked} session(s)")
        except RevocationStoreError as e:
            logger.error(f"SECURITY: sessions of user {user.id} survived a password reset: {e}")

        self.audit.record(PasswordResetCompleted(user_id=str(user.id)))
        return {"message": "Password reset successfully"}

    # Administration

    def set_activation(
        self,
        user_id: str,
        is_active: bool,
        actor_id: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> User:
        user = self.users.update_activation(user_id, is_active)
        if not user:
            raise NotFoundError("User")

        if not is_active:
            try:
                self.store.revoke_all_user_tokens(str(user.id))
            except RevocationStoreError as e:
                # Deactivation still stands; authenticate() rejects inactive owners
                logger.warning(f"Could not revoke sessions of deactivated user {user.id}: {e}")

        if reason:
            reason = sanitize_string(reason, max_length=MAX_LENGTHS["reason"])

        self.audit.record(ActivationChanged(
            user_id=str(user.id),
            is_active=is_active,
            admin_id=str(actor_id) if actor_id else None,
            reason=reason,
            role=user.role,
        ))
        logger.info(f"User {user.id} {'activated' if is_active else 'deactivated'} by {actor_id or 'system'}")
        return user

    def complete_staff_profile(self, user: User, position: str, department: Optional[str] = None) -> StaffProfile:
        if not user.is_staff:
            raise ForbiddenError("Only staff accounts have a staff profile")
        if self.staff_profiles.exists(user.id):
            raise AlreadyExistsError("Staff profile")

        position = sanitize_string(position, max_length=MAX_LENGTHS["position"])
        if not position:
            raise ValidationError("Position is required")
        if department:
            department = sanitize_string(department, max_length=MAX_LENGTHS["default"]) or None

        return self.staff_profiles.create(user.id, position, department)

    # Helpers

    def _new_verification_code(self) -> str:
        for _ in range(MAX_CODE_ATTEMPTS):
            code = generate_numeric_code()
            if not self.users.verification_code_in_use(code):
                return code
        logger.warning("Could not draw an unused verification code, reusing a colliding one")
        return code

    @staticmethod
    def _verification_expiry() -> datetime:
        return datetime.utcnow() + timedelta(minutes=settings.VERIFICATION_CODE_EXPIRE_MINUTES)

    def _notify(self, what: str, send: Callable[[], None]) -> None:
        """Queue a send to run after the response, or send now when there is no request."""
        if self.background_tasks is not None:
            self.background_tasks.add_task(_deliver, what, send)
        else:
            _deliver(what, send)


def _deliver(what: str, send: Callable[[], None]) -> None:
    try:
        send()
    except Exception as e:
        logger.error(f"Failed to send {what} notification: {e}")
