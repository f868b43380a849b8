"""Input sanitization and validation utilities."""

import re
from typing import Optional
import bleach

from app.core.config import settings


# Maximum lengths for different field types
MAX_LENGTHS = {
    "name": 100,
    "email": 255,
    "password": 128,
    "position": 100,
    "reason": 500,
    "default": 255,
}

# Allowed characters patterns
PATTERNS = {
    "email": re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$"),
    # Rwandan mobile numbers: +250 / 250 / 0 followed by 7x or 8x and eight digits
    "phone": re.compile(r"^(\+250|250|0)[78]\d{8}$"),
}

PASSWORD_MIN_LENGTH = 8


def sanitize_string(
    value: str,
    max_length: int = MAX_LENGTHS["default"],
    strip_html: bool = True,
    allow_newlines: bool = False,
) -> str:
    """
    Sanitize a string input.

    - Strips leading/trailing whitespace
    - Removes or escapes HTML
    - Truncates to max length
    - Optionally removes newlines
    """
    if not value:
        return ""

    # Strip whitespace
    value = value.strip()

    # Remove HTML tags if requested
    if strip_html:
        value = bleach.clean(value, tags=[], strip=True)

    # Remove or normalize newlines
    if not allow_newlines:
        value = " ".join(value.split())

    # Truncate to max length
    if len(value) > max_length:
        value = value[:max_length]

    return value


def sanitize_name(value: str) -> str:
    """Sanitize a person name."""
    return sanitize_string(value, max_length=MAX_LENGTHS["name"])


def sanitize_email(value: Optional[str]) -> Optional[str]:
    """Sanitize and lowercase an email. Empty input becomes None."""
    if not value:
        return None
    return sanitize_string(value, max_length=MAX_LENGTHS["email"]).lower() or None


def validate_email(value: str) -> bool:
    """Validate email format."""
    if not value or len(value) > MAX_LENGTHS["email"]:
        return False
    return bool(PATTERNS["email"].match(value))


def validate_phone(value: str) -> bool:
    """Validate a Rwandan mobile number in any accepted local or international form."""
    if not value:
        return False
    compact = re.sub(r"[\s\-()]", "", value)
    return bool(PATTERNS["phone"].match(compact))


def normalize_phone(value: str) -> str:
    """
    Format a phone number in international form, e.g. 0788123456 -> +250788123456.
    """
    digits = re.sub(r"\D", "", value or "")
    country_code = settings.DEFAULT_COUNTRY_CODE

    if digits.startswith(country_code):
        return f"+{digits}"
    if digits.startswith("0"):
        return f"+{country_code}{digits[1:]}"
    if len(digits) == 9:
        return f"+{country_code}{digits}"
    return f"+{digits}"


def password_policy_violation(password: str) -> Optional[str]:
    """Return a description of the first password rule broken, or None."""
    if len(password) < PASSWORD_MIN_LENGTH:
        return f"Password must be at least {PASSWORD_MIN_LENGTH} characters"
    if len(password) > MAX_LENGTHS["password"]:
        return f"Password must be at most {MAX_LENGTHS['password']} characters"
    if not any(c.isupper() for c in password):
        return "Password must contain at least one uppercase letter"
    if not any(c.islower() for c in password):
        return "Password must contain at least one lowercase letter"
    if not any(c.isdigit() for c in password):
        return "Password must contain at least one number"
    if not any(not c.isalnum() for c in password):
        return "Password must contain at least one special character"
    return None
