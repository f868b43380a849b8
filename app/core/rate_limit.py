"""Rate limiting configuration using slowapi."""

from slowapi import Limiter
from slowapi.util import get_remote_address
from fastapi import Request


def get_user_identifier(request: Request) -> str:
    """
    Get identifier for rate limiting.
    Uses user ID if authenticated, otherwise IP address.
    """
    user = getattr(request.state, "user", None)
    if user and hasattr(user, "id"):
        return f"user:{user.id}"

    return get_remote_address(request)


# Authenticated routes, keyed per user
limiter = Limiter(
    key_func=get_user_identifier,
    default_limits=["1000/minute"],
)

# Public auth routes (login, register, recovery), keyed per IP
public_limiter = Limiter(
    key_func=get_remote_address,
    default_limits=["100/minute"],
)

LOGIN_LIMIT = "10/minute"
REGISTER_LIMIT = "5/minute"
REFRESH_LIMIT = "30/minute"
PASSWORD_RESET_LIMIT = "5/minute"
VERIFICATION_LIMIT = "10/minute"
