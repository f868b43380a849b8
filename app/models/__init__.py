from app.models.user import User, UserRole, Language
from app.models.staff_profile import StaffProfile
from app.models.activity_log import ActivityLog
from app.models.token_blacklist import TokenBlacklist, UserRefreshToken

__all__ = [
    "User",
    "UserRole",
    "Language",
    "StaffProfile",
    "ActivityLog",
    "TokenBlacklist",
    "UserRefreshToken",
]
