from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    # Environment
    ENVIRONMENT: str = "development"

    # Database
    DATABASE_URL: str

    # JWT - access and refresh tokens are signed with independent secrets
    JWT_SECRET: str
    JWT_REFRESH_SECRET: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 24 * 60
    REFRESH_TOKEN_EXPIRE_DAYS: int = 7

    # One-time codes
    VERIFICATION_CODE_LENGTH: int = 5
    VERIFICATION_CODE_EXPIRE_MINUTES: int = 10
    RESET_TOKEN_EXPIRE_MINUTES: int = 60

    # Verified self-registered accounts become active without an admin step
    ACTIVATE_ON_VERIFICATION: bool = True

    # Revocation store: "database" or "redis"
    REVOCATION_BACKEND: str = "database"
    REDIS_URL: Optional[str] = None
    REDIS_SOCKET_TIMEOUT: float = 2.0
    REVOCATION_WRITE_RETRIES: int = 3
    TOKEN_CLEANUP_INTERVAL_MINUTES: int = 30

    # Notification service (logged only when no URL is configured)
    NOTIFICATION_SERVICE_URL: Optional[str] = None
    NOTIFICATION_API_KEY: Optional[str] = None
    NOTIFICATION_TIMEOUT_SECONDS: float = 5.0

    # Phone numbers are stored in international format
    DEFAULT_COUNTRY_CODE: str = "250"

    # CORS
    FRONTEND_URL: str = "http://localhost:5173"

    @property
    def access_token_ttl_seconds(self) -> int:
        return self.ACCESS_TOKEN_EXPIRE_MINUTES * 60

    @property
    def refresh_token_ttl_seconds(self) -> int:
        return self.REFRESH_TOKEN_EXPIRE_DAYS * 24 * 60 * 60

    def validate_required_secrets(self) -> list[str]:
        """Validate that critical secrets are set. Returns list of errors."""
        errors = []
        if not self.JWT_SECRET or len(self.JWT_SECRET) < 16:
            errors.append("JWT_SECRET must be set and at least 16 characters")
        if not self.JWT_REFRESH_SECRET or len(self.JWT_REFRESH_SECRET) < 16:
            errors.append("JWT_REFRESH_SECRET must be set and at least 16 characters")
        if self.JWT_SECRET and self.JWT_SECRET == self.JWT_REFRESH_SECRET:
            errors.append("JWT_SECRET and JWT_REFRESH_SECRET must differ")
        if not self.DATABASE_URL:
            errors.append("DATABASE_URL must be set")
        if self.REVOCATION_BACKEND not in ("database", "redis"):
            errors.append("REVOCATION_BACKEND must be 'database' or 'redis'")
        if self.REVOCATION_BACKEND == "redis" and not self.REDIS_URL:
            errors.append("REDIS_URL must be set when REVOCATION_BACKEND is 'redis'")
        return errors

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
