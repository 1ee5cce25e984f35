# gatekeeper/app/core/config.py
"""
Production-ready configuration using pydantic-settings.

Security considerations:
- No hardcoded secrets in production (SECRET_KEY must be set via env)
- CORS_ORIGINS parsed from comma-separated env var, never defaults to "*"
- Database URLs normalized for async drivers automatically
- The factory emergency code digest is flagged at startup in production
"""
from functools import lru_cache
from typing import List

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Digest of the factory emergency code "emergency-access-2024".
# Rotated on first use; must be replaced via env before going live.
DEFAULT_EMERGENCY_CODE_DIGEST = (
    "e11a7153ff818867b89a7c8aed499136d7086cf10ec6b226de9a65594f34f0c1"
)


class Settings(BaseSettings):
    """
    Strictly typed application settings.

    Priority for loading:
    1. Environment variables (highest priority)
    2. .env file (via pydantic-settings)
    3. Default values (lowest priority, dev-safe only)
    """

    # ─────────────────────────────────────────────────────────────
    # Application metadata
    # ─────────────────────────────────────────────────────────────
    PROJECT_NAME: str = "Gatekeeper"
    PROJECT_VERSION: str = "1.0.0"
    API_V1_STR: str = "/api/v1"

    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    # ─────────────────────────────────────────────────────────────
    # Security: JWT configuration for admin access tokens
    # SECRET_KEY MUST be set in production via environment variable
    # ─────────────────────────────────────────────────────────────
    SECRET_KEY: str = "INSECURE_DEV_KEY_CHANGE_IN_PRODUCTION"
    ALGORITHM: str = "HS256"
    ADMIN_TOKEN_EXPIRE_MINUTES: int = 30

    # ─────────────────────────────────────────────────────────────
    # Database Configuration (user store only)
    # Priority: DATABASE_URL env var → SQLite fallback for local dev
    # ─────────────────────────────────────────────────────────────
    DATABASE_URL: str = "sqlite+aiosqlite:///./gatekeeper.db"
    DATABASE_ECHO: bool = False

    @field_validator("DATABASE_URL", mode="before")
    @classmethod
    def normalize_database_url(cls, v: str) -> str:
        """
        Normalize database URLs for async SQLAlchemy compatibility.

        Conversions:
        - postgres://     → postgresql+asyncpg://
        - postgresql://   → postgresql+asyncpg://
        - sqlite:///      → sqlite+aiosqlite:///
        """
        if v is None:
            return "sqlite+aiosqlite:///./gatekeeper.db"

        url = v.strip()

        if url.startswith("postgres://"):
            return url.replace("postgres://", "postgresql+asyncpg://", 1)

        if url.startswith("postgresql://") and "+asyncpg" not in url:
            return url.replace("postgresql://", "postgresql+asyncpg://", 1)

        if url.startswith("sqlite:///") and "+aiosqlite" not in url:
            return url.replace("sqlite:///", "sqlite+aiosqlite:///", 1)

        return url

    CORS_ORIGINS: str = "http://localhost:5500,http://127.0.0.1:5500"

    @property
    def BACKEND_CORS_ORIGINS(self) -> List[str]:
        """Parse CORS_ORIGINS into a list. Empty string means no origins, not "*"."""
        if not self.CORS_ORIGINS or not self.CORS_ORIGINS.strip():
            return []

        return [
            origin.strip()
            for origin in self.CORS_ORIGINS.split(",")
            if origin.strip()
        ]

    # ─────────────────────────────────────────────────────────────
    # Outbound email
    # Without EMAIL_API_KEY notifications are only logged (dev mode)
    # ─────────────────────────────────────────────────────────────
    ADMIN_EMAIL: str = "admin@example.com"
    EMAIL_API_KEY: str = ""
    EMAIL_API_URL: str = "https://api.brevo.com/v3/smtp/email"
    EMAIL_FROM_ADDRESS: str = "security@example.com"
    EMAIL_FROM_NAME: str = "Gatekeeper Security"
    EMAIL_MAX_RETRIES: int = 3
    EMAIL_TIMEOUT_SECONDS: float = 10.0

    # ─────────────────────────────────────────────────────────────
    # Recovery / emergency access
    # ─────────────────────────────────────────────────────────────
    RECOVERY_REQUEST_TTL_MINUTES: int = 30
    RECOVERY_SWEEP_INTERVAL_MINUTES: int = 15
    RECOVERY_CODE_LENGTH: int = 6
    EMERGENCY_CODE_LENGTH: int = 16
    EMERGENCY_CODE_DIGEST: str = DEFAULT_EMERGENCY_CODE_DIGEST

    # Failed attempt limits (recovery steps and emergency code)
    MAX_FAILED_ATTEMPTS: int = 5
    LOCKOUT_DURATION_MINUTES: int = 15

    # ─────────────────────────────────────────────────────────────
    # Two-factor
    # ─────────────────────────────────────────────────────────────
    TOTP_ISSUER: str = "Gatekeeper"
    BACKUP_CODE_COUNT: int = 10

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        # Extra fields in .env are ignored (prevents config injection)
        extra="ignore",
    )

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.ENVIRONMENT.lower() == "production"

    @property
    def email_enabled(self) -> bool:
        return bool(self.EMAIL_API_KEY.strip())


@lru_cache()
def get_settings() -> Settings:
    """
    Cached settings instance.

    Settings are loaded once and shared across the application.
    """
    return Settings()


settings = get_settings()
