from functools import lru_cache
from typing import Literal, Optional

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEV_JWT_SECRET = "dev-member-session-secret"


class Settings(BaseSettings):
    """Global application settings."""

    # Application
    ENVIRONMENT: Literal["local", "development", "production"] = "local"
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./points_bank.db"
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 10
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 1800

    # Member sessions (first-party login, signed with our own secret)
    JWT_SECRET: str = DEV_JWT_SECRET
    JWT_ALGORITHM: str = "HS256"
    MEMBER_SESSION_TTL_SECONDS: int = 3600
    MEMBER_SESSION_COOKIE: str = "pb_member"

    # OAuth grant lifetimes (seconds)
    OAUTH_AUTHORIZATION_CODE_LIFETIME: int = 600
    OAUTH_ACCESS_TOKEN_LIFETIME: int = 3600
    OAUTH_REFRESH_TOKEN_LIFETIME: int = 14 * 24 * 3600
    OAUTH_DEFAULT_SCOPE: str = "profile points"
    # Access tokens carrying this scope never expire; revocation is the only way out.
    NON_EXPIRING_SCOPE: str = "pay-with-points"

    # Interactive authorize handshake
    CONSENT_SESSION_TTL_SECONDS: int = 900
    CONSENT_SESSION_COOKIE: str = "pb_consent"
    LOGIN_URL: str = "/login"
    CONSENT_URL: str = "/consent"

    # Gated debit (OTP) policy
    OTP_LIFETIME_SECONDS: int = 600
    OTP_DIGITS: int = 6
    EXPOSE_OTP: Optional[bool] = None

    # Ledger
    LEDGER_MAX_RETRIES: int = 3

    # Rate limiting
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_STORAGE_URI: str = "memory://"

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    @field_validator("DATABASE_URL")
    @classmethod
    def assemble_db_connection(cls, v: Optional[str]) -> str:
        if isinstance(v, str):
            if v.startswith("postgres://"):
                v = v.replace("postgres://", "postgresql://", 1)
            if v.startswith("postgresql://"):
                return v.replace("postgresql://", "postgresql+psycopg://", 1)
        return v

    @model_validator(mode="after")
    def check_production_secrets(self) -> "Settings":
        if self.ENVIRONMENT == "production" and self.JWT_SECRET == DEV_JWT_SECRET:
            raise ValueError("JWT_SECRET must be set explicitly in production")
        return self

    @property
    def is_sqlite(self) -> bool:
        return self.DATABASE_URL.startswith("sqlite")

    @property
    def otp_visible(self) -> bool:
        """Whether the OTP may be returned to the requesting partner."""
        if self.EXPOSE_OTP is not None:
            return self.EXPOSE_OTP
        return self.ENVIRONMENT != "production"


@lru_cache
def get_settings() -> Settings:
    """
    Return the global settings instance, cached.
    """
    return Settings()
