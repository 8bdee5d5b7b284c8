"""Application settings loaded from the environment."""
from pydantic_settings import BaseSettings
from pydantic import field_validator
from typing import Literal, Optional


class Settings(BaseSettings):
    """Application configuration from environment variables."""

    # Environment
    ENV: Literal["dev", "staging", "prod"] = "dev"

    # Database (any SQLAlchemy URL; Turso/libSQL takes precedence when set)
    DATABASE_URL: str = "sqlite:///./retrace.db"
    TURSO_DATABASE_URL: Optional[str] = None
    TURSO_AUTH_TOKEN: Optional[str] = None

    # API bearer token for internal dashboard endpoints
    BEARER_TOKEN: Optional[str] = None

    # Feedback sync: GitHub
    GITHUB_TOKEN: Optional[str] = None
    FEEDBACK_SYNC_GITHUB_OWNER: str = "haseab"
    FEEDBACK_SYNC_GITHUB_REPO: str = "retrace"
    GITHUB_API_BASE: str = "https://api.github.com"

    # Feedback sync: Featurebase
    FEATUREBASE_ORGANIZATION: str = "retrace"

    # Upstream request timeout (seconds)
    SYNC_HTTP_TIMEOUT: float = 30.0

    # Cloudflare R2 download analytics
    CLOUDFLARE_ANALYTICS_API_TOKEN: Optional[str] = None
    CLOUDFLARE_ACCOUNT_ID: Optional[str] = None
    CLOUDFLARE_R2_ANALYTICS_BUCKET: str = "retrace"
    CLOUDFLARE_R2_ANALYTICS_DAYS: int = 30
    CLOUDFLARE_ANALYTICS_TIMEOUT: float = 12.0

    # Rate Limiting
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_DOWNLOAD_REQUESTS: int = 40  # requests per window
    RATE_LIMIT_DOWNLOAD_WINDOW: int = 300  # seconds
    DOWNLOAD_DEDUP_WINDOW: int = 30  # seconds

    # Startup
    RUN_STARTUP_MIGRATIONS: bool = True

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: Literal["json", "text"] = "json"  # JSON for production
    LOG_FILE: Optional[str] = None  # Optional file logging

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "allow"

    @field_validator('DATABASE_URL')
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        """Validate DATABASE_URL is provided."""
        if not v:
            raise ValueError(
                "DATABASE_URL is required. "
                "Example: sqlite:///./retrace.db"
            )
        return v

    @property
    def bearer_token(self) -> Optional[str]:
        """Configured API secret, or None when blank."""
        if not self.BEARER_TOKEN:
            return None
        token = self.BEARER_TOKEN.strip()
        return token or None

    def validate_required_for_env(self) -> None:
        """
        Validate all required settings for the current environment.

        Raises:
            ValueError: If required settings are missing
        """
        errors = []

        if not self.DATABASE_URL and not self.TURSO_DATABASE_URL:
            errors.append("DATABASE_URL or TURSO_DATABASE_URL is required")

        if self.ENV == "prod":
            if not self.bearer_token:
                errors.append("BEARER_TOKEN must be set in production")
            if self.TURSO_DATABASE_URL and not self.TURSO_AUTH_TOKEN:
                errors.append("TURSO_AUTH_TOKEN is required when TURSO_DATABASE_URL is set")

        if errors:
            raise ValueError(
                "Configuration validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
            )


# Singleton settings instance
settings = Settings()
