"""Application configuration using environment variables."""

from datetime import timedelta
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import AliasChoices, AnyHttpUrl, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

# Resolve the project root once so that `.env` is discovered regardless of CWD
PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent

DEFAULT_ALLOWED_FILE_TYPES = (
    "image/jpeg,image/png,image/gif,image/webp,application/pdf,text/plain,text/markdown"
)


class Settings(BaseSettings):
    """Load configuration from environment variables and `.env`."""

    model_config = SettingsConfigDict(
        env_file=str(PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app_env: str = Field(
        default="production",
        validation_alias=AliasChoices("APP_ENV", "ENVIRONMENT", "app_env"),
    )
    # Public base URL of the deployment, used for file links and reset emails
    app_url: str = Field(
        default="http://localhost:3000",
        validation_alias=AliasChoices("APP_URL", "NEXT_PUBLIC_APP_URL", "app_url"),
    )

    openrouter_api_key: Optional[SecretStr] = Field(
        default=None,
        validation_alias=AliasChoices("OPENROUTER_API_KEY", "openrouter_api_key"),
    )
    openrouter_base_url: AnyHttpUrl = Field(
        default_factory=lambda: AnyHttpUrl("https://openrouter.ai/api/v1"),
        validation_alias=AliasChoices("OPENROUTER_BASE_URL", "base_url"),
    )
    openrouter_site_url: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices(
            "OPENROUTER_SITE_URL",
            "HTTP_REFERER",
            "http_referer",
        ),
    )
    openrouter_site_name: str = Field(
        default="Chat App",
        validation_alias=AliasChoices(
            "OPENROUTER_SITE_NAME",
            "X_TITLE",
            "x_title",
        ),
    )
    request_timeout: float = Field(
        default=120.0,
        validation_alias=AliasChoices("OPENROUTER_TIMEOUT", "timeout"),
        ge=1,
    )
    default_chat_model: str = Field(
        default="anthropic/claude-3.5-sonnet",
        validation_alias=AliasChoices("DEFAULT_CHAT_MODEL", "default_chat_model"),
    )
    default_completion_model: str = Field(
        default="openai/gpt-4o",
        validation_alias=AliasChoices(
            "DEFAULT_COMPLETION_MODEL",
            "OPENROUTER_DEFAULT_MODEL",
            "default_completion_model",
        ),
    )

    database_path: Path = Field(
        default_factory=lambda: Path("data/orchat.db"),
        validation_alias=AliasChoices("DATABASE_PATH", "database_path"),
    )
    mcp_servers_path: Optional[Path] = Field(
        default=None,
        validation_alias=AliasChoices("MCP_SERVERS_PATH", "mcp_servers_path"),
    )

    file_storage_dir: Path = Field(
        default_factory=lambda: Path("storage/uploads"),
        validation_alias=AliasChoices("FILE_STORAGE_DIR", "file_storage_dir"),
    )
    file_retention_hours: float = Field(
        default=24,
        gt=0,
        validation_alias=AliasChoices("FILE_RETENTION_HOURS", "file_retention_hours"),
    )
    max_file_size_mb: float = Field(
        default=10,
        gt=0,
        validation_alias=AliasChoices("MAX_FILE_SIZE_MB", "max_file_size_mb"),
    )
    allowed_file_types: str = Field(
        default=DEFAULT_ALLOWED_FILE_TYPES,
        validation_alias=AliasChoices("ALLOWED_FILE_TYPES", "allowed_file_types"),
    )
    cleanup_interval_minutes: int = Field(
        default=60,
        ge=0,
        validation_alias=AliasChoices(
            "CLEANUP_INTERVAL_MINUTES",
            "cleanup_interval_minutes",
        ),
    )
    cleanup_secret_token: Optional[SecretStr] = Field(
        default=None,
        validation_alias=AliasChoices("CLEANUP_SECRET_TOKEN", "cleanup_secret_token"),
    )

    resend_api_key: Optional[SecretStr] = Field(
        default=None,
        validation_alias=AliasChoices("RESEND_API_KEY", "resend_api_key"),
    )
    resend_from_email: str = Field(
        default="onboarding@resend.dev",
        validation_alias=AliasChoices("RESEND_FROM_EMAIL", "resend_from_email"),
    )
    resend_base_url: str = Field(
        default="https://api.resend.com",
        validation_alias=AliasChoices("RESEND_BASE_URL", "resend_base_url"),
    )

    session_ttl_hours: int = Field(
        default=24 * 7,
        ge=1,
        validation_alias=AliasChoices("SESSION_TTL_HOURS", "session_ttl_hours"),
    )
    session_cookie_secure: bool = Field(
        default=False,
        validation_alias=AliasChoices("SESSION_COOKIE_SECURE", "session_cookie_secure"),
    )

    @property
    def is_development(self) -> bool:
        return self.app_env.lower() in {"development", "dev", "local"}

    @property
    def max_file_size_bytes(self) -> int:
        return int(self.max_file_size_mb * 1024 * 1024)

    @property
    def allowed_file_type_list(self) -> list[str]:
        return [item.strip() for item in self.allowed_file_types.split(",") if item.strip()]

    @property
    def file_retention(self) -> timedelta:
        return timedelta(hours=self.file_retention_hours)

    @property
    def session_ttl(self) -> timedelta:
        return timedelta(hours=self.session_ttl_hours)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached `Settings` instance."""

    return Settings()  # pyright: ignore[reportCallIssue]


__all__ = ["Settings", "get_settings"]
