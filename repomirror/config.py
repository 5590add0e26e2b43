"""Application configuration loaded from environment variables."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """RepoMirror application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Core
    secret_key: str = "change-me-in-production"
    debug: bool = False
    expose_docs: bool = False

    # Database
    database_url: str = "sqlite+aiosqlite:///data/db/repomirror.db"

    # Server
    host: str = "0.0.0.0"
    port: int = Field(default=8000, ge=1, le=65535)

    # CORS
    cors_origins: list[str] = Field(default_factory=list)
    trusted_hosts: list[str] = Field(default_factory=list)

    # Auth
    access_token_expire_minutes: int = Field(default=15, ge=1)
    auth_login_max_failures: int = Field(default=5, ge=1)
    auth_rate_limit_window_seconds: int = Field(default=300, ge=1)

    # Admin bootstrap
    admin_username: str = "admin"
    admin_password: str = "admin"

    # Response hardening
    security_headers_enabled: bool = True

    # GitHub
    github_api_url: str = "https://api.github.com"
    github_timeout_seconds: float = Field(default=15.0, gt=0)

    # Webhooks: public base URL GitHub delivers push events to
    public_base_url: str = "http://localhost:8000"
    webhook_secret: str = ""

    # Sync engine
    sync_file_delay_seconds: float = Field(default=0.1, ge=0)
    sweep_check_delay_seconds: float = Field(default=0.2, ge=0)
    sweep_interval_seconds: int = Field(default=0, ge=0)
    max_concurrent_syncs: int = Field(default=4, ge=1)

    @property
    def webhook_callback_url(self) -> str:
        """URL registered on source repositories for push events."""
        return f"{self.public_base_url.rstrip('/')}/api/webhooks/github"

    def validate_runtime_security(self) -> None:
        """Validate security-critical production settings."""
        if self.debug:
            return

        violations: list[str] = []
        if self.secret_key == "change-me-in-production" or len(self.secret_key) < 32:
            violations.append(
                "SECRET_KEY must be overridden with a high-entropy value (>=32 chars)"
            )
        if self.admin_password == "admin" or len(self.admin_password) < 12:
            violations.append("ADMIN_PASSWORD must be overridden with a strong value (>=12 chars)")
        if not self.trusted_hosts:
            violations.append("TRUSTED_HOSTS must be configured in production")
        if not self.public_base_url.startswith("https://"):
            violations.append("PUBLIC_BASE_URL must use https in production")

        if violations:
            joined = "; ".join(violations)
            raise ValueError(f"Insecure production configuration: {joined}")
