"""Application settings using Pydantic Settings for environment-based configuration."""

from functools import lru_cache
from typing import Literal

from pydantic import Field, RedisDsn, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from echoboard.errors import ConfigurationError


class Settings(BaseSettings):
    """
    Central configuration for the EchoBoard notification pipeline.

    All settings can be overridden via environment variables.
    Prefix is not used to allow standard env var names (e.g., REDIS_URL).
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    environment: Literal["development", "staging", "production"] = "development"
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    debug: bool = False

    # Queue transport
    queue_backend: Literal["redis", "memory"] = "redis"
    redis_url: RedisDsn | None = Field(default="redis://localhost:6379/0")
    queue_prefix: str = "echoboard"
    redis_connect_timeout_seconds: float = Field(default=30.0, gt=0)
    redis_command_timeout_seconds: float = Field(default=30.0, gt=0)

    # Channels
    email_concurrency: int = Field(default=5, ge=1, le=100)
    scheduled_concurrency: int = Field(default=2, ge=1, le=100)
    email_max_attempts: int = Field(default=3, ge=1, le=20)
    email_backoff_ms: int = Field(default=2000, ge=0)
    scheduled_max_attempts: int = Field(default=2, ge=1, le=20)
    scheduled_backoff_ms: int = Field(default=5000, ge=0)
    completed_retention: int = Field(default=10, ge=1)
    failed_retention: int = Field(default=1000, ge=1)
    job_timeout_seconds: float = Field(default=60.0, gt=0)
    stalled_timeout_ms: int = Field(default=90_000, ge=1_000)
    queue_poll_interval_seconds: float = Field(default=1.0, gt=0)

    # Producer
    enqueue_timeout_seconds: float = Field(default=30.0, gt=0)

    # Health monitor
    health_check_interval_seconds: float = Field(default=30.0, gt=0)
    health_probe_timeout_seconds: float = Field(default=5.0, gt=0)
    health_failure_threshold: int = Field(default=3, ge=1)
    reconnect_cooldown_seconds: float = Field(default=2.0, ge=0)
    shutdown_grace_seconds: float = Field(default=30.0, ge=0)

    # Worker error recovery
    worker_backoff_base_delay: float = Field(default=1.0, gt=0)
    worker_backoff_max_delay: float = Field(default=30.0, gt=0)

    # Outbound mail (Resend HTTP API)
    resend_api_key: str | None = None
    resend_api_url: str = "https://api.resend.com/emails"
    from_email: str = "EchoBoard <noreply@resend.dev>"
    verified_email: str | None = None
    dashboard_url: str = "https://echoboard.dev"
    mail_timeout_seconds: float = Field(default=10.0, gt=0)

    # Scheduling
    reminder_cron: str = "0 9 * * *"
    cleanup_max_age_hours: int = Field(default=168, ge=1)

    # Observability
    metrics_port: int = 8000

    @model_validator(mode="after")
    def check_stalled_timeout(self) -> "Settings":
        # A lease shorter than the handler timeout lets recovery reclaim a live job
        if self.stalled_timeout_ms <= self.job_timeout_seconds * 1000:
            raise ValueError(
                "STALLED_TIMEOUT_MS must exceed JOB_TIMEOUT_SECONDS expressed in milliseconds"
            )
        return self

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"

    @property
    def mail_configured(self) -> bool:
        """Check if the Resend API is configured."""
        return bool(self.resend_api_key)

    def validate_worker_config(self, use_mock_mail: bool = False) -> None:
        """
        Refuse to start a worker process with an unusable configuration.

        Args:
            use_mock_mail: Whether mail is captured locally instead of sent

        Raises:
            ConfigurationError: If a required setting is missing
        """
        missing = []
        if self.queue_backend == "redis" and not self.redis_url:
            missing.append("REDIS_URL")
        if not use_mock_mail and not self.mail_configured:
            missing.append("RESEND_API_KEY")

        if missing:
            raise ConfigurationError(
                f"Missing required environment variables: {', '.join(missing)}"
            )


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are loaded only once.
    Clear cache with get_settings.cache_clear() if needed.
    """
    return Settings()
