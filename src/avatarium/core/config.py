"""Application configuration using Pydantic BaseSettings."""

import logging

import structlog
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Constructed once per invocation (request, cron run, CLI call). Never cache
    an instance at module level: invocations are independent and the values
    (test vs. production mode, secrets) may differ between them.
    """

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Database
    database_url: str = Field(alias="DATABASE_URL")
    db_pool_size: int = Field(default=20, alias="DB_POOL_SIZE")

    # Application Environment
    app_env: str = Field(default="development", alias="APP_ENV")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    app_base_url: str = Field(default="http://localhost:8000", alias="APP_BASE_URL")
    cors_origins: str = Field(default="http://localhost:3000", alias="CORS_ORIGINS")

    # Replicate image generation
    replicate_api_token: str = Field(default="", alias="REPLICATE_API_TOKEN")
    replicate_model: str = Field(default="google/nano-banana-pro", alias="REPLICATE_MODEL")
    generation_aspect_ratio: str = Field(default="3:4", alias="GENERATION_ASPECT_RATIO")
    generation_output_format: str = Field(default="jpg", alias="GENERATION_OUTPUT_FORMAT")

    # Dispatcher bounds
    max_photos_per_job: int = Field(default=23, alias="MAX_PHOTOS_PER_JOB")
    min_reference_images: int = Field(default=1, alias="MIN_REFERENCE_IMAGES")
    max_reference_images: int = Field(default=14, alias="MAX_REFERENCE_IMAGES")
    dispatch_concurrency: int = Field(default=3, alias="DISPATCH_CONCURRENCY")
    dispatch_chunk_size: int = Field(default=5, alias="DISPATCH_CHUNK_SIZE")

    # Task poller
    poll_batch_size: int = Field(default=10, alias="POLL_BATCH_SIZE")
    poll_time_budget_seconds: float = Field(default=45.0, alias="POLL_TIME_BUDGET_SECONDS")
    task_max_wait_seconds: int = Field(default=300, alias="TASK_MAX_WAIT_SECONDS")
    poll_interval_seconds: int = Field(default=10, alias="POLL_INTERVAL_SECONDS")
    embedded_poller_enabled: bool = Field(default=False, alias="EMBEDDED_POLLER_ENABLED")

    # Stuck-job sweep
    stuck_processing_minutes: int = Field(default=10, alias="STUCK_PROCESSING_MINUTES")
    stuck_pending_minutes: int = Field(default=15, alias="STUCK_PENDING_MINUTES")

    # Durable work queue (QStash)
    qstash_token: str = Field(default="", alias="QSTASH_TOKEN")
    qstash_url: str = Field(default="https://qstash.upstash.io", alias="QSTASH_URL")
    job_callback_secret: str = Field(default="", alias="JOB_CALLBACK_SECRET")

    # S3-compatible object storage (Cloudflare R2)
    storage_endpoint_url: str = Field(default="", alias="STORAGE_ENDPOINT_URL")
    storage_access_key_id: str = Field(default="", alias="STORAGE_ACCESS_KEY_ID")
    storage_secret_access_key: str = Field(default="", alias="STORAGE_SECRET_ACCESS_KEY")
    storage_bucket: str = Field(default="", alias="STORAGE_BUCKET")
    storage_public_url: str = Field(default="", alias="STORAGE_PUBLIC_URL")

    # T-Bank acquiring (refunds)
    tbank_terminal_key: str = Field(default="", alias="TBANK_TERMINAL_KEY")
    tbank_password: str = Field(default="", alias="TBANK_PASSWORD")
    tbank_api_url: str = Field(default="https://securepay.tinkoff.ru/v2", alias="TBANK_API_URL")

    # Telegram delivery
    telegram_bot_token: str = Field(default="", alias="TELEGRAM_BOT_TOKEN")
    telegram_media_group_size: int = Field(default=10, alias="TELEGRAM_MEDIA_GROUP_SIZE")
    telegram_batch_delay_seconds: float = Field(default=0.5, alias="TELEGRAM_BATCH_DELAY_SECONDS")

    # Trigger authentication
    cron_secret: str = Field(default="", alias="CRON_SECRET")
    admin_api_token: str = Field(default="", alias="ADMIN_API_TOKEN")

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @property
    def queue_enabled(self) -> bool:
        """Whether chunks are dispatched through the durable queue."""
        return bool(self.qstash_token and self.job_callback_secret)

    @property
    def storage_enabled(self) -> bool:
        """Whether generated images are re-hosted to object storage."""
        return bool(
            self.storage_endpoint_url
            and self.storage_access_key_id
            and self.storage_secret_access_key
            and self.storage_bucket
            and self.storage_public_url
        )

    @property
    def telegram_enabled(self) -> bool:
        return bool(self.telegram_bot_token)

    @model_validator(mode="after")
    def validate_required_config(self) -> "Settings":
        """Validate required configuration on startup.

        Fails fast with every missing variable listed at once. Validation is
        skipped in test environments.
        """
        if self.app_env in ("test", "testing"):
            return self

        missing = []

        if not self.replicate_api_token:
            missing.append(
                "REPLICATE_API_TOKEN: Get your API token from https://replicate.com/account/api-tokens"
            )

        if self.qstash_token and not self.job_callback_secret:
            missing.append(
                "JOB_CALLBACK_SECRET: Required to authenticate queue callbacks when QSTASH_TOKEN is set"
            )

        if missing:
            error_msg = "CRITICAL: Missing required environment variables:\n\n" + "\n".join(
                f"  - {m}" for m in missing
            )
            error_msg += "\n\nThe application cannot start without these variables."
            error_msg += "\nPlease update your .env file and restart."
            raise ValueError(error_msg)

        return self


def configure_logging(settings: Settings) -> None:
    """Configure structlog based on application environment.

    - Production: JSON output for log aggregation
    - Development: Console output for human readability
    """
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    if settings.app_env == "production":
        processors = [
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = [
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
