#!/usr/bin/env python3
"""
Centralized Configuration Module using Pydantic Settings

Type-safe, environment-based configuration for the enhancement gateway.
Each concern (Redis, rate limiting, circuit breaking, caching, job queue,
webhooks, uploads, logging, application) is a separate settings group read
from UPPERCASE environment variables.

Services never read the singleton directly: the application container pulls
values out of these groups and passes them through constructors.

Author: System Architect
Date: 2025-12-05
"""

from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class RedisSettings(BaseSettings):
    """
    Redis configuration for the shared store and durable job queue.

    Connection pooling keeps a bounded number of sockets per process.
    """

    REDIS_HOST: str = Field(default="localhost", description="Redis server host")
    REDIS_PORT: int = Field(default=6379, description="Redis server port")
    REDIS_DB: int = Field(default=0, description="Redis database number")
    REDIS_PASSWORD: str | None = Field(default=None, description="Redis password (if required)")
    REDIS_MAX_CONNECTIONS: int = Field(default=100, description="Maximum pooled connections")
    REDIS_SOCKET_TIMEOUT: int = Field(default=5, description="Socket timeout in seconds")
    REDIS_SOCKET_CONNECT_TIMEOUT: int = Field(default=5, description="Connection timeout in seconds")
    REDIS_HEALTH_CHECK_INTERVAL: int = Field(default=30, description="Health check interval in seconds")

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class RateLimitSettings(BaseSettings):
    """
    Fixed-window rate limits.

    Two independent scopes are enforced on every mutating request: a
    per-user scope and a per-(endpoint, user) scope.
    """

    RATE_LIMIT_ENABLED: bool = Field(default=True, description="Enable admission control")
    RATE_LIMIT_USER_LIMIT: int = Field(default=100, ge=1, description="Requests per user per window")
    RATE_LIMIT_USER_WINDOW_MS: int = Field(default=60_000, ge=1, description="User window length in ms")
    RATE_LIMIT_ENDPOINT_LIMIT: int = Field(default=10, ge=1, description="Requests per endpoint per user per window")
    RATE_LIMIT_ENDPOINT_WINDOW_MS: int = Field(default=60_000, ge=1, description="Endpoint window length in ms")
    RATE_LIMIT_SKIP_FAILED_REQUESTS: bool = Field(
        default=False, description="Only count requests whose handler succeeds"
    )

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class CircuitBreakerSettings(BaseSettings):
    """Circuit breaker defaults applied to every named operation."""

    CB_FAILURE_THRESHOLD: int = Field(default=5, ge=1, description="Consecutive failures before opening circuit")
    CB_RESET_TIMEOUT_MS: int = Field(default=60_000, ge=1, description="Milliseconds before a half-open trial")

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class CacheSettings(BaseSettings):
    """Document cache configuration."""

    CACHE_SIMILARITY_THRESHOLD: float = Field(
        default=0.95, ge=0.0, le=1.0, description="Minimum similarity for a near-duplicate hit"
    )
    CACHE_ENTRY_TTL_SECONDS: int = Field(default=7 * 86400, ge=1, description="Passive expiry of cache entries")
    CACHE_MAX_ENTRIES_PER_OWNER: int = Field(
        default=1000, ge=1, description="Cache entries kept per owner before the oldest are evicted"
    )

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class QueueSettings(BaseSettings):
    """Job queue and batch dispatch configuration."""

    QUEUE_BACKEND: Literal["redis", "memory"] = Field(default="redis", description="Job queue backend")
    QUEUE_NAME: str = Field(default="enhancement", description="Queue used for enhancement jobs")
    QUEUE_DEFAULT_MAX_ATTEMPTS: int = Field(default=3, ge=1, description="Default job attempts")
    QUEUE_DEFAULT_BACKOFF_MS: int = Field(default=2000, ge=0, description="Default exponential backoff base")
    QUEUE_WORKER_CONCURRENCY: int = Field(default=4, ge=1, description="Concurrent job worker tasks")
    QUEUE_POLL_INTERVAL_MS: int = Field(default=500, ge=10, description="Idle worker poll interval")
    QUEUE_JOB_LEASE_MS: int = Field(
        default=5 * 60 * 1000, ge=1000, description="How long a reserved job may run before it is taken back"
    )
    BATCH_MAX_FILES: int = Field(default=10, ge=1, le=10, description="Maximum files per batch request")

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class WebhookSettings(BaseSettings):
    """Outbound webhook delivery configuration."""

    WEBHOOK_TIMEOUT_SECONDS: float = Field(default=10.0, gt=0, description="Per-attempt HTTP timeout")
    WEBHOOK_WORKER_CONCURRENCY: int = Field(default=10, ge=1, description="Concurrent delivery worker tasks")
    WEBHOOK_RETRY_POLL_INTERVAL_MS: int = Field(default=1000, ge=10, description="Retry schedule poll interval")
    WEBHOOK_SECRET_GRACE_PERIOD_SECONDS: int = Field(
        default=86400, ge=0, description="How long a rotated-out secret keeps signing deliveries"
    )
    WEBHOOK_REQUIRE_HTTPS: bool = Field(default=False, description="Reject non-https webhook URLs")
    WEBHOOK_MAX_PER_OWNER: int = Field(default=25, ge=1, description="Maximum webhooks per owner")
    WEBHOOK_USER_AGENT: str = Field(default="EnhanceGateway-Webhooks/1.0", description="User-Agent header")

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class UploadSettings(BaseSettings):
    """Upload validation limits."""

    UPLOAD_MAX_FILE_BYTES: int = Field(default=50 * 1024 * 1024, ge=1, description="Maximum upload size")
    UPLOAD_ALLOWED_CONTENT_TYPES: list[str] = Field(
        default=[
            "application/pdf",
            "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
            "application/msword",
            "text/plain",
            "image/png",
            "image/jpeg",
        ],
        description="Accepted upload content types",
    )

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class LoggingSettings(BaseSettings):
    """Structured logging configuration."""

    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    LOG_FORMAT: Literal["json", "console"] = Field(default="json", description="Log output format")

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"LOG_LEVEL must be one of {valid_levels}")
        return v.upper()


class ApplicationSettings(BaseSettings):
    """General application configuration."""

    ENVIRONMENT: Literal["development", "staging", "production"] = Field(
        default="development", description="Application environment"
    )
    APP_NAME: str = Field(default="Enhancement Gateway", description="Application name")
    APP_VERSION: str = Field(default="1.0.0", description="Application version")
    API_HOST: str = Field(default="0.0.0.0", description="API host")
    API_PORT: int = Field(default=8000, description="API port")
    API_BASE_PATH: str = Field(default="/api/v1", description="Prefix for versioned routes")
    STORE_BACKEND: Literal["redis", "memory"] = Field(default="redis", description="Shared store backend")
    ENHANCEMENT_RESULT_BASE_URL: str = Field(
        default="https://results.example.com", description="Base URL of enhanced results"
    )

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class Settings(BaseSettings):
    """
    Aggregate of every configuration group.

    Usage:
        from enhance_gateway.core.config.settings import get_settings

        settings = get_settings()
        redis_host = settings.redis.REDIS_HOST
        threshold = settings.circuit_breaker.CB_FAILURE_THRESHOLD
    """

    redis: RedisSettings = Field(default_factory=RedisSettings)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    circuit_breaker: CircuitBreakerSettings = Field(default_factory=CircuitBreakerSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    queue: QueueSettings = Field(default_factory=QueueSettings)
    webhook: WebhookSettings = Field(default_factory=WebhookSettings)
    upload: UploadSettings = Field(default_factory=UploadSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    app: ApplicationSettings = Field(default_factory=ApplicationSettings)

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)

    @property
    def is_production(self) -> bool:
        return self.app.ENVIRONMENT == "production"


_settings: Settings | None = None


def get_settings() -> Settings:
    """
    Get the process-wide settings instance.

    Settings are loaded once on first access.
    """
    global _settings

    if _settings is None:
        _settings = Settings()

    return _settings


def reload_settings() -> Settings:
    """
    Reload settings from the environment.

    Used by tests that change environment variables.
    """
    global _settings
    _settings = Settings()
    return _settings
