"""
Unit Tests for Configuration Settings

Tests defaults, environment overrides, validation bounds and the
process-wide settings singleton.
"""

import pytest
from pydantic import ValidationError

from enhance_gateway.core.config.settings import (
    CacheSettings,
    LoggingSettings,
    QueueSettings,
    RateLimitSettings,
    Settings,
    WebhookSettings,
    get_settings,
    reload_settings,
)


@pytest.mark.unit
class TestDefaults:
    def test_rate_limit_defaults(self):
        settings = RateLimitSettings()
        assert settings.RATE_LIMIT_ENABLED is True
        assert settings.RATE_LIMIT_USER_WINDOW_MS == 60_000
        assert settings.RATE_LIMIT_SKIP_FAILED_REQUESTS is False

    def test_cache_defaults(self):
        assert CacheSettings().CACHE_SIMILARITY_THRESHOLD == 0.95

    def test_webhook_grace_period_defaults_to_one_day(self):
        assert WebhookSettings().WEBHOOK_SECRET_GRACE_PERIOD_SECONDS == 86400

    def test_aggregate_groups(self):
        settings = Settings()
        assert settings.app.API_BASE_PATH == "/api/v1"
        assert settings.queue.BATCH_MAX_FILES == 10
        assert settings.circuit_breaker.CB_FAILURE_THRESHOLD == 5


@pytest.mark.unit
class TestEnvironmentOverrides:
    def test_reads_uppercase_environment(self, monkeypatch):
        monkeypatch.setenv("RATE_LIMIT_USER_LIMIT", "7")
        monkeypatch.setenv("CB_RESET_TIMEOUT_MS", "1500")

        settings = Settings()

        assert settings.rate_limit.RATE_LIMIT_USER_LIMIT == 7
        assert settings.circuit_breaker.CB_RESET_TIMEOUT_MS == 1500

    def test_reload_settings_picks_up_changes(self, monkeypatch):
        monkeypatch.setenv("APP_NAME", "Reloaded")
        try:
            assert reload_settings().app.APP_NAME == "Reloaded"
            assert get_settings().app.APP_NAME == "Reloaded"
        finally:
            monkeypatch.delenv("APP_NAME")
            reload_settings()

    def test_get_settings_is_cached(self):
        assert get_settings() is get_settings()


@pytest.mark.unit
class TestValidation:
    def test_log_level_is_uppercased(self):
        assert LoggingSettings(LOG_LEVEL="debug").LOG_LEVEL == "DEBUG"

    def test_invalid_log_level_rejected(self):
        with pytest.raises(ValidationError):
            LoggingSettings(LOG_LEVEL="LOUD")

    def test_similarity_threshold_bounds(self):
        with pytest.raises(ValidationError):
            CacheSettings(CACHE_SIMILARITY_THRESHOLD=1.5)

    def test_batch_size_cannot_exceed_ten(self):
        with pytest.raises(ValidationError):
            QueueSettings(BATCH_MAX_FILES=11)

    def test_unknown_queue_backend_rejected(self):
        with pytest.raises(ValidationError):
            QueueSettings(QUEUE_BACKEND="kafka")
