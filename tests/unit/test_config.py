"""Tests for settings and logging setup."""

import logging

import structlog

from streamhub.core.config import Settings, get_settings
from streamhub.core.logging import configure_logging, get_logger


class TestSettings:
    """Defaults and environment overrides."""

    def test_defaults(self):
        settings = Settings()
        assert settings.ffmpeg.binary == "ffmpeg"
        assert settings.timeouts.channel_close == 2.0
        assert settings.timeouts.transcode_stop == 3.0
        assert settings.timeouts.process_stop == 3.0
        assert settings.pool.max_connections == 10
        assert settings.reconnect.max_attempts is None
        assert settings.cache.protocol_cache_size == 1000
        assert settings.queue.batch_size == 10

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("STREAMHUB_POOL__MAX_CONNECTIONS", "3")
        monkeypatch.setenv("STREAMHUB_FFMPEG__BINARY", "/opt/ffmpeg/bin/ffmpeg")

        settings = Settings()

        assert settings.pool.max_connections == 3
        assert settings.ffmpeg.binary == "/opt/ffmpeg/bin/ffmpeg"

    def test_get_settings_is_cached(self):
        assert get_settings() is get_settings()


class TestLogging:
    """structlog wiring."""

    def test_configure_logging(self):
        configure_logging(level="DEBUG", json_output=True)
        configure_logging(level="WARNING", json_output=False)

        assert logging.getLogger().level == logging.WARNING
        assert structlog.is_configured()

    def test_get_logger(self):
        logger = get_logger("streamhub.test")
        logger.info("hello", key="value")
