"""
Configuration tests - settings surface and logging dictConfig
"""

import os

from benor.config import Settings, get_settings


class TestSettings:

    def test_settings_are_cached(self):
        assert get_settings() is get_settings()

    def test_exposes_only_consumed_settings(self):
        public = {name for name in vars(Settings) if not name.startswith("_")}
        assert public == {
            "LOG_LEVEL",
            "LOG_DIR",
            "LOG_MAX_SIZE_MB",
            "NODE_HOST",
            "BASE_NODE_PORT",
            "TRANSPORT",
            "POLL_INTERVAL",
            "MAX_POLL_ATTEMPTS",
            "SEND_TIMEOUT",
            "get_log_config",
        }


class TestLogConfig:
    """get_log_config() feeds logging.config.dictConfig"""

    def test_file_handler_rotates_in_log_dir(self):
        settings = Settings()
        settings.LOG_DIR = "/tmp/benor-logs"
        settings.LOG_MAX_SIZE_MB = 2

        handler = settings.get_log_config()["handlers"]["file"]
        assert handler["class"] == "logging.handlers.RotatingFileHandler"
        assert handler["filename"] == os.path.join("/tmp/benor-logs", "benor.log")
        assert handler["maxBytes"] == 2 * 1024 * 1024
        assert handler["filters"] == ["correlation"]

    def test_correlation_filter_is_wired(self):
        config = Settings().get_log_config()

        assert config["filters"]["correlation"]["()"] == "benor.middleware.correlation.CorrelationIdFilter"
        assert "%(correlation_id)s" in config["formatters"]["structured"]["format"]
        assert config["root"]["handlers"] == ["console", "file"]

    def test_benor_logger_level(self):
        settings = Settings()
        settings.LOG_LEVEL = "DEBUG"

        assert settings.get_log_config()["loggers"]["benor"]["level"] == "DEBUG"
