"""
Ben-Or Simulator Configuration - Environment-based settings
Node addressing, consensus timing, transport selection and logging
"""

import os
import logging.config
from functools import lru_cache

from dotenv import load_dotenv

# Load .env file if present
load_dotenv()


class Settings:
    """Simulator settings loaded from environment variables"""

    # ==========================================================================
    # Application Settings
    # ==========================================================================
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    LOG_DIR: str = os.getenv("LOG_DIR", "logs")
    LOG_MAX_SIZE_MB: int = int(os.getenv("LOG_MAX_SIZE_MB", "10"))

    # ==========================================================================
    # Node Addressing
    # ==========================================================================
    NODE_HOST: str = os.getenv("NODE_HOST", "127.0.0.1")
    BASE_NODE_PORT: int = int(os.getenv("BASE_NODE_PORT", "3000"))
    TRANSPORT: str = os.getenv("TRANSPORT", "local")

    # ==========================================================================
    # Consensus Timing
    # ==========================================================================
    POLL_INTERVAL: float = float(os.getenv("POLL_INTERVAL", "0.05"))
    MAX_POLL_ATTEMPTS: int = int(os.getenv("MAX_POLL_ATTEMPTS", "20"))
    SEND_TIMEOUT: float = float(os.getenv("SEND_TIMEOUT", "1.0"))

    def get_log_config(self) -> dict:
        """Get structured logging configuration"""
        return {
            "version": 1,
            "disable_existing_loggers": False,
            "filters": {
                "correlation": {
                    "()": "benor.middleware.correlation.CorrelationIdFilter"
                }
            },
            "formatters": {
                "default": {
                    "format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
                    "datefmt": "%Y-%m-%dT%H:%M:%S"
                },
                "structured": {
                    "format": "[%(iso_timestamp)s] [corr-id:%(correlation_id)s] %(name)s: %(message)s"
                }
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                    "stream": "ext://sys.stdout"
                },
                "file": {
                    "class": "logging.handlers.RotatingFileHandler",
                    "formatter": "structured",
                    "filters": ["correlation"],
                    "filename": os.path.join(self.LOG_DIR, "benor.log"),
                    "maxBytes": self.LOG_MAX_SIZE_MB * 1024 * 1024,
                    "backupCount": 5
                }
            },
            "loggers": {
                "benor": {"level": self.LOG_LEVEL, "propagate": True},
                "uvicorn.access": {"level": "WARNING"},
                "httpx": {"level": "WARNING"},
            },
            "root": {
                "level": self.LOG_LEVEL,
                "handlers": ["console", "file"]
            }
        }


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


def configure_logging(settings: Settings = None):
    """Apply the logging configuration (console + rotating file)"""
    settings = settings or get_settings()
    os.makedirs(settings.LOG_DIR, exist_ok=True)
    logging.config.dictConfig(settings.get_log_config())


# Global settings instance
settings = get_settings()
