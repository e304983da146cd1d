"""
Settings for the agent cognition engine.

Service credentials and logging come from the environment (or a ``.env``
file); cognition tuning lives in ``cognition.config.CognitionConfig``.
"""

import logging.config
from functools import lru_cache
from typing import Any

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    openrouter_api_key: str = ""
    openrouter_model: str = "anthropic/claude-3-haiku"
    openrouter_base_url: str = "https://openrouter.ai/api/v1"

    embedding_model: str = "openai/text-embedding-3-small"
    use_simple_embeddings: bool = True
    embedding_dimension: int = 256

    log_level: str = "INFO"


@lru_cache
def get_settings() -> Settings:
    """Load settings once per process."""
    return Settings()


def build_logging_config(level: str = "INFO") -> dict[str, Any]:
    """Return a ``dictConfig`` dictionary for console logging."""
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "verbose": {
                "format": "{levelname} {asctime} {module} {message}",
                "style": "{",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "verbose",
            },
        },
        "root": {
            "handlers": ["console"],
            "level": level,
        },
        "loggers": {
            "cognition": {
                "handlers": ["console"],
                "level": level,
                "propagate": False,
            },
            "services": {
                "handlers": ["console"],
                "level": level,
                "propagate": False,
            },
            "httpx": {
                "handlers": ["console"],
                "level": "WARNING",
                "propagate": False,
            },
        },
    }


LOGGING = build_logging_config()


def configure_logging(settings: Settings | None = None) -> None:
    """Apply the logging configuration using the configured level."""
    settings = settings or get_settings()
    logging.config.dictConfig(build_logging_config(settings.log_level.upper()))
