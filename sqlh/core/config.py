"""
Configuration management for the sqlh transactional access layer.

This module handles loading and validating environment variables.
"""

import os

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def _int_env(key: str, default: int) -> int:
    value = os.getenv(key)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _float_env(key: str, default: float) -> float:
    value = os.getenv(key)
    if value is None or value.strip() == "":
        return default
    try:
        return float(value)
    except ValueError:
        return default


class Config:
    """Configuration class with environment variables."""

    # Database
    DB_PATH: str = os.getenv("SQLH_DB_PATH", "data/app.db")

    # Logging
    LOG_LEVEL: str = os.getenv("SQLH_LOG_LEVEL", "INFO")

    # Job queue
    QUEUE_NAME: str = os.getenv("SQLH_QUEUE_NAME", "jobs")
    QUEUE_MAX_RECEIVE: int = _int_env("SQLH_QUEUE_MAX_RECEIVE", 3)
    QUEUE_TIMEOUT_SECONDS: float = _float_env("SQLH_QUEUE_TIMEOUT_SECONDS", 5.0)

    @classmethod
    def validate(cls) -> None:
        """
        Validate that required configuration is present.

        Raises:
            ValueError: If required configuration is missing.
        """
        if not cls.DB_PATH:
            raise ValueError("SQLH_DB_PATH must be configured")

        if cls.QUEUE_MAX_RECEIVE < 1:
            raise ValueError("SQLH_QUEUE_MAX_RECEIVE must be at least 1")
