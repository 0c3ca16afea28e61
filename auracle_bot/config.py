"""
Configuration management for the Auracle market bot.

This module handles all configuration loading from environment variables
and provides type-safe access to configuration values throughout the application.
"""

import os
from typing import Optional
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables from .env file if it exists
load_dotenv()

# Polling faster than this hammers the site and overlaps page renders
MIN_POLL_INTERVAL_SECONDS = 8


def _env_flag(name: str, default: str = "false") -> bool:
    """Interpret an environment variable as a boolean flag."""
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Config:
    """
    Centralized configuration class for the market bot.

    All configuration values are loaded from environment variables with
    sensible defaults where appropriate. The Telegram token must be provided
    via environment variables for security.
    """

    # Auracle site
    AURACLE_BASE_URL: str = os.getenv("AURACLE_BASE_URL", "https://auracle.fi").rstrip("/")
    USER_AGENT: str = os.getenv("USER_AGENT", "Mozilla/5.0 AuracleBot")

    # Polling
    POLL_INTERVAL_SECONDS: int = max(
        MIN_POLL_INTERVAL_SECONDS,
        int(os.getenv("POLL_INTERVAL_SECONDS", "30"))
    )
    TIMEZONE: str = os.getenv("TIMEZONE", "UTC")

    # Request Timeouts (seconds)
    HTTP_TIMEOUT: int = int(os.getenv("HTTP_TIMEOUT", "60"))
    FETCH_TIMEOUT: int = int(os.getenv("FETCH_TIMEOUT", "45"))
    FETCH_WORKERS: int = int(os.getenv("FETCH_WORKERS", "2"))

    # Ledger
    STATE_PATH: Path = Path(os.getenv("STATE_PATH", "data/state.json"))
    LEDGER_HIGH_WATER: int = int(os.getenv("LEDGER_HIGH_WATER", "2000"))
    CLOSE_AFTER_MISSING_TICKS: int = int(os.getenv("CLOSE_AFTER_MISSING_TICKS", "0"))

    # Telegram Configuration
    TELEGRAM_BOT_TOKEN: Optional[str] = os.getenv("TELEGRAM_BOT_TOKEN")
    TELEGRAM_CHAT_ID: Optional[str] = os.getenv("TELEGRAM_CHAT_ID")

    # Liveness endpoint
    PORT: int = int(os.getenv("PORT", "8080"))

    # Control commands served by the running bot. Without a token only
    # loopback clients may use them.
    CONTROL_TOKEN: Optional[str] = os.getenv("CONTROL_TOKEN") or None
    CONTROL_URL: str = os.getenv("CONTROL_URL", f"http://127.0.0.1:{PORT}").rstrip("/")

    # Logging Configuration
    DEBUG: bool = _env_flag("DEBUG")
    LOG_LEVEL: str = "DEBUG" if _env_flag("DEBUG") else os.getenv("LOG_LEVEL", "INFO")
    LOG_FILE: Optional[Path] = Path(os.getenv("LOG_FILE", "logs/bot.log")) if os.getenv("LOG_FILE") else None

    @classmethod
    def validate(cls) -> tuple[bool, list[str]]:
        """
        Validate that all required configuration values are present.

        Returns:
            tuple: (is_valid, list_of_errors)
        """
        errors: list[str] = []

        if not cls.TELEGRAM_BOT_TOKEN:
            errors.append("TELEGRAM_BOT_TOKEN is required but not set")

        if not cls.TELEGRAM_CHAT_ID:
            errors.append("TELEGRAM_CHAT_ID is required but not set")

        if not cls.AURACLE_BASE_URL.startswith(("http://", "https://")):
            errors.append("AURACLE_BASE_URL must be an http(s) URL")

        # Validate numeric ranges
        if cls.POLL_INTERVAL_SECONDS < MIN_POLL_INTERVAL_SECONDS:
            errors.append(f"POLL_INTERVAL_SECONDS must be at least {MIN_POLL_INTERVAL_SECONDS}")

        if cls.FETCH_TIMEOUT < 1 or cls.HTTP_TIMEOUT < 1:
            errors.append("FETCH_TIMEOUT and HTTP_TIMEOUT must be at least 1 second")

        if cls.FETCH_WORKERS < 1:
            errors.append("FETCH_WORKERS must be at least 1")

        if cls.LEDGER_HIGH_WATER < 1:
            errors.append("LEDGER_HIGH_WATER must be at least 1")

        if cls.CLOSE_AFTER_MISSING_TICKS < 0:
            errors.append("CLOSE_AFTER_MISSING_TICKS cannot be negative")

        if not (0 < cls.PORT < 65536):
            errors.append("PORT must be between 1 and 65535")

        return (len(errors) == 0, errors)

    @classmethod
    def ensure_directories(cls) -> None:
        """
        Ensure all required directories exist.

        Creates directories for the state file and logs if they don't exist.
        """
        cls.STATE_PATH.parent.mkdir(parents=True, exist_ok=True)
        if cls.LOG_FILE:
            cls.LOG_FILE.parent.mkdir(parents=True, exist_ok=True)
