"""Application configuration"""

import logging
from enum import Enum

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class TokenSource(str, Enum):
    """Where a session takes the expected version token from when saving"""

    # Value read at load time, private to the session
    SNAPSHOT = "snapshot"
    # Whatever the caller's record currently holds
    RECORD = "record"
    # Current value re-read from the database right before the update
    SERVER = "server"


class Settings(BaseSettings):
    """Harness settings, passed explicitly to Database and ConcurrencyContext"""

    model_config = SettingsConfigDict(
        env_prefix="OCC_REPRO__",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Database
    connection_string: str | None = None
    echo_sql: bool = False
    command_timeout: float = 120.0  # seconds per save attempt

    # Concurrency
    token_source: TokenSource = TokenSource.SNAPSHOT

    # Transient error retries
    retry_attempts: int = 3
    retry_min_wait: float = 0.1
    retry_max_wait: float = 2.0

    # Logging
    log_level: str = "INFO"

    @field_validator("retry_attempts")
    @classmethod
    def validate_retry_attempts(cls, value: int) -> int:
        if value < 1:
            raise ValueError("retry_attempts must be at least 1")
        return value

    @field_validator("command_timeout")
    @classmethod
    def validate_command_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("command_timeout must be positive")
        return value

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        level = value.upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"Unknown log level: {value}")
        return level


def configure_logging(settings: Settings) -> None:
    """Configure root logging from settings"""
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


logger = logging.getLogger("occ-repro")
