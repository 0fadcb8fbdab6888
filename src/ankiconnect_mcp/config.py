"""Runtime configuration read from environment variables."""

import logging
import sys

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_ANKI_CONNECT_URL = "http://localhost:8765"
DEFAULT_TIMEOUT = 30.0
DEFAULT_LOG_LEVEL = "INFO"

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class Settings(BaseSettings):
    """
    Server settings.

    Loaded from environment variables:
    1. ANKI_CONNECT_URL, ANKI_CONNECT_TIMEOUT, ANKI_CONNECT_API_KEY
    2. ANKI_MCP_LOG_LEVEL
    """

    model_config = SettingsConfigDict(
        env_prefix="ANKI_CONNECT_",
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )

    url: str = DEFAULT_ANKI_CONNECT_URL
    timeout: float = DEFAULT_TIMEOUT
    api_key: str | None = None
    log_level: str = Field(default=DEFAULT_LOG_LEVEL, validation_alias="ANKI_MCP_LOG_LEVEL")

    @field_validator("url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/") or DEFAULT_ANKI_CONNECT_URL

    @field_validator("timeout", mode="before")
    @classmethod
    def positive_timeout(cls, v):
        try:
            timeout = float(v)
        except (TypeError, ValueError):
            raise ValueError(f"ANKI_CONNECT_TIMEOUT must be a number, got {v!r}")
        if timeout <= 0:
            raise ValueError(f"ANKI_CONNECT_TIMEOUT must be positive, got {v!r}")
        return timeout

    @field_validator("api_key")
    @classmethod
    def empty_api_key_is_unset(cls, v: str | None) -> str | None:
        return v or None

    @field_validator("log_level")
    @classmethod
    def known_log_level(cls, v: str) -> str:
        level = v.upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"ANKI_MCP_LOG_LEVEL is not a logging level: {v!r}")
        return level


def configure_logging(level: str = DEFAULT_LOG_LEVEL):
    """Send log records to stderr; stdout carries the MCP stdio stream."""
    logging.basicConfig(level=level, format=LOG_FORMAT, stream=sys.stderr)
