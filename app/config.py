"""Runtime settings, read from ``LUNAREMIND_*`` environment variables."""

from __future__ import annotations

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


class Settings(BaseSettings):
    # Digest window zone
    REFERENCE_TIMEZONE: str = "America/Toronto"

    # Client loop
    CLIENT_TICK_SECONDS: float = 5.0
    CLIENT_MATCH_TOLERANCE_SECONDS: int = 15
    NOTIFIED_LOG_SIZE: int = 1024

    # Grace windows (minutes)
    ROLLOVER_GRACE_MINUTES: int = 1
    CLIENT_EXPIRY_GRACE_MINUTES: int = 1
    SERVER_EXPIRY_GRACE_MINUTES: int = 120

    # Server instant check window (minutes)
    INSTANT_LOOKAHEAD_MINUTES: int = 15
    INSTANT_LOOKBACK_MINUTES: int = 5

    # Digest
    DIGEST_PREVIEW_COUNT: int = 4

    # Recurrence
    MAX_RECURRENCE_ITERATIONS: int = 2000
    LUNAR_LOOKAHEAD_YEARS: int = 3

    # Delivery
    DELIVERY_MODE: str = "log"
    WEBHOOK_TIMEOUT_SECONDS: float = 10.0

    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(env_prefix="LUNAREMIND_")

    @field_validator("REFERENCE_TIMEZONE")
    @classmethod
    def _known_zone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"unknown time zone: {value}") from exc
        return value

    @field_validator("MAX_RECURRENCE_ITERATIONS")
    @classmethod
    def _bounded_iterations(cls, value: int) -> int:
        if not 1000 <= value <= 2000:
            raise ValueError("MAX_RECURRENCE_ITERATIONS must be between 1000 and 2000")
        return value

    @field_validator("DELIVERY_MODE")
    @classmethod
    def _known_mode(cls, value: str) -> str:
        if value not in ("log", "webhook"):
            raise ValueError("DELIVERY_MODE must be 'log' or 'webhook'")
        return value


settings = Settings()
