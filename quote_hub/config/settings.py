import os
from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, Field

_PLACEHOLDER_KEYS = {"", "demo"}


def _api_key(name: str) -> str | None:
    value = (os.getenv(name) or "").strip()
    if value.lower() in _PLACEHOLDER_KEYS:
        return None
    return value


class Settings(BaseModel):
    ALPHA_VANTAGE_API_KEY: str | None = None
    FMP_API_KEY: str | None = None

    YAHOO_ENABLED: bool = True
    ALPHA_VANTAGE_ENABLED: bool = True
    FMP_ENABLED: bool = True
    DEMO_MODE: bool = False

    FALLBACK_ENABLED: bool = True
    CACHE_ENABLED: bool = True
    CACHE_TTL_SEC: float = Field(default=60.0, gt=0)
    HEALTH_CHECK_INTERVAL_MIN: float = Field(default=30.0, gt=0)
    MAX_CONCURRENCY: int = Field(default=5, ge=1)

    PRICE_LOG_PATH: str | None = None
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        raw: dict[str, object] = {
            "ALPHA_VANTAGE_API_KEY": _api_key("ALPHA_VANTAGE_API_KEY"),
            "FMP_API_KEY": _api_key("FMP_API_KEY"),
        }
        # unset variables fall back to the model defaults
        for field in (
            "YAHOO_ENABLED",
            "ALPHA_VANTAGE_ENABLED",
            "FMP_ENABLED",
            "DEMO_MODE",
            "FALLBACK_ENABLED",
            "CACHE_ENABLED",
            "CACHE_TTL_SEC",
            "HEALTH_CHECK_INTERVAL_MIN",
            "MAX_CONCURRENCY",
            "PRICE_LOG_PATH",
            "LOG_LEVEL",
        ):
            value = os.getenv(f"QUOTE_HUB_{field}")
            if value is not None and value.strip():
                raw[field] = value.strip()

        if isinstance(raw.get("LOG_LEVEL"), str):
            raw["LOG_LEVEL"] = str(raw["LOG_LEVEL"]).upper()

        return cls.model_validate(raw)


@lru_cache
def get_settings() -> Settings:
    return Settings.from_env()
