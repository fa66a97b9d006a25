from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache

DEFAULT_REPORTING_CURRENCY = "USD"
DEFAULT_INSIGHTS_TIMEOUT_SECONDS = 6.0
TRUTHY_VALUES = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    default_currency: str = DEFAULT_REPORTING_CURRENCY
    frontend_origin: str = "http://localhost:3000"
    insights_endpoint: str = ""
    insights_api_key: str = ""
    insights_timeout_seconds: float = DEFAULT_INSIGHTS_TIMEOUT_SECONDS
    fx_rates_url: str = ""
    strict_rules: bool = False
    log_level: str = "INFO"

    @property
    def insights_enabled(self) -> bool:
        return bool(self.insights_endpoint and self.insights_api_key)


def load_settings() -> Settings:
    return Settings(
        default_currency=_read_currency("DEFAULT_CURRENCY", DEFAULT_REPORTING_CURRENCY),
        frontend_origin=os.getenv("FRONTEND_ORIGIN", "http://localhost:3000"),
        insights_endpoint=os.getenv("INSIGHTS_ENDPOINT", "").strip(),
        insights_api_key=os.getenv("INSIGHTS_API_KEY", "").strip(),
        insights_timeout_seconds=_read_positive_float(
            "INSIGHTS_TIMEOUT_SECONDS", DEFAULT_INSIGHTS_TIMEOUT_SECONDS
        ),
        fx_rates_url=os.getenv("FX_RATES_URL", "").strip(),
        strict_rules=os.getenv("STRICT_RULES", "").strip().lower() in TRUTHY_VALUES,
        log_level=os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO",
    )


@lru_cache()
def get_settings() -> Settings:
    """Settings are read once; call get_settings.cache_clear() to reload."""
    return load_settings()


def _read_currency(name: str, fallback: str) -> str:
    raw = os.getenv(name, fallback).strip().upper()
    if len(raw) not in (3, 4) or not raw.isalpha():
        return fallback
    return raw


def _read_positive_float(name: str, fallback: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return fallback
    try:
        value = float(raw)
    except ValueError:
        return fallback
    return value if value > 0 else fallback
