from __future__ import annotations

from dataclasses import dataclass
import os

from spendbench.currency_conversion import normalize_currency

RATE_STORE_BACKENDS = ("sql", "memory")


@dataclass(frozen=True)
class Settings:
    database_url: str = "sqlite:///./spendbench.db"
    default_currency: str = "EUR"
    base_currency: str = "EUR"
    fx_api_url: str = "https://api.frankfurter.app"
    fx_timeout_seconds: float = 8
    log_level: str = "INFO"
    rate_store: str = "sql"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            database_url=os.getenv("DATABASE_URL", cls.database_url),
            default_currency=_currency_from_env("DEFAULT_CURRENCY", cls.default_currency),
            base_currency=_currency_from_env("BENCHMARK_BASE_CURRENCY", cls.base_currency),
            fx_api_url=os.getenv("FX_API_URL", cls.fx_api_url).rstrip("/"),
            fx_timeout_seconds=_float_from_env("FX_TIMEOUT_SECONDS", cls.fx_timeout_seconds),
            log_level=os.getenv("LOG_LEVEL", cls.log_level).upper(),
            rate_store=_choice_from_env("RATE_STORE", RATE_STORE_BACKENDS, cls.rate_store),
        )


def _currency_from_env(name: str, fallback: str) -> str:
    raw = os.getenv(name, fallback)
    try:
        return normalize_currency(raw)
    except ValueError:
        return fallback


def _float_from_env(name: str, fallback: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return fallback
    try:
        value = float(raw)
    except ValueError:
        return fallback
    return value if value > 0 else fallback


def _choice_from_env(name: str, choices: tuple[str, ...], fallback: str) -> str:
    value = os.getenv(name, fallback).strip().lower()
    return value if value in choices else fallback
