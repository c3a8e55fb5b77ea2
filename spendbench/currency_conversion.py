from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
import json
import logging
import time
from typing import Mapping
from urllib.error import HTTPError, URLError
from urllib.request import urlopen

logger = logging.getLogger(__name__)

SOURCE_MANUAL = "manual"
SOURCE_STATIC = "static"
SOURCE_API = "api"
SOURCE_DERIVED = "derived"
RATE_SOURCES = {SOURCE_MANUAL, SOURCE_STATIC, SOURCE_API, SOURCE_DERIVED}

DEFAULT_RATES: dict[str, Decimal] = {
    "USD": Decimal("1"),
    "EUR": Decimal("0.92"),
    "GBP": Decimal("0.79"),
    "JPY": Decimal("147.50"),
    "CAD": Decimal("1.34"),
    "AUD": Decimal("1.52"),
    "NZD": Decimal("1.64"),
    "CHF": Decimal("0.88"),
    "SEK": Decimal("10.45"),
}


@dataclass(frozen=True)
class ExchangeRate:
    """One stored rate: 1 ``from_currency`` buys ``rate`` ``to_currency``."""

    from_currency: str
    to_currency: str
    rate: Decimal
    effective_date: date
    source: str = SOURCE_MANUAL


def build_exchange_rate(
    from_currency: str,
    to_currency: str,
    rate: Decimal | int | float | str,
    effective_date: date | str,
    source: str = SOURCE_MANUAL,
) -> ExchangeRate:
    normalized_from = normalize_currency(from_currency)
    normalized_to = normalize_currency(to_currency)
    if normalized_from == normalized_to:
        raise ValueError("Exchange rate currencies must differ.")
    coerced_rate = coerce_amount(rate)
    if coerced_rate <= 0:
        raise ValueError("Exchange rate must be greater than zero.")
    if source not in RATE_SOURCES:
        raise ValueError(f"Unsupported rate source: {source}")
    return ExchangeRate(
        from_currency=normalized_from,
        to_currency=normalized_to,
        rate=coerced_rate,
        effective_date=coerce_date(effective_date),
        source=source,
    )


@dataclass(frozen=True)
class StaticRateProvider:
    """Deterministic, in-memory FX rates for common currencies.

    Rates are expressed as target currency per 1 USD, so any pair of listed
    currencies can be crossed through USD.
    """

    rates: Mapping[str, Decimal] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "rates", dict(self.rates or DEFAULT_RATES))

    def get_rate(self, currency: str) -> Decimal:
        normalized = normalize_currency(currency)
        try:
            return self.rates[normalized]
        except KeyError as exc:
            raise ValueError(f"Unsupported currency: {normalized}") from exc

    def supports(self, currency: str) -> bool:
        return normalize_currency(currency) in self.rates

    def get_pair_rate(self, from_currency: str, to_currency: str) -> Decimal:
        return self.get_rate(to_currency) / self.get_rate(from_currency)


class RateProviderUnavailable(RuntimeError):
    """Raised when a rate provider cannot fetch live rates."""


@dataclass(frozen=True)
class CachedRates:
    rates: Mapping[str, Decimal]
    rate_date: date | None
    expires_at: float | None


@dataclass
class FrankfurterRateProvider:
    base_url: str = "https://api.frankfurter.app"
    timeout_seconds: float = 8
    cache_ttl_seconds: int = 12 * 60 * 60
    failure_ttl_seconds: int = 5 * 60
    _cache: dict[tuple[str, str], CachedRates] = field(default_factory=dict)
    _failures: dict[tuple[str, str], float] = field(default_factory=dict)

    def fetch_rate(
        self, from_currency: str, to_currency: str, as_of_date: date | str | None = None
    ) -> ExchangeRate:
        """Fetch the published rate for a pair on (or nearest before) a date."""
        base_currency = normalize_currency(from_currency)
        quote_currency = normalize_currency(to_currency)
        date_key = _normalize_rate_date(as_of_date)
        cached = self._get_rates(base_currency, date_key)
        try:
            rate = cached.rates[quote_currency]
        except KeyError as exc:
            raise RateProviderUnavailable(
                f"Frankfurter has no rate for {base_currency}/{quote_currency}"
            ) from exc
        effective_date = cached.rate_date or coerce_date(as_of_date or date.today())
        return build_exchange_rate(
            base_currency, quote_currency, rate, effective_date, source=SOURCE_API
        )

    def _get_rates(self, base_currency: str, date_key: str | None) -> CachedRates:
        cache_key = (base_currency, date_key or "latest")
        cached = self._cache.get(cache_key)
        now = time.monotonic()
        if cached and (cached.expires_at is None or cached.expires_at > now):
            return cached

        # A recent failure for the same base and date is not retried until it expires.
        retry_at = self._failures.get(cache_key)
        if retry_at is not None and retry_at > now:
            raise RateProviderUnavailable(
                f"Frankfurter API unavailable for {base_currency} ({cache_key[1]})"
            )

        try:
            rates, rate_date = self._fetch_rates(base_currency, date_key)
        except RateProviderUnavailable:
            self._failures[cache_key] = now + self.failure_ttl_seconds
            raise
        self._failures.pop(cache_key, None)
        expires_at = None
        if date_key is None:
            expires_at = now + self.cache_ttl_seconds
        cached = CachedRates(rates=rates, rate_date=rate_date, expires_at=expires_at)
        self._cache[cache_key] = cached
        return cached

    def _fetch_rates(
        self, base_currency: str, date_key: str | None
    ) -> tuple[Mapping[str, Decimal], date | None]:
        endpoint = date_key or "latest"
        url = f"{self.base_url}/{endpoint}?from={base_currency}"
        try:
            with urlopen(url, timeout=self.timeout_seconds) as response:
                payload = json.load(response)
        except (HTTPError, URLError, TimeoutError, json.JSONDecodeError) as exc:
            logger.warning("Frankfurter request failed for %s: %s", url, exc)
            raise RateProviderUnavailable("Frankfurter API unavailable") from exc

        rates = payload.get("rates")
        if not isinstance(rates, dict):
            raise RateProviderUnavailable("Frankfurter response missing rates")

        parsed = {normalize_currency(code): Decimal(str(value)) for code, value in rates.items()}
        rate_date = None
        if isinstance(payload.get("date"), str):
            try:
                rate_date = coerce_date(payload["date"])
            except ValueError:
                rate_date = None
        return parsed, rate_date


def normalize_currency(value: str) -> str:
    normalized = value.strip().upper()
    if len(normalized) != 3 or not normalized.isalpha():
        raise ValueError("Currency must be a 3-letter ISO 4217 code.")
    return normalized


def coerce_amount(amount: Decimal | int | float | str) -> Decimal:
    if isinstance(amount, Decimal):
        return amount
    return Decimal(str(amount))


def coerce_date(value: date | datetime | str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError as exc:
        raise ValueError("Date must be in YYYY-MM-DD format.") from exc


def _normalize_rate_date(value: date | str | None) -> str | None:
    if value is None:
        return None
    return coerce_date(value).isoformat()
