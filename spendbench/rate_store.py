from __future__ import annotations

from datetime import date
from decimal import Decimal
import threading

from spendbench.currency_conversion import (
    SOURCE_MANUAL,
    ExchangeRate,
    build_exchange_rate,
    normalize_currency,
)


class InMemoryRateStore:
    """Rate store keyed by (from, to, effective_date).

    Rows are never deleted; writing the same key again replaces the rate,
    and lookups pick the newest row effective on or before the query date.
    Selected with RATE_STORE=memory; rates then last only for the process.
    """

    def __init__(self, rates: list[ExchangeRate] | None = None) -> None:
        self._lock = threading.Lock()
        self._rows: dict[tuple[str, str, date], ExchangeRate] = {}
        for rate in rates or []:
            self._rows[(rate.from_currency, rate.to_currency, rate.effective_date)] = rate

    def lookup_rate(
        self, from_currency: str, to_currency: str, as_of_date: date
    ) -> ExchangeRate | None:
        pair = (normalize_currency(from_currency), normalize_currency(to_currency))
        with self._lock:
            candidates = [
                rate
                for (source, target, effective_date), rate in self._rows.items()
                if (source, target) == pair and effective_date <= as_of_date
            ]
        if not candidates:
            return None
        return max(candidates, key=lambda rate: rate.effective_date)

    def upsert_rate(
        self,
        from_currency: str,
        to_currency: str,
        rate: Decimal | int | float | str,
        effective_date: date | str,
        source: str = SOURCE_MANUAL,
    ) -> ExchangeRate:
        record = build_exchange_rate(from_currency, to_currency, rate, effective_date, source)
        key = (record.from_currency, record.to_currency, record.effective_date)
        with self._lock:
            self._rows[key] = record
        return record

    def latest_rates(self, as_of_date: date) -> list[ExchangeRate]:
        latest: dict[tuple[str, str], ExchangeRate] = {}
        with self._lock:
            rows = list(self._rows.values())
        for rate in rows:
            if rate.effective_date > as_of_date:
                continue
            pair = (rate.from_currency, rate.to_currency)
            current = latest.get(pair)
            if current is None or rate.effective_date > current.effective_date:
                latest[pair] = rate
        return list(latest.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._rows)
