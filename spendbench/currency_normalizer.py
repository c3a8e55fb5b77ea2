"""Conversion of amounts between currencies using the stored rate history.

A conversion factor is resolved by trying these strategies in order, the
first one that answers wins:

``identity``  same currency, factor 1
``direct``    newest stored from->to rate effective on the date
``reverse``   newest stored to->from rate, inverted
``base_hop``  from->BASE composed with BASE->to
``graph``     shortest hop path over every rate known on the date
``api``       external rate source (persisted with source ``api``)
``static``    static table of common currencies (persisted with source ``static``)

Rates resolved through ``graph``, ``api`` or ``static`` are written back to
the rate store so the next lookup for the pair is a direct hit.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
import logging
from typing import Callable, Optional

from spendbench.currency_conversion import (
    SOURCE_API,
    SOURCE_DERIVED,
    SOURCE_STATIC,
    RateProviderUnavailable,
    StaticRateProvider,
    coerce_amount,
    coerce_date,
    normalize_currency,
)
from spendbench.rate_graph import RateGraph

logger = logging.getLogger(__name__)

ONE = Decimal("1")
DEFAULT_BASE_CURRENCY = "EUR"


class RateNotFoundError(LookupError):
    """No strategy could resolve a rate for the pair on the date."""

    def __init__(self, from_currency: str, to_currency: str, as_of_date: date) -> None:
        self.from_currency = from_currency
        self.to_currency = to_currency
        self.as_of_date = as_of_date
        super().__init__(
            f"No exchange rate from {from_currency} to {to_currency} as of {as_of_date.isoformat()}"
        )


@dataclass(frozen=True)
class Resolution:
    rate: Decimal
    path: tuple[str, ...]
    strategy: str


@dataclass(frozen=True)
class ConversionResult:
    converted_amount: Decimal
    rate_used: Decimal
    resolution_path: tuple[str, ...]
    strategy: str


Strategy = Callable[[str, str, date], Optional[Resolution]]


class CurrencyNormalizer:
    def __init__(
        self,
        rate_store,
        rate_fetcher=None,
        static_rates: StaticRateProvider | None = None,
        base_currency: str = DEFAULT_BASE_CURRENCY,
    ) -> None:
        self.rate_store = rate_store
        self.rate_fetcher = rate_fetcher
        self.static_rates = static_rates or StaticRateProvider()
        self.base_currency = normalize_currency(base_currency)

    @property
    def strategies(self) -> list[tuple[str, Strategy]]:
        return [
            ("identity", self._identity),
            ("direct", self._direct),
            ("reverse", self._reverse),
            ("base_hop", self._base_hop),
            ("graph", self._graph),
            ("api", self._external),
            ("static", self._static),
        ]

    def resolve_rate(
        self, from_currency: str, to_currency: str, as_of_date: date | str
    ) -> Resolution:
        source = normalize_currency(from_currency)
        target = normalize_currency(to_currency)
        lookup_date = coerce_date(as_of_date)
        for name, strategy in self.strategies:
            resolution = strategy(source, target, lookup_date)
            if resolution is not None:
                logger.debug(
                    "Resolved %s->%s as of %s via %s (rate=%s)",
                    source,
                    target,
                    lookup_date,
                    name,
                    resolution.rate,
                )
                return resolution
        raise RateNotFoundError(source, target, lookup_date)

    def convert(
        self,
        amount: Decimal | int | float | str,
        from_currency: str,
        to_currency: str,
        as_of_date: date | str,
    ) -> ConversionResult:
        resolution = self.resolve_rate(from_currency, to_currency, as_of_date)
        return ConversionResult(
            converted_amount=coerce_amount(amount) * resolution.rate,
            rate_used=resolution.rate,
            resolution_path=resolution.path,
            strategy=resolution.strategy,
        )

    def _identity(self, source: str, target: str, as_of_date: date) -> Resolution | None:
        if source != target:
            return None
        return Resolution(rate=ONE, path=(source,), strategy="identity")

    def _direct(self, source: str, target: str, as_of_date: date) -> Resolution | None:
        stored = self.rate_store.lookup_rate(source, target, as_of_date)
        if stored is None:
            return None
        return Resolution(rate=stored.rate, path=(source, target), strategy="direct")

    def _reverse(self, source: str, target: str, as_of_date: date) -> Resolution | None:
        stored = self.rate_store.lookup_rate(target, source, as_of_date)
        if stored is None:
            return None
        return Resolution(rate=ONE / stored.rate, path=(source, target), strategy="reverse")

    def _base_hop(self, source: str, target: str, as_of_date: date) -> Resolution | None:
        base = self.base_currency
        if base in (source, target):
            return None
        first_leg = self._stored_factor(source, base, as_of_date)
        if first_leg is None:
            return None
        second_leg = self._stored_factor(base, target, as_of_date)
        if second_leg is None:
            return None
        return Resolution(
            rate=first_leg * second_leg, path=(source, base, target), strategy="base_hop"
        )

    def _graph(self, source: str, target: str, as_of_date: date) -> Resolution | None:
        graph = RateGraph.from_rates(self.rate_store.latest_rates(as_of_date))
        path = graph.find_path(source, target)
        if path is None or not path.edges:
            return None
        rate = path.factor
        self._persist(source, target, rate, as_of_date, SOURCE_DERIVED)
        return Resolution(rate=rate, path=path.currencies, strategy="graph")

    def _external(self, source: str, target: str, as_of_date: date) -> Resolution | None:
        if self.rate_fetcher is None:
            return None
        try:
            fetched = self.rate_fetcher.fetch_rate(source, target, as_of_date)
        except RateProviderUnavailable as exc:
            logger.warning(
                "External rate source unavailable for %s->%s as of %s: %s",
                source,
                target,
                as_of_date,
                exc,
            )
            return None
        self._persist(source, target, fetched.rate, fetched.effective_date, SOURCE_API)
        return Resolution(rate=fetched.rate, path=(source, target), strategy="api")

    def _static(self, source: str, target: str, as_of_date: date) -> Resolution | None:
        if not (self.static_rates.supports(source) and self.static_rates.supports(target)):
            return None
        rate = self.static_rates.get_pair_rate(source, target)
        self._persist(source, target, rate, as_of_date, SOURCE_STATIC)
        return Resolution(rate=rate, path=(source, target), strategy="static")

    def _stored_factor(self, source: str, target: str, as_of_date: date) -> Decimal | None:
        stored = self.rate_store.lookup_rate(source, target, as_of_date)
        if stored is not None:
            return stored.rate
        stored = self.rate_store.lookup_rate(target, source, as_of_date)
        if stored is not None:
            return ONE / stored.rate
        return None

    def _persist(
        self, source: str, target: str, rate: Decimal, effective_date: date, origin: str
    ) -> None:
        self.rate_store.upsert_rate(source, target, rate, effective_date, origin)
        logger.info(
            "Stored %s rate %s->%s=%s effective %s", origin, source, target, rate, effective_date
        )
