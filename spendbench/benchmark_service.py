"""Peer benchmark reports for a user's spending.

A report compares one user's normalized spending over a period with
precomputed peer aggregates at up to three tiers (same city, same country,
everyone) and derives severity-ranked insights from the most specific tier
available. Peer aggregates are stored in a single base currency and are
re-expressed in the report currency before any comparison.

Every collaborator is injected: an expense source, a peer aggregate source,
an optional user directory for locations and a ``CurrencyNormalizer``.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date
import logging
from typing import Optional

from spendbench.benchmark_calculator import (
    TIER_COUNTRY,
    TIER_GLOBAL,
    TIER_LOCAL,
    TIERS,
    PeerBenchmark,
)
from spendbench.comparison import TierComparison, compare_with_benchmark
from spendbench.currency_conversion import normalize_currency
from spendbench.currency_normalizer import CurrencyNormalizer, RateNotFoundError
from spendbench.insights import Insight, generate_insights
from spendbench.periods import Period, resolve_timeframe, validate_period
from spendbench.statistics_calculator import (
    Expense,
    StandardizedExpense,
    UserStatistics,
    compute_user_statistics,
)

logger = logging.getLogger(__name__)

GLOBAL_LOCATION_KEY = "global"
UNKNOWN_LOCATION = "Unknown"


class PeerDataUnavailableError(LookupError):
    """Raised when not even the global tier has peer data for the period."""


@dataclass(frozen=True)
class UserLocation:
    city: Optional[str] = None
    country: Optional[str] = None

    @property
    def label(self) -> str:
        if self.city and self.country:
            return f"{self.city}, {self.country}"
        return self.country or UNKNOWN_LOCATION

    def location_key(self, tier: str) -> Optional[str]:
        if tier == TIER_LOCAL:
            return self.label if self.city and self.country else None
        if tier == TIER_COUNTRY:
            return self.country or None
        return GLOBAL_LOCATION_KEY


GLOBAL_ONLY = UserLocation()


@dataclass(frozen=True)
class BenchmarkReport:
    user_id: int
    location: str
    period: Period
    currency: str
    user_statistics: UserStatistics
    benchmarks: dict[str, PeerBenchmark]
    comparisons: dict[str, TierComparison]
    insight_tier: str
    insights: list[Insight] = field(default_factory=list)
    unconverted_expenses: list[StandardizedExpense] = field(default_factory=list)
    unconverted_benchmarks: list[str] = field(default_factory=list)


class BenchmarkOrchestrator:
    def __init__(
        self,
        normalizer: CurrencyNormalizer,
        expense_source,
        peer_source,
        user_directory=None,
        default_currency: str = "EUR",
    ) -> None:
        self.normalizer = normalizer
        self.expense_source = expense_source
        self.peer_source = peer_source
        self.user_directory = user_directory
        self.default_currency = normalize_currency(default_currency)

    def generate_user_benchmark(
        self,
        user_id: int,
        timeframe: str = "month",
        report_currency: str | None = None,
        today: date | None = None,
    ) -> BenchmarkReport:
        period = resolve_timeframe(timeframe, today or date.today())
        return self.generate_benchmark_for_period(user_id, period, report_currency)

    def generate_benchmark_for_period(
        self, user_id: int, period: Period, report_currency: str | None = None
    ) -> BenchmarkReport:
        validate_period(period.start_date, period.end_date)
        currency = normalize_currency(report_currency or self.default_currency)

        location = self._get_location(user_id)
        raw_benchmarks = self.resolve_peer_benchmarks(location, period)
        benchmarks: dict[str, PeerBenchmark] = {}
        unconverted_benchmarks: list[str] = []
        for tier, peer in raw_benchmarks.items():
            benchmarks[tier] = self._standardize_benchmark(peer, currency, period.end_date)
            if benchmarks[tier].currency != currency:
                unconverted_benchmarks.append(tier)

        expenses = self.expense_source.get_expenses_for_period(
            user_id, period.start_date, period.end_date
        )
        standardized = self.standardize_expenses(expenses, currency)
        user_stats = compute_user_statistics(standardized)

        comparisons = {
            tier: compare_with_benchmark(user_stats, peer) for tier, peer in benchmarks.items()
        }
        insight_tier = next(tier for tier in TIERS if tier in benchmarks)
        insights = generate_insights(
            user_stats, insight_tier, benchmarks[insight_tier], comparisons[insight_tier]
        )
        unconverted = [expense for expense in standardized if not expense.converted]

        logger.info(
            "Benchmark for user %s (%s, %s): %d expenses, tiers=%s, %d insights, %d unconverted",
            user_id,
            period.label,
            currency,
            user_stats.transaction_count,
            ",".join(benchmarks),
            len(insights),
            len(unconverted),
        )
        return BenchmarkReport(
            user_id=user_id,
            location=location.label,
            period=period,
            currency=currency,
            user_statistics=user_stats,
            benchmarks=benchmarks,
            comparisons=comparisons,
            insight_tier=insight_tier,
            insights=insights,
            unconverted_expenses=unconverted,
            unconverted_benchmarks=unconverted_benchmarks,
        )

    def resolve_peer_benchmarks(
        self, location: UserLocation, period: Period
    ) -> dict[str, PeerBenchmark]:
        """Collect peer data from the most to the least specific tier."""
        benchmarks: dict[str, PeerBenchmark] = {}
        for tier in TIERS:
            location_key = location.location_key(tier)
            if location_key is None:
                continue
            peer = self.peer_source.get_peer_benchmark(
                tier, location_key, period.start_date, period.end_date
            )
            if peer is None:
                logger.warning("No %s peer data for %s in %s", tier, location_key, period.label)
                continue
            benchmarks[tier] = peer

        if TIER_GLOBAL not in benchmarks:
            raise PeerDataUnavailableError(
                f"Insufficient data: no global peer benchmark for {period.label}."
            )
        return benchmarks

    def standardize_expenses(
        self, expenses: list[Expense], currency: str
    ) -> list[StandardizedExpense]:
        standardized: list[StandardizedExpense] = []
        for expense in expenses:
            try:
                result = self.normalizer.convert(
                    expense.amount, expense.currency, currency, expense.expense_date
                )
            except (RateNotFoundError, ValueError) as exc:
                logger.warning(
                    "Keeping unconverted amount %s %s for expense %s: %s",
                    expense.amount,
                    expense.currency,
                    expense.expense_id,
                    exc,
                )
                standardized.append(
                    StandardizedExpense(
                        expense=expense,
                        standardized_amount=expense.amount,
                        standardized_currency=expense.currency,
                        converted=False,
                    )
                )
                continue
            standardized.append(
                StandardizedExpense(
                    expense=expense,
                    standardized_amount=result.converted_amount,
                    standardized_currency=currency,
                )
            )
        return standardized

    def _standardize_benchmark(
        self, peer: PeerBenchmark, currency: str, as_of_date: date
    ) -> PeerBenchmark:
        peer = replace(peer, total=peer.total.ordered())
        try:
            rate = self.normalizer.resolve_rate(peer.currency, currency, as_of_date).rate
        except (RateNotFoundError, ValueError) as exc:
            logger.warning(
                "Keeping %s peer figures in %s: %s", peer.tier, peer.currency, exc
            )
            return peer
        return peer.map_amounts(currency, lambda amount: amount * rate)

    def _get_location(self, user_id: int) -> UserLocation:
        if self.user_directory is None:
            return GLOBAL_ONLY
        return self.user_directory.get_user_location(user_id) or GLOBAL_ONLY
