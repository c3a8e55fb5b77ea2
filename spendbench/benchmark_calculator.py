from __future__ import annotations

from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import Callable

from spendbench.statistics_calculator import UserStatistics

ZERO = Decimal("0")
ONE = Decimal("1")
HUNDRED = Decimal("100")
QUARTER = Decimal("25")
MAX_PERCENTILE = Decimal("99")

TIER_LOCAL = "local"
TIER_COUNTRY = "country"
TIER_GLOBAL = "global"
TIERS = (TIER_LOCAL, TIER_COUNTRY, TIER_GLOBAL)


@dataclass(frozen=True)
class TotalBenchmark:
    avg_spent: Decimal
    median_spent: Decimal
    p25_spent: Decimal
    p75_spent: Decimal
    avg_transaction_count: Decimal

    def ordered(self) -> "TotalBenchmark":
        """Return a copy whose quartiles satisfy p25 <= median <= p75."""
        p25, median, p75 = sorted((self.p25_spent, self.median_spent, self.p75_spent))
        return replace(self, p25_spent=p25, median_spent=median, p75_spent=p75)


@dataclass(frozen=True)
class CategoryBenchmark:
    avg_spent: Decimal
    median_spent: Decimal


@dataclass(frozen=True)
class PeerBenchmark:
    tier: str
    location: str
    user_count: int
    currency: str
    total: TotalBenchmark
    categories: dict[str, CategoryBenchmark] = field(default_factory=dict)

    def map_amounts(
        self, currency: str, convert: Callable[[Decimal], Decimal]
    ) -> "PeerBenchmark":
        """Re-express every monetary figure through ``convert``.

        Transaction counts are not money and are carried over unchanged.
        """
        total = self.total
        return replace(
            self,
            currency=currency,
            total=TotalBenchmark(
                avg_spent=convert(total.avg_spent),
                median_spent=convert(total.median_spent),
                p25_spent=convert(total.p25_spent),
                p75_spent=convert(total.p75_spent),
                avg_transaction_count=total.avg_transaction_count,
            ),
            categories={
                name: CategoryBenchmark(
                    avg_spent=convert(category.avg_spent),
                    median_spent=convert(category.median_spent),
                )
                for name, category in self.categories.items()
            },
        )


def estimate_percentile(
    value: Decimal, p25: Decimal, median: Decimal, p75: Decimal
) -> Decimal:
    """Approximate where ``value`` falls in a peer distribution.

    This is linear interpolation between the quartiles, not an order
    statistic over the underlying population: 0-25 up to p25, 25-50 up to the
    median, 50-75 up to p75, then 75 plus 25 per multiple of p75 beyond it.
    The result is capped at 99. Degenerate quartiles (zero or empty spans)
    resolve to the nearest quartile boundary.
    """
    value, p25, median, p75 = (_coerce(item) for item in (value, p25, median, p75))

    if value <= p25:
        if p25 <= ZERO:
            percentile = ZERO if value <= ZERO else QUARTER
        else:
            percentile = (value / p25) * QUARTER
    elif value <= median:
        span = median - p25
        percentile = QUARTER * 2 if span <= ZERO else QUARTER + ((value - p25) / span) * QUARTER
    elif value <= p75:
        span = p75 - median
        percentile = (
            QUARTER * 3 if span <= ZERO else QUARTER * 2 + ((value - median) / span) * QUARTER
        )
    elif p75 <= ZERO:
        percentile = QUARTER * 3
    else:
        percentile = QUARTER * 3 + (value / p75 - ONE) * QUARTER

    return min(max(percentile, ZERO), MAX_PERCENTILE)


def percent_difference(value: Decimal, reference: Decimal) -> Decimal:
    """Percent by which ``value`` exceeds ``reference``; 0 for a non-positive reference."""
    reference = _coerce(reference)
    if reference <= ZERO:
        return ZERO
    return (_coerce(value) / reference - ONE) * HUNDRED


def potential_savings(user_stats: UserStatistics, peer_benchmark: PeerBenchmark) -> Decimal:
    """Amount saved by cutting every above-median category down to the peer median."""
    savings = ZERO
    for name, category in user_stats.categories.items():
        peer_category = peer_benchmark.categories.get(name)
        if peer_category is None:
            continue
        if category.total > peer_category.median_spent:
            savings += category.total - peer_category.median_spent
    return savings


def _coerce(value: Decimal | int | float | str) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))
