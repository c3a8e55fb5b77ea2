from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional

from spendbench.benchmark_calculator import (
    PeerBenchmark,
    estimate_percentile,
    percent_difference,
)
from spendbench.statistics_calculator import UserStatistics


@dataclass(frozen=True)
class TotalComparison:
    vs_avg: Decimal
    vs_avg_percent: Decimal
    vs_median: Decimal
    vs_median_percent: Decimal
    percentile: Decimal


@dataclass(frozen=True)
class CountComparison:
    vs_avg: Decimal
    vs_avg_percent: Decimal


@dataclass(frozen=True)
class CategoryComparison:
    vs_avg: Optional[Decimal] = None
    vs_avg_percent: Optional[Decimal] = None
    vs_median: Optional[Decimal] = None
    vs_median_percent: Optional[Decimal] = None
    no_benchmark_data: bool = False


NO_BENCHMARK_DATA = CategoryComparison(no_benchmark_data=True)


@dataclass(frozen=True)
class TierComparison:
    total_spent: TotalComparison
    transaction_count: CountComparison
    categories: dict[str, CategoryComparison] = field(default_factory=dict)


def compare_with_benchmark(user_stats: UserStatistics, peer: PeerBenchmark) -> TierComparison:
    total = peer.total
    transaction_count = Decimal(user_stats.transaction_count)

    categories: dict[str, CategoryComparison] = {}
    for name, category in user_stats.categories.items():
        peer_category = peer.categories.get(name)
        if peer_category is None:
            categories[name] = NO_BENCHMARK_DATA
            continue
        categories[name] = CategoryComparison(
            vs_avg=category.total - peer_category.avg_spent,
            vs_avg_percent=percent_difference(category.total, peer_category.avg_spent),
            vs_median=category.total - peer_category.median_spent,
            vs_median_percent=percent_difference(category.total, peer_category.median_spent),
        )

    return TierComparison(
        total_spent=TotalComparison(
            vs_avg=user_stats.total - total.avg_spent,
            vs_avg_percent=percent_difference(user_stats.total, total.avg_spent),
            vs_median=user_stats.total - total.median_spent,
            vs_median_percent=percent_difference(user_stats.total, total.median_spent),
            percentile=estimate_percentile(
                user_stats.total, total.p25_spent, total.median_spent, total.p75_spent
            ),
        ),
        transaction_count=CountComparison(
            vs_avg=transaction_count - total.avg_transaction_count,
            vs_avg_percent=percent_difference(transaction_count, total.avg_transaction_count),
        ),
        categories=categories,
    )
