from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional, Union

from spendbench.benchmark_calculator import PeerBenchmark, potential_savings
from spendbench.comparison import TierComparison
from spendbench.statistics_calculator import UserStatistics

SEVERITY_HIGH = "high"
SEVERITY_MEDIUM = "medium"
SEVERITY_LOW = "low"
SEVERITY_ORDER = {SEVERITY_HIGH: 0, SEVERITY_MEDIUM: 1, SEVERITY_LOW: 2}

OVERALL_HIGH_PERCENT = Decimal("20")
OVERALL_MEDIUM_PERCENT = Decimal("5")
OVERALL_LOW_PERCENT = Decimal("-20")
CATEGORY_HIGH_PERCENT = Decimal("50")
CATEGORY_MEDIUM_PERCENT = Decimal("25")
CATEGORY_SHARE_PERCENT = Decimal("25")
TRANSACTION_COUNT_PERCENT = Decimal("30")

Figure = Union[Decimal, int, str]


@dataclass(frozen=True)
class Insight:
    type: str
    severity: str
    message: str
    category: Optional[str] = None
    figures: dict[str, Figure] = field(default_factory=dict)


def sort_insights(insights: list[Insight]) -> list[Insight]:
    """Order by severity (high, medium, low); equal severities keep their order."""
    return sorted(insights, key=lambda insight: SEVERITY_ORDER[insight.severity])


def generate_insights(
    user_stats: UserStatistics,
    tier: str,
    peer: PeerBenchmark,
    comparison: TierComparison,
) -> list[Insight]:
    insights: list[Insight] = []
    insights.extend(_overall_insights(tier, comparison))
    insights.extend(_category_insights(user_stats, tier, comparison))
    insights.extend(_transaction_insights(user_stats, tier, comparison))

    if any(
        insight.type == "category_high" and insight.severity == SEVERITY_HIGH
        for insight in insights
    ):
        insights.append(
            Insight(
                type="saving_opportunity",
                severity=SEVERITY_HIGH,
                message=(
                    "You could save by reducing spending in your highest "
                    "above-average categories."
                ),
                figures={"potential_saving": potential_savings(user_stats, peer)},
            )
        )
    return sort_insights(insights)


def _overall_insights(tier: str, comparison: TierComparison) -> list[Insight]:
    total = comparison.total_spent
    figures = {"percentile": total.percentile, "vs_median_percent": total.vs_median_percent}
    if total.vs_median_percent > OVERALL_HIGH_PERCENT:
        severity = SEVERITY_HIGH
    elif total.vs_median_percent > OVERALL_MEDIUM_PERCENT:
        severity = SEVERITY_MEDIUM
    elif total.vs_median_percent < OVERALL_LOW_PERCENT:
        return [
            Insight(
                type="overall_low",
                severity=SEVERITY_LOW,
                message=(
                    f"Your total spending is {abs(total.vs_median_percent):.0f}% "
                    f"lower than the {tier} median."
                ),
                figures=figures,
            )
        ]
    else:
        return []
    return [
        Insight(
            type="overall_high",
            severity=severity,
            message=(
                f"Your total spending is {total.vs_median_percent:.0f}% "
                f"higher than the {tier} median."
            ),
            figures=figures,
        )
    ]


def _category_insights(
    user_stats: UserStatistics, tier: str, comparison: TierComparison
) -> list[Insight]:
    insights: list[Insight] = []
    for name, category in user_stats.categories.items():
        figures = {"amount": category.total, "percent_of_total": category.percentage}
        category_comparison = comparison.categories.get(name)
        if category_comparison is not None and not category_comparison.no_benchmark_data:
            vs_median_percent = category_comparison.vs_median_percent
            severity = None
            if vs_median_percent > CATEGORY_HIGH_PERCENT:
                severity = SEVERITY_HIGH
            elif vs_median_percent > CATEGORY_MEDIUM_PERCENT:
                severity = SEVERITY_MEDIUM
            if severity is not None:
                insights.append(
                    Insight(
                        type="category_high",
                        severity=severity,
                        category=name,
                        message=(
                            f"Your spending on {name} is {vs_median_percent:.0f}% "
                            f"higher than the {tier} median."
                        ),
                        figures={**figures, "vs_median_percent": vs_median_percent},
                    )
                )

        if category.percentage > CATEGORY_SHARE_PERCENT:
            insights.append(
                Insight(
                    type="category_significant",
                    severity=SEVERITY_MEDIUM,
                    category=name,
                    message=f"{name} makes up {category.percentage:.0f}% of your total spending.",
                    figures=figures,
                )
            )
    return insights


def _transaction_insights(
    user_stats: UserStatistics, tier: str, comparison: TierComparison
) -> list[Insight]:
    vs_avg_percent = comparison.transaction_count.vs_avg_percent
    figures = {"count": user_stats.transaction_count, "avg_size": user_stats.avg_expense}
    if vs_avg_percent > TRANSACTION_COUNT_PERCENT:
        return [
            Insight(
                type="transaction_high",
                severity=SEVERITY_MEDIUM,
                message=(
                    f"You have {vs_avg_percent:.0f}% more transactions "
                    f"than the {tier} average."
                ),
                figures=figures,
            )
        ]
    if vs_avg_percent < -TRANSACTION_COUNT_PERCENT:
        return [
            Insight(
                type="transaction_low",
                severity=SEVERITY_LOW,
                message=(
                    f"You have {abs(vs_avg_percent):.0f}% fewer transactions "
                    f"than the {tier} average."
                ),
                figures=figures,
            )
        ]
    return []
