from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Iterable, Optional

ZERO = Decimal("0")
HUNDRED = Decimal("100")
UNCATEGORIZED = "Uncategorized"
DEFAULT_PERIOD_DAYS = 30


@dataclass(frozen=True)
class Expense:
    amount: Decimal
    currency: str
    expense_date: date
    category: Optional[str] = None
    expense_id: Optional[int] = None


@dataclass(frozen=True)
class StandardizedExpense:
    expense: Expense
    standardized_amount: Decimal
    standardized_currency: str
    converted: bool = True

    @property
    def expense_date(self) -> date:
        return _as_date(self.expense.expense_date)

    @property
    def category(self) -> str:
        return self.expense.category or UNCATEGORIZED


@dataclass(frozen=True)
class CategoryStatistics:
    total: Decimal
    count: int
    percentage: Decimal


@dataclass(frozen=True)
class UserStatistics:
    total: Decimal
    transaction_count: int
    avg_expense: Decimal
    largest_expense: Decimal
    daily_avg: Decimal
    weekly_avg: Decimal
    days_in_period: int
    categories: dict[str, CategoryStatistics] = field(default_factory=dict)


def compute_user_statistics(expenses: Iterable[StandardizedExpense]) -> UserStatistics:
    """Aggregate a user's standardized expenses for one period.

    The period length runs from the oldest to the newest expense date
    inclusive, so input order does not matter. An empty input reports a
    nominal 30-day period with all figures at zero.
    """
    total = ZERO
    count = 0
    largest = ZERO
    oldest: date | None = None
    newest: date | None = None
    category_totals: dict[str, Decimal] = {}
    category_counts: dict[str, int] = {}

    for expense in expenses:
        amount = _coerce_amount(expense.standardized_amount)
        total += amount
        count += 1
        if amount > largest:
            largest = amount

        category = expense.category
        category_totals[category] = category_totals.get(category, ZERO) + amount
        category_counts[category] = category_counts.get(category, 0) + 1

        expense_date = expense.expense_date
        if oldest is None or expense_date < oldest:
            oldest = expense_date
        if newest is None or expense_date > newest:
            newest = expense_date

    if oldest is None or newest is None:
        days_in_period = DEFAULT_PERIOD_DAYS
    else:
        days_in_period = max((newest - oldest).days + 1, 1)

    categories = {
        name: CategoryStatistics(
            total=category_total,
            count=category_counts[name],
            percentage=(category_total / total) * HUNDRED if total > ZERO else ZERO,
        )
        for name, category_total in category_totals.items()
    }
    daily_avg = total / days_in_period

    return UserStatistics(
        total=total,
        transaction_count=count,
        avg_expense=total / count if count else ZERO,
        largest_expense=largest,
        daily_avg=daily_avg,
        weekly_avg=daily_avg * 7,
        days_in_period=days_in_period,
        categories=categories,
    )


def _as_date(value: date | datetime) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


def _coerce_amount(amount: Decimal) -> Decimal:
    if isinstance(amount, Decimal):
        return amount
    return Decimal(str(amount))
