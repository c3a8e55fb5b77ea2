import unittest
from datetime import date
from decimal import Decimal

from spendbench.statistics_calculator import (
    Expense,
    StandardizedExpense,
    compute_user_statistics,
)


def standardized(amount: str, expense_date: date, category: str | None) -> StandardizedExpense:
    return StandardizedExpense(
        expense=Expense(
            amount=Decimal(amount),
            currency="EUR",
            expense_date=expense_date,
            category=category,
        ),
        standardized_amount=Decimal(amount),
        standardized_currency="EUR",
    )


class StatisticsCalculatorTests(unittest.TestCase):
    def test_aggregates_totals_and_categories(self) -> None:
        expenses = [
            standardized("120", date(2024, 5, 10), "Food"),
            standardized("100", date(2024, 5, 6), "Transport"),
            standardized("180", date(2024, 5, 1), "Food"),
        ]

        stats = compute_user_statistics(expenses)

        self.assertEqual(stats.total, Decimal("400"))
        self.assertEqual(stats.transaction_count, 3)
        self.assertAlmostEqual(stats.avg_expense, Decimal("133.3333333"))
        self.assertEqual(stats.largest_expense, Decimal("180"))
        self.assertEqual(stats.days_in_period, 10)
        self.assertEqual(stats.daily_avg, Decimal("40"))
        self.assertEqual(stats.weekly_avg, Decimal("280"))
        self.assertEqual(stats.categories["Food"].total, Decimal("300"))
        self.assertEqual(stats.categories["Food"].count, 2)
        self.assertEqual(stats.categories["Food"].percentage, Decimal("75"))
        self.assertEqual(stats.categories["Transport"].percentage, Decimal("25"))

    def test_category_totals_and_percentages_add_up(self) -> None:
        expenses = [
            standardized("33.33", date(2024, 5, 1), "Food"),
            standardized("19.99", date(2024, 5, 2), "Fun"),
            standardized("7.01", date(2024, 5, 3), "Rent"),
        ]

        stats = compute_user_statistics(expenses)

        self.assertEqual(
            sum(category.total for category in stats.categories.values()), stats.total
        )
        self.assertAlmostEqual(
            sum(category.percentage for category in stats.categories.values()),
            Decimal("100"),
        )

    def test_period_length_ignores_input_order(self) -> None:
        expenses = [
            standardized("10", date(2024, 5, 3), "Food"),
            standardized("10", date(2024, 5, 20), "Food"),
            standardized("10", date(2024, 5, 1), "Food"),
        ]

        stats = compute_user_statistics(expenses)

        self.assertEqual(stats.days_in_period, 20)

    def test_single_day_period_is_one_day(self) -> None:
        stats = compute_user_statistics([standardized("15", date(2024, 5, 3), "Food")])

        self.assertEqual(stats.days_in_period, 1)
        self.assertEqual(stats.daily_avg, Decimal("15"))

    def test_missing_category_is_uncategorized(self) -> None:
        stats = compute_user_statistics([standardized("15", date(2024, 5, 3), None)])

        self.assertEqual(list(stats.categories), ["Uncategorized"])

    def test_empty_input_returns_zeroes(self) -> None:
        stats = compute_user_statistics([])

        self.assertEqual(stats.total, Decimal("0"))
        self.assertEqual(stats.transaction_count, 0)
        self.assertEqual(stats.avg_expense, Decimal("0"))
        self.assertEqual(stats.largest_expense, Decimal("0"))
        self.assertEqual(stats.daily_avg, Decimal("0"))
        self.assertEqual(stats.days_in_period, 30)
        self.assertEqual(stats.categories, {})


if __name__ == "__main__":
    unittest.main()
