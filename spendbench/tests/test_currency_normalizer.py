import unittest
from datetime import date
from decimal import Decimal

from spendbench.currency_conversion import (
    SOURCE_API,
    SOURCE_DERIVED,
    SOURCE_STATIC,
    RateProviderUnavailable,
    StaticRateProvider,
    build_exchange_rate,
)
from spendbench.currency_normalizer import CurrencyNormalizer, RateNotFoundError
from spendbench.rate_store import InMemoryRateStore

QUERY_DATE = date(2024, 6, 15)


class StubFetcher:
    def __init__(self, rate: str | None = None) -> None:
        self.rate = rate
        self.calls = []

    def fetch_rate(self, from_currency, to_currency, as_of_date):
        self.calls.append((from_currency, to_currency, as_of_date))
        if self.rate is None:
            raise RateProviderUnavailable("timed out")
        return build_exchange_rate(
            from_currency, to_currency, self.rate, date(2024, 6, 14), source=SOURCE_API
        )


class CurrencyNormalizerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.store = InMemoryRateStore()
        self.usd_only = StaticRateProvider(rates={"USD": Decimal("1")})

    def normalizer(self, fetcher=None, static_rates=None) -> CurrencyNormalizer:
        return CurrencyNormalizer(
            self.store,
            rate_fetcher=fetcher,
            static_rates=static_rates or self.usd_only,
            base_currency="EUR",
        )

    def test_same_currency_returns_original_amount(self) -> None:
        result = self.normalizer().convert(Decimal("12.50"), "usd", "USD", QUERY_DATE)

        self.assertEqual(result.converted_amount, Decimal("12.50"))
        self.assertEqual(result.rate_used, Decimal("1"))
        self.assertEqual(result.strategy, "identity")

    def test_direct_rate_uses_latest_effective_rate(self) -> None:
        self.store.upsert_rate("USD", "EUR", "0.90", date(2024, 1, 1))
        self.store.upsert_rate("USD", "EUR", "0.95", date(2024, 6, 1))
        self.store.upsert_rate("USD", "EUR", "0.99", date(2024, 7, 1))

        result = self.normalizer().convert(Decimal("100"), "USD", "EUR", QUERY_DATE)
        earlier = self.normalizer().convert(Decimal("100"), "USD", "EUR", date(2024, 3, 1))

        self.assertEqual(result.converted_amount, Decimal("95"))
        self.assertEqual(result.strategy, "direct")
        self.assertEqual(result.resolution_path, ("USD", "EUR"))
        self.assertEqual(earlier.converted_amount, Decimal("90"))

    def test_reverse_rate_is_inverted(self) -> None:
        self.store.upsert_rate("EUR", "USD", "1.25", date(2024, 1, 1))

        result = self.normalizer().convert(Decimal("10"), "USD", "EUR", QUERY_DATE)

        self.assertEqual(result.converted_amount, Decimal("8"))
        self.assertEqual(result.rate_used, Decimal("0.8"))
        self.assertEqual(result.strategy, "reverse")

    def test_base_hop_multiplies_both_legs(self) -> None:
        self.store.upsert_rate("GBP", "EUR", "1.2", date(2024, 1, 1))
        self.store.upsert_rate("EUR", "JPY", "160", date(2024, 1, 1))

        result = self.normalizer().convert(Decimal("10"), "GBP", "JPY", QUERY_DATE)

        self.assertEqual(result.rate_used, Decimal("1.2") * Decimal("160"))
        self.assertEqual(result.converted_amount, Decimal("1920"))
        self.assertEqual(result.resolution_path, ("GBP", "EUR", "JPY"))
        self.assertEqual(result.strategy, "base_hop")

    def test_graph_search_composes_path_and_persists_rate(self) -> None:
        self.store.upsert_rate("CHF", "USD", "1.1", date(2024, 1, 1))
        self.store.upsert_rate("USD", "SEK", "10", date(2024, 1, 1))
        self.store.upsert_rate("NOK", "SEK", "2", date(2024, 1, 1))

        result = self.normalizer().convert(Decimal("2"), "CHF", "NOK", QUERY_DATE)

        self.assertEqual(result.strategy, "graph")
        self.assertEqual(result.resolution_path, ("CHF", "USD", "SEK", "NOK"))
        self.assertAlmostEqual(result.converted_amount, Decimal("11"))
        stored = self.store.lookup_rate("CHF", "NOK", QUERY_DATE)
        self.assertEqual(stored.source, SOURCE_DERIVED)
        self.assertEqual(stored.effective_date, QUERY_DATE)

        again = self.normalizer().convert(Decimal("2"), "CHF", "NOK", QUERY_DATE)
        self.assertEqual(again.strategy, "direct")

    def test_graph_ignores_rates_effective_after_query_date(self) -> None:
        self.store.upsert_rate("CHF", "USD", "1.1", date(2024, 1, 1))
        self.store.upsert_rate("USD", "SEK", "10", date(2024, 12, 1))

        with self.assertRaises(RateNotFoundError):
            self.normalizer().convert(Decimal("2"), "CHF", "SEK", QUERY_DATE)

    def test_external_fetch_is_persisted_as_api_rate(self) -> None:
        fetcher = StubFetcher(rate="0.5")

        result = self.normalizer(fetcher).convert(Decimal("4"), "PLN", "CHF", QUERY_DATE)
        self.normalizer(fetcher).convert(Decimal("4"), "PLN", "CHF", QUERY_DATE)

        self.assertEqual(result.converted_amount, Decimal("2"))
        self.assertEqual(result.strategy, "api")
        self.assertEqual(len(fetcher.calls), 1)
        stored = self.store.lookup_rate("PLN", "CHF", QUERY_DATE)
        self.assertEqual(stored.source, SOURCE_API)
        self.assertEqual(stored.effective_date, date(2024, 6, 14))

    def test_unavailable_fetch_falls_back_to_static_table(self) -> None:
        fetcher = StubFetcher(rate=None)

        result = self.normalizer(fetcher, StaticRateProvider()).convert(
            Decimal("100"), "USD", "EUR", QUERY_DATE
        )

        self.assertEqual(result.converted_amount, Decimal("92"))
        self.assertEqual(result.strategy, "static")
        self.assertEqual(fetcher.calls, [("USD", "EUR", QUERY_DATE)])
        stored = self.store.lookup_rate("USD", "EUR", QUERY_DATE)
        self.assertEqual(stored.source, SOURCE_STATIC)

    def test_unresolvable_pair_raises_rate_not_found(self) -> None:
        fetcher = StubFetcher(rate=None)

        with self.assertRaises(RateNotFoundError) as ctx:
            self.normalizer(fetcher, StaticRateProvider()).convert(
                Decimal("100"), "XAF", "XOF", QUERY_DATE
            )

        self.assertEqual(ctx.exception.from_currency, "XAF")
        self.assertEqual(ctx.exception.to_currency, "XOF")
        self.assertEqual(ctx.exception.as_of_date, QUERY_DATE)
        self.assertEqual(len(self.store), 0)

    def test_strategies_run_in_priority_order(self) -> None:
        names = [name for name, _ in self.normalizer().strategies]

        self.assertEqual(
            names, ["identity", "direct", "reverse", "base_hop", "graph", "api", "static"]
        )


if __name__ == "__main__":
    unittest.main()
