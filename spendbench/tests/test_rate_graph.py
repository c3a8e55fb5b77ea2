import unittest
from decimal import Decimal

from spendbench.rate_graph import RateGraph


class RateGraphTests(unittest.TestCase):
    def test_finds_shortest_hop_path(self) -> None:
        graph = RateGraph()
        graph.add_rate("CHF", "USD", Decimal("1.1"))
        graph.add_rate("USD", "SEK", Decimal("10"))
        graph.add_rate("SEK", "NOK", Decimal("0.5"))
        graph.add_rate("CHF", "DKK", Decimal("7"))
        graph.add_rate("DKK", "NOK", Decimal("1.5"))

        path = graph.find_path("CHF", "NOK")

        self.assertEqual(path.currencies, ("CHF", "DKK", "NOK"))
        self.assertEqual(path.factor, Decimal("10.5"))

    def test_edges_are_walkable_in_reverse(self) -> None:
        graph = RateGraph()
        graph.add_rate("USD", "CHF", Decimal("0.8"))
        graph.add_rate("USD", "SEK", Decimal("10"))

        path = graph.find_path("CHF", "SEK")

        self.assertEqual(path.currencies, ("CHF", "USD", "SEK"))
        self.assertEqual(path.factor, Decimal("12.5"))

    def test_disconnected_currencies_have_no_path(self) -> None:
        graph = RateGraph()
        graph.add_rate("USD", "EUR", Decimal("0.9"))
        graph.add_rate("JPY", "KRW", Decimal("9"))

        self.assertIsNone(graph.find_path("USD", "KRW"))
        self.assertIsNone(graph.find_path("USD", "XAF"))

    def test_rejects_non_positive_rate(self) -> None:
        with self.assertRaises(ValueError):
            RateGraph().add_rate("USD", "EUR", Decimal("0"))


if __name__ == "__main__":
    unittest.main()
