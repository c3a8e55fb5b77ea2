from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable

from spendbench.currency_conversion import ExchangeRate

ONE = Decimal("1")


@dataclass(frozen=True)
class RateEdge:
    source: str
    target: str
    factor: Decimal


@dataclass(frozen=True)
class RatePath:
    edges: tuple[RateEdge, ...]

    @property
    def factor(self) -> Decimal:
        result = ONE
        for edge in self.edges:
            result *= edge.factor
        return result

    @property
    def currencies(self) -> tuple[str, ...]:
        if not self.edges:
            return ()
        return (self.edges[0].source,) + tuple(edge.target for edge in self.edges)


class RateGraph:
    """Undirected currency graph; every stored rate is walkable both ways.

    Search is breadth-first, so a found path has the fewest hops. It is not
    necessarily the most precise composition of rates.
    """

    def __init__(self) -> None:
        self._adjacency: dict[str, list[tuple[str, Decimal]]] = {}

    @classmethod
    def from_rates(cls, rates: Iterable[ExchangeRate]) -> "RateGraph":
        graph = cls()
        for rate in rates:
            graph.add_rate(rate.from_currency, rate.to_currency, rate.rate)
        return graph

    def add_rate(self, from_currency: str, to_currency: str, rate: Decimal) -> None:
        if rate <= 0:
            raise ValueError("Rate must be greater than zero.")
        self._adjacency.setdefault(from_currency, []).append((to_currency, rate))
        self._adjacency.setdefault(to_currency, []).append((from_currency, ONE / rate))

    def find_path(self, from_currency: str, to_currency: str) -> RatePath | None:
        if from_currency not in self._adjacency or to_currency not in self._adjacency:
            return None
        if from_currency == to_currency:
            return RatePath(edges=())

        queue: deque[tuple[str, tuple[RateEdge, ...]]] = deque([(from_currency, ())])
        visited = {from_currency}
        while queue:
            currency, edges = queue.popleft()
            for neighbor, factor in self._adjacency[currency]:
                if neighbor in visited:
                    continue
                path = edges + (RateEdge(currency, neighbor, factor),)
                if neighbor == to_currency:
                    return RatePath(edges=path)
                visited.add(neighbor)
                queue.append((neighbor, path))
        return None
