from __future__ import annotations

from datetime import date
from decimal import Decimal
import logging

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    UniqueConstraint,
    and_,
    func,
    insert,
    select,
    update,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from spendbench.benchmark_calculator import CategoryBenchmark, PeerBenchmark, TotalBenchmark
from spendbench.benchmark_service import UserLocation
from spendbench.currency_conversion import (
    SOURCE_MANUAL,
    ExchangeRate,
    build_exchange_rate,
    normalize_currency,
)
from spendbench.statistics_calculator import Expense

logger = logging.getLogger(__name__)

metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("display_name", String(255)),
    Column("home_currency", String(3)),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)

user_locations = Table(
    "user_locations",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("city", String(255)),
    Column("country", String(255)),
    Column("is_primary", Boolean, nullable=False, default=True),
)

expenses = Table(
    "expenses",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("amount", Numeric(12, 2), nullable=False),
    Column("currency", String(3), nullable=False),
    Column("expense_date", Date, nullable=False),
    Column("category", String(255)),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)

exchange_rates = Table(
    "exchange_rates",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("from_currency", String(3), nullable=False),
    Column("to_currency", String(3), nullable=False),
    Column("rate", Numeric(20, 10), nullable=False),
    Column("effective_date", Date, nullable=False),
    Column("source", String(10), nullable=False),
    Column("updated_at", DateTime, nullable=False, server_default=func.now()),
    UniqueConstraint(
        "from_currency", "to_currency", "effective_date", name="uq_exchange_rates_pair_date"
    ),
)

peer_benchmarks = Table(
    "peer_benchmarks",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("tier", String(10), nullable=False),
    Column("location_key", String(255), nullable=False),
    Column("location", String(255), nullable=False),
    Column("start_date", Date, nullable=False),
    Column("end_date", Date, nullable=False),
    Column("currency", String(3), nullable=False),
    Column("user_count", Integer, nullable=False),
    Column("avg_spent", Numeric(14, 2), nullable=False),
    Column("median_spent", Numeric(14, 2), nullable=False),
    Column("p25_spent", Numeric(14, 2), nullable=False),
    Column("p75_spent", Numeric(14, 2), nullable=False),
    Column("avg_transaction_count", Numeric(10, 2), nullable=False),
    Column("category_data", JSON, nullable=False, default=dict),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
    UniqueConstraint(
        "tier", "location_key", "start_date", "end_date", name="uq_peer_benchmarks_period"
    ),
)


def create_schema(engine: Engine) -> None:
    metadata.create_all(engine)


def coerce_decimal(value: Decimal | float | int | str) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


class SqlRateStore:
    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def lookup_rate(
        self, from_currency: str, to_currency: str, as_of_date: date
    ) -> ExchangeRate | None:
        stmt = (
            select(exchange_rates)
            .where(
                exchange_rates.c.from_currency == normalize_currency(from_currency),
                exchange_rates.c.to_currency == normalize_currency(to_currency),
                exchange_rates.c.effective_date <= as_of_date,
            )
            .order_by(exchange_rates.c.effective_date.desc())
            .limit(1)
        )
        with self.engine.begin() as conn:
            row = conn.execute(stmt).mappings().first()
        return _rate_from_row(row) if row else None

    def upsert_rate(
        self,
        from_currency: str,
        to_currency: str,
        rate: Decimal | int | float | str,
        effective_date: date | str,
        source: str = SOURCE_MANUAL,
    ) -> ExchangeRate:
        record = build_exchange_rate(from_currency, to_currency, rate, effective_date, source)
        try:
            self._write_rate(record)
        except IntegrityError:
            # A concurrent writer inserted the same key first; overwrite it.
            self._write_rate(record)
        return record

    def latest_rates(self, as_of_date: date) -> list[ExchangeRate]:
        stmt = (
            select(exchange_rates)
            .where(exchange_rates.c.effective_date <= as_of_date)
            .order_by(exchange_rates.c.effective_date.asc())
        )
        with self.engine.begin() as conn:
            rows = conn.execute(stmt).mappings().all()
        latest: dict[tuple[str, str], ExchangeRate] = {}
        for row in rows:
            rate = _rate_from_row(row)
            latest[(rate.from_currency, rate.to_currency)] = rate
        return list(latest.values())

    def _write_rate(self, record: ExchangeRate) -> None:
        key = and_(
            exchange_rates.c.from_currency == record.from_currency,
            exchange_rates.c.to_currency == record.to_currency,
            exchange_rates.c.effective_date == record.effective_date,
        )
        with self.engine.begin() as conn:
            result = conn.execute(
                update(exchange_rates)
                .where(key)
                .values(rate=record.rate, source=record.source, updated_at=func.now())
            )
            if result.rowcount == 0:
                conn.execute(
                    insert(exchange_rates).values(
                        from_currency=record.from_currency,
                        to_currency=record.to_currency,
                        rate=record.rate,
                        effective_date=record.effective_date,
                        source=record.source,
                    )
                )


class SqlExpenseSource:
    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def get_expenses_for_period(
        self, user_id: int, start_date: date, end_date: date
    ) -> list[Expense]:
        stmt = (
            select(expenses)
            .where(
                expenses.c.user_id == user_id,
                expenses.c.expense_date >= start_date,
                expenses.c.expense_date <= end_date,
            )
            .order_by(expenses.c.expense_date.desc(), expenses.c.id.desc())
        )
        with self.engine.begin() as conn:
            rows = conn.execute(stmt).mappings().all()
        return [
            Expense(
                amount=coerce_decimal(row["amount"]),
                currency=row["currency"],
                expense_date=row["expense_date"],
                category=row["category"],
                expense_id=row["id"],
            )
            for row in rows
        ]


class SqlPeerBenchmarkSource:
    """Reads and stores precomputed peer aggregates.

    A lookup prefers the row computed for exactly the requested period and
    otherwise falls back to the most recent row overlapping it.
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def get_peer_benchmark(
        self, tier: str, location_key: str, start_date: date, end_date: date
    ) -> PeerBenchmark | None:
        scope = and_(
            peer_benchmarks.c.tier == tier,
            peer_benchmarks.c.location_key == location_key,
        )
        exact = select(peer_benchmarks).where(
            scope,
            peer_benchmarks.c.start_date == start_date,
            peer_benchmarks.c.end_date == end_date,
        )
        overlapping = (
            select(peer_benchmarks)
            .where(
                scope,
                peer_benchmarks.c.start_date <= end_date,
                peer_benchmarks.c.end_date >= start_date,
            )
            .order_by(peer_benchmarks.c.end_date.desc(), peer_benchmarks.c.id.desc())
            .limit(1)
        )
        with self.engine.begin() as conn:
            row = conn.execute(exact).mappings().first()
            if row is None:
                row = conn.execute(overlapping).mappings().first()
        return _benchmark_from_row(row) if row else None

    def save_peer_benchmark(
        self,
        peer: PeerBenchmark,
        location_key: str,
        start_date: date,
        end_date: date,
    ) -> None:
        if start_date > end_date:
            raise ValueError("start_date must be on or before end_date.")
        values = {
            "location": peer.location,
            "currency": normalize_currency(peer.currency),
            "user_count": peer.user_count,
            "avg_spent": peer.total.avg_spent,
            "median_spent": peer.total.median_spent,
            "p25_spent": peer.total.p25_spent,
            "p75_spent": peer.total.p75_spent,
            "avg_transaction_count": peer.total.avg_transaction_count,
            "category_data": {
                name: {
                    "avg_spent": str(category.avg_spent),
                    "median_spent": str(category.median_spent),
                }
                for name, category in peer.categories.items()
            },
        }
        key = and_(
            peer_benchmarks.c.tier == peer.tier,
            peer_benchmarks.c.location_key == location_key,
            peer_benchmarks.c.start_date == start_date,
            peer_benchmarks.c.end_date == end_date,
        )
        with self.engine.begin() as conn:
            result = conn.execute(update(peer_benchmarks).where(key).values(**values))
            if result.rowcount == 0:
                conn.execute(
                    insert(peer_benchmarks).values(
                        tier=peer.tier,
                        location_key=location_key,
                        start_date=start_date,
                        end_date=end_date,
                        **values,
                    )
                )
        logger.info(
            "Stored %s peer benchmark for %s (%s to %s)", peer.tier, location_key, start_date, end_date
        )


class SqlUserDirectory:
    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def get_user_location(self, user_id: int) -> UserLocation | None:
        stmt = (
            select(user_locations.c.city, user_locations.c.country)
            .where(
                user_locations.c.user_id == user_id,
                user_locations.c.is_primary.is_(True),
            )
            .order_by(user_locations.c.id.desc())
            .limit(1)
        )
        with self.engine.begin() as conn:
            row = conn.execute(stmt).mappings().first()
        if not row:
            return None
        return UserLocation(city=row["city"], country=row["country"])

    def user_exists(self, user_id: int) -> bool:
        with self.engine.begin() as conn:
            row = conn.execute(select(users.c.id).where(users.c.id == user_id)).first()
        return row is not None

    def get_home_currency(self, user_id: int) -> str | None:
        with self.engine.begin() as conn:
            value = conn.execute(
                select(users.c.home_currency).where(users.c.id == user_id)
            ).scalar_one_or_none()
        if not value:
            return None
        try:
            return normalize_currency(value)
        except ValueError:
            return None


def _rate_from_row(row) -> ExchangeRate:
    return ExchangeRate(
        from_currency=row["from_currency"],
        to_currency=row["to_currency"],
        rate=coerce_decimal(row["rate"]),
        effective_date=row["effective_date"],
        source=row["source"],
    )


def _benchmark_from_row(row) -> PeerBenchmark:
    category_data = row["category_data"] or {}
    return PeerBenchmark(
        tier=row["tier"],
        location=row["location"],
        user_count=row["user_count"],
        currency=row["currency"],
        total=TotalBenchmark(
            avg_spent=coerce_decimal(row["avg_spent"]),
            median_spent=coerce_decimal(row["median_spent"]),
            p25_spent=coerce_decimal(row["p25_spent"]),
            p75_spent=coerce_decimal(row["p75_spent"]),
            avg_transaction_count=coerce_decimal(row["avg_transaction_count"]),
        ),
        categories={
            name: CategoryBenchmark(
                avg_spent=coerce_decimal(values["avg_spent"]),
                median_spent=coerce_decimal(values["median_spent"]),
            )
            for name, values in category_data.items()
        },
    )
