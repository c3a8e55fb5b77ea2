from dataclasses import asdict
from datetime import date
from decimal import Decimal
import logging
import os

from fastapi import FastAPI, HTTPException, Header, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, field_validator
from sqlalchemy import create_engine

from spendbench.benchmark_calculator import (
    TIERS,
    CategoryBenchmark,
    PeerBenchmark,
    TotalBenchmark,
)
from spendbench.benchmark_service import (
    BenchmarkOrchestrator,
    BenchmarkReport,
    PeerDataUnavailableError,
)
from spendbench.currency_conversion import (
    SOURCE_MANUAL,
    FrankfurterRateProvider,
    StaticRateProvider,
    normalize_currency,
)
from spendbench.currency_normalizer import CurrencyNormalizer, RateNotFoundError
from spendbench.periods import TIMEFRAMES, InvalidPeriodError
from spendbench.rate_store import InMemoryRateStore
from spendbench.settings import Settings
from spendbench.storage import (
    SqlExpenseSource,
    SqlPeerBenchmarkSource,
    SqlRateStore,
    SqlUserDirectory,
    create_schema,
)

settings = Settings.from_env()
logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI()

frontend_origin = os.getenv("FRONTEND_ORIGIN", "http://localhost:3000")
app.add_middleware(
    CORSMiddleware,
    allow_origins=[frontend_origin],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

connect_args = {}
if settings.database_url.startswith("sqlite"):
    connect_args = {"check_same_thread": False}

engine = create_engine(settings.database_url, connect_args=connect_args)


def build_rate_store(config: Settings, bind):
    if config.rate_store == "memory":
        logger.info("Using in-memory rate store; rates are lost on restart")
        return InMemoryRateStore()
    return SqlRateStore(bind)


rate_store = build_rate_store(settings, engine)
peer_source = SqlPeerBenchmarkSource(engine)
user_directory = SqlUserDirectory(engine)
normalizer = CurrencyNormalizer(
    rate_store,
    rate_fetcher=FrankfurterRateProvider(
        base_url=settings.fx_api_url,
        timeout_seconds=settings.fx_timeout_seconds,
    ),
    static_rates=StaticRateProvider(),
    base_currency=settings.base_currency,
)
orchestrator = BenchmarkOrchestrator(
    normalizer,
    expense_source=SqlExpenseSource(engine),
    peer_source=peer_source,
    user_directory=user_directory,
    default_currency=settings.default_currency,
)


@app.on_event("startup")
def init_db() -> None:
    create_schema(engine)


class ConversionResponse(BaseModel):
    amount: Decimal
    from_currency: str
    to_currency: str
    as_of_date: date
    converted_amount: Decimal
    rate_used: Decimal
    resolution_path: list[str]
    strategy: str


class RatePayload(BaseModel):
    from_currency: str
    to_currency: str
    rate: Decimal
    effective_date: date

    @field_validator("from_currency", "to_currency")
    @classmethod
    def validate_currency(cls, value: str) -> str:
        return normalize_currency(value)

    @field_validator("rate")
    @classmethod
    def validate_rate(cls, value: Decimal) -> Decimal:
        if value <= 0:
            raise ValueError("rate must be greater than zero.")
        return value


class RateResponse(BaseModel):
    from_currency: str
    to_currency: str
    rate: Decimal
    effective_date: date
    source: str


class CategoryBenchmarkPayload(BaseModel):
    avg_spent: Decimal
    median_spent: Decimal


class PeerBenchmarkPayload(BaseModel):
    tier: str
    location_key: str
    location: str
    start_date: date
    end_date: date
    currency: str
    user_count: int
    avg_spent: Decimal
    median_spent: Decimal
    p25_spent: Decimal
    p75_spent: Decimal
    avg_transaction_count: Decimal
    categories: dict[str, CategoryBenchmarkPayload] = {}

    @field_validator("tier")
    @classmethod
    def validate_tier(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in TIERS:
            raise ValueError(f"tier must be one of: {', '.join(TIERS)}.")
        return normalized

    @field_validator("currency")
    @classmethod
    def validate_currency(cls, value: str) -> str:
        return normalize_currency(value)


class PeerBenchmarkStoredResponse(BaseModel):
    tier: str
    location_key: str
    start_date: date
    end_date: date


class PeriodResponse(BaseModel):
    start_date: date
    end_date: date
    label: str
    days: int


class CategoryStatisticsResponse(BaseModel):
    total: Decimal
    count: int
    percentage: Decimal


class UserStatisticsResponse(BaseModel):
    total: Decimal
    transaction_count: int
    avg_expense: Decimal
    largest_expense: Decimal
    daily_avg: Decimal
    weekly_avg: Decimal
    days_in_period: int
    categories: dict[str, CategoryStatisticsResponse]


class TotalBenchmarkResponse(BaseModel):
    avg_spent: Decimal
    median_spent: Decimal
    p25_spent: Decimal
    p75_spent: Decimal
    avg_transaction_count: Decimal


class PeerBenchmarkResponse(BaseModel):
    tier: str
    location: str
    user_count: int
    currency: str
    total: TotalBenchmarkResponse
    categories: dict[str, CategoryBenchmarkPayload]


class TotalComparisonResponse(BaseModel):
    vs_avg: Decimal
    vs_avg_percent: Decimal
    vs_median: Decimal
    vs_median_percent: Decimal
    percentile: Decimal


class CountComparisonResponse(BaseModel):
    vs_avg: Decimal
    vs_avg_percent: Decimal


class CategoryComparisonResponse(BaseModel):
    vs_avg: Decimal | None = None
    vs_avg_percent: Decimal | None = None
    vs_median: Decimal | None = None
    vs_median_percent: Decimal | None = None
    no_benchmark_data: bool = False


class TierComparisonResponse(BaseModel):
    total_spent: TotalComparisonResponse
    transaction_count: CountComparisonResponse
    categories: dict[str, CategoryComparisonResponse]


class InsightResponse(BaseModel):
    type: str
    severity: str
    message: str
    category: str | None = None
    figures: dict[str, Decimal | int | str]


class UnconvertedExpenseResponse(BaseModel):
    expense_id: int | None
    amount: Decimal
    currency: str
    expense_date: date
    category: str


class BenchmarkReportResponse(BaseModel):
    user_id: int
    location: str
    period: PeriodResponse
    currency: str
    user_statistics: UserStatisticsResponse
    benchmarks: dict[str, PeerBenchmarkResponse]
    comparisons: dict[str, TierComparisonResponse]
    insight_tier: str
    insights: list[InsightResponse]
    unconverted_expenses: list[UnconvertedExpenseResponse]
    unconverted_benchmarks: list[str]


def get_user_id(x_user_id: str | None) -> int:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing user identity.")
    try:
        user_id = int(x_user_id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid user identity.") from exc
    if not user_directory.user_exists(user_id):
        raise HTTPException(status_code=404, detail="User not found.")
    return user_id


def build_report_response(report: BenchmarkReport) -> BenchmarkReportResponse:
    return BenchmarkReportResponse(
        user_id=report.user_id,
        location=report.location,
        period=PeriodResponse(**asdict(report.period), days=report.period.days),
        currency=report.currency,
        user_statistics=UserStatisticsResponse(**asdict(report.user_statistics)),
        benchmarks={
            tier: PeerBenchmarkResponse(**asdict(peer)) for tier, peer in report.benchmarks.items()
        },
        comparisons={
            tier: TierComparisonResponse(**asdict(comparison))
            for tier, comparison in report.comparisons.items()
        },
        insight_tier=report.insight_tier,
        insights=[InsightResponse(**asdict(insight)) for insight in report.insights],
        unconverted_expenses=[
            UnconvertedExpenseResponse(
                expense_id=item.expense.expense_id,
                amount=item.standardized_amount,
                currency=item.standardized_currency,
                expense_date=item.expense_date,
                category=item.category,
            )
            for item in report.unconverted_expenses
        ],
        unconverted_benchmarks=list(report.unconverted_benchmarks),
    )


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


@app.get("/currency/convert", response_model=ConversionResponse)
def convert_currency(
    amount: Decimal = Query(...),
    from_currency: str = Query(...),
    to_currency: str = Query(...),
    as_of_date: date | None = Query(None),
) -> ConversionResponse:
    lookup_date = as_of_date or date.today()
    try:
        source = normalize_currency(from_currency)
        target = normalize_currency(to_currency)
        result = normalizer.convert(amount, source, target, lookup_date)
    except RateNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    return ConversionResponse(
        amount=amount,
        from_currency=source,
        to_currency=target,
        as_of_date=lookup_date,
        converted_amount=result.converted_amount.quantize(Decimal("0.01")),
        rate_used=result.rate_used,
        resolution_path=list(result.resolution_path),
        strategy=result.strategy,
    )


@app.post("/rates", response_model=RateResponse)
def record_rate(payload: RatePayload) -> RateResponse:
    try:
        stored = rate_store.upsert_rate(
            payload.from_currency,
            payload.to_currency,
            payload.rate,
            payload.effective_date,
            SOURCE_MANUAL,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return RateResponse(**asdict(stored))


@app.post("/peer-benchmarks", response_model=PeerBenchmarkStoredResponse)
def store_peer_benchmark(payload: PeerBenchmarkPayload) -> PeerBenchmarkStoredResponse:
    peer = PeerBenchmark(
        tier=payload.tier,
        location=payload.location,
        user_count=payload.user_count,
        currency=payload.currency,
        total=TotalBenchmark(
            avg_spent=payload.avg_spent,
            median_spent=payload.median_spent,
            p25_spent=payload.p25_spent,
            p75_spent=payload.p75_spent,
            avg_transaction_count=payload.avg_transaction_count,
        ),
        categories={
            name: CategoryBenchmark(avg_spent=item.avg_spent, median_spent=item.median_spent)
            for name, item in payload.categories.items()
        },
    )
    try:
        peer_source.save_peer_benchmark(
            peer, payload.location_key, payload.start_date, payload.end_date
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return PeerBenchmarkStoredResponse(
        tier=payload.tier,
        location_key=payload.location_key,
        start_date=payload.start_date,
        end_date=payload.end_date,
    )


@app.get("/users/me/benchmark", response_model=BenchmarkReportResponse)
def user_benchmark(
    timeframe: str = Query("month"),
    currency: str | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> BenchmarkReportResponse:
    user_id = get_user_id(x_user_id)
    if timeframe.strip().lower() not in TIMEFRAMES:
        raise HTTPException(status_code=400, detail="Invalid timeframe.")
    report_currency = currency or user_directory.get_home_currency(user_id)
    try:
        report = orchestrator.generate_user_benchmark(user_id, timeframe, report_currency)
    except PeerDataUnavailableError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except (InvalidPeriodError, ValueError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return build_report_response(report)
