import logging
import re
from contextlib import asynccontextmanager
from datetime import datetime
from decimal import Decimal
from time import perf_counter
from typing import Annotated, AsyncGenerator, Awaitable, Callable

from fastapi import Depends, FastAPI, HTTPException, Request, Response
from pydantic import BaseModel

from api.dependencies import get_ledger, get_resolver
from config import config
from db.ledger_store import build_ledger_store
from domain.paper_ledger import LedgerError, NoPositionError, PaperLedger
from domain.portfolio import Position, ResetRequest, Trade
from services.market_errors import ConfigError, QuoteUnavailableError, SearchUnavailableError
from services.market_sources import normalize_symbol
from services.market_types import NormalizedQuote, NormalizedSearchResult, SecurityType
from services.stock_catalog import search_local_stocks
from services.stock_resolver import StockResolver, build_default_resolver

logger = logging.getLogger(__name__)

SYMBOL_PATTERN = re.compile(r"^[A-Z.]{1,6}$")
MAX_QUERY_LENGTH = 50


class QuoteResponse(BaseModel):
    symbol: str
    name: str | None
    current_price: Decimal
    change: Decimal | None
    change_percent: Decimal | None
    high: Decimal
    low: Decimal
    open: Decimal
    previous_close: Decimal
    timestamp: datetime
    security_type: SecurityType
    exchange: str | None
    source_id: str

    @classmethod
    def from_quote(cls, quote: NormalizedQuote) -> "QuoteResponse":
        return cls(
            symbol=quote.symbol,
            name=quote.name,
            current_price=quote.current_price,
            change=quote.change,
            change_percent=quote.change_percent,
            high=quote.high,
            low=quote.low,
            open=quote.open,
            previous_close=quote.previous_close,
            timestamp=quote.timestamp,
            security_type=quote.security_type,
            exchange=quote.exchange,
            source_id=quote.source_id,
        )


class SearchResultResponse(BaseModel):
    symbol: str
    name: str
    security_type: SecurityType
    exchange: str | None
    source_id: str

    @classmethod
    def from_result(cls, result: NormalizedSearchResult) -> "SearchResultResponse":
        return cls(
            symbol=result.symbol,
            name=result.name,
            security_type=result.security_type,
            exchange=result.exchange,
            source_id=result.source_id,
        )


class SearchResponse(BaseModel):
    results: list[SearchResultResponse]
    degraded: bool = False


class OrderRequest(BaseModel):
    symbol: str
    shares: Decimal
    price: Decimal | None = None


class ResetRequestBody(BaseModel):
    reason: str | None = None


class PortfolioResponse(BaseModel):
    cash: Decimal
    initial_cash: Decimal
    positions: list[Position]
    trades: list[Trade]
    resets_used: int
    max_resets: int
    remaining_resets: int
    last_reset_at: datetime | None
    reset_requests: list[ResetRequest]

    @classmethod
    def from_ledger(cls, ledger: PaperLedger) -> "PortfolioResponse":
        snapshot = ledger.snapshot()
        return cls(
            cash=snapshot.cash,
            initial_cash=snapshot.initial_cash,
            positions=sorted(snapshot.positions.values(), key=lambda position: position.symbol),
            trades=snapshot.trades,
            resets_used=snapshot.resets_used,
            max_resets=snapshot.max_resets,
            remaining_resets=ledger.get_remaining_resets(),
            last_reset_at=snapshot.last_reset_at,
            reset_requests=snapshot.reset_requests,
        )


class ResetResponse(BaseModel):
    reset: bool
    remaining_resets: int


@asynccontextmanager
async def lifespan(fastapi_app: FastAPI) -> AsyncGenerator[None, None]:
    settings = config()
    resolver, sweeper = build_default_resolver(settings)
    fastapi_app.state.resolver = resolver
    fastapi_app.state.ledger = PaperLedger.load(
        build_ledger_store(settings.ledger_store_path),
        initial_cash=settings.initial_cash,
        max_resets=settings.max_resets,
    )
    sweeper.start()
    yield
    sweeper.stop()


app = FastAPI(lifespan=lifespan)


@app.middleware("http")
async def log_process_time(request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
    start_time = perf_counter()
    response = await call_next(request)
    process_time = perf_counter() - start_time
    logger.info("Request time: %s %s: %.4fs", request.method, request.url, process_time)
    return response


def _validated_symbol(symbol: str) -> str:
    normalized = normalize_symbol(symbol)
    if not SYMBOL_PATTERN.fullmatch(normalized):
        raise HTTPException(status_code=400, detail="Invalid symbol format")
    return normalized


def _fetch_quote(resolver: StockResolver, symbol: str) -> NormalizedQuote:
    try:
        return resolver.get_stock_quote(symbol)
    except ConfigError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    except QuoteUnavailableError as exc:
        if exc.all_invalid_symbol:
            raise HTTPException(status_code=404, detail=f"Unknown symbol {symbol}") from exc
        if exc.all_rate_limited:
            raise HTTPException(status_code=429, detail="Rate limit reached, try again shortly") from exc
        raise HTTPException(status_code=502, detail=str(exc)) from exc


def _place_order(
    ledger: PaperLedger,
    resolver: StockResolver,
    order: OrderRequest,
    place: Callable[[str, Decimal, Decimal], Trade],
) -> Trade:
    symbol = _validated_symbol(order.symbol)
    price = order.price if order.price is not None else _fetch_quote(resolver, symbol).current_price
    try:
        return place(symbol, order.shares, price)
    except NoPositionError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except LedgerError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.get("/stock/quote")
def get_stock_quote(
    response: Response,
    resolver: Annotated[StockResolver, Depends(get_resolver)],
    symbol: str = "",
) -> QuoteResponse:
    quote = _fetch_quote(resolver, _validated_symbol(symbol))
    response.headers["Cache-Control"] = "public, max-age=30, stale-while-revalidate=60"
    return QuoteResponse.from_quote(quote)


@app.get("/stock/search")
def search_stocks(
    response: Response,
    resolver: Annotated[StockResolver, Depends(get_resolver)],
    q: str = "",
) -> SearchResponse:
    query = q.strip()
    if not query or len(query) > MAX_QUERY_LENGTH:
        raise HTTPException(status_code=400, detail=f"Query must be 1-{MAX_QUERY_LENGTH} characters")

    try:
        results = resolver.search_all_stocks(query)
        degraded = False
    except (SearchUnavailableError, ConfigError) as exc:
        logger.warning("Search providers unavailable for %r, using local catalog: %s", query, exc)
        results = [stock.to_search_result() for stock in search_local_stocks(query)]
        degraded = True

    response.headers["Cache-Control"] = "public, max-age=300, stale-while-revalidate=600"
    return SearchResponse(results=[SearchResultResponse.from_result(result) for result in results], degraded=degraded)


@app.get("/portfolio")
def get_portfolio(ledger: Annotated[PaperLedger, Depends(get_ledger)]) -> PortfolioResponse:
    return PortfolioResponse.from_ledger(ledger)


@app.post("/portfolio/buy")
def buy(
    order: OrderRequest,
    ledger: Annotated[PaperLedger, Depends(get_ledger)],
    resolver: Annotated[StockResolver, Depends(get_resolver)],
) -> Trade:
    return _place_order(ledger, resolver, order, ledger.buy)


@app.post("/portfolio/sell")
def sell(
    order: OrderRequest,
    ledger: Annotated[PaperLedger, Depends(get_ledger)],
    resolver: Annotated[StockResolver, Depends(get_resolver)],
) -> Trade:
    return _place_order(ledger, resolver, order, ledger.sell)


@app.post("/portfolio/reset")
def reset_portfolio(ledger: Annotated[PaperLedger, Depends(get_ledger)]) -> ResetResponse:
    if not ledger.reset_portfolio():
        raise HTTPException(status_code=409, detail="No resets remaining")
    return ResetResponse(reset=True, remaining_resets=ledger.get_remaining_resets())


@app.post("/portfolio/reset-requests", status_code=201)
def request_additional_reset(
    ledger: Annotated[PaperLedger, Depends(get_ledger)],
    body: ResetRequestBody | None = None,
) -> ResetRequest:
    return ledger.request_additional_reset(body.reason if body else None)
