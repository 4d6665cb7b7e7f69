from __future__ import annotations

import logging
from functools import partial
from typing import TYPE_CHECKING, Callable, TypeVar

from .market_errors import ConfigError, MarketDataError, QuoteUnavailableError, SearchUnavailableError
from .market_sources import MarketDataSource, normalize_symbol
from .market_types import NormalizedQuote, NormalizedSearchResult, SecurityType, SymbolValidation

if TYPE_CHECKING:
    from config import AppSettings

    from .ttl_cache import CacheSweeper

logger = logging.getLogger(__name__)

T = TypeVar("T")

SEARCH_THRESHOLD = 10
MAX_SEARCH_RESULTS = 15
TYPE_ORDER = (SecurityType.EQUITY, SecurityType.ETF, SecurityType.MUTUALFUND, SecurityType.INDEX)
_UNRANKED_TYPE = len(TYPE_ORDER)


class StockResolver:
    """Routes quote and search requests across a primary and a secondary provider."""

    def __init__(
        self,
        *,
        primary: MarketDataSource,
        secondary: MarketDataSource,
        search_threshold: int = SEARCH_THRESHOLD,
        max_results: int = MAX_SEARCH_RESULTS,
    ) -> None:
        if max_results <= 0:
            msg = "max_results must be > 0"
            raise ValueError(msg)
        self.primary = primary
        self.secondary = secondary
        self.search_threshold = search_threshold
        self.max_results = max_results

    @property
    def sources(self) -> tuple[MarketDataSource, MarketDataSource]:
        return self.primary, self.secondary

    def get_stock_quote(self, symbol: str) -> NormalizedQuote:
        failures: dict[str, MarketDataError] = {}
        for source in self.sources:
            outcome = self._attempt(partial(source.get_quote, symbol))
            if isinstance(outcome, MarketDataError):
                logger.warning("%s quote failed for %s: %s", source.source_id, symbol, outcome)
                failures[source.source_id] = outcome
                continue
            return outcome
        raise QuoteUnavailableError(normalize_symbol(symbol) or symbol, failures)

    def search_all_stocks(self, query: str) -> list[NormalizedSearchResult]:
        if not query.strip():
            return []

        merged: dict[str, NormalizedSearchResult] = {}
        failures: dict[str, MarketDataError] = {}
        consulted = 0

        for source in self.sources:
            if source is self.secondary and len(merged) >= self.search_threshold:
                break
            consulted += 1
            outcome = self._attempt(partial(source.search, query), capture_config_errors=True)
            if isinstance(outcome, MarketDataError):
                logger.warning("%s search failed for %r: %s", source.source_id, query, outcome)
                failures[source.source_id] = outcome
                continue
            for result in outcome:
                merged.setdefault(result.symbol.upper(), result)

        if failures and len(failures) == consulted:
            # A missing key only surfaces when nothing else answered.
            config_error = next((err for err in failures.values() if isinstance(err, ConfigError)), None)
            if config_error is not None:
                raise config_error
            raise SearchUnavailableError(query.strip(), failures)

        return rank_search_results(list(merged.values()), query)[: self.max_results]

    def validate_symbol(self, symbol: str) -> SymbolValidation:
        try:
            quote = self.get_stock_quote(symbol)
        except QuoteUnavailableError as exc:
            return SymbolValidation(
                is_valid=False,
                error=str(exc),
                failures={source_id: str(err) for source_id, err in exc.failures.items()},
            )
        except ConfigError as exc:
            return SymbolValidation(is_valid=False, error=str(exc), failures={exc.source_id: str(exc)})
        return SymbolValidation(is_valid=True, quote=quote)

    @staticmethod
    def _attempt(call: Callable[[], T], *, capture_config_errors: bool = False) -> T | MarketDataError:
        try:
            return call()
        except ConfigError as exc:
            if capture_config_errors:
                return exc
            raise
        except MarketDataError as exc:
            return exc


def rank_search_results(results: list[NormalizedSearchResult], query: str) -> list[NormalizedSearchResult]:
    """Exact symbol first, then symbol prefix, then preferred security types. Stable otherwise."""
    query_upper = query.strip().upper()

    def sort_key(result: NormalizedSearchResult) -> tuple[int, int, int]:
        symbol = result.symbol.upper()
        type_rank = TYPE_ORDER.index(result.security_type) if result.security_type in TYPE_ORDER else _UNRANKED_TYPE
        return (
            0 if symbol == query_upper else 1,
            0 if symbol.startswith(query_upper) else 1,
            type_rank,
        )

    return sorted(results, key=sort_key)


def build_default_resolver(settings: AppSettings) -> tuple[StockResolver, CacheSweeper]:
    from .finnhub_source import FinnhubSource, _FinnhubClient
    from .ttl_cache import CacheSweeper
    from .yahoo_source import YahooFinanceSource, _YahooFinanceClient

    yahoo = YahooFinanceSource(
        client=_YahooFinanceClient(
            quote_base_url=settings.yahoo_quote_base_url,
            search_base_url=settings.yahoo_search_base_url,
            timeout=settings.http_timeout_seconds,
        ),
        quote_ttl_seconds=settings.yahoo_quote_ttl_seconds,
        search_ttl_seconds=settings.yahoo_search_ttl_seconds,
        max_calls=settings.yahoo_max_calls,
        window_seconds=settings.yahoo_window_seconds,
    )
    finnhub = FinnhubSource(
        client=_FinnhubClient(
            api_key=settings.finnhub_api_key,
            base_url=settings.finnhub_base_url,
            timeout=settings.http_timeout_seconds,
        ),
        quote_ttl_seconds=settings.finnhub_quote_ttl_seconds,
        search_ttl_seconds=settings.finnhub_search_ttl_seconds,
        max_calls=settings.finnhub_max_calls,
        window_seconds=settings.finnhub_window_seconds,
    )
    sweeper = CacheSweeper([yahoo.cache, finnhub.cache], interval_seconds=settings.cache_sweep_interval_seconds)
    return StockResolver(primary=yahoo, secondary=finnhub), sweeper


__all__ = ["StockResolver", "build_default_resolver", "rank_search_results"]
