from __future__ import annotations

import time
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable

import requests

from .http_client import JsonHttpClient
from .market_errors import ProviderUnavailableError
from .market_sources import RateLimitedSource
from .market_types import NormalizedQuote, NormalizedSearchResult, SecurityType
from .rate_limiter import FixedWindowRateLimiter
from .ttl_cache import TTLCache

SOURCE_ID = "yahoo"
MAX_SEARCH_RESULTS = 15
ALLOWED_SEARCH_TYPES = frozenset({"EQUITY", "ETF", "MUTUALFUND", "INDEX", "FUTURE", "CURRENCY"})

# Yahoo rejects requests without a browser-like agent.
DEFAULT_HEADERS = {
    "User-Agent": "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0 Safari/537.36",
    "Accept": "application/json",
}


class _YahooFinanceClient:
    def __init__(
        self,
        *,
        quote_base_url: str = "https://query1.finance.yahoo.com",
        search_base_url: str = "https://query2.finance.yahoo.com",
        timeout: float = 10.0,
        session: requests.Session | None = None,
        retry_attempts: int = 2,
    ) -> None:
        self.quote_base_url = quote_base_url.rstrip("/")
        self.search_base_url = search_base_url.rstrip("/")
        self._http = JsonHttpClient(
            source_id=SOURCE_ID,
            display_name="Yahoo Finance",
            timeout=timeout,
            session=session,
            retry_attempts=retry_attempts,
            headers=DEFAULT_HEADERS,
        )

    def get_quote(self, *, symbol: str) -> list[dict[str, Any]]:
        payload = self._http.get_json(f"{self.quote_base_url}/v7/finance/quote", params={"symbols": symbol})
        body = payload.get("quoteResponse") if isinstance(payload, dict) else None
        if not isinstance(body, dict):
            raise ProviderUnavailableError(
                "Yahoo Finance returned unexpected quote payload", source_id=SOURCE_ID, payload=payload
            )
        error = body.get("error")
        if error:
            message = error.get("description") if isinstance(error, dict) else str(error)
            raise ProviderUnavailableError(message or "Yahoo Finance error", source_id=SOURCE_ID, payload=payload)
        return [item for item in body.get("result") or [] if isinstance(item, dict)]

    def search(self, *, query: str, quotes_count: int = MAX_SEARCH_RESULTS) -> list[dict[str, Any]]:
        params = {"q": query, "quotesCount": quotes_count, "newsCount": 0}
        payload = self._http.get_json(f"{self.search_base_url}/v1/finance/search", params=params)
        if not isinstance(payload, dict):
            raise ProviderUnavailableError(
                "Yahoo Finance returned unexpected search payload", source_id=SOURCE_ID, payload=payload
            )
        return [item for item in payload.get("quotes") or [] if isinstance(item, dict)]


class YahooFinanceSource(RateLimitedSource):
    display_name = "Yahoo Finance"

    def __init__(
        self,
        *,
        client: _YahooFinanceClient | None = None,
        rate_limiter: FixedWindowRateLimiter | None = None,
        cache: TTLCache[Any] | None = None,
        quote_ttl_seconds: float = 30,
        search_ttl_seconds: float = 300,
        max_calls: int = 10,
        window_seconds: float = 1,
        clock: Callable[[], float] = time.monotonic,
        source_id: str = SOURCE_ID,
    ) -> None:
        super().__init__(
            source_id=source_id,
            rate_limiter=rate_limiter
            or FixedWindowRateLimiter(max_calls=max_calls, window_seconds=window_seconds, clock=clock),
            cache=cache if cache is not None else TTLCache(clock=clock),
            quote_ttl_seconds=quote_ttl_seconds,
            search_ttl_seconds=search_ttl_seconds,
        )
        self.client = client or _YahooFinanceClient()

    def _request_quote(self, symbol: str) -> list[dict[str, Any]]:
        return self.client.get_quote(symbol=symbol)

    def _normalize_quote(self, symbol: str, payload: list[dict[str, Any]]) -> NormalizedQuote:
        item = next((entry for entry in payload if str(entry.get("symbol", "")).upper() == symbol), None)
        price = self._to_decimal(item.get("regularMarketPrice")) if item else None
        if item is None or not price:
            raise self._unknown_symbol(symbol, payload)

        previous_close = self._to_decimal(item.get("regularMarketPreviousClose"))
        if previous_close is None:
            previous_close = price - (self._to_decimal(item.get("regularMarketChange")) or Decimal(0))

        market_time = item.get("regularMarketTime")
        timestamp = (
            datetime.fromtimestamp(int(market_time), tz=timezone.utc) if market_time else datetime.now(timezone.utc)
        )

        return NormalizedQuote(
            symbol=str(item.get("symbol") or symbol).upper(),
            current_price=price,
            change=self._to_decimal(item.get("regularMarketChange")),
            change_percent=self._to_decimal(item.get("regularMarketChangePercent")),
            high=self._to_decimal(item.get("regularMarketDayHigh")) or price,
            low=self._to_decimal(item.get("regularMarketDayLow")) or price,
            open=self._to_decimal(item.get("regularMarketOpen")) or price,
            previous_close=previous_close,
            timestamp=timestamp,
            source_id=self.source_id,
            name=item.get("shortName") or item.get("longName") or symbol,
            security_type=SecurityType.from_provider(item.get("quoteType") or "EQUITY"),
            exchange=item.get("fullExchangeName") or item.get("exchange"),
        )

    def _request_search(self, query: str) -> list[dict[str, Any]]:
        return self.client.search(query=query)

    def _normalize_search(self, query: str, payload: list[dict[str, Any]]) -> list[NormalizedSearchResult]:
        results: list[NormalizedSearchResult] = []
        for item in payload:
            symbol = item.get("symbol")
            quote_type = str(item.get("quoteType") or "")
            if not symbol or not (quote_type in ALLOWED_SEARCH_TYPES or item.get("isYahooFinance")):
                continue
            results.append(
                NormalizedSearchResult(
                    symbol=str(symbol).upper(),
                    name=item.get("shortname") or item.get("longname") or str(symbol),
                    security_type=SecurityType.from_provider(quote_type or "EQUITY"),
                    source_id=self.source_id,
                    exchange=item.get("exchDisp") or item.get("exchange"),
                )
            )
            if len(results) >= MAX_SEARCH_RESULTS:
                break
        return results

    @staticmethod
    def _to_decimal(value: Any) -> Decimal | None:
        if value is None:
            return None
        return Decimal(str(value))


__all__ = ["YahooFinanceSource"]
