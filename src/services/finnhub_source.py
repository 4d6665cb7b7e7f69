from __future__ import annotations

import time
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable

import requests

from config import config

from .http_client import JsonHttpClient
from .market_errors import ConfigError, ProviderUnavailableError
from .market_sources import RateLimitedSource
from .market_types import NormalizedQuote, NormalizedSearchResult, SecurityType
from .rate_limiter import FixedWindowRateLimiter
from .ttl_cache import TTLCache

# API docs: https://finnhub.io/docs/api/quote and https://finnhub.io/docs/api/symbol-search
SOURCE_ID = "finnhub"
MAX_SEARCH_RESULTS = 10
ALLOWED_SEARCH_TYPES = frozenset({"Common Stock", "ETF"})


class _FinnhubClient:
    def __init__(
        self,
        *,
        api_key: str | None = None,
        base_url: str = "https://finnhub.io/api/v1",
        timeout: float = 10.0,
        session: requests.Session | None = None,
        retry_attempts: int = 2,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self._http = JsonHttpClient(
            source_id=SOURCE_ID,
            display_name="Finnhub",
            timeout=timeout,
            session=session,
            retry_attempts=retry_attempts,
        )

    def get_quote(self, *, symbol: str) -> dict[str, Any]:
        params = {"symbol": symbol, "token": self._resolve_api_key()}
        return self._expect_dict(self._http.get_json(f"{self.base_url}/quote", params=params))

    def search(self, *, query: str) -> dict[str, Any]:
        params = {"q": query, "token": self._resolve_api_key()}
        return self._expect_dict(self._http.get_json(f"{self.base_url}/search", params=params))

    def _resolve_api_key(self) -> str:
        api_key = self.api_key or config().finnhub_api_key
        if not api_key:
            raise ConfigError(
                "FINNHUB_API_KEY environment variable is not set. Please add it to your .env file.",
                source_id=SOURCE_ID,
            )
        return api_key

    @staticmethod
    def _expect_dict(payload: Any) -> dict[str, Any]:
        if not isinstance(payload, dict):
            raise ProviderUnavailableError(
                "Finnhub returned unexpected payload type", source_id=SOURCE_ID, payload=payload
            )
        if payload.get("error"):
            raise ProviderUnavailableError(str(payload["error"]), source_id=SOURCE_ID, payload=payload)
        return payload


class FinnhubSource(RateLimitedSource):
    display_name = "Finnhub"

    def __init__(
        self,
        *,
        client: _FinnhubClient | None = None,
        rate_limiter: FixedWindowRateLimiter | None = None,
        cache: TTLCache[Any] | None = None,
        quote_ttl_seconds: float = 15,
        search_ttl_seconds: float = 300,
        max_calls: int = 30,
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
        self.client = client or _FinnhubClient()

    def _request_quote(self, symbol: str) -> dict[str, Any]:
        return self.client.get_quote(symbol=symbol)

    def _normalize_quote(self, symbol: str, payload: dict[str, Any]) -> NormalizedQuote:
        # Finnhub answers unknown symbols with 200 and zeroed (or null) fields.
        sentinel_fields = ("c", "d", "dp", "pc")
        if all(not payload.get(key) for key in sentinel_fields):
            raise self._unknown_symbol(symbol, payload)

        current = self._to_decimal(payload.get("c"))
        previous_close = self._to_decimal(payload.get("pc"))
        if current is None or previous_close is None:
            raise ProviderUnavailableError(
                f"Finnhub quote for {symbol} is missing price fields", source_id=self.source_id, payload=payload
            )

        ts_raw = payload.get("t")
        timestamp = datetime.fromtimestamp(int(ts_raw), tz=timezone.utc) if ts_raw else datetime.now(timezone.utc)

        return NormalizedQuote(
            symbol=symbol,
            current_price=current,
            change=self._to_decimal(payload.get("d")),
            change_percent=self._to_decimal(payload.get("dp")),
            high=self._to_decimal(payload.get("h")) or current,
            low=self._to_decimal(payload.get("l")) or current,
            open=self._to_decimal(payload.get("o")) or current,
            previous_close=previous_close,
            timestamp=timestamp,
            source_id=self.source_id,
            name=symbol,
            security_type=SecurityType.EQUITY,
        )

    def _request_search(self, query: str) -> dict[str, Any]:
        return self.client.search(query=query)

    def _normalize_search(self, query: str, payload: dict[str, Any]) -> list[NormalizedSearchResult]:
        items = payload.get("result") or []
        results: list[NormalizedSearchResult] = []
        for item in items:
            if not isinstance(item, dict) or item.get("type") not in ALLOWED_SEARCH_TYPES:
                continue
            symbol = str(item.get("symbol") or "").upper()
            if not symbol:
                continue
            results.append(
                NormalizedSearchResult(
                    symbol=symbol,
                    name=str(item.get("description") or symbol),
                    security_type=SecurityType.from_provider(item.get("type")),
                    source_id=self.source_id,
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


__all__ = ["FinnhubSource"]
