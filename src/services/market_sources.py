from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Protocol

from .market_errors import InvalidSymbolError, RateLimitedError
from .market_types import NormalizedQuote, NormalizedSearchResult
from .rate_limiter import FixedWindowRateLimiter
from .ttl_cache import TTLCache

logger = logging.getLogger(__name__)


class MarketDataSource(Protocol):
    source_id: str

    def get_quote(self, symbol: str) -> NormalizedQuote: ...

    def search(self, query: str) -> list[NormalizedSearchResult]: ...


def normalize_symbol(symbol: str) -> str:
    return symbol.strip().upper()


class RateLimitedSource(ABC):
    """Cache + rate-limit + fetch + normalize flow shared by every provider adapter.

    Subclasses supply the raw request and the payload normalization; this class
    decides when a network call happens and when quota is consumed.
    """

    display_name: str = "Provider"

    def __init__(
        self,
        *,
        source_id: str,
        rate_limiter: FixedWindowRateLimiter,
        cache: TTLCache[Any] | None = None,
        quote_ttl_seconds: float,
        search_ttl_seconds: float,
    ) -> None:
        if quote_ttl_seconds <= 0 or search_ttl_seconds <= 0:
            msg = "cache TTLs must be > 0"
            raise ValueError(msg)
        self.source_id = source_id
        self.rate_limiter = rate_limiter
        self.cache: TTLCache[Any] = cache if cache is not None else TTLCache()
        self.quote_ttl_seconds = quote_ttl_seconds
        self.search_ttl_seconds = search_ttl_seconds

    def get_quote(self, symbol: str) -> NormalizedQuote:
        normalized_symbol = normalize_symbol(symbol)
        if not normalized_symbol:
            raise InvalidSymbolError("Stock symbol cannot be empty", source_id=self.source_id)

        cache_key = f"quote:{normalized_symbol}"
        cached: NormalizedQuote | None = self.cache.get(cache_key)
        if cached is not None:
            return cached

        self._acquire()
        logger.debug("%s quote cache miss for %s, fetching", self.source_id, normalized_symbol)
        payload = self._request_quote(normalized_symbol)
        self.rate_limiter.record_call()

        quote = self._normalize_quote(normalized_symbol, payload)
        self.cache.set(cache_key, quote, self.quote_ttl_seconds)
        return quote

    def search(self, query: str) -> list[NormalizedSearchResult]:
        normalized_query = query.strip()
        if not normalized_query:
            return []

        cache_key = f"search:{normalized_query.lower()}"
        cached: list[NormalizedSearchResult] | None = self.cache.get(cache_key)
        if cached is not None:
            return list(cached)

        self._acquire()
        logger.debug("%s search cache miss for %r, fetching", self.source_id, normalized_query)
        payload = self._request_search(normalized_query)
        self.rate_limiter.record_call()

        results = self._normalize_search(normalized_query, payload)
        self.cache.set(cache_key, tuple(results), self.search_ttl_seconds)
        return results

    def rate_limit_remaining(self) -> int:
        return self.rate_limiter.remaining()

    def clear_cache(self) -> None:
        self.cache.clear()

    def cache_stats(self) -> dict[str, Any]:
        stats = self.cache.stats()
        stats["keys"] = self.cache.keys()
        return stats

    def _acquire(self) -> None:
        if not self.rate_limiter.try_acquire():
            raise RateLimitedError(
                "Rate limit exceeded. Please wait a moment before making more requests.",
                source_id=self.source_id,
            )

    def _unknown_symbol(self, symbol: str, payload: Any | None = None) -> InvalidSymbolError:
        return InvalidSymbolError(
            f"Unknown or invalid stock symbol: {symbol}",
            source_id=self.source_id,
            payload=payload,
        )

    @abstractmethod
    def _request_quote(self, symbol: str) -> Any: ...

    @abstractmethod
    def _normalize_quote(self, symbol: str, payload: Any) -> NormalizedQuote: ...

    @abstractmethod
    def _request_search(self, query: str) -> Any: ...

    @abstractmethod
    def _normalize_search(self, query: str, payload: Any) -> list[NormalizedSearchResult]: ...


__all__ = ["MarketDataSource", "RateLimitedSource", "normalize_symbol"]
