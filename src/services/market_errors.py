from __future__ import annotations

from typing import Any, Mapping


class MarketDataError(RuntimeError):
    def __init__(
        self,
        message: str,
        *,
        source_id: str,
        status_code: int | None = None,
        payload: Any | None = None,
    ) -> None:
        super().__init__(message)
        self.source_id = source_id
        self.status_code = status_code
        self.payload = payload


class ConfigError(MarketDataError):
    """A required credential is missing. Not retried and not masked by fallback."""


class InvalidSymbolError(MarketDataError):
    pass


class RateLimitedError(MarketDataError):
    pass


class ProviderUnavailableError(MarketDataError):
    pass


class _AggregateMarketDataError(RuntimeError):
    def __init__(self, message: str, failures: Mapping[str, MarketDataError]) -> None:
        super().__init__(message)
        self.failures = dict(failures)

    @property
    def all_rate_limited(self) -> bool:
        return bool(self.failures) and all(isinstance(err, RateLimitedError) for err in self.failures.values())

    @property
    def all_invalid_symbol(self) -> bool:
        return bool(self.failures) and all(isinstance(err, InvalidSymbolError) for err in self.failures.values())

    @staticmethod
    def _describe(failures: Mapping[str, MarketDataError]) -> str:
        return "; ".join(f"{source_id}: {err}" for source_id, err in failures.items())


class QuoteUnavailableError(_AggregateMarketDataError):
    def __init__(self, symbol: str, failures: Mapping[str, MarketDataError]) -> None:
        self.symbol = symbol
        super().__init__(f"Failed to fetch quote for {symbol}. {self._describe(failures)}", failures)


class SearchUnavailableError(_AggregateMarketDataError):
    def __init__(self, query: str, failures: Mapping[str, MarketDataError]) -> None:
        self.query = query
        super().__init__(f'Failed to search for "{query}". {self._describe(failures)}', failures)


__all__ = [
    "ConfigError",
    "InvalidSymbolError",
    "MarketDataError",
    "ProviderUnavailableError",
    "QuoteUnavailableError",
    "RateLimitedError",
    "SearchUnavailableError",
]
