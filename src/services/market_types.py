from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import StrEnum


class SecurityType(StrEnum):
    EQUITY = "EQUITY"
    ETF = "ETF"
    MUTUALFUND = "MUTUALFUND"
    INDEX = "INDEX"
    FUTURE = "FUTURE"
    CURRENCY = "CURRENCY"
    OTHER = "OTHER"

    @classmethod
    def from_provider(cls, raw: str | None) -> SecurityType:
        if not raw:
            return cls.OTHER
        label = raw.strip().upper()
        if label in _PROVIDER_ALIASES:
            return _PROVIDER_ALIASES[label]
        try:
            return cls(label)
        except ValueError:
            return cls.OTHER


_PROVIDER_ALIASES: dict[str, SecurityType] = {
    "COMMON STOCK": SecurityType.EQUITY,
    "ADR": SecurityType.EQUITY,
    "ETP": SecurityType.ETF,
    "MUTUAL FUND": SecurityType.MUTUALFUND,
}


@dataclass(frozen=True)
class NormalizedQuote:
    """Provider-independent quote; ``source_id`` records which provider answered."""

    symbol: str
    current_price: Decimal
    previous_close: Decimal
    high: Decimal
    low: Decimal
    open: Decimal
    timestamp: datetime
    source_id: str
    change: Decimal | None = None
    change_percent: Decimal | None = None
    name: str | None = None
    security_type: SecurityType = SecurityType.EQUITY
    exchange: str | None = None

    def __post_init__(self) -> None:
        # Providers sometimes omit the deltas; derive them from the closes.
        if self.change is None:
            object.__setattr__(self, "change", self.current_price - self.previous_close)
        if self.change_percent is None:
            percent = Decimal(0)
            if self.previous_close:
                percent = self.current_price / self.previous_close * 100 - 100
            object.__setattr__(self, "change_percent", percent)


@dataclass(frozen=True)
class NormalizedSearchResult:
    symbol: str
    name: str
    security_type: SecurityType
    source_id: str
    exchange: str | None = None


@dataclass(frozen=True)
class SymbolValidation:
    is_valid: bool
    quote: NormalizedQuote | None = None
    error: str | None = None
    failures: dict[str, str] = field(default_factory=dict)


__all__ = ["NormalizedQuote", "NormalizedSearchResult", "SecurityType", "SymbolValidation"]
