from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import StrEnum
from typing import Any, NewType
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator

Symbol = NewType("Symbol", str)
TradeId = NewType("TradeId", UUID)
ResetRequestId = NewType("ResetRequestId", UUID)


class TradeType(StrEnum):
    BUY = "BUY"
    SELL = "SELL"


class ResetRequestStatus(StrEnum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    DENIED = "DENIED"


class Position(BaseModel):
    """Open holding in one symbol. Positions with zero shares are never kept."""

    model_config = ConfigDict(frozen=True)

    symbol: Symbol
    shares: Decimal
    average_cost: Decimal
    total_cost: Decimal

    @model_validator(mode="after")
    def _validate_fields(self) -> Position:
        if self.shares <= 0:
            raise ValueError("Position.shares must be > 0")
        if self.average_cost <= 0:
            raise ValueError("Position.average_cost must be > 0")
        if self.total_cost < 0:
            raise ValueError("Position.total_cost must be >= 0")
        return self

    def market_value(self, price: Decimal) -> Decimal:
        return self.shares * price


class Trade(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: TradeId = TradeId(Field(default_factory=uuid4))
    symbol: Symbol
    trade_type: TradeType
    shares: Decimal
    price_per_share: Decimal
    total_value: Decimal
    timestamp: datetime

    @model_validator(mode="after")
    def _validate_fields(self) -> Trade:
        if self.shares <= 0:
            raise ValueError("Trade.shares must be > 0")
        if self.price_per_share <= 0:
            raise ValueError("Trade.price_per_share must be > 0")
        if self.total_value != self.shares * self.price_per_share:
            raise ValueError("Trade.total_value must equal shares * price_per_share")
        return self


class ResetRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: ResetRequestId = ResetRequestId(Field(default_factory=uuid4))
    requested_at: datetime
    reason: str | None = None
    status: ResetRequestStatus = ResetRequestStatus.PENDING


class GainLoss(BaseModel):
    amount: Decimal
    percent: Decimal


class LedgerSnapshot(BaseModel):
    """Persisted form of a paper trading ledger."""

    cash: Decimal
    initial_cash: Decimal
    positions: dict[str, Position] = Field(default_factory=dict)
    trades: list[Trade] = Field(default_factory=list)
    resets_used: int = 0
    max_resets: int
    last_reset_at: datetime | None = None
    last_updated: datetime | None = None
    reset_requests: list[ResetRequest] = Field(default_factory=list)

    @model_validator(mode="after")
    def _validate_fields(self) -> LedgerSnapshot:
        if self.cash < 0:
            raise ValueError("cash must be >= 0")
        if self.initial_cash < 0:
            raise ValueError("initial_cash must be >= 0")
        if self.resets_used < 0:
            raise ValueError("resets_used must be >= 0")
        if self.max_resets < 0:
            raise ValueError("max_resets must be >= 0")
        for symbol, position in self.positions.items():
            if symbol != position.symbol:
                raise ValueError(f"position key {symbol} does not match position symbol {position.symbol}")
        return self

    def to_blob(self) -> dict[str, Any]:
        return self.model_dump(mode="json")

    @classmethod
    def from_blob(cls, blob: dict[str, Any]) -> LedgerSnapshot:
        return cls.model_validate(blob)
