from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Any, Callable, Mapping, Union

from .portfolio import GainLoss, LedgerSnapshot, Position, ResetRequest, Symbol, Trade, TradeType

if TYPE_CHECKING:
    from db.ledger_store import LedgerStore

logger = logging.getLogger(__name__)

DEFAULT_INITIAL_CASH = Decimal("100000")
DEFAULT_MAX_RESETS = 3
MAX_RESET_REQUESTS = 10

Number = Union[Decimal, int, float, str]


class LedgerError(Exception):
    """Rejected ledger operation. The ledger is left untouched."""


class InvalidTradeError(LedgerError):
    pass


class InsufficientFundsError(LedgerError):
    def __init__(self, *, symbol: str, required: Decimal, available: Decimal) -> None:
        self.symbol = symbol
        self.required = required
        self.available = available
        super().__init__(f"Insufficient funds to buy {symbol}: required={required} available={available}")


class NoPositionError(LedgerError):
    def __init__(self, *, symbol: str) -> None:
        self.symbol = symbol
        super().__init__(f"You don't own any shares of {symbol}")


class InsufficientSharesError(LedgerError):
    def __init__(self, *, symbol: str, requested: Decimal, available: Decimal) -> None:
        self.symbol = symbol
        self.requested = requested
        self.available = available
        super().__init__(f"Insufficient shares of {symbol}: requested={requested} available={available}")


class ResetLimitExceededError(LedgerError):
    def __init__(self, *, resets_used: int, max_resets: int) -> None:
        self.resets_used = resets_used
        self.max_resets = max_resets
        super().__init__(f"Reset limit reached: used {resets_used} of {max_resets}")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_decimal(value: Number, *, field: str) -> Decimal:
    try:
        result = value if isinstance(value, Decimal) else Decimal(str(value))
    except InvalidOperation as exc:
        raise InvalidTradeError(f"{field} must be a number, got {value!r}") from exc
    if not result.is_finite():
        raise InvalidTradeError(f"{field} must be finite, got {value!r}")
    return result


class PaperLedger:
    """Single-owner paper trading account: cash, positions, trade log and a bounded reset counter.

    Prices are supplied by the caller; the ledger performs no market-data I/O.
    Each mutation checks its preconditions under one lock, hands the new snapshot
    to the store and only then applies it in memory.

    Bookkeeping identity kept exactly (Decimal arithmetic):
        cash == initial_cash - sum(buy.total_value) + sum(sell.total_value)
    over the trades recorded since the last reset.
    """

    def __init__(
        self,
        *,
        initial_cash: Number = DEFAULT_INITIAL_CASH,
        max_resets: int = DEFAULT_MAX_RESETS,
        store: LedgerStore | None = None,
        clock: Callable[[], datetime] = _utcnow,
        snapshot: LedgerSnapshot | None = None,
    ) -> None:
        self._store = store
        self._clock = clock
        self._lock = threading.RLock()

        if snapshot is None:
            start_cash = _to_decimal(initial_cash, field="initial_cash")
            if start_cash < 0:
                msg = "initial_cash must be >= 0"
                raise ValueError(msg)
            if max_resets < 0:
                msg = "max_resets must be >= 0"
                raise ValueError(msg)
            snapshot = LedgerSnapshot(cash=start_cash, initial_cash=start_cash, max_resets=max_resets)

        self._cash = snapshot.cash
        self._initial_cash = snapshot.initial_cash
        self._positions: dict[str, Position] = dict(snapshot.positions)
        self._trades: list[Trade] = sorted(snapshot.trades, key=lambda trade: trade.timestamp, reverse=True)
        self._resets_used = snapshot.resets_used
        self._max_resets = snapshot.max_resets
        self._last_reset_at = snapshot.last_reset_at
        self._last_updated = snapshot.last_updated
        self._reset_requests: list[ResetRequest] = list(snapshot.reset_requests)

    @classmethod
    def load(
        cls,
        store: LedgerStore,
        *,
        initial_cash: Number = DEFAULT_INITIAL_CASH,
        max_resets: int = DEFAULT_MAX_RESETS,
        clock: Callable[[], datetime] = _utcnow,
    ) -> PaperLedger:
        blob = store.load()
        if blob is None:
            logger.info("No persisted ledger found, starting with %s cash", initial_cash)
            return cls(initial_cash=initial_cash, max_resets=max_resets, store=store, clock=clock)
        snapshot = LedgerSnapshot.from_blob(blob)
        logger.info("Loaded ledger with %d positions and %d trades", len(snapshot.positions), len(snapshot.trades))
        return cls(store=store, clock=clock, snapshot=snapshot)

    @property
    def cash(self) -> Decimal:
        return self._cash

    @property
    def initial_cash(self) -> Decimal:
        return self._initial_cash

    @property
    def positions(self) -> dict[str, Position]:
        with self._lock:
            return dict(self._positions)

    @property
    def trades(self) -> list[Trade]:
        """Newest first."""
        with self._lock:
            return list(self._trades)

    @property
    def resets_used(self) -> int:
        return self._resets_used

    @property
    def max_resets(self) -> int:
        return self._max_resets

    @property
    def last_reset_at(self) -> datetime | None:
        return self._last_reset_at

    @property
    def reset_requests(self) -> list[ResetRequest]:
        with self._lock:
            return list(self._reset_requests)

    def get_position(self, symbol: str) -> Position | None:
        with self._lock:
            return self._positions.get(symbol.strip().upper())

    def buy(self, symbol: str, shares: Number, price_per_share: Number) -> Trade:
        symbol_key, quantity, price = self._parse_order(symbol, shares, price_per_share)

        with self._lock:
            cost = quantity * price
            if cost > self._cash:
                raise InsufficientFundsError(symbol=symbol_key, required=cost, available=self._cash)

            now = self._clock()
            existing = self._positions.get(symbol_key)
            if existing is None:
                position = Position(symbol=symbol_key, shares=quantity, average_cost=price, total_cost=cost)
            else:
                total_cost = existing.total_cost + cost
                total_shares = existing.shares + quantity
                position = Position(
                    symbol=symbol_key,
                    shares=total_shares,
                    average_cost=total_cost / total_shares,
                    total_cost=total_cost,
                )
            trade = Trade(
                symbol=symbol_key,
                trade_type=TradeType.BUY,
                shares=quantity,
                price_per_share=price,
                total_value=cost,
                timestamp=now,
            )

            self._commit(
                cash=self._cash - cost,
                positions={**self._positions, symbol_key: position},
                trades=[trade, *self._trades],
                last_updated=now,
            )

        logger.info("Bought %s %s @ %s, cash now %s", quantity, symbol_key, price, self._cash)
        return trade

    def sell(self, symbol: str, shares: Number, price_per_share: Number) -> Trade:
        symbol_key, quantity, price = self._parse_order(symbol, shares, price_per_share)

        with self._lock:
            existing = self._positions.get(symbol_key)
            if existing is None:
                raise NoPositionError(symbol=symbol_key)
            if quantity > existing.shares:
                raise InsufficientSharesError(symbol=symbol_key, requested=quantity, available=existing.shares)

            now = self._clock()
            proceeds = quantity * price
            remaining = existing.shares - quantity
            position: Position | None = None
            if remaining > 0:
                # Selling never moves the cost basis of the shares still held.
                position = Position(
                    symbol=symbol_key,
                    shares=remaining,
                    average_cost=existing.average_cost,
                    total_cost=existing.average_cost * remaining,
                )
            trade = Trade(
                symbol=symbol_key,
                trade_type=TradeType.SELL,
                shares=quantity,
                price_per_share=price,
                total_value=proceeds,
                timestamp=now,
            )

            positions = {key: value for key, value in self._positions.items() if key != symbol_key}
            if position is not None:
                positions[symbol_key] = position
            self._commit(
                cash=self._cash + proceeds,
                positions=positions,
                trades=[trade, *self._trades],
                last_updated=now,
            )

        logger.info("Sold %s %s @ %s, cash now %s", quantity, symbol_key, price, self._cash)
        return trade

    def calculate_portfolio_value(self, current_prices: Mapping[str, Number]) -> Decimal:
        """Cash plus market value; a symbol without a price contributes 0."""
        prices = self._normalize_prices(current_prices)
        with self._lock:
            market_value = sum(
                (position.market_value(prices.get(symbol, Decimal(0))) for symbol, position in self._positions.items()),
                start=Decimal(0),
            )
            return self._cash + market_value

    def calculate_total_gain_loss(self, current_prices: Mapping[str, Number]) -> GainLoss:
        amount = self.calculate_portfolio_value(current_prices) - self._initial_cash
        percent = amount / self._initial_cash * 100 if self._initial_cash else Decimal(0)
        return GainLoss(amount=amount, percent=percent)

    def calculate_unrealized_gain_loss(self, current_prices: Mapping[str, Number]) -> GainLoss:
        """Market value of open positions against their cost basis."""
        prices = self._normalize_prices(current_prices)
        with self._lock:
            cost_basis = sum((position.total_cost for position in self._positions.values()), start=Decimal(0))
            market_value = sum(
                (position.market_value(prices[symbol]) for symbol, position in self._positions.items() if symbol in prices),
                start=Decimal(0),
            )
        amount = market_value - cost_basis
        percent = amount / cost_basis * 100 if cost_basis > 0 else Decimal(0)
        return GainLoss(amount=amount, percent=percent)

    def can_reset(self) -> bool:
        return self._resets_used < self._max_resets

    def get_remaining_resets(self) -> int:
        return max(0, self._max_resets - self._resets_used)

    def reset_portfolio(self) -> bool:
        with self._lock:
            if not self.can_reset():
                logger.info("Reset denied: %d of %d resets used", self._resets_used, self._max_resets)
                return False

            now = self._clock()
            self._commit(
                cash=self._initial_cash,
                positions={},
                trades=[],
                resets_used=self._resets_used + 1,
                last_reset_at=now,
                last_updated=now,
            )

        logger.info("Portfolio reset (%d of %d resets used)", self._resets_used, self._max_resets)
        return True

    def reset_or_raise(self) -> None:
        if not self.reset_portfolio():
            raise ResetLimitExceededError(resets_used=self._resets_used, max_resets=self._max_resets)

    def request_additional_reset(self, reason: str | None = None) -> ResetRequest:
        """Record a pending request for more resets. The limit itself is not changed here."""
        request = ResetRequest(requested_at=self._clock(), reason=(reason or "").strip() or None)
        with self._lock:
            self._commit(reset_requests=[*self._reset_requests, request][-MAX_RESET_REQUESTS:])
        logger.info("Additional reset requested (%s)", request.id)
        return request

    def snapshot(self) -> LedgerSnapshot:
        with self._lock:
            return self._build_snapshot()

    def _build_snapshot(self, **changes: Any) -> LedgerSnapshot:
        fields: dict[str, Any] = {
            "cash": self._cash,
            "initial_cash": self._initial_cash,
            "positions": dict(self._positions),
            "trades": list(self._trades),
            "resets_used": self._resets_used,
            "max_resets": self._max_resets,
            "last_reset_at": self._last_reset_at,
            "last_updated": self._last_updated,
            "reset_requests": list(self._reset_requests),
        }
        fields.update(changes)
        return LedgerSnapshot(**fields)

    def _commit(self, **changes: Any) -> None:
        """Save the ledger with ``changes`` applied, then apply them in memory.

        A failing store leaves the in-memory state as it was.
        """
        snapshot = self._build_snapshot(**changes)
        if self._store is not None:
            self._store.save(snapshot.to_blob())
        for name, value in changes.items():
            setattr(self, f"_{name}", value)

    @staticmethod
    def _parse_order(symbol: str, shares: Number, price_per_share: Number) -> tuple[Symbol, Decimal, Decimal]:
        symbol_key = symbol.strip().upper()
        if not symbol_key:
            raise InvalidTradeError("Stock symbol cannot be empty")
        quantity = _to_decimal(shares, field="shares")
        price = _to_decimal(price_per_share, field="price_per_share")
        if quantity <= 0:
            raise InvalidTradeError("Number of shares must be positive")
        if price <= 0:
            raise InvalidTradeError("Price must be positive")
        return Symbol(symbol_key), quantity, price

    @staticmethod
    def _normalize_prices(current_prices: Mapping[str, Number]) -> dict[str, Decimal]:
        return {
            symbol.strip().upper(): _to_decimal(price, field=f"price of {symbol}")
            for symbol, price in current_prices.items()
        }


__all__ = [
    "InsufficientFundsError",
    "InsufficientSharesError",
    "InvalidTradeError",
    "LedgerError",
    "NoPositionError",
    "PaperLedger",
    "ResetLimitExceededError",
]
