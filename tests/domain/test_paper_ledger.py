from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal
from typing import Any, Callable

import pytest

from db.ledger_store import InMemoryLedgerStore
from domain.paper_ledger import (
    InsufficientFundsError,
    InsufficientSharesError,
    InvalidTradeError,
    NoPositionError,
    PaperLedger,
    ResetLimitExceededError,
)
from domain.portfolio import TradeType
from tests.helpers.clock import StepDateTimeClock


@pytest.fixture
def store() -> InMemoryLedgerStore:
    return InMemoryLedgerStore()


@pytest.fixture
def ledger(store: InMemoryLedgerStore) -> PaperLedger:
    return PaperLedger(store=store, clock=StepDateTimeClock())


def _cash_identity(ledger: PaperLedger) -> Decimal:
    bought = sum((t.total_value for t in ledger.trades if t.trade_type == TradeType.BUY), start=Decimal(0))
    sold = sum((t.total_value for t in ledger.trades if t.trade_type == TradeType.SELL), start=Decimal(0))
    return ledger.initial_cash - bought + sold


def test_new_ledger_starts_with_initial_cash(ledger: PaperLedger) -> None:
    assert ledger.cash == Decimal("100000")
    assert ledger.initial_cash == Decimal("100000")
    assert ledger.positions == {}
    assert ledger.trades == []
    assert ledger.get_remaining_resets() == 3


def test_buy_creates_position_and_debits_cash(ledger: PaperLedger, store: InMemoryLedgerStore) -> None:
    trade = ledger.buy("aapl", 10, 100)

    assert trade.symbol == "AAPL"
    assert trade.trade_type == TradeType.BUY
    assert trade.total_value == Decimal("1000")
    assert ledger.cash == Decimal("99000")
    position = ledger.get_position("AAPL")
    assert position is not None
    assert position.shares == Decimal("10")
    assert position.average_cost == Decimal("100")
    assert store.save_count == 1


def test_weighted_average_cost_and_partial_sell(ledger: PaperLedger) -> None:
    ledger.buy("AAPL", 10, 100)
    ledger.buy("AAPL", 10, 200)

    position = ledger.get_position("AAPL")
    assert position is not None
    assert position.shares == Decimal("20")
    assert position.average_cost == Decimal("150")
    assert position.total_cost == Decimal("3000")

    ledger.sell("AAPL", 5, 300)

    position = ledger.get_position("AAPL")
    assert position is not None
    assert position.shares == Decimal("15")
    assert position.average_cost == Decimal("150")
    assert position.total_cost == Decimal("2250")
    assert ledger.cash == Decimal("98500")


def test_selling_everything_removes_position(ledger: PaperLedger) -> None:
    ledger.buy("MSFT", 3, 400)
    ledger.sell("MSFT", 3, 410)

    assert ledger.get_position("MSFT") is None
    assert "MSFT" not in ledger.positions
    assert ledger.cash == Decimal("100030")


def test_trades_are_newest_first(ledger: PaperLedger) -> None:
    ledger.buy("AAPL", 1, 100)
    ledger.buy("MSFT", 1, 100)
    ledger.sell("AAPL", 1, 110)

    assert [(t.symbol, t.trade_type) for t in ledger.trades] == [
        ("AAPL", TradeType.SELL),
        ("MSFT", TradeType.BUY),
        ("AAPL", TradeType.BUY),
    ]
    timestamps = [t.timestamp for t in ledger.trades]
    assert timestamps == sorted(timestamps, reverse=True)


def test_float_inputs_are_taken_at_face_value(ledger: PaperLedger) -> None:
    trade = ledger.buy("KO", 3, 33.33)

    assert trade.price_per_share == Decimal("33.33")
    assert trade.total_value == Decimal("99.99")
    assert ledger.cash == Decimal("99900.01")


def test_overspend_is_rejected_without_changes(ledger: PaperLedger, store: InMemoryLedgerStore) -> None:
    ledger.buy("AAPL", 1, 100)
    before = ledger.snapshot()

    with pytest.raises(InsufficientFundsError) as exc_info:
        ledger.buy("AAPL", 1000, 100)

    assert exc_info.value.required == Decimal("100000")
    assert exc_info.value.available == Decimal("99900")
    assert ledger.snapshot() == before
    assert store.save_count == 1


def test_spending_exact_balance_is_allowed(ledger: PaperLedger) -> None:
    ledger.buy("BRK.B", 250, 400)

    assert ledger.cash == Decimal("0")


def test_sell_without_position_is_rejected(ledger: PaperLedger) -> None:
    with pytest.raises(NoPositionError):
        ledger.sell("TSLA", 1, 100)

    assert ledger.trades == []


def test_oversell_is_rejected_without_changes(ledger: PaperLedger) -> None:
    ledger.buy("NVDA", 2, 500)
    before = ledger.snapshot()

    with pytest.raises(InsufficientSharesError) as exc_info:
        ledger.sell("NVDA", 3, 500)

    assert exc_info.value.requested == Decimal("3")
    assert exc_info.value.available == Decimal("2")
    assert ledger.snapshot() == before


@pytest.mark.parametrize(
    ("symbol", "shares", "price"),
    [("AAPL", 0, 100), ("AAPL", -1, 100), ("AAPL", 1, 0), ("AAPL", 1, -5), ("  ", 1, 100), ("AAPL", "abc", 100)],
)
def test_invalid_orders_are_rejected(ledger: PaperLedger, symbol: str, shares: object, price: object) -> None:
    with pytest.raises(InvalidTradeError):
        ledger.buy(symbol, shares, price)  # type: ignore[arg-type]

    assert ledger.cash == Decimal("100000")
    assert ledger.trades == []


def test_cash_identity_holds_over_many_trades(ledger: PaperLedger) -> None:
    ledger.buy("AAPL", 7, "187.33")
    ledger.buy("MSFT", 3, "412.10")
    ledger.sell("AAPL", 2, "190.01")
    ledger.buy("AAPL", 5, "185.55")
    ledger.sell("MSFT", 3, "405.00")
    ledger.sell("AAPL", 10, "192.42")

    assert ledger.cash == _cash_identity(ledger)
    assert ledger.positions == {}


def test_portfolio_value_treats_missing_prices_as_zero(ledger: PaperLedger) -> None:
    ledger.buy("AAPL", 10, 100)
    ledger.buy("MSFT", 10, 100)

    value = ledger.calculate_portfolio_value({"aapl": 150})

    assert value == Decimal("98000") + Decimal("1500")


def test_total_gain_loss_against_initial_cash(ledger: PaperLedger) -> None:
    ledger.buy("AAPL", 100, 100)

    result = ledger.calculate_total_gain_loss({"AAPL": 110})

    assert result.amount == Decimal("1000")
    assert result.percent == Decimal("1")


def test_total_gain_loss_percent_is_zero_without_initial_cash() -> None:
    ledger = PaperLedger(initial_cash=0)

    result = ledger.calculate_total_gain_loss({})

    assert result.amount == Decimal("0")
    assert result.percent == Decimal("0")


def test_unrealized_gain_loss_against_cost_basis(ledger: PaperLedger) -> None:
    ledger.buy("AAPL", 10, 100)
    ledger.buy("MSFT", 10, 100)

    result = ledger.calculate_unrealized_gain_loss({"AAPL": 120, "MSFT": 90})

    assert result.amount == Decimal("100")
    assert result.percent == Decimal("5")
    assert ledger.calculate_unrealized_gain_loss({}).amount == Decimal("-2000")


def test_reset_restores_cash_and_counts(ledger: PaperLedger) -> None:
    ledger.buy("AAPL", 10, 100)

    assert ledger.reset_portfolio() is True

    assert ledger.cash == Decimal("100000")
    assert ledger.positions == {}
    assert ledger.trades == []
    assert ledger.resets_used == 1
    assert ledger.last_reset_at is not None
    assert ledger.get_remaining_resets() == 2


def test_reset_limit_is_enforced(ledger: PaperLedger) -> None:
    for _ in range(3):
        assert ledger.reset_portfolio() is True
    ledger.buy("AAPL", 1, 100)

    assert ledger.can_reset() is False
    assert ledger.reset_portfolio() is False
    assert ledger.resets_used == 3
    assert ledger.cash == Decimal("99900")
    with pytest.raises(ResetLimitExceededError):
        ledger.reset_or_raise()


def test_reset_request_leaves_finances_alone(ledger: PaperLedger) -> None:
    ledger.buy("AAPL", 1, 100)
    for _ in range(3):
        ledger.reset_portfolio()
    ledger.buy("AAPL", 1, 100)
    cash, trades = ledger.cash, ledger.trades

    request = ledger.request_additional_reset("  lost it all  ")

    assert request.reason == "lost it all"
    assert request.status == "PENDING"
    assert ledger.cash == cash
    assert ledger.trades == trades
    assert ledger.resets_used == 3
    assert ledger.can_reset() is False


def test_reset_requests_are_bounded(ledger: PaperLedger) -> None:
    requests = [ledger.request_additional_reset(f"#{i}") for i in range(12)]

    kept = ledger.reset_requests
    assert len(kept) == 10
    assert kept[0].id == requests[2].id
    assert kept[-1].id == requests[-1].id


def test_state_survives_reload(store: InMemoryLedgerStore) -> None:
    ledger = PaperLedger.load(store, clock=StepDateTimeClock())
    ledger.buy("AAPL", 10, 100)
    ledger.buy("AAPL", 10, 200)
    ledger.sell("AAPL", 5, 300)
    ledger.reset_portfolio()
    ledger.buy("SPY", 2, "450.5")
    ledger.request_additional_reset()

    reloaded = PaperLedger.load(store)

    assert reloaded.snapshot() == ledger.snapshot()
    assert reloaded.cash == Decimal("99099")
    assert reloaded.resets_used == 1


def test_load_uses_defaults_for_empty_store(store: InMemoryLedgerStore) -> None:
    ledger = PaperLedger.load(store, initial_cash="5000", max_resets=1)

    assert ledger.cash == Decimal("5000")
    assert ledger.max_resets == 1
    assert store.save_count == 0


def test_concurrent_buys_never_overspend() -> None:
    ledger = PaperLedger(initial_cash=25)

    def attempt(_: int) -> bool:
        try:
            ledger.buy("AAPL", 1, 1)
        except InsufficientFundsError:
            return False
        return True

    with ThreadPoolExecutor(max_workers=8) as pool:
        outcomes = list(pool.map(attempt, range(50)))

    assert outcomes.count(True) == 25
    assert ledger.cash == Decimal("0")
    assert len(ledger.trades) == 25


class _FailingSaveStore(InMemoryLedgerStore):
    def __init__(self) -> None:
        super().__init__()
        self.fail = False

    def save(self, blob: dict[str, Any]) -> None:
        if self.fail:
            raise OSError("disk full")
        super().save(blob)


@pytest.mark.parametrize(
    "mutate",
    [
        lambda ledger: ledger.buy("MSFT", 1, 100),
        lambda ledger: ledger.sell("AAPL", 4, 120),
        lambda ledger: ledger.sell("AAPL", 10, 120),
        lambda ledger: ledger.reset_portfolio(),
        lambda ledger: ledger.request_additional_reset("please"),
    ],
    ids=["buy", "partial-sell", "full-sell", "reset", "reset-request"],
)
def test_failed_save_leaves_ledger_unchanged(mutate: Callable[[PaperLedger], object]) -> None:
    store = _FailingSaveStore()
    ledger = PaperLedger(store=store, clock=StepDateTimeClock())
    ledger.buy("AAPL", 10, 100)
    before = ledger.snapshot()
    persisted = store.load()
    store.fail = True

    with pytest.raises(OSError, match="disk full"):
        mutate(ledger)

    assert ledger.snapshot() == before
    assert store.load() == persisted

    store.fail = False
    ledger.buy("AAPL", 1, 100)
    assert PaperLedger.load(store).snapshot() == ledger.snapshot()
