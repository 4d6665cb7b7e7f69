from __future__ import annotations

import argparse
import logging
import sys
from decimal import Decimal
from typing import Sequence

from config import AppSettings, config
from db.ledger_store import build_ledger_store
from domain.paper_ledger import LedgerError, PaperLedger
from services.market_errors import ConfigError, MarketDataError, QuoteUnavailableError, SearchUnavailableError
from services.market_types import NormalizedQuote, NormalizedSearchResult
from services.stock_catalog import search_local_stocks
from services.stock_resolver import StockResolver, build_default_resolver
from utils.formatting import format_currency, format_percent, format_shares, format_signed_currency

logger = logging.getLogger(__name__)


def build_resolver(settings: AppSettings) -> StockResolver:
    # Short-lived process: the background cache sweeper is not started.
    resolver, _ = build_default_resolver(settings)
    return resolver


def load_ledger(settings: AppSettings) -> PaperLedger:
    return PaperLedger.load(
        build_ledger_store(settings.ledger_store_path),
        initial_cash=settings.initial_cash,
        max_resets=settings.max_resets,
    )


def print_quote(quote: NormalizedQuote) -> None:
    print(f"{quote.symbol} ({quote.name or quote.symbol}) via {quote.source_id}")
    print(f"  Price:          {format_currency(quote.current_price)}")
    change = format_signed_currency(quote.change or Decimal(0))
    print(f"  Change:         {change} ({format_percent(quote.change_percent or Decimal(0))})")
    print(
        f"  Open/High/Low:  {format_currency(quote.open)} / {format_currency(quote.high)} / {format_currency(quote.low)}"
    )
    print(f"  Previous close: {format_currency(quote.previous_close)}")
    print(f"  As of:          {quote.timestamp.isoformat()}")


def print_search_results(results: Sequence[NormalizedSearchResult]) -> None:
    if not results:
        print("No results.")
        return
    for result in results:
        exchange = f" [{result.exchange}]" if result.exchange else ""
        print(f"  {result.symbol:<8} {result.security_type.value:<10} {result.name}{exchange}")


def print_portfolio(ledger: PaperLedger, prices: dict[str, Decimal]) -> None:
    print("Portfolio summary:")
    print(f"  Cash:            {format_currency(ledger.cash)}")
    print(f"  Total value:     {format_currency(ledger.calculate_portfolio_value(prices))}")
    total = ledger.calculate_total_gain_loss(prices)
    print(f"  Total gain/loss: {format_signed_currency(total.amount)} ({format_percent(total.percent)})")
    unrealized = ledger.calculate_unrealized_gain_loss(prices)
    print(f"  Unrealized:      {format_signed_currency(unrealized.amount)} ({format_percent(unrealized.percent)})")
    print(f"  Resets left:     {ledger.get_remaining_resets()} of {ledger.max_resets}")

    positions = ledger.positions
    if positions:
        print("Positions:")
    for symbol, position in sorted(positions.items()):
        price = prices.get(symbol)
        value = format_currency(position.market_value(price)) if price is not None else "n/a"
        print(
            f"  {symbol:<8} {format_shares(position.shares):>10} @ {format_currency(position.average_cost)}"
            f"  value {value}"
        )


def fetch_prices(resolver: StockResolver, symbols: Sequence[str]) -> dict[str, Decimal]:
    prices: dict[str, Decimal] = {}
    for symbol in symbols:
        try:
            prices[symbol] = resolver.get_stock_quote(symbol).current_price
        except QuoteUnavailableError as exc:
            logger.warning("No price for %s: %s", symbol, exc)
    return prices


def run(args: argparse.Namespace, settings: AppSettings) -> int:
    if args.command == "quote":
        print_quote(build_resolver(settings).get_stock_quote(args.symbol))
        return 0

    if args.command == "search":
        if args.offline:
            print_search_results([stock.to_search_result() for stock in search_local_stocks(args.query)])
            return 0
        try:
            results = build_resolver(settings).search_all_stocks(args.query)
        except (SearchUnavailableError, ConfigError) as exc:
            logger.warning("Falling back to the local catalog: %s", exc)
            results = [stock.to_search_result() for stock in search_local_stocks(args.query)]
        print_search_results(results)
        return 0

    ledger = load_ledger(settings)

    if args.command in ("buy", "sell"):
        price = args.price
        if price is None:
            price = build_resolver(settings).get_stock_quote(args.symbol).current_price
        place = ledger.buy if args.command == "buy" else ledger.sell
        trade = place(args.symbol, args.shares, price)
        print(
            f"{trade.trade_type.value} {format_shares(trade.shares)} {trade.symbol} @ "
            f"{format_currency(trade.price_per_share)} = {format_currency(trade.total_value)}"
        )
        print(f"Cash: {format_currency(ledger.cash)}")
        return 0

    if args.command == "portfolio":
        prices = fetch_prices(build_resolver(settings), sorted(ledger.positions)) if ledger.positions else {}
        print_portfolio(ledger, prices)
        return 0

    if args.command == "reset":
        if not ledger.reset_portfolio():
            print(f"No resets remaining ({ledger.resets_used} of {ledger.max_resets} used).")
            print("Use `request-reset` to ask for more.")
            return 1
        print(f"Portfolio reset to {format_currency(ledger.cash)}. Resets left: {ledger.get_remaining_resets()}")
        return 0

    if args.command == "request-reset":
        request = ledger.request_additional_reset(args.reason)
        print(f"Reset request {request.id} recorded ({request.status.value}).")
        return 0

    msg = f"Unknown command {args.command}"
    raise ValueError(msg)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Paper trading with live market data.")
    parser.add_argument("--log-level", default=None, help="Overrides LOG_LEVEL from the environment.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    quote = subparsers.add_parser("quote", help="Fetch a quote.")
    quote.add_argument("symbol")

    search = subparsers.add_parser("search", help="Search symbols by ticker or name.")
    search.add_argument("query")
    search.add_argument("--offline", action="store_true", help="Search the built-in catalog only.")

    for name in ("buy", "sell"):
        order = subparsers.add_parser(name, help=f"{name.capitalize()} shares.")
        order.add_argument("symbol")
        order.add_argument("shares", type=Decimal)
        order.add_argument("--price", type=Decimal, default=None, help="Skip the quote lookup and use this price.")

    subparsers.add_parser("portfolio", help="Show cash, positions and gain/loss.")
    subparsers.add_parser("reset", help="Reset to the initial cash balance.")

    request_reset = subparsers.add_parser("request-reset", help="Ask for additional resets.")
    request_reset.add_argument("--reason", default=None)
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = config()
    logging.basicConfig(
        level=(args.log_level or settings.log_level).upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    try:
        return run(args, settings)
    except (LedgerError, MarketDataError, QuoteUnavailableError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
