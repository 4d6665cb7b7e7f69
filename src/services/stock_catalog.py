from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from .market_types import NormalizedSearchResult, SecurityType

SOURCE_ID = "local"
MAX_RESULTS = 15


@dataclass(frozen=True)
class LocalStock:
    symbol: str
    name: str
    security_type: SecurityType
    sector: str | None = None
    dividend_yield: Decimal | None = None
    description: str | None = None

    def to_search_result(self) -> NormalizedSearchResult:
        return NormalizedSearchResult(
            symbol=self.symbol,
            name=self.name,
            security_type=self.security_type,
            source_id=SOURCE_ID,
        )


def _equity(symbol: str, name: str, sector: str, description: str, dividend_yield: str | None = None) -> LocalStock:
    return LocalStock(
        symbol=symbol,
        name=name,
        security_type=SecurityType.EQUITY,
        sector=sector,
        dividend_yield=Decimal(dividend_yield) if dividend_yield is not None else None,
        description=description,
    )


def _etf(symbol: str, name: str, description: str, dividend_yield: str) -> LocalStock:
    return LocalStock(
        symbol=symbol,
        name=name,
        security_type=SecurityType.ETF,
        dividend_yield=Decimal(dividend_yield),
        description=description,
    )


STOCK_CATALOG: tuple[LocalStock, ...] = (
    _equity("AAPL", "Apple Inc.", "Technology", "iPhone, Mac, iPad maker", "0.5"),
    _equity("MSFT", "Microsoft Corporation", "Technology", "Windows, Office, Azure cloud", "0.8"),
    _equity("GOOGL", "Alphabet Inc. (Google)", "Technology", "Google Search, YouTube, Android"),
    _equity("GOOG", "Alphabet Inc. Class C", "Technology", "Google Search, YouTube, Android"),
    _equity("AMZN", "Amazon.com Inc.", "Consumer Cyclical", "E-commerce, AWS cloud"),
    _equity("META", "Meta Platforms Inc.", "Technology", "Facebook, Instagram, WhatsApp"),
    _equity("NVDA", "NVIDIA Corporation", "Technology", "Graphics cards, AI chips", "0.03"),
    _equity("TSLA", "Tesla Inc.", "Consumer Cyclical", "Electric vehicles, energy storage"),
    _equity("AMD", "Advanced Micro Devices", "Technology", "Computer processors, graphics cards"),
    _equity("INTC", "Intel Corporation", "Technology", "Computer processors", "1.5"),
    _equity("ORCL", "Oracle Corporation", "Technology", "Database software, cloud", "1.3"),
    _equity("ADBE", "Adobe Inc.", "Technology", "Photoshop, Creative Cloud"),
    _equity("NFLX", "Netflix Inc.", "Communication Services", "Streaming video service"),
    _equity("PYPL", "PayPal Holdings Inc.", "Financial Services", "Online payments"),
    _equity("UBER", "Uber Technologies", "Technology", "Ride-sharing, food delivery"),
    _equity("AVGO", "Broadcom Inc.", "Technology", "Semiconductor solutions", "2.0"),
    _equity("TSM", "Taiwan Semiconductor", "Technology", "Chip manufacturing", "1.5"),
    _equity("DIS", "The Walt Disney Company", "Communication Services", "Entertainment, theme parks"),
    _equity("NKE", "Nike Inc.", "Consumer Cyclical", "Athletic apparel, shoes", "1.3"),
    _equity("SBUX", "Starbucks Corporation", "Consumer Cyclical", "Coffee shops worldwide", "2.3"),
    _equity("MCD", "McDonald's Corporation", "Consumer Cyclical", "Fast food restaurants", "2.2"),
    _equity("KO", "The Coca-Cola Company", "Consumer Defensive", "Beverages", "3.0"),
    _equity("PEP", "PepsiCo Inc.", "Consumer Defensive", "Beverages and snacks", "2.7"),
    _equity("WMT", "Walmart Inc.", "Consumer Defensive", "Retail stores", "1.4"),
    _equity("COST", "Costco Wholesale", "Consumer Defensive", "Warehouse retail", "0.6"),
    _equity("HD", "The Home Depot", "Consumer Cyclical", "Home improvement stores", "2.5"),
    _equity("JPM", "JPMorgan Chase & Co.", "Financial Services", "Largest US bank", "2.5"),
    _equity("BAC", "Bank of America", "Financial Services", "Major US bank", "2.6"),
    _equity("GS", "Goldman Sachs", "Financial Services", "Investment bank", "2.4"),
    _equity("V", "Visa Inc.", "Financial Services", "Payment network", "0.8"),
    _equity("MA", "Mastercard Inc.", "Financial Services", "Payment network", "0.6"),
    _equity("BRK.B", "Berkshire Hathaway", "Financial Services", "Warren Buffett's company"),
    _equity("JNJ", "Johnson & Johnson", "Healthcare", "Pharmaceuticals, consumer health", "3.0"),
    _equity("UNH", "UnitedHealth Group", "Healthcare", "Health insurance", "1.4"),
    _equity("PFE", "Pfizer Inc.", "Healthcare", "Pharmaceuticals", "5.8"),
    _equity("LLY", "Eli Lilly and Company", "Healthcare", "Pharmaceuticals", "0.8"),
    _equity("XOM", "Exxon Mobil Corporation", "Energy", "Oil and gas", "3.4"),
    _equity("CVX", "Chevron Corporation", "Energy", "Oil and gas", "4.0"),
    _equity("BA", "The Boeing Company", "Industrials", "Aircraft manufacturer"),
    _equity("CAT", "Caterpillar Inc.", "Industrials", "Construction equipment", "1.6"),
    _equity("T", "AT&T Inc.", "Communication Services", "Telecommunications", "6.5"),
    _equity("VZ", "Verizon Communications", "Communication Services", "Telecommunications", "6.8"),
    _equity("O", "Realty Income Corp", "Real Estate", "Monthly dividend REIT", "5.5"),
    _etf("SPY", "SPDR S&P 500 ETF Trust", "Tracks S&P 500 index", "1.4"),
    _etf("VOO", "Vanguard S&P 500 ETF", "Low-cost S&P 500 fund", "1.4"),
    _etf("VTI", "Vanguard Total Stock Market ETF", "Entire US stock market", "1.4"),
    _etf("QQQ", "Invesco QQQ Trust", "Nasdaq-100 index", "0.5"),
    _etf("IWM", "iShares Russell 2000 ETF", "Small-cap stocks", "1.3"),
    _etf("DIA", "SPDR Dow Jones Industrial ETF", "Dow Jones 30 stocks", "1.8"),
    _etf("XLK", "Technology Select Sector SPDR", "Tech sector", "0.7"),
    _etf("XLF", "Financial Select Sector SPDR", "Financial sector", "1.8"),
    _etf("XLE", "Energy Select Sector SPDR", "Energy sector", "3.5"),
    _etf("SCHD", "Schwab US Dividend Equity ETF", "Dividend-paying US stocks", "3.4"),
    _etf("BND", "Vanguard Total Bond Market ETF", "US investment-grade bonds", "3.2"),
)

_BY_SYMBOL = {stock.symbol: stock for stock in STOCK_CATALOG}


def _score(stock: LocalStock, term: str) -> int:
    symbol = stock.symbol.lower()
    name = stock.name.lower()
    if symbol == term:
        return 1000
    if symbol.startswith(term):
        # Shorter symbols rank higher among prefix matches.
        return 500 + (100 - len(symbol))
    if term in symbol:
        return 200
    if name.startswith(term) or f" {term}" in name:
        return 150
    if term in name:
        return 100
    if stock.description and term in stock.description.lower():
        return 50
    if stock.sector and term in stock.sector.lower():
        return 25
    return 0


def search_local_stocks(query: str, *, limit: int = MAX_RESULTS) -> list[LocalStock]:
    term = query.strip().lower()
    if not term:
        return []
    scored = [(score, stock) for stock in STOCK_CATALOG if (score := _score(stock, term)) > 0]
    scored.sort(key=lambda pair: pair[0], reverse=True)
    return [stock for _, stock in scored[:limit]]


def get_local_stock(symbol: str) -> LocalStock | None:
    return _BY_SYMBOL.get(symbol.strip().upper())


def is_local_stock(symbol: str) -> bool:
    return get_local_stock(symbol) is not None


__all__ = ["STOCK_CATALOG", "LocalStock", "get_local_stock", "is_local_stock", "search_local_stocks"]
