from fastapi import Request

from domain.paper_ledger import PaperLedger
from services.stock_resolver import StockResolver


def get_resolver(request: Request) -> StockResolver:
    return request.app.state.resolver


def get_ledger(request: Request) -> PaperLedger:
    return request.app.state.ledger
