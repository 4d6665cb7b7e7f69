"""Paper trading domain.

In-memory (Pydantic) models for positions, trades and reset requests, and the
ledger that applies buys, sells and resets to them. Persistence is injected via
``db.ledger_store`` so the ledger can be tested without touching disk.
"""

__all__ = [
    "paper_ledger",
    "portfolio",
]
