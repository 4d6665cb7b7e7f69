from __future__ import annotations

from decimal import Decimal
from functools import cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

PROJECT_ROOT = Path(__file__).resolve().parents[1]
ARTIFACTS_DIR = PROJECT_ROOT / "artifacts"
LEDGER_FILE = ARTIFACTS_DIR / "paper_ledger.json"


class AppSettings(BaseSettings):
    # Finnhub is optional at startup; a missing key only fails the Finnhub call itself.
    finnhub_api_key: str | None = None
    finnhub_base_url: str = "https://finnhub.io/api/v1"
    finnhub_quote_ttl_seconds: float = 15
    finnhub_search_ttl_seconds: float = 300
    finnhub_max_calls: int = 30
    finnhub_window_seconds: float = 1

    yahoo_quote_base_url: str = "https://query1.finance.yahoo.com"
    yahoo_search_base_url: str = "https://query2.finance.yahoo.com"
    yahoo_quote_ttl_seconds: float = 30
    yahoo_search_ttl_seconds: float = 300
    yahoo_max_calls: int = 10
    yahoo_window_seconds: float = 1

    http_timeout_seconds: float = 10.0
    cache_sweep_interval_seconds: float = 300

    initial_cash: Decimal = Decimal("100000")
    max_resets: int = 3
    ledger_store_path: Path = LEDGER_FILE

    log_level: str = "INFO"

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")


@cache
def config() -> AppSettings:
    return AppSettings()
