from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from types import SimpleNamespace
from typing import Any
from unittest.mock import Mock

import pytest
import requests

import services.finnhub_source as finnhub_module
from services.finnhub_source import FinnhubSource, _FinnhubClient
from services.market_errors import ConfigError, InvalidSymbolError, ProviderUnavailableError, RateLimitedError
from services.market_types import SecurityType
from tests.helpers.clock import FakeClock

AAPL_PAYLOAD = {"c": 150.5, "d": 1.5, "dp": 1.0067, "h": 151, "l": 149, "o": 150, "pc": 149, "t": 1_700_000_000}


def _mock_response(payload: Any, status_code: int = 200, reason: str = "OK") -> Mock:
    response = Mock()
    response.status_code = status_code
    response.reason = reason
    response.json.return_value = payload
    response.text = "payload"
    if status_code >= 400:
        response.raise_for_status.side_effect = requests.HTTPError(f"{status_code} {reason}", response=response)
    else:
        response.raise_for_status.return_value = None
    return response


def _source(session: Mock, *, max_calls: int = 30, clock: FakeClock | None = None) -> FinnhubSource:
    return FinnhubSource(
        client=_FinnhubClient(api_key="token", base_url="https://finnhub.test/api/v1", session=session),
        max_calls=max_calls,
        clock=clock or FakeClock(),
    )


def test_get_quote_normalizes_payload() -> None:
    session = Mock()
    session.request.return_value = _mock_response(AAPL_PAYLOAD)

    quote = _source(session).get_quote(" aapl ")

    assert quote.symbol == "AAPL"
    assert quote.current_price == Decimal("150.5")
    assert quote.change == Decimal("1.5")
    assert quote.change_percent == Decimal("1.0067")
    assert quote.previous_close == Decimal("149")
    assert quote.high == Decimal("151")
    assert quote.timestamp == datetime(2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc)
    assert quote.source_id == "finnhub"
    assert quote.security_type == SecurityType.EQUITY

    args = session.request.call_args
    assert args.args[:2] == ("GET", "https://finnhub.test/api/v1/quote")
    assert args.kwargs["params"] == {"symbol": "AAPL", "token": "token"}


def test_cached_quote_skips_network_and_quota() -> None:
    session = Mock()
    session.request.return_value = _mock_response(AAPL_PAYLOAD)
    source = _source(session)

    first = source.get_quote("AAPL")
    second = source.get_quote("aapl")

    assert first is second
    assert session.request.call_count == 1
    assert source.rate_limit_remaining() == 29


def test_quote_refetched_after_ttl() -> None:
    session = Mock()
    session.request.return_value = _mock_response(AAPL_PAYLOAD)
    clock = FakeClock()
    source = _source(session, clock=clock)

    source.get_quote("AAPL")
    clock.advance(15)
    source.get_quote("AAPL")

    assert session.request.call_count == 2


def test_zeroed_payload_is_unknown_symbol_and_not_cached() -> None:
    session = Mock()
    session.request.return_value = _mock_response({"c": 0, "d": None, "dp": None, "h": 0, "l": 0, "o": 0, "pc": 0, "t": 0})
    source = _source(session)

    with pytest.raises(InvalidSymbolError):
        source.get_quote("NOPE")
    with pytest.raises(InvalidSymbolError):
        source.get_quote("NOPE")

    assert session.request.call_count == 2


def test_missing_api_key_raises_config_error_without_network(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(finnhub_module, "config", lambda: SimpleNamespace(finnhub_api_key=None))
    session = Mock()
    source = FinnhubSource(client=_FinnhubClient(session=session), clock=FakeClock())

    with pytest.raises(ConfigError) as exc_info:
        source.get_quote("AAPL")

    assert "FINNHUB_API_KEY" in str(exc_info.value)
    session.request.assert_not_called()
    assert source.rate_limit_remaining() == 30


def test_api_key_read_from_settings(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(finnhub_module, "config", lambda: SimpleNamespace(finnhub_api_key="from-env"))
    session = Mock()
    session.request.return_value = _mock_response(AAPL_PAYLOAD)
    source = FinnhubSource(client=_FinnhubClient(session=session), clock=FakeClock())

    source.get_quote("AAPL")

    assert session.request.call_args.kwargs["params"]["token"] == "from-env"


def test_http_429_maps_to_rate_limited_and_keeps_quota() -> None:
    session = Mock()
    session.request.return_value = _mock_response({"error": "API limit reached"}, 429, "Too Many Requests")
    source = _source(session)

    with pytest.raises(RateLimitedError) as exc_info:
        source.get_quote("AAPL")

    assert exc_info.value.status_code == 429
    assert exc_info.value.source_id == "finnhub"
    assert source.rate_limit_remaining() == 30


def test_http_500_maps_to_provider_unavailable() -> None:
    session = Mock()
    session.request.return_value = _mock_response({}, 500, "Internal Server Error")

    with pytest.raises(ProviderUnavailableError) as exc_info:
        _source(session).get_quote("AAPL")

    assert exc_info.value.status_code == 500
    assert "500" in str(exc_info.value)


def test_timeout_maps_to_provider_unavailable() -> None:
    session = Mock()
    session.request.side_effect = requests.Timeout("slow")

    with pytest.raises(ProviderUnavailableError):
        _source(session).get_quote("AAPL")


def test_invalid_json_maps_to_provider_unavailable() -> None:
    session = Mock()
    response = _mock_response(None)
    response.json.side_effect = ValueError("not json")
    session.request.return_value = response

    with pytest.raises(ProviderUnavailableError):
        _source(session).get_quote("AAPL")


def test_local_limit_refuses_before_network() -> None:
    session = Mock()
    session.request.return_value = _mock_response(AAPL_PAYLOAD)
    source = _source(session, max_calls=1)

    source.get_quote("AAPL")
    with pytest.raises(RateLimitedError):
        source.get_quote("MSFT")

    assert session.request.call_count == 1
    assert source.get_quote("AAPL").symbol == "AAPL"


def test_empty_symbol_is_invalid_without_network() -> None:
    session = Mock()

    with pytest.raises(InvalidSymbolError):
        _source(session).get_quote("   ")

    session.request.assert_not_called()


def test_search_keeps_supported_types_and_caps_results() -> None:
    session = Mock()
    items = [{"symbol": f"AB{i}", "description": f"Company {i}", "type": "Common Stock"} for i in range(12)]
    items.insert(0, {"symbol": "ABX.WS", "description": "Warrant", "type": "Warrant"})
    items.insert(1, {"symbol": "ABETF", "description": "Some ETF", "type": "ETF"})
    session.request.return_value = _mock_response({"count": len(items), "result": items})

    results = _source(session).search("ab")

    assert len(results) == 10
    assert results[0].symbol == "ABETF"
    assert results[0].security_type == SecurityType.ETF
    assert results[1].name == "Company 0"
    assert all(result.symbol != "ABX.WS" for result in results)
    assert session.request.call_args.kwargs["params"] == {"q": "ab", "token": "token"}


def test_search_results_cached_case_insensitively() -> None:
    session = Mock()
    session.request.return_value = _mock_response({"result": []})
    source = _source(session)

    assert source.search("Apple") == []
    assert source.search("  apple ") == []

    assert session.request.call_count == 1
    assert "search:apple" in source.cache_stats()["keys"]


def test_blank_search_returns_empty_without_network() -> None:
    session = Mock()

    assert _source(session).search("  ") == []
    session.request.assert_not_called()
