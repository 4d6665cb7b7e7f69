from __future__ import annotations

from typing import Any, Mapping

import requests
from requests import Response
from requests.adapters import HTTPAdapter
from urllib3.util import Retry

from .market_errors import ProviderUnavailableError, RateLimitedError

TOO_MANY_REQUESTS = 429


class JsonHttpClient:
    """GET-only JSON client that maps transport failures onto the market-data error taxonomy.

    Retries cover connection errors and 5xx responses. 429 is never retried here;
    it is reported as ``RateLimitedError`` so the resolver can fall back instead.
    """

    def __init__(
        self,
        *,
        source_id: str,
        display_name: str,
        timeout: float = 10.0,
        session: requests.Session | None = None,
        retry_attempts: int = 2,
        retry_backoff_seconds: float = 0.3,
        headers: Mapping[str, str] | None = None,
    ) -> None:
        self.source_id = source_id
        self.display_name = display_name
        self.timeout = timeout
        self.headers = dict(headers or {})
        self._session = session or requests.Session()

        retry = Retry(
            total=retry_attempts,
            backoff_factor=retry_backoff_seconds,
            status_forcelist={500, 502, 503, 504},
            allowed_methods={"GET"},
            respect_retry_after_header=False,
            raise_on_status=False,
        )
        adapter = HTTPAdapter(max_retries=retry)
        self._session.mount("https://", adapter)
        self._session.mount("http://", adapter)

    def get_json(self, url: str, *, params: dict[str, Any] | None = None) -> Any:
        try:
            response = self._session.request(
                "GET",
                url,
                params=params,
                timeout=self.timeout,
                headers=self.headers,
            )
            response.raise_for_status()
        except requests.HTTPError as exc:
            resp = exc.response
            status_code = getattr(resp, "status_code", None)
            payload = self._extract_payload(resp)
            if status_code == TOO_MANY_REQUESTS:
                raise RateLimitedError(
                    f"{self.display_name} API rate limit exceeded. Please wait before making more requests.",
                    source_id=self.source_id,
                    status_code=status_code,
                    payload=payload,
                ) from exc
            reason = getattr(resp, "reason", "") or ""
            raise ProviderUnavailableError(
                f"{self.display_name} API error: {status_code} {reason}".rstrip(),
                source_id=self.source_id,
                status_code=status_code,
                payload=payload,
            ) from exc
        except requests.Timeout as exc:
            raise ProviderUnavailableError(
                f"{self.display_name} request timed out after {self.timeout}s",
                source_id=self.source_id,
            ) from exc
        except requests.RequestException as exc:
            status_code = getattr(getattr(exc, "response", None), "status_code", None)
            raise ProviderUnavailableError(
                f"Network error while calling {self.display_name}: {exc}",
                source_id=self.source_id,
                status_code=status_code,
            ) from exc

        try:
            return response.json()
        except ValueError as exc:
            raise ProviderUnavailableError(
                f"{self.display_name} returned invalid JSON",
                source_id=self.source_id,
                status_code=response.status_code,
                payload=response.text,
            ) from exc

    @staticmethod
    def _extract_payload(response: Response | None) -> Any | None:
        if response is None:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text


__all__ = ["JsonHttpClient"]
