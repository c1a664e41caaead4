# src/beacon/transport/http.py
"""httpx-backed Transport."""

from __future__ import annotations

from collections.abc import Mapping

import httpx
import structlog

from beacon.contracts.results import SendResult

logger = structlog.get_logger(__name__)

# Status codes worth retrying besides 5xx
_RETRYABLE_STATUS_CODES = frozenset({408, 429})


def is_retryable_status(status_code: int) -> bool:
    """Whether a non-2xx status describes a transient failure."""
    return status_code >= 500 or status_code in _RETRYABLE_STATUS_CODES


class HttpxTransport:
    """POST payloads with a shared httpx.Client.

    httpx.Client is thread-safe; sink worker threads share one connection
    pool through this transport.
    """

    def __init__(
        self,
        *,
        timeout: float = 10.0,
        headers: Mapping[str, str] | None = None,
        client: httpx.Client | None = None,
    ) -> None:
        """Create the transport.

        Args:
            timeout: Per-request timeout in seconds
            headers: Default headers for every request
            client: Pre-built client (tests pass one with a MockTransport)
        """
        self._default_headers = dict(headers or {})
        self._owns_client = client is None
        self._client: httpx.Client | None = client or httpx.Client(timeout=timeout, follow_redirects=False)

    def send(self, url: str, payload: bytes, headers: Mapping[str, str]) -> SendResult:
        if self._client is None:
            return SendResult.failed("transport closed", retryable=True)

        merged_headers = {"Content-Type": "application/json", **self._default_headers, **headers}
        try:
            response = self._client.post(url, content=payload, headers=merged_headers)
        except httpx.TimeoutException as e:
            logger.debug("Collector request timed out", url=url, error=str(e))
            return SendResult.failed(f"timeout: {e}", retryable=True)
        except httpx.HTTPError as e:
            logger.debug("Collector request failed", url=url, error_type=type(e).__name__, error=str(e))
            return SendResult.failed(f"{type(e).__name__}: {e}", retryable=True)

        if 200 <= response.status_code < 300:
            return SendResult.ok(response.status_code)

        return SendResult.failed(
            f"HTTP {response.status_code}",
            retryable=is_retryable_status(response.status_code),
            status_code=response.status_code,
        )

    def close(self) -> None:
        if self._client is not None and self._owns_client:
            self._client.close()
        self._client = None
