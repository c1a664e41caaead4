# tests/unit/transport/test_http.py
"""Tests for the httpx transport using httpx.MockTransport."""

from __future__ import annotations

from collections.abc import Callable

import httpx
import pytest

from beacon.transport.http import HttpxTransport, is_retryable_status

URL = "https://collector.example.com/batch"


def _transport(handler: Callable[[httpx.Request], httpx.Response], **kwargs: object) -> HttpxTransport:
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return HttpxTransport(client=client, **kwargs)  # type: ignore[arg-type]


class TestRetryableStatus:
    @pytest.mark.parametrize("status", [408, 429, 500, 502, 503, 599])
    def test_transient(self, status: int) -> None:
        assert is_retryable_status(status)

    @pytest.mark.parametrize("status", [400, 401, 403, 404, 413, 422])
    def test_permanent(self, status: int) -> None:
        assert not is_retryable_status(status)


class TestHttpxTransport:
    def test_success_posts_payload_with_merged_headers(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(202)

        transport = _transport(handler, headers={"X-Default": "d", "X-Override": "default"})
        result = transport.send(URL, b'{"events":[]}', {"X-Override": "sink"})

        assert result.success
        assert result.status_code == 202
        request = seen[0]
        assert request.method == "POST"
        assert request.content == b'{"events":[]}'
        assert request.headers["content-type"] == "application/json"
        assert request.headers["x-default"] == "d"
        assert request.headers["x-override"] == "sink"

    def test_server_error_is_retryable(self) -> None:
        result = _transport(lambda request: httpx.Response(503)).send(URL, b"{}", {})

        assert not result.success
        assert result.retryable
        assert result.status_code == 503

    def test_client_error_is_permanent(self) -> None:
        result = _transport(lambda request: httpx.Response(400)).send(URL, b"{}", {})

        assert not result.success
        assert not result.retryable
        assert result.error == "HTTP 400"

    def test_network_error_is_retryable_not_raised(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        result = _transport(handler).send(URL, b"{}", {})

        assert not result.success
        assert result.retryable
        assert "ConnectError" in (result.error or "")

    def test_timeout_is_retryable(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        result = _transport(handler).send(URL, b"{}", {})

        assert result.retryable
        assert (result.error or "").startswith("timeout")

    def test_closed_transport_fails_retryably(self) -> None:
        transport = _transport(lambda request: httpx.Response(200))
        transport.close()
        transport.close()

        result = transport.send(URL, b"{}", {})

        assert not result.success
        assert result.retryable

    def test_injected_client_is_not_closed(self) -> None:
        client = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(200)))
        HttpxTransport(client=client).close()

        assert not client.is_closed
        client.close()
