# -*- coding: utf-8 -*-

"""
Unit tests for UpstreamHttpClient (http_client.py).

The upstream is an httpx.MockTransport; asyncio.sleep is patched so backoff
delays can be asserted without waiting.
"""

from unittest.mock import AsyncMock, patch

import httpx
import pytest

from doproxy.http_client import UpstreamHttpClient, parse_retry_after

URL = "https://inference.test/v1/chat/completions"


def make_client(responses, **kwargs):
    """
    Build a client whose transport replays the given responses in order.

    Entries may be httpx.Response objects or exceptions to raise.
    """
    calls = []
    queue = list(responses)

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        item = queue.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    kwargs.setdefault("api_key", "secret")
    client = UpstreamHttpClient(transport=httpx.MockTransport(handler), **kwargs)
    return client, calls


class TestParseRetryAfter:
    """Tests for retry-after parsing."""

    @pytest.mark.parametrize("value, expected", [("3", 3.0), (" 10 ", 10.0), ("0", 0.0)])
    def test_numeric_seconds(self, value, expected):
        assert parse_retry_after(value) == expected

    @pytest.mark.parametrize("value", [None, "", "soon", "1.5", "Wed, 21 Oct 2015 07:28:00 GMT"])
    def test_non_numeric_ignored(self, value):
        assert parse_retry_after(value) is None


class TestRequestWithRetry:
    """Tests for retry behaviour."""

    @pytest.mark.asyncio
    async def test_success_first_attempt(self):
        """
        What it does: Verifies a 200 response is returned without retries.
        Purpose: Ensure the happy path makes exactly one call.
        """
        client, calls = make_client([httpx.Response(200, json={"ok": True})])

        with patch("doproxy.http_client.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            response = await client.request_with_retry("POST", URL, b"{}")

        print(f"Status: {response.status_code}, calls: {len(calls)}")
        assert response.status_code == 200
        assert len(calls) == 1
        mock_sleep.assert_not_called()
        await client.close()

    @pytest.mark.asyncio
    async def test_headers_are_sent(self):
        """
        What it does: Verifies the bearer token and content type are sent upstream.
        Purpose: Ensure the upstream key replaces whatever the client sent.
        """
        client, calls = make_client([httpx.Response(200, json={})])

        await client.request_with_retry("POST", URL, b'{"a": 1}')

        assert calls[0].headers["authorization"] == "Bearer secret"
        assert calls[0].headers["content-type"] == "application/json"
        assert calls[0].content == b'{"a": 1}'
        await client.close()

    @pytest.mark.asyncio
    async def test_retries_with_exponential_backoff(self):
        """
        What it does: Verifies 503 responses are retried with doubling delays.
        Purpose: Ensure transient upstream failures recover.
        """
        client, calls = make_client(
            [httpx.Response(503), httpx.Response(502), httpx.Response(200, json={})],
            base_delay=0.5,
            max_retries=2,
        )

        with patch("doproxy.http_client.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            response = await client.request_with_retry("POST", URL, b"{}")

        delays = [call.args[0] for call in mock_sleep.call_args_list]
        print(f"Delays: {delays}")
        assert response.status_code == 200
        assert len(calls) == 3
        assert delays == [0.5, 1.0]
        await client.close()

    @pytest.mark.asyncio
    async def test_retry_after_overrides_backoff(self):
        """
        What it does: Verifies a numeric retry-after header sets the delay.
        Purpose: Ensure upstream rate-limit hints are honored.
        """
        client, _ = make_client(
            [httpx.Response(429, headers={"retry-after": "7"}), httpx.Response(200, json={})],
            base_delay=0.5,
        )

        with patch("doproxy.http_client.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            await client.request_with_retry("POST", URL, b"{}")

        mock_sleep.assert_called_once_with(7.0)
        await client.close()

    @pytest.mark.asyncio
    async def test_last_retriable_response_is_returned(self):
        """
        What it does: Verifies the final error response is returned after retries run out.
        Purpose: Ensure the caller can relay the upstream error verbatim.
        """
        client, calls = make_client(
            [httpx.Response(500), httpx.Response(500), httpx.Response(500, text="boom")],
            max_retries=2,
        )

        with patch("doproxy.http_client.asyncio.sleep", new_callable=AsyncMock):
            response = await client.request_with_retry("POST", URL, b"{}")

        assert response.status_code == 500
        assert response.text == "boom"
        assert len(calls) == 3
        await client.close()

    @pytest.mark.asyncio
    async def test_non_retriable_status_returned_immediately(self):
        """
        What it does: Verifies a 400 is not retried.
        Purpose: Ensure client errors reach the caller at once.
        """
        client, calls = make_client([httpx.Response(400, json={"error": "bad"})])

        with patch("doproxy.http_client.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            response = await client.request_with_retry("POST", URL, b"{}")

        assert response.status_code == 400
        assert len(calls) == 1
        mock_sleep.assert_not_called()
        await client.close()

    @pytest.mark.asyncio
    async def test_transport_error_is_retried(self):
        client, calls = make_client([httpx.ConnectError("refused"), httpx.Response(200, json={})])

        with patch("doproxy.http_client.asyncio.sleep", new_callable=AsyncMock):
            response = await client.request_with_retry("POST", URL, b"{}")

        assert response.status_code == 200
        assert len(calls) == 2
        await client.close()

    @pytest.mark.asyncio
    async def test_transport_error_raised_after_retries(self):
        """
        What it does: Verifies the transport error propagates once retries run out.
        Purpose: Ensure the route can turn it into a proxy error.
        """
        client, calls = make_client([httpx.ConnectError("refused")] * 3, max_retries=2)

        with patch("doproxy.http_client.asyncio.sleep", new_callable=AsyncMock):
            with pytest.raises(httpx.ConnectError):
                await client.request_with_retry("POST", URL, b"{}")

        assert len(calls) == 3
        await client.close()

    @pytest.mark.asyncio
    async def test_streaming_response_is_open(self):
        client, _ = make_client([httpx.Response(200, content=b"data: 1\n\n")])

        response = await client.request_with_retry("POST", URL, b"{}", stream=True)
        chunks = [chunk async for chunk in response.aiter_bytes()]
        await response.aclose()

        assert b"".join(chunks) == b"data: 1\n\n"
        await client.close()


class TestFetchModels:
    """Tests for the upstream model list fetch."""

    @pytest.mark.asyncio
    async def test_returns_data_list(self):
        client, _ = make_client([httpx.Response(200, json={"object": "list", "data": [{"id": "m1"}]})])

        result = await client.fetch_models("https://inference.test/v1/models")

        assert result == [{"id": "m1"}]
        await client.close()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "response",
        [
            httpx.Response(401, json={"error": "no"}),
            httpx.Response(200, text="not json"),
            httpx.Response(200, json={"data": "nope"}),
        ],
    )
    async def test_bad_answers_return_none(self, response):
        client, _ = make_client([response])
        assert await client.fetch_models("https://inference.test/v1/models") is None
        await client.close()

    @pytest.mark.asyncio
    async def test_transport_error_returns_none(self):
        client, _ = make_client([httpx.ConnectError("down")])
        assert await client.fetch_models("https://inference.test/v1/models") is None
        await client.close()
