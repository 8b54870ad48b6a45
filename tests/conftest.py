# -*- coding: utf-8 -*-

"""
Shared fixtures for DO Proxy tests.

The upstream inference endpoint is replaced by an httpx.MockTransport, so
no test touches the network. Each test installs its own handler through the
upstream fixture.
"""

import json
from typing import Any, Callable, Dict, List

import httpx
import pytest
from fastapi.testclient import TestClient

from doproxy.cache import ModelListCache
from doproxy.http_client import UpstreamHttpClient


# ==================================================================================================
# Upstream mock
# ==================================================================================================


class UpstreamRecorder:
    """
    Records requests sent upstream and answers them with a configurable handler.

    Attributes:
        requests: Every httpx.Request the proxy sent, in order
        handler: Callable(request) -> httpx.Response
    """

    def __init__(self) -> None:
        self.requests: List[httpx.Request] = []
        self.handler: Callable[[httpx.Request], httpx.Response] = lambda request: httpx.Response(
            200, json={"id": "chatcmpl-1", "object": "chat.completion", "choices": []}
        )

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.handler(request)

    @property
    def last_json(self) -> Dict[str, Any]:
        """Parsed JSON body of the last forwarded request."""
        return json.loads(self.requests[-1].content)


@pytest.fixture
def upstream():
    """Mock upstream recorder; set .handler to change responses."""
    return UpstreamRecorder()


@pytest.fixture
def mock_http_client(upstream):
    """UpstreamHttpClient on a mock transport with zero backoff."""
    return UpstreamHttpClient(
        api_key="test-do-key",
        base_delay=0,
        transport=httpx.MockTransport(upstream),
    )


@pytest.fixture
def test_app(mock_http_client):
    """FastAPI app with the mock upstream client installed."""
    from main import create_app

    app = create_app()
    app.state.http_client = mock_http_client
    app.state.model_cache = ModelListCache(cache_ttl=300)
    return app


@pytest.fixture
def test_client(test_app):
    """TestClient for the proxy app."""
    with TestClient(test_app) as client:
        yield client


@pytest.fixture
def sample_tool_transcript():
    """Raw chat-completions transcript with an out-of-order tool result."""
    return [
        {"role": "system", "content": "You are a coding assistant."},
        {"role": "user", "content": "Read main.py"},
        {
            "role": "assistant",
            "content": "",
            "tool_calls": [
                {
                    "id": "call_1",
                    "type": "function",
                    "function": {"name": "read_file", "arguments": '{"path": "main.py"}'},
                }
            ],
        },
        {"role": "user", "content": "Also check the tests"},
        {"role": "tool", "tool_call_id": "call_1", "content": "print('hello')"},
    ]
