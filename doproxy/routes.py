# -*- coding: utf-8 -*-

# DO Proxy
# Copyright (C) 2025 DO Proxy contributors
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

"""
FastAPI routes for DO Proxy.

Contains the proxy's own endpoints:
- / and /health: status documents
- /v1/models: upstream model list with TTL cache and fallback

Every other path is forwarded to the inference endpoint. JSON bodies are
shaped first (model aliases, transcript normalization, field stripping);
anything else is passed through as raw bytes.
"""

import json
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, StreamingResponse
from loguru import logger
from pydantic import ValidationError

from doproxy.cache import ModelListCache
from doproxy.config import APP_VERSION, DO_INFERENCE_URL, FALLBACK_MODELS, get_upstream_url
from doproxy.http_client import UpstreamHttpClient
from doproxy.models_openai import HealthStatus, ModelList, OpenAIModel, RootStatus
from doproxy.request_shaping import ShapingResult, shape_request_body

BODY_METHODS = ("POST", "PUT", "PATCH")
FORWARDED_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE"]

STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}

router = APIRouter()


def get_http_client(request: Request) -> UpstreamHttpClient:
    """Shared upstream client created by the application lifespan."""
    return request.app.state.http_client


def get_model_cache(request: Request) -> ModelListCache:
    """Shared model list cache created by the application lifespan."""
    return request.app.state.model_cache


# ==================================================================================================
# Proxy endpoints
# ==================================================================================================


@router.get("/", response_model=RootStatus)
async def root():
    """
    Status endpoint.

    Returns:
        Service status and the upstream it forwards to
    """
    return RootStatus(message="Digital Ocean AI Proxy", target=DO_INFERENCE_URL)


@router.get("/health", response_model=HealthStatus)
async def health():
    """Health check for monitoring."""
    return HealthStatus(version=APP_VERSION)


def build_model_entries(models: List[Dict[str, Any]]) -> List[OpenAIModel]:
    """Validate model entries, skipping the ones that do not fit the OpenAI shape."""
    entries: List[OpenAIModel] = []
    for model in models:
        try:
            entries.append(OpenAIModel(**model))
        except ValidationError as e:
            logger.warning("Skipping invalid model entry {}: {}", model.get("id"), e.errors()[0]["msg"])
    return entries


@router.get("/v1/models")
async def get_models(request: Request):
    """
    Return the list of available models.

    The upstream list is cached for MODEL_CACHE_TTL seconds. When the
    upstream cannot be reached and nothing is cached, the built-in fallback
    list is returned. Entries that do not validate are skipped; if none are
    left, the fallback list is served instead.

    Returns:
        ModelList in OpenAI format
    """
    client = get_http_client(request)
    cache = get_model_cache(request)

    async def fetch_upstream() -> Optional[List[Dict[str, Any]]]:
        return await client.fetch_models(get_upstream_url("/v1/models"))

    models = await cache.get_models(fetch_upstream)
    data = build_model_entries(models) or build_model_entries(FALLBACK_MODELS)
    return ModelList(data=data)


# ==================================================================================================
# Forwarding
# ==================================================================================================


def describe_message(index: int, message: Any) -> str:
    """
    One-line description of a forwarded message for error diagnostics.

    Example:
        >>> describe_message(2, {"role": "tool", "tool_call_id": "c1", "content": ""})
        '[2] tool (c1) "" EMPTY'
    """
    if not isinstance(message, dict):
        return f"[{index}] {type(message).__name__}"

    role = message.get("role")
    info = f"[{index}] {role}"
    if role == "tool":
        info += f" ({message.get('tool_call_id')})"
    tool_calls = message.get("tool_calls")
    if isinstance(tool_calls, list):
        info += f" tool_calls:{len(tool_calls)}"

    content = message.get("content")
    if isinstance(content, str):
        preview = content[:30] + ("..." if len(content) > 30 else "")
        info += f' "{preview}"'
        if not content.strip():
            info += " EMPTY"
    elif isinstance(content, list):
        types = ",".join(str(block.get("type")) if isinstance(block, dict) else "?" for block in content)
        info += f" [{types}]"
    else:
        info += f" {type(content).__name__}"
    return info


def log_message_structure(body: Any) -> None:
    """Log the structure of a forwarded transcript after an upstream error."""
    messages = body.get("messages") if isinstance(body, dict) else None
    if not isinstance(messages, list):
        return
    logger.error("Forwarded messages ({}):", len(messages))
    for index, message in enumerate(messages):
        logger.error("  {}", describe_message(index, message))


def _summarize_request(shaping: ShapingResult, body: Dict[str, Any], path: str) -> None:
    messages = body.get("messages")
    if not isinstance(messages, list):
        logger.info("Forwarding {} | model={} | stream={}", path, shaping.model, shaping.stream)
        return
    invoking = sum(1 for m in messages if isinstance(m, dict) and isinstance(m.get("tool_calls"), list))
    results = sum(1 for m in messages if isinstance(m, dict) and m.get("role") == "tool")
    logger.info(
        "Forwarding {} | model={} | {} msgs | {} tool_calls | {} tool_results | stream={}",
        path,
        shaping.model,
        len(messages),
        invoking,
        results,
        shaping.stream,
    )


def prepare_body(path: str, raw_body: bytes):
    """
    Parse and shape an inbound body.

    Args:
        path: Inbound request path
        raw_body: Raw request bytes

    Returns:
        Tuple of (bytes to forward, parsed body or None, ShapingResult or None).
        Bodies that are not a JSON object are forwarded unchanged.
    """
    if not raw_body:
        return None, None, None

    try:
        body = json.loads(raw_body)
    except ValueError as e:
        logger.warning("Request body is not valid JSON, forwarding raw: {}", e)
        return raw_body, None, None

    if not isinstance(body, dict):
        return raw_body, None, None

    shaping = shape_request_body(path, body)
    _summarize_request(shaping, body, path)
    return json.dumps(body, ensure_ascii=False).encode("utf-8"), body, shaping


async def _stream_upstream(response: httpx.Response) -> AsyncIterator[bytes]:
    """Relay upstream chunks as they arrive, then close the upstream response."""
    try:
        async for chunk in response.aiter_bytes():
            yield chunk
    finally:
        await response.aclose()


def _relay_body(response: httpx.Response) -> JSONResponse:
    """Relay a fully read upstream response as JSON, wrapping non-JSON text."""
    try:
        content = response.json()
    except ValueError:
        content = {"raw": response.text}
    return JSONResponse(content=content, status_code=response.status_code)


@router.api_route("/{path:path}", methods=FORWARDED_METHODS)
async def proxy(path: str, request: Request):
    """
    Forward any other request to the inference endpoint.

    Args:
        path: Request path without the leading slash
        request: Incoming request

    Returns:
        StreamingResponse for streaming chat requests, JSONResponse otherwise
    """
    inbound_path = f"/{path}"
    content: Optional[bytes] = None
    body: Optional[Dict[str, Any]] = None
    shaping: Optional[ShapingResult] = None

    if request.method in BODY_METHODS:
        content, body, shaping = prepare_body(inbound_path, await request.body())

    stream = shaping.stream if shaping is not None else False
    url = get_upstream_url(inbound_path, request.url.query)
    client = get_http_client(request)

    try:
        response = await client.request_with_retry(request.method, url, content, stream=stream)
    except httpx.HTTPError as e:
        logger.error("Proxy error: {}", e)
        return JSONResponse(
            status_code=500,
            content={"error": "Proxy error", "message": str(e) or type(e).__name__},
        )

    logger.info("Upstream responded: HTTP {}", response.status_code)

    if response.status_code >= 400:
        # Streaming errors are read in full and relayed as JSON
        try:
            await response.aread()
        finally:
            await response.aclose()
        logger.error("Upstream error: {}", response.text)
        log_message_structure(body)
        return _relay_body(response)

    if stream:
        return StreamingResponse(
            _stream_upstream(response),
            status_code=response.status_code,
            media_type="text/event-stream",
            headers=STREAM_HEADERS,
        )

    return _relay_body(response)
