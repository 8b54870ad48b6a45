# -*- coding: utf-8 -*-

# DO Proxy
# Copyright (C) 2025 DO Proxy contributors
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

"""
Request body shaping for the forwarding layer.

Everything the proxy changes in an inbound JSON body before forwarding it,
apart from the transcript itself:

  - Model aliases are mapped to backend model ids
  - Chat completions get a default output token bound
  - For anthropic-* models, OpenAI-only fields the backend rejects are removed
    and tool_choice / stop are translated to the backend's shapes

All functions modify the body in place; the body belongs to one request.
"""

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from loguru import logger

from doproxy.config import (
    DEFAULT_MAX_TOKENS,
    FIELD_STRIPPING_ENABLED,
    MODEL_MAPPING,
    TRANSCRIPT_NORMALIZATION_ENABLED,
    is_anthropic_model,
)
from doproxy.normalizer import NormalizationReport, normalize_request_messages

CHAT_COMPLETIONS_PATH = "/v1/chat/completions"

# OpenAI request fields the strict backend rejects.
UNSUPPORTED_FIELDS = (
    "parallel_tool_calls",
    "response_format",
    "logprobs",
    "top_logprobs",
    "seed",
    "frequency_penalty",
    "presence_penalty",
    "logit_bias",
    "user",
    "service_tier",
    "store",
    "metadata",
)


@dataclass
class ShapingResult:
    """
    Summary of what was done to one request body.

    Attributes:
        original_model: Model name sent by the client
        model: Model name forwarded upstream
        stream: Whether the client asked for a streaming response
        stripped_fields: Names of removed top-level fields
        normalization: Transcript report (chat completions only)
    """

    original_model: Optional[str] = None
    model: Optional[str] = None
    stream: bool = False
    stripped_fields: List[str] = field(default_factory=list)
    normalization: Optional[NormalizationReport] = None


def apply_model_mapping(body: Dict[str, Any]) -> Optional[str]:
    """
    Replace a client-facing model alias with the backend model id.

    Returns:
        The model name forwarded upstream
    """
    model = body.get("model")
    if isinstance(model, str) and model in MODEL_MAPPING:
        body["model"] = MODEL_MAPPING[model]
        logger.info("Remapped model: {} -> {}", model, body["model"])
    return body.get("model")


def _is_finite_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def ensure_max_tokens(body: Dict[str, Any], default: int = DEFAULT_MAX_TOKENS) -> bool:
    """
    Default max_tokens when neither max_tokens nor max_completion_tokens is set.

    Returns:
        True if the default was applied
    """
    if _is_finite_number(body.get("max_tokens")) or _is_finite_number(
        body.get("max_completion_tokens")
    ):
        return False
    body["max_tokens"] = default
    return True


def _translate_tool_choice(body: Dict[str, Any]) -> None:
    """Map OpenAI tool_choice values onto the backend's tool_choice shapes."""
    tool_choice = body.get("tool_choice")

    if tool_choice == "auto":
        del body["tool_choice"]
    elif tool_choice == "none":
        del body["tool_choice"]
        body.pop("tools", None)
    elif tool_choice == "required":
        body["tool_choice"] = {"type": "any"}
    elif isinstance(tool_choice, dict) and tool_choice.get("type") == "function":
        function = tool_choice.get("function")
        name = function.get("name") if isinstance(function, dict) else None
        if name:
            body["tool_choice"] = {"type": "tool", "name": name}


def _clean_tools(body: Dict[str, Any]) -> None:
    """Drop strict flags, default empty descriptions, remove an empty tools list."""
    tools = body.get("tools")
    if not isinstance(tools, list):
        return

    for tool in tools:
        if not isinstance(tool, dict) or tool.get("type") != "function":
            continue
        function = tool.get("function")
        if not isinstance(function, dict):
            continue
        function.pop("strict", None)
        if not function.get("description"):
            function["description"] = function.get("name") or "A tool"

    if not tools:
        del body["tools"]


def _translate_stop(body: Dict[str, Any]) -> None:
    """Rewrite OpenAI stop into stop_sequences."""
    if "stop" not in body:
        return
    stop = body.pop("stop")
    if isinstance(stop, list):
        body["stop_sequences"] = stop
    elif isinstance(stop, str):
        body["stop_sequences"] = [stop]


def strip_unsupported_fields(body: Dict[str, Any]) -> List[str]:
    """
    Remove and translate request fields the strict backend does not accept.

    Args:
        body: Parsed JSON request body (modified in place)

    Returns:
        Names of the top-level fields that were removed
    """
    stripped = [name for name in UNSUPPORTED_FIELDS if name in body]
    for name in stripped:
        del body[name]

    n = body.get("n")
    if _is_finite_number(n) and n > 1:
        body["n"] = 1

    _translate_tool_choice(body)
    _clean_tools(body)
    _translate_stop(body)

    if stripped:
        logger.debug("Stripped unsupported fields: {}", ", ".join(stripped))

    return stripped


def shape_request_body(path: str, body: Dict[str, Any]) -> ShapingResult:
    """
    Apply every forwarding-layer rewrite to a parsed JSON body.

    Args:
        path: Inbound request path
        body: Parsed JSON body (modified in place)

    Returns:
        ShapingResult describing the rewrites
    """
    result = ShapingResult(original_model=body.get("model"))
    result.model = apply_model_mapping(body)

    if path == CHAT_COMPLETIONS_PATH:
        if TRANSCRIPT_NORMALIZATION_ENABLED:
            result.normalization = normalize_request_messages(body)
        if ensure_max_tokens(body):
            logger.debug("Applied default max_tokens={}", body["max_tokens"])

    if FIELD_STRIPPING_ENABLED and is_anthropic_model(body.get("model")):
        result.stripped_fields = strip_unsupported_fields(body)

    result.stream = body.get("stream") is True
    return result
