# -*- coding: utf-8 -*-

# DO Proxy
# Copyright (C) 2025 DO Proxy contributors
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

"""
DO Proxy - OpenAI-compatible proxy for Digital Ocean inference.

This package forwards chat-completions traffic to a strict backend and
rewrites every transcript into the grammar that backend accepts.

Modules:
    - config: Configuration and constants
    - transcript: Message and tool invocation types, wire conversion
    - normalizer: Transcript normalization engine
    - request_shaping: Model aliases, max_tokens default, field stripping
    - http_client: Upstream HTTP client with retry logic
    - cache: Upstream model list cache
    - models_openai: Pydantic models for the proxy's own endpoints
    - routes: FastAPI routes
"""

# Version is imported from config.py - the single source of truth
from doproxy.config import APP_VERSION as __version__

from doproxy.cache import ModelListCache
from doproxy.http_client import UpstreamHttpClient
from doproxy.normalizer import (
    NormalizationReport,
    NormalizationResult,
    normalize_chat_messages,
    normalize_transcript,
)
from doproxy.request_shaping import shape_request_body
from doproxy.routes import router
from doproxy.transcript import Message, ToolInvocation

__all__ = [
    "__version__",
    "Message",
    "ModelListCache",
    "NormalizationReport",
    "NormalizationResult",
    "ToolInvocation",
    "UpstreamHttpClient",
    "normalize_chat_messages",
    "normalize_transcript",
    "router",
    "shape_request_body",
]
