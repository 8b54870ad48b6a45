# -*- coding: utf-8 -*-

# DO Proxy
# Copyright (C) 2025 DO Proxy contributors
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE. See the
# GNU Affero General Public License for more details.
#
# You should have received a copy of the GNU Affero General Public License
# along with this program. If not, see <https://www.gnu.org/licenses/>.

"""
DO Proxy Configuration.

Centralized storage for all settings, constants, and mappings.
Loads environment variables and provides typed access to them.
"""

import os
from typing import Dict, FrozenSet, List, Tuple

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

_TRUTHY_VALUES: Tuple[str, ...] = ("true", "1", "yes", "enabled", "on")


def _get_bool_env(var_name: str, default: str) -> bool:
    """Read a boolean flag from the environment using the gateway-wide truthy set."""
    return os.getenv(var_name, default).lower() in _TRUTHY_VALUES


# ==================================================================================================
# Server Settings
# ==================================================================================================

# Server host (default: 0.0.0.0 - listen on all interfaces)
# Use "127.0.0.1" to only allow local connections
DEFAULT_SERVER_HOST: str = "0.0.0.0"
SERVER_HOST: str = os.getenv("SERVER_HOST", DEFAULT_SERVER_HOST)

# Server port (default: 4005)
# Can be overridden by CLI: python main.py --port 9000
DEFAULT_SERVER_PORT: int = 4005
SERVER_PORT: int = int(os.getenv("SERVER_PORT", str(DEFAULT_SERVER_PORT)))

# ==================================================================================================
# Upstream (Digital Ocean Inference) Settings
# ==================================================================================================

# Base URL of the strict chat-completions backend.
# The request path and query string of the inbound request are appended as-is.
DEFAULT_INFERENCE_URL: str = "https://inference.do-ai.run"
DO_INFERENCE_URL: str = os.getenv("DO_INFERENCE_URL", DEFAULT_INFERENCE_URL).rstrip("/")

# API key sent upstream as "Authorization: Bearer <key>".
# Clients may send any key to the proxy; it is always replaced by this one.
DO_API_KEY: str = os.getenv("DO_API_KEY", "")

# ==================================================================================================
# Retry Configuration
# ==================================================================================================

# Maximum number of retries after the first attempt (total attempts = retries + 1)
UPSTREAM_MAX_RETRIES: int = int(os.getenv("UPSTREAM_MAX_RETRIES", "2"))

# Base delay between attempts (seconds)
# Uses exponential backoff: delay * (2 ** attempt)
# A numeric "retry-after" header from upstream overrides the computed delay.
UPSTREAM_BASE_RETRY_DELAY: float = float(os.getenv("UPSTREAM_BASE_RETRY_DELAY", "0.5"))

# Transient upstream statuses that are retried.
RETRY_STATUS_CODES: FrozenSet[int] = frozenset({429, 500, 502, 503, 504})

# Read timeout for upstream calls (seconds). Streaming responses may pause
# between chunks while the model is working, so this is deliberately generous.
UPSTREAM_TIMEOUT: float = float(os.getenv("UPSTREAM_TIMEOUT", "300"))

# ==================================================================================================
# Model Mapping Configuration
# ==================================================================================================

# Client-facing model aliases -> backend model identifiers.
# Many IDE plugins only offer a fixed list of Claude names; these are remapped
# to the ids the inference endpoint actually serves.
#
# Format: {"alias_name": "backend_model_id"}
MODEL_MAPPING: Dict[str, str] = {
    "anthropic-claude-sonnet-4.5": "anthropic-claude-4.5-sonnet",
    "claude-3.5-sonnet": "anthropic-claude-4.5-sonnet",
    "claude-3-5-sonnet": "anthropic-claude-4.5-sonnet",
    "claude-3.5-haiku": "anthropic-claude-haiku-4.5",
    "claude-3-5-haiku": "anthropic-claude-haiku-4.5",
    "claude-sonnet": "anthropic-claude-4.5-sonnet",
    "claude-haiku": "anthropic-claude-haiku-4.5",
    "claude-opus": "anthropic-claude-opus-4.6",
}

# Backend model ids with these prefixes get the strict request shaping
# (unsupported OpenAI-only fields removed, tool_choice translated).
ANTHROPIC_MODEL_PREFIXES: Tuple[str, ...] = ("anthropic-",)

# ==================================================================================================
# Fallback Models Configuration
# ==================================================================================================

# Fallback model list - used when the upstream /v1/models endpoint is unreachable.
FALLBACK_MODELS: List[Dict[str, str]] = [
    {"id": "anthropic-claude-haiku-4.5", "object": "model", "owned_by": "anthropic"},
    {"id": "anthropic-claude-4.5-sonnet", "object": "model", "owned_by": "anthropic"},
    {"id": "anthropic-claude-opus-4.6", "object": "model", "owned_by": "anthropic"},
    {"id": "openai-gpt-5.1-codex-max", "object": "model", "owned_by": "openai"},
    {"id": "openai-gpt-5-mini", "object": "model", "owned_by": "openai"},
    {"id": "openai-gpt-5.2", "object": "model", "owned_by": "openai"},
    {"id": "openai-gpt-5.2-pro", "object": "model", "owned_by": "openai"},
    {"id": "openai-gpt-oss-120b", "object": "model", "owned_by": "digitalocean"},
]

# ==================================================================================================
# Model Cache Settings
# ==================================================================================================

# Upstream model list TTL in seconds (5 minutes)
MODEL_CACHE_TTL: int = int(os.getenv("MODEL_CACHE_TTL", "300"))

# ==================================================================================================
# Request Shaping Settings
# ==================================================================================================

# Output token bound applied to chat completions that carry neither
# max_tokens nor max_completion_tokens. The backend rejects requests without one.
DEFAULT_MAX_TOKENS: int = int(os.getenv("DEFAULT_MAX_TOKENS", "8192"))

# Transcript Normalization: rewrites client message arrays into the strict
# grammar (tool pairing, side alternation, no empty content).
# Disable only to debug client payloads against the raw backend.
# Default: true
TRANSCRIPT_NORMALIZATION_ENABLED: bool = _get_bool_env(
    "TRANSCRIPT_NORMALIZATION_ENABLED", "true"
)

# Field Stripping: removes OpenAI-only request fields for anthropic-* models.
# Default: true
FIELD_STRIPPING_ENABLED: bool = _get_bool_env("FIELD_STRIPPING_ENABLED", "true")

# ==================================================================================================
# Logging Settings
# ==================================================================================================

# Log level for the application
# Available levels: TRACE, DEBUG, INFO, WARNING, ERROR, CRITICAL
# Default: INFO (recommended for production)
# Set to DEBUG to see every normalization rewrite
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

# ==================================================================================================
# Application Version
# ==================================================================================================

APP_VERSION: str = "1.2"
APP_TITLE: str = "DO Proxy"
APP_DESCRIPTION: str = (
    "Local OpenAI-compatible proxy for Digital Ocean inference. "
    "Normalizes chat transcripts into the strict backend grammar."
)


def is_anthropic_model(model: object) -> bool:
    """Return True if the backend model id belongs to the strict anthropic family."""
    if not isinstance(model, str):
        return False
    return any(model.startswith(prefix) for prefix in ANTHROPIC_MODEL_PREFIXES)


def get_upstream_url(path: str, query: str = "") -> str:
    """Return the upstream URL for an inbound path and raw query string."""
    url = f"{DO_INFERENCE_URL}{path}"
    if query:
        url = f"{url}?{query}"
    return url
