# -*- coding: utf-8 -*-

# DO Proxy
# Copyright (C) 2025 DO Proxy contributors
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

"""
Transcript normalization engine for DO Proxy.

Clients speak a loose chat-completions dialect: tool results anywhere in the
array, empty assistant text next to tool calls, block content on any side,
consecutive turns from the same party. The backend enforces a strict grammar
and answers any violation with HTTP 400. This package rewrites the former
into the latter.

Architecture:
    Each phase is a pure function over a list of Message objects that returns
    a new list. The pipeline orchestrator runs them in a fixed order before
    the request body is forwarded.

Phase execution order:
    1. Content canonicalizer   - per-role canonical content, no empty values
    2. Tool ledger             - index of results by invocation id
    3. Pairing resolver        - results placed right after their invocations
    4. Alternation enforcer    - merge or split same-side runs
    5. Invariant validator     - defensive final re-check and repair
"""

from doproxy.normalizer.pipeline import (
    NormalizationResult,
    normalize_chat_messages,
    normalize_request_messages,
    normalize_transcript,
)
from doproxy.normalizer.report import NormalizationReport

__all__ = [
    "NormalizationReport",
    "NormalizationResult",
    "normalize_chat_messages",
    "normalize_request_messages",
    "normalize_transcript",
]
