# -*- coding: utf-8 -*-

# DO Proxy
# Copyright (C) 2025 DO Proxy contributors
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

"""
Transcript normalization pipeline.

Runs all phases in the order that makes each one's guarantees hold for the next.
This is the single entry point called by the proxy routes.

Execution order matters:
  1. Content canonicalization - every message gets its role's canonical content
  2. Tool ledger + pairing resolver - results move next to their invocations,
     systems are diverted, orphans demoted
  3. Alternation enforcer - same-side runs merged or split
  4. Content re-sanitization - merged/synthesized content re-checked
  5. Invariant validator - defensive re-derivation of every rule
  6. System messages placed in front
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from loguru import logger

from doproxy.normalizer.alternation_enforcer import enforce_alternation
from doproxy.normalizer.content import canonicalize_content
from doproxy.normalizer.invariant_validator import validate_invariants
from doproxy.normalizer.pairing_resolver import resolve_tool_pairing
from doproxy.normalizer.report import NormalizationReport
from doproxy.transcript import (
    ROLE_ASSISTANT,
    ROLE_TOOL,
    ROLE_USER,
    Message,
    message_to_openai,
    messages_from_openai,
)

# Single user turn used when a transcript has no conversation at all.
EMPTY_TRANSCRIPT_TURN = "Hello."


@dataclass
class NormalizationResult:
    """
    Output of one normalization call.

    Attributes:
        messages: Normalized transcript (systems first)
        report: Diagnostic counters
    """

    messages: List[Message]
    report: NormalizationReport = field(default_factory=NormalizationReport)


def canonicalize_messages(
    messages: Sequence[Message],
    report: NormalizationReport,
) -> List[Message]:
    """
    Give every message the canonical content for its role.

    Returns new Message objects; the input messages are not modified.
    """
    result: List[Message] = []
    for msg in messages:
        content = canonicalize_content(msg.role, msg.content)
        if content != msg.content:
            report.content_rewrites += 1
        result.append(
            Message(
                role=msg.role,
                content=content,
                invocations=list(msg.invocations),
                result_ref=msg.result_ref,
            )
        )
    return result


def normalize_transcript(messages: Sequence[Message]) -> NormalizationResult:
    """
    Rewrite a transcript so it satisfies the strict backend grammar.

    Guarantees on the returned transcript:
      - no empty content anywhere
      - systems first, then a conversation that opens on the user side
      - user/assistant sides alternate, except tool runs after their invoker
      - every invocation is followed by exactly one tool result, in order
      - no tool result outside the run of its invoking assistant message

    Never raises for malformed input.

    Args:
        messages: Input transcript (not modified)

    Returns:
        NormalizationResult with the new transcript and diagnostic counters
    """
    report = NormalizationReport(input_messages=len(messages))

    canonical = canonicalize_messages(messages, report)

    systems, conversation = resolve_tool_pairing(canonical, report)

    conversation = enforce_alternation(conversation, report)

    rewrites_before = report.content_rewrites
    conversation = canonicalize_messages(conversation, report)
    if report.content_rewrites != rewrites_before:
        logger.debug(
            "[Pipeline] Re-sanitized {} message(s) after alternation",
            report.content_rewrites - rewrites_before,
        )

    conversation = validate_invariants(conversation, report)

    if not conversation:
        conversation = [Message(role=ROLE_USER, content=EMPTY_TRANSCRIPT_TURN)]
        report.synthetic_turns += 1
        logger.debug("[Pipeline] Transcript had no conversation; added a synthetic user turn")

    final = systems + conversation
    report.output_messages = len(final)

    if report.changed:
        log_report(report, final)

    return NormalizationResult(messages=final, report=report)


def log_report(report: NormalizationReport, messages: Sequence[Message]) -> None:
    """Log one summary line for a normalization call that rewrote the transcript."""
    invoking = sum(1 for msg in messages if msg.role == ROLE_ASSISTANT and msg.invocations)
    results = sum(1 for msg in messages if msg.role == ROLE_TOOL)
    logger.info(
        "[Pipeline] Normalised: {} -> {} msgs | {} tool_calls | {} tool_results | "
        "synthesized={}, orphans={}, dropped={}, merged={}, synthetic_turns={}, demoted={}",
        report.input_messages,
        report.output_messages,
        invoking,
        results,
        report.synthesized_results,
        report.orphan_results,
        report.dropped_invocations,
        report.merged_turns,
        report.synthetic_turns,
        report.demoted_results,
    )


def normalize_chat_messages(
    raw_messages: Any,
) -> Tuple[List[Dict[str, Any]], NormalizationReport]:
    """
    Normalize a raw chat-completions "messages" array.

    Entries that are not objects, or that carry a role the backend does not
    know, are skipped and counted.

    Args:
        raw_messages: Value of the request body's "messages" field

    Returns:
        Tuple of (normalized wire messages, report)
    """
    parsed = messages_from_openai(raw_messages)
    messages = [msg for msg in parsed if msg is not None]
    skipped = len(parsed) - len(messages)

    if skipped:
        logger.warning("[Pipeline] Skipped {} message(s) with unknown role or shape", skipped)

    result = normalize_transcript(messages)
    result.report.skipped_messages = skipped
    result.report.input_messages = len(parsed)

    return [message_to_openai(msg) for msg in result.messages], result.report


def normalize_request_messages(body: Dict[str, Any]) -> Optional[NormalizationReport]:
    """
    Normalize body["messages"] in place for a chat-completions request body.

    Returns:
        The report, or None when the body has no messages array to normalize
    """
    if not isinstance(body.get("messages"), list):
        return None

    normalized, report = normalize_chat_messages(body["messages"])
    body["messages"] = normalized
    return report
