# -*- coding: utf-8 -*-

# DO Proxy
# Copyright (C) 2025 DO Proxy contributors
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

"""
Tool pairing resolver.

Ensures every tool invocation in an assistant message is answered by a tool
message placed immediately after it, and that no tool message exists
anywhere else.

The strict backend enforces:
  1. Every invocation MUST be followed by its tool result, immediately and in
     invocation order.
  2. Every tool result MUST answer an invocation of the immediately preceding
     assistant message.

Clients break both rules constantly:
  - Results arrive after an unrelated user turn, or before the invocation
  - Results are lost when a tool run is interrupted or a context is truncated
  - Results reference ids that were never invoked (stale history, edited turns)

This module walks the transcript once and:
  - Diverts system messages to a separate front list
  - Drops invocations whose id is malformed
  - Re-emits each real result right after its invoking assistant message
  - Synthesizes a placeholder result for invocations with no result anywhere
  - Demotes results that no invocation will consume to plain user turns,
    at the position where they were found
"""

from collections import Counter
from typing import List, Optional, Tuple

from loguru import logger

from doproxy.normalizer.content import EMPTY_ASSISTANT_PLACEHOLDER
from doproxy.normalizer.report import NormalizationReport
from doproxy.normalizer.tool_ledger import LedgerEntry, ToolLedger
from doproxy.transcript import (
    ROLE_ASSISTANT,
    ROLE_SYSTEM,
    ROLE_TOOL,
    ROLE_USER,
    Message,
)

# Assistant text used when a turn carries invocations but no text of its own.
INVOCATION_ACKNOWLEDGEMENT = "I'll help with that."

# Content of the tool message synthesized for an invocation with no result.
MISSING_RESULT_PLACEHOLDER = (
    "(no output recorded: the tool was not executed or its result was lost)"
)


def make_placeholder_result(invocation_id: str) -> Message:
    """Create a synthetic tool message for an invocation with no recorded result."""
    return Message(
        role=ROLE_TOOL,
        content=MISSING_RESULT_PLACEHOLDER,
        result_ref=invocation_id,
    )


def make_orphan_message(invocation_id: Optional[str], content: str) -> Message:
    """
    Wrap an unpairable tool result into a plain user message.

    The result text is kept and tagged with the id it referenced, so the model
    still sees the output even though the backend would reject it as a tool turn.
    """
    if invocation_id:
        prefix = f"[Previous tool output for {invocation_id}]:"
    else:
        prefix = "[Previous tool output]:"
    return Message(role=ROLE_USER, content=f"{prefix}\n{content}")


def _count_claims(messages: List[Message]) -> Counter:
    """Number of pairable invocations per id across the whole transcript."""
    claims: Counter = Counter()
    for msg in messages:
        if msg.role == ROLE_ASSISTANT:
            claims.update(msg.invocation_ids())
    return claims


def _is_in_place(messages: List[Message], assistant_pos: int, entry: LedgerEntry) -> bool:
    """Check whether a result already sat in the tool run right after its assistant."""
    if entry.position <= assistant_pos:
        return False
    return all(
        messages[pos].role == ROLE_TOOL for pos in range(assistant_pos + 1, entry.position)
    )


def resolve_tool_pairing(
    messages: List[Message],
    report: Optional[NormalizationReport] = None,
) -> Tuple[List[Message], List[Message]]:
    """
    Pair every invocation with exactly one adjacent tool message.

    Args:
        messages: Transcript with canonical content (not modified)
        report: Optional report to record rewrite counters into

    Returns:
        Tuple of (system messages in original order, conversation messages)
    """
    if report is None:
        report = NormalizationReport()

    ledger = ToolLedger.from_messages(messages)
    surplus = ledger.surplus_positions(_count_claims(messages))

    systems: List[Message] = []
    conversation: List[Message] = []
    seen_non_system = False

    for position, msg in enumerate(messages):
        if msg.role == ROLE_SYSTEM:
            systems.append(msg)
            if seen_non_system:
                report.relocated_system += 1
            continue

        seen_non_system = True

        # --- Tool messages: re-emitted by their owning assistant, or demoted here ---
        if msg.role == ROLE_TOOL:
            if msg.result_ref and position not in surplus:
                continue
            conversation.append(make_orphan_message(msg.result_ref, msg.content))
            report.orphan_results += 1
            logger.warning(
                "[PairingResolver] Orphan tool result for id='{}' at index {} "
                "converted to user message",
                msg.result_ref,
                position,
            )
            continue

        if msg.role != ROLE_ASSISTANT:
            conversation.append(msg)
            continue

        # --- Assistant messages: drop malformed invocations, attach results ---
        invocations = [inv for inv in msg.invocations if inv.id]
        dropped = len(msg.invocations) - len(invocations)
        if dropped:
            report.dropped_invocations += dropped
            logger.info(
                "[PairingResolver] Dropped {} invocation(s) with malformed id "
                "from assistant message at index {}",
                dropped,
                position,
            )

        if not invocations:
            conversation.append(Message(role=ROLE_ASSISTANT, content=msg.content))
            continue

        content = msg.content
        if content == EMPTY_ASSISTANT_PLACEHOLDER:
            content = INVOCATION_ACKNOWLEDGEMENT
            report.content_rewrites += 1

        conversation.append(
            Message(role=ROLE_ASSISTANT, content=content, invocations=invocations)
        )

        for inv in invocations:
            entry = ledger.pop(inv.id)
            if entry is None:
                conversation.append(make_placeholder_result(inv.id))
                report.synthesized_results += 1
                logger.warning(
                    "[PairingResolver] Synthesized placeholder result for {} ({})",
                    inv.id,
                    inv.name,
                )
                continue

            if not _is_in_place(messages, position, entry):
                report.reordered_results += 1
                logger.debug(
                    "[PairingResolver] Moved result for {} from index {} to follow "
                    "its invocation at index {}",
                    inv.id,
                    entry.position,
                    position,
                )
            conversation.append(
                Message(role=ROLE_TOOL, content=entry.content, result_ref=inv.id)
            )

    return systems, conversation
