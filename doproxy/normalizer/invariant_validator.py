# -*- coding: utf-8 -*-

# DO Proxy
# Copyright (C) 2025 DO Proxy contributors
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

"""
Final invariant validator.

Last pass over the normalized conversation. It re-derives the grammar rules
from the messages themselves instead of trusting earlier phases, and repairs
anything that does not hold:

  - A tool message must sit in the tool run right after an assistant message
    that invoked its id; otherwise it is demoted to a user message.
  - An invoking assistant message must be followed by exactly one tool message
    per invocation, in invocation order; missing results are synthesized.
  - Same-side adjacency introduced by demotion is cleaned up with the same
    merge/insert rule as the alternation enforcer.
  - No message may have empty content.

The validator never raises; every violation has a deterministic rewrite.
"""

from collections import deque
from typing import Deque, Dict, List, Optional

from loguru import logger

from doproxy.normalizer.alternation_enforcer import enforce_alternation
from doproxy.normalizer.content import canonicalize_content, has_meaningful_content
from doproxy.normalizer.pairing_resolver import (
    INVOCATION_ACKNOWLEDGEMENT,
    make_placeholder_result,
)
from doproxy.normalizer.report import NormalizationReport
from doproxy.transcript import ROLE_ASSISTANT, ROLE_TOOL, ROLE_USER, Message


def demote_tool_message(msg: Message) -> Message:
    """Turn a tool message that cannot stay a tool turn into a tagged user message."""
    if msg.result_ref:
        prefix = f"[Unpaired tool output for {msg.result_ref}]:"
    else:
        prefix = "[Unpaired tool output]:"
    return Message(role=ROLE_USER, content=f"{prefix}\n{msg.content}")


def _repair_tool_run(
    assistant: Message,
    run: List[Message],
    report: NormalizationReport,
) -> List[Message]:
    """
    Rebuild the tool run that follows an invoking assistant message.

    Tool messages are matched to invocations by id in invocation order.
    Unmatched invocations get a placeholder, unmatched tool messages are
    demoted and placed after the rebuilt run.
    """
    available: Dict[str, Deque[Message]] = {}
    for tool_msg in run:
        if tool_msg.result_ref:
            available.setdefault(tool_msg.result_ref, deque()).append(tool_msg)

    paired: List[Message] = []
    used_ids = set()
    for inv in assistant.invocations:
        queue = available.get(inv.id)
        if queue:
            tool_msg = queue.popleft()
            used_ids.add(id(tool_msg))
            paired.append(tool_msg)
        else:
            paired.append(make_placeholder_result(inv.id))
            report.synthesized_results += 1
            logger.warning(
                "[InvariantValidator] Invocation {} had no adjacent result; "
                "synthesized placeholder",
                inv.id,
            )

    leftovers = [tool_msg for tool_msg in run if id(tool_msg) not in used_ids]
    for tool_msg in leftovers:
        report.demoted_results += 1
        logger.warning(
            "[InvariantValidator] Demoted tool result for id='{}' that does not "
            "match its preceding assistant message",
            tool_msg.result_ref,
        )

    return paired + [demote_tool_message(tool_msg) for tool_msg in leftovers]


def _repair_pairing(messages: List[Message], report: NormalizationReport) -> List[Message]:
    """Walk the conversation and rebuild every assistant/tool-run group."""
    result: List[Message] = []
    i = 0

    while i < len(messages):
        msg = messages[i]

        if msg.role == ROLE_TOOL:
            # Any tool message reached here has no invoking assistant before its run.
            result.append(demote_tool_message(msg))
            report.demoted_results += 1
            logger.warning(
                "[InvariantValidator] Demoted stray tool result for id='{}' at index {}",
                msg.result_ref,
                i,
            )
            i += 1
            continue

        if msg.role == ROLE_ASSISTANT and msg.invocations:
            if not all(inv.id for inv in msg.invocations):
                valid = [inv for inv in msg.invocations if inv.id]
                report.dropped_invocations += len(msg.invocations) - len(valid)
                msg = Message(role=ROLE_ASSISTANT, content=msg.content, invocations=valid)

            j = i + 1
            while j < len(messages) and messages[j].role == ROLE_TOOL:
                j += 1
            run = messages[i + 1 : j]

            result.append(msg)
            if msg.invocations:
                result.extend(_repair_tool_run(msg, run, report))
            else:
                for tool_msg in run:
                    result.append(demote_tool_message(tool_msg))
                    report.demoted_results += 1
            i = j
            continue

        result.append(msg)
        i += 1

    return result


def _ensure_content(messages: List[Message], report: NormalizationReport) -> List[Message]:
    """Re-canonicalize any message whose content would be rejected as empty."""
    result: List[Message] = []
    for msg in messages:
        if has_meaningful_content(msg.content):
            result.append(msg)
            continue
        if msg.has_invocations:
            repaired = INVOCATION_ACKNOWLEDGEMENT
        else:
            repaired = canonicalize_content(msg.role, msg.content)
        report.content_rewrites += 1
        logger.warning(
            "[InvariantValidator] Filled empty {} content with placeholder",
            msg.role,
        )
        result.append(
            Message(
                role=msg.role,
                content=repaired,
                invocations=msg.invocations,
                result_ref=msg.result_ref,
            )
        )
    return result


def validate_invariants(
    messages: List[Message],
    report: Optional[NormalizationReport] = None,
) -> List[Message]:
    """
    Re-check and repair the conversation grammar.

    Args:
        messages: Conversation messages without system messages (not modified)
        report: Optional report to record rewrite counters into

    Returns:
        Conversation that satisfies pairing, alternation and content rules
    """
    if report is None:
        report = NormalizationReport()

    if not messages:
        return []

    repaired = _repair_pairing(messages, report)

    # Demotion can leave user turns next to user turns. On an already
    # alternating conversation this pass is a no-op.
    repaired = enforce_alternation(repaired, report)

    return _ensure_content(repaired, report)
