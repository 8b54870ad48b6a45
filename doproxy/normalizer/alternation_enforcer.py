# -*- coding: utf-8 -*-

# DO Proxy
# Copyright (C) 2025 DO Proxy contributors
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

"""
Alternation enforcer.

Ensures the conversation (system messages excluded) alternates between the
user side (user, tool) and the assistant side (assistant), as the strict
backend requires:
  1. The conversation must start on the user side
  2. Two adjacent turns may share a side only when both are tool results, or
     when a tool result follows the assistant message that invoked it

Same-side runs are repaired by merging plain text turns, or, when a merge
would blur a block-content or invocation boundary, by inserting a minimal
synthetic turn of the other side.
"""

from dataclasses import replace
from typing import List, Optional

from loguru import logger

from doproxy.normalizer.report import NormalizationReport
from doproxy.transcript import ROLE_ASSISTANT, ROLE_TOOL, ROLE_USER, Message

# Minimal synthetic turns used to break up same-side runs.
SYNTHETIC_ASSISTANT_TURN = "Understood."
SYNTHETIC_USER_TURN = "Continue."
SYNTHETIC_OPENING_TURN = "Begin."

MERGE_SEPARATOR = "\n\n"


def is_legal_same_side(prev: Message, current: Message) -> bool:
    """The two permitted same-side adjacencies: tool after tool, tool after its invoker."""
    if current.role != ROLE_TOOL:
        return False
    return prev.role == ROLE_TOOL or prev.has_invocations


def can_merge(prev: Message, current: Message) -> bool:
    """
    Check whether two adjacent same-side turns can be folded into one.

    Only plain text turns of the same role merge. Block content and
    invocation-bearing assistant turns are never merged across.
    """
    if prev.role != current.role:
        return False
    if not isinstance(prev.content, str) or not isinstance(current.content, str):
        return False
    if prev.role == ROLE_USER:
        return True
    if prev.role == ROLE_ASSISTANT:
        return not prev.invocations and not current.invocations
    return False


def _synthetic_turn_after(prev: Message) -> Message:
    """Minimal turn of the side opposite to prev."""
    if prev.is_user_side:
        return Message(role=ROLE_ASSISTANT, content=SYNTHETIC_ASSISTANT_TURN)
    return Message(role=ROLE_USER, content=SYNTHETIC_USER_TURN)


def enforce_alternation(
    messages: List[Message],
    report: Optional[NormalizationReport] = None,
) -> List[Message]:
    """
    Repair side alternation in a single left-to-right pass.

    Fixes applied:
      - Merges adjacent plain-text turns of the same role
      - Inserts a synthetic opposite-side turn where merging is not allowed
      - Prepends a synthetic user turn if the conversation opens on the assistant side

    Args:
        messages: Conversation messages without system messages (not modified)
        report: Optional report to record rewrite counters into

    Returns:
        New list satisfying the alternation rules
    """
    if report is None:
        report = NormalizationReport()

    if not messages:
        return []

    merged_count = 0
    synthetic_count = 0
    result: List[Message] = []

    for index, current in enumerate(messages):
        if not result:
            result.append(current)
            continue

        prev = result[-1]

        if is_legal_same_side(prev, current):
            result.append(current)
            continue

        if prev.is_user_side == current.is_user_side:
            if can_merge(prev, current):
                result[-1] = replace(
                    prev, content=f"{prev.content}{MERGE_SEPARATOR}{current.content}"
                )
                merged_count += 1
                logger.debug(
                    "[AlternationEnforcer] Merged consecutive {} messages at index {}",
                    current.role,
                    index,
                )
                continue

            filler = _synthetic_turn_after(prev)
            result.append(filler)
            synthetic_count += 1
            logger.debug(
                "[AlternationEnforcer] Inserted synthetic {} turn before index {} "
                "({} after {})",
                filler.role,
                index,
                current.role,
                prev.role,
            )

        result.append(current)

    if result[0].is_assistant_side:
        result.insert(0, Message(role=ROLE_USER, content=SYNTHETIC_OPENING_TURN))
        synthetic_count += 1
        logger.debug(
            "[AlternationEnforcer] Prepended synthetic user message; "
            "conversation started with role='{}'",
            result[1].role,
        )

    report.merged_turns += merged_count
    report.synthetic_turns += synthetic_count

    if merged_count > 0 or synthetic_count > 0:
        logger.info(
            "[AlternationEnforcer] Completed: merged={}, synthetic_turns={}",
            merged_count,
            synthetic_count,
        )

    return result
