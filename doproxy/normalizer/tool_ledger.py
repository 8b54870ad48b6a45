# -*- coding: utf-8 -*-

# DO Proxy
# Copyright (C) 2025 DO Proxy contributors
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

"""
Tool ledger.

Indexes every tool result in a transcript by the invocation id it answers,
regardless of where the result sits. Clients routinely send results out of
order (after an unrelated user turn, after a later assistant turn) or twice;
the ledger lets the pairing resolver pull the right result when it reaches
the invoking assistant message instead of trusting input order.

Results for one id are queued in input order and consumed first-in-first-out.
The ledger is built per normalization call and discarded afterwards.
"""

from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, Iterable, Mapping, Optional, Set

from doproxy.transcript import ROLE_TOOL, Message


@dataclass(frozen=True)
class LedgerEntry:
    """
    One indexed tool result.

    Attributes:
        invocation_id: Id of the invocation this result answers
        content: Canonical result text
        position: Index of the tool message in the transcript it was read from
    """

    invocation_id: str
    content: str
    position: int


class ToolLedger:
    """
    Queue of tool results per invocation id.

    Example:
        >>> ledger = ToolLedger.from_messages(messages)
        >>> entry = ledger.pop("call_1")
        >>> entry.content if entry else None
        'file contents'
    """

    def __init__(self) -> None:
        self._queues: Dict[str, Deque[LedgerEntry]] = {}

    @classmethod
    def from_messages(cls, messages: Iterable[Message]) -> "ToolLedger":
        """
        Index all tool messages with a usable result reference.

        Tool messages without a reference are not indexed; the caller
        handles them directly as orphans.

        Args:
            messages: Transcript with canonical tool content

        Returns:
            Populated ToolLedger
        """
        ledger = cls()
        for position, msg in enumerate(messages):
            if msg.role == ROLE_TOOL and msg.result_ref:
                ledger.record(msg.result_ref, msg.content, position)
        return ledger

    def record(self, invocation_id: str, content: str, position: int) -> None:
        """Queue a result for an invocation id."""
        self._queues.setdefault(invocation_id, deque()).append(
            LedgerEntry(invocation_id=invocation_id, content=content, position=position)
        )

    def pop(self, invocation_id: str) -> Optional[LedgerEntry]:
        """
        Consume the oldest queued result for an invocation id.

        Returns:
            LedgerEntry or None when no result is left for that id
        """
        queue = self._queues.get(invocation_id)
        if not queue:
            return None
        entry = queue.popleft()
        if not queue:
            del self._queues[invocation_id]
        return entry

    def surplus_positions(self, claims: Mapping[str, int]) -> Set[int]:
        """
        Positions of results that no invocation will ever consume.

        With FIFO consumption, the first claims[id] results for an id are
        paired and everything after them is surplus. An id with no claims
        at all (never invoked) is entirely surplus.

        Args:
            claims: Number of pairable invocations per id across the transcript

        Returns:
            Set of transcript positions holding orphan results
        """
        surplus: Set[int] = set()
        for invocation_id, queue in self._queues.items():
            claimed = claims.get(invocation_id, 0)
            for index, entry in enumerate(queue):
                if index >= claimed:
                    surplus.add(entry.position)
        return surplus

    def __contains__(self, invocation_id: object) -> bool:
        return invocation_id in self._queues

    def __len__(self) -> int:
        return sum(len(queue) for queue in self._queues.values())
