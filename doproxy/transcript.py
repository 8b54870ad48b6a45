# -*- coding: utf-8 -*-

# DO Proxy
# Copyright (C) 2025 DO Proxy contributors
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

"""
Transcript data model and OpenAI wire conversion.

The normalization engine works on Message objects rather than raw request
dictionaries. This module defines that representation and the two
boundary conversions:

- message_from_openai(): raw chat-completions message dict -> Message
- message_to_openai(): Message -> dict ready for the upstream request body

Content is kept in wire shape: either a string or a list of content block
dicts ({"type": "text", ...}, {"type": "image_url", ...}).
"""

import json
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from loguru import logger

# ==================================================================================================
# Roles
# ==================================================================================================

ROLE_SYSTEM = "system"
ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"
ROLE_TOOL = "tool"

KNOWN_ROLES = (ROLE_SYSTEM, ROLE_USER, ROLE_ASSISTANT, ROLE_TOOL)

# Client roles that are folded into a known role on input.
ROLE_ALIASES: Dict[str, str] = {
    "developer": ROLE_SYSTEM,
}

# Name used when a client sends a tool call without any function name.
UNKNOWN_TOOL_NAME = "unknown_tool"


# ==================================================================================================
# Data Classes
# ==================================================================================================


@dataclass
class ToolInvocation:
    """
    A request, attached to an assistant turn, to run a named tool.

    Attributes:
        id: Invocation id assigned by the client (or synthesized when missing).
            None marks a malformed id that cannot be paired.
        name: Tool name
        arguments: JSON-encoded arguments string
    """

    id: Optional[str]
    name: str
    arguments: str = "{}"


@dataclass
class Message:
    """
    One conversational turn.

    Attributes:
        role: system, user, assistant or tool
        content: String or list of content block dicts
        invocations: Tool invocations (assistant messages only)
        result_ref: Invocation id this message answers (tool messages only).
                    None on a tool message means the client sent no usable id.
    """

    role: str
    content: Any = ""
    invocations: List[ToolInvocation] = field(default_factory=list)
    result_ref: Optional[str] = None

    @property
    def is_user_side(self) -> bool:
        """User and tool turns belong to the user side of the alternation grammar."""
        return self.role in (ROLE_USER, ROLE_TOOL)

    @property
    def is_assistant_side(self) -> bool:
        return self.role == ROLE_ASSISTANT

    @property
    def has_invocations(self) -> bool:
        return self.role == ROLE_ASSISTANT and bool(self.invocations)

    def invocation_ids(self) -> List[str]:
        """Ids of this message's invocations, in order, skipping malformed ones."""
        return [inv.id for inv in self.invocations if inv.id]


# ==================================================================================================
# Tool Invocation Normalization
# ==================================================================================================


def generate_invocation_id() -> str:
    """Return a fresh synthetic invocation id in OpenAI call_ style."""
    return f"call_{uuid.uuid4().hex[:24]}"


def _normalize_invocation_id(raw_id: Any) -> Optional[str]:
    """
    Resolve the id of one client tool call.

    Missing or empty ids get a synthetic id. Ids that are present but not a
    non-blank string are malformed and resolve to None.
    """
    if raw_id is None or raw_id == "":
        return generate_invocation_id()
    if isinstance(raw_id, str) and raw_id.strip():
        return raw_id
    return None


def _normalize_arguments(raw_args: Any) -> str:
    """
    Coerce tool call arguments into a valid JSON string.

    Objects are serialized, blank values become "{}", and strings that do
    not parse as JSON are wrapped as {"raw": <string>}.
    """
    if isinstance(raw_args, (dict, list)):
        try:
            return json.dumps(raw_args, ensure_ascii=False)
        except (TypeError, ValueError):
            return "{}"

    if not isinstance(raw_args, str) or not raw_args.strip():
        return "{}"

    try:
        json.loads(raw_args)
    except ValueError:
        return json.dumps({"raw": raw_args}, ensure_ascii=False)
    return raw_args


def normalize_tool_invocations(tool_calls: Any) -> List[ToolInvocation]:
    """
    Convert a client tool_calls array into ToolInvocation objects.

    Accepts the OpenAI shape ({"id", "function": {"name", "arguments"}}) and a
    flat shape ({"id", "name", "arguments"}). Non-dict entries are dropped.

    Args:
        tool_calls: Raw tool_calls value from the client message

    Returns:
        List of ToolInvocation (possibly with id=None for malformed ids)

    Example:
        >>> invs = normalize_tool_invocations([{"id": "t1", "function": {"name": "Read"}}])
        >>> (invs[0].id, invs[0].name, invs[0].arguments)
        ('t1', 'Read', '{}')
    """
    if not isinstance(tool_calls, list):
        return []

    invocations: List[ToolInvocation] = []
    for call in tool_calls:
        if not isinstance(call, dict):
            logger.debug("Dropping non-object tool call entry: {!r}", call)
            continue

        function = call.get("function")
        if not isinstance(function, dict):
            function = {}

        name = function.get("name") or call.get("name") or UNKNOWN_TOOL_NAME
        if not isinstance(name, str):
            name = str(name)

        raw_args = function.get("arguments")
        if raw_args is None:
            raw_args = call.get("arguments")

        invocations.append(
            ToolInvocation(
                id=_normalize_invocation_id(call.get("id")),
                name=name,
                arguments=_normalize_arguments(raw_args),
            )
        )

    return invocations


# ==================================================================================================
# Wire Conversion
# ==================================================================================================


def message_from_openai(raw: Any) -> Optional[Message]:
    """
    Build a Message from one raw chat-completions message.

    Content is carried over untouched; canonicalization happens later in the
    normalization pipeline. Returns None for entries that are not objects or
    that carry a role the backend has no counterpart for.

    Args:
        raw: One element of the request "messages" array

    Returns:
        Message or None if the entry must be skipped
    """
    if not isinstance(raw, dict):
        return None

    role = raw.get("role")
    role = ROLE_ALIASES.get(role, role)
    if role not in KNOWN_ROLES:
        return None

    message = Message(role=role, content=raw.get("content"))

    if role == ROLE_ASSISTANT:
        message.invocations = normalize_tool_invocations(raw.get("tool_calls"))
    elif role == ROLE_TOOL:
        ref = raw.get("tool_call_id")
        message.result_ref = ref if isinstance(ref, str) and ref.strip() else None

    return message


def invocation_to_openai(invocation: ToolInvocation) -> Dict[str, Any]:
    """Serialize a ToolInvocation into the OpenAI tool_calls entry shape."""
    return {
        "id": invocation.id,
        "type": "function",
        "function": {
            "name": invocation.name,
            "arguments": invocation.arguments,
        },
    }


def message_to_openai(message: Message) -> Dict[str, Any]:
    """
    Serialize a Message for the upstream request body.

    Args:
        message: Normalized message

    Returns:
        Dict with role and content, plus tool_calls or tool_call_id where relevant
    """
    result: Dict[str, Any] = {"role": message.role, "content": message.content}

    if message.has_invocations:
        result["tool_calls"] = [invocation_to_openai(inv) for inv in message.invocations]
    elif message.role == ROLE_TOOL:
        result["tool_call_id"] = message.result_ref

    return result


def messages_from_openai(raw_messages: Any) -> List[Optional[Message]]:
    """
    Convert a raw messages array, keeping None placeholders for skipped entries.

    The placeholders let callers count what was skipped without a second scan.
    """
    if not isinstance(raw_messages, list):
        return []
    return [message_from_openai(raw) for raw in raw_messages]
