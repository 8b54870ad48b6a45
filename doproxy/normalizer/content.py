# -*- coding: utf-8 -*-

# DO Proxy
# Copyright (C) 2025 DO Proxy contributors
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

"""
Content canonicalizer.

Reduces the many content shapes clients send (plain strings, block arrays,
multi-modal blocks, stray objects, None) to the one shape the backend accepts
for each role:

  - user:      non-empty string, or [text block, image blocks...] when images survive
  - assistant: non-empty string (block content is not accepted on this side)
  - tool:      non-empty string (non-strings are JSON-serialized)
  - system:    non-empty string

Every function here is pure and total: any input yields a valid value.
"""

import json
import re
from typing import Any, Dict, List, Optional, Union

from loguru import logger

from doproxy.transcript import (
    ROLE_ASSISTANT,
    ROLE_SYSTEM,
    ROLE_TOOL,
    ROLE_USER,
)

# Placeholders for content that collapses to nothing.
EMPTY_USER_PLACEHOLDER = "."
IMAGE_ONLY_USER_TEXT = "See attached image:"
EMPTY_ASSISTANT_PLACEHOLDER = "..."
EMPTY_SYSTEM_PLACEHOLDER = "."
EMPTY_TOOL_OUTPUT = "(empty output)"
TOOL_SERIALIZATION_ERROR = "(serialization error)"

# JSON serializations of tool results that carry no output.
EMPTY_SERIALIZATIONS = frozenset({"{}", "[]", "null", '""'})

# Block types that only make sense inside tool exchanges.
_TOOL_BLOCK_TYPES = ("tool_result", "tool_use")

# data:image/<subtype>;base64,<payload>
_DATA_IMAGE_URI_RE = re.compile(
    r"^data:image/[a-zA-Z0-9.+-]+;base64,[A-Za-z0-9+/=\s]+$", re.DOTALL
)

UserContent = Union[str, List[Dict[str, Any]]]


# ==================================================================================================
# Text Helpers
# ==================================================================================================


def is_blank(value: Any) -> bool:
    """Return True for anything that is not a string with visible characters."""
    return not isinstance(value, str) or not value.strip()


def collect_text_parts(content: Any) -> List[str]:
    """
    Collect the non-blank text fragments of a content value.

    Strings count as a single fragment. In block arrays, bare strings and
    {"type": "text"} blocks contribute; every other block type is ignored.

    Example:
        >>> collect_text_parts([{"type": "text", "text": ""}, {"type": "text", "text": "A"}])
        ['A']
    """
    if isinstance(content, str):
        return [content] if content.strip() else []

    if isinstance(content, dict):
        content = [content]

    if not isinstance(content, list):
        return []

    parts: List[str] = []
    for block in content:
        if isinstance(block, str):
            if block.strip():
                parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            text = block.get("text")
            if not is_blank(text):
                parts.append(text)
    return parts


def collapse_to_text(content: Any) -> str:
    """
    Collapse any content value into a single string, possibly empty.

    Text fragments of block arrays are joined with newlines. Scalars other than
    strings are stringified; None collapses to "".
    """
    if content is None:
        return ""
    if isinstance(content, str):
        return content if content.strip() else ""
    if isinstance(content, (list, dict)):
        return "\n".join(collect_text_parts(content)).strip()
    return str(content).strip()


# ==================================================================================================
# Image Helpers
# ==================================================================================================


def is_acceptable_image_url(url: Any) -> bool:
    """
    Check whether an image reference is something the backend can fetch or decode.

    Accepted: http(s):// URLs and well-formed data:image/<subtype>;base64,<payload> URIs.
    """
    if not isinstance(url, str) or not url:
        return False
    if url.startswith("http://") or url.startswith("https://"):
        return True
    return bool(_DATA_IMAGE_URI_RE.match(url))


def _image_url_from_block(block: Dict[str, Any]) -> Optional[str]:
    """
    Resolve the URL of an image block in either client dialect.

    OpenAI format:
        {"type": "image_url", "image_url": {"url": "..."}} or {"image_url": "..."}
    Anthropic format:
        {"type": "image", "source": {"type": "base64", "media_type": "...", "data": "..."}}
        {"type": "image", "source": {"type": "url", "url": "..."}}
    """
    block_type = block.get("type")

    if block_type == "image_url":
        image_url = block.get("image_url")
        if isinstance(image_url, str):
            return image_url
        if isinstance(image_url, dict):
            url = image_url.get("url")
            return url if isinstance(url, str) else None
        return None

    if block_type == "image":
        source = block.get("source")
        if not isinstance(source, dict):
            return None
        if source.get("type") == "base64":
            data = source.get("data")
            if is_blank(data):
                return None
            media_type = source.get("media_type") or "image/jpeg"
            return f"data:{media_type};base64,{data}"
        if source.get("type") == "url":
            url = source.get("url")
            return url if isinstance(url, str) else None

    return None


def to_image_block(url: str) -> Dict[str, Any]:
    """Build the canonical image block shape."""
    return {"type": "image_url", "image_url": {"url": url}}


# ==================================================================================================
# Per-Role Canonicalizers
# ==================================================================================================


def canonicalize_user_content(content: Any) -> UserContent:
    """
    Canonicalize user content.

    Tool blocks are stripped, images that do not resolve to an acceptable URL
    are dropped silently. When at least one image survives the result is a
    block list that starts with a text block; otherwise it collapses to a
    plain string.

    Args:
        content: Raw content in any shape

    Returns:
        Non-empty string, or block list with a leading non-empty text block

    Example:
        >>> canonicalize_user_content("  ")
        '.'
        >>> canonicalize_user_content([{"type": "image_url", "image_url": {"url": "https://x/y.png"}}])
        [{'type': 'text', 'text': 'See attached image:'}, {'type': 'image_url', 'image_url': {'url': 'https://x/y.png'}}]
    """
    if isinstance(content, str):
        return content if content.strip() else EMPTY_USER_PLACEHOLDER

    if isinstance(content, dict):
        content = [content]

    if not isinstance(content, list):
        text = collapse_to_text(content)
        return text or EMPTY_USER_PLACEHOLDER

    text_parts: List[str] = []
    images: List[Dict[str, Any]] = []
    dropped_images = 0

    for block in content:
        if isinstance(block, str):
            if block.strip():
                text_parts.append(block.strip())
            continue

        if not isinstance(block, dict):
            continue

        block_type = block.get("type")

        if block_type == "text":
            text = block.get("text")
            if not is_blank(text):
                text_parts.append(text.strip())
        elif block_type in ("image_url", "image"):
            url = _image_url_from_block(block)
            if is_acceptable_image_url(url):
                images.append(to_image_block(url))
            else:
                dropped_images += 1
        elif block_type in _TOOL_BLOCK_TYPES:
            continue

    if dropped_images:
        logger.debug("Dropped {} unusable image block(s) from user content", dropped_images)

    text = "\n".join(text_parts).strip()

    if not images:
        return text or EMPTY_USER_PLACEHOLDER

    return [{"type": "text", "text": text or IMAGE_ONLY_USER_TEXT}] + images


def canonicalize_assistant_content(content: Any) -> str:
    """
    Canonicalize assistant content into a single non-empty string.

    Text blocks are joined with newlines, everything else is ignored.

    Example:
        >>> canonicalize_assistant_content([{"type": "text", "text": ""}, {"type": "text", "text": "A"}])
        'A'
    """
    return collapse_to_text(content) or EMPTY_ASSISTANT_PLACEHOLDER


def canonicalize_tool_content(content: Any) -> str:
    """
    Canonicalize tool result content into a non-empty string.

    Non-string values are JSON-serialized. A serialization failure, or a
    serialization that carries nothing ("{}", "[]", "null", '""'), yields a
    placeholder. Numbers and booleans are kept as their JSON text.

    Example:
        >>> canonicalize_tool_content({})
        '(empty output)'
        >>> canonicalize_tool_content({"ok": True})
        '{"ok": true}'
    """
    if isinstance(content, str):
        return content if content.strip() else EMPTY_TOOL_OUTPUT

    if content is None:
        return EMPTY_TOOL_OUTPUT

    try:
        serialized = json.dumps(content, ensure_ascii=False)
    except (TypeError, ValueError) as e:
        logger.debug("Tool content is not JSON-serializable: {}", e)
        return TOOL_SERIALIZATION_ERROR

    if serialized in EMPTY_SERIALIZATIONS:
        return EMPTY_TOOL_OUTPUT

    return serialized


def canonicalize_system_content(content: Any) -> str:
    """Canonicalize system content into a non-empty string."""
    if isinstance(content, str):
        return content if content.strip() else EMPTY_SYSTEM_PLACEHOLDER

    text = collapse_to_text(content)
    if not text and isinstance(content, (list, dict)):
        # No text blocks at all; keep the structure visible rather than dropping it.
        try:
            text = json.dumps(content, ensure_ascii=False) if content else ""
        except (TypeError, ValueError):
            text = ""
    return text or EMPTY_SYSTEM_PLACEHOLDER


def canonicalize_content(role: str, content: Any) -> Any:
    """
    Dispatch to the canonicalizer for a role.

    Unknown roles are treated like user content, the most permissive shape.
    """
    if role == ROLE_ASSISTANT:
        return canonicalize_assistant_content(content)
    if role == ROLE_TOOL:
        return canonicalize_tool_content(content)
    if role == ROLE_SYSTEM:
        return canonicalize_system_content(content)
    if role != ROLE_USER:
        logger.debug("Canonicalizing content of unexpected role '{}' as user content", role)
    return canonicalize_user_content(content)


def has_meaningful_content(content: Any) -> bool:
    """
    Check the no-empty-content rule.

    A string must have visible characters; a block list must contain at least
    one non-empty text block.
    """
    if isinstance(content, str):
        return bool(content.strip())
    if isinstance(content, list):
        return any(
            isinstance(block, dict)
            and block.get("type") == "text"
            and not is_blank(block.get("text"))
            for block in content
        )
    return False
