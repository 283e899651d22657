"""Bounding and scrubbing of feed content before it reaches durable storage.

Text is clipped to fixed ceilings, resources keep descriptive metadata plus
a short text excerpt, and binary media is replaced by a placeholder.
"""

from __future__ import annotations

import json
from collections.abc import Iterable
from typing import Any

from acpsessions.config.schema import PersistenceConfig
from acpsessions.types.content import (
    AudioBlock,
    ContentBlock,
    EmbeddedResource,
    ImageBlock,
    ResourceBlock,
    ResourceLinkBlock,
    TextBlock,
)

ELLIPSIS = "..."

IMAGE_PLACEHOLDER = "[image omitted]"
AUDIO_PLACEHOLDER = "[audio omitted]"

# Keys of a structured tool input worth keeping in history
RAW_INPUT_KEYS = (
    "command",
    "args",
    "path",
    "filePath",
    "filepath",
    "query",
    "search",
    "input",
    "prompt",
)


def truncate_text(text: str, limit: int) -> str:
    """Clip ``text`` to at most ``limit`` characters, marking the cut with '...'."""
    if len(text) <= limit:
        return text
    if limit <= len(ELLIPSIS):
        return text[: max(0, limit)]
    return text[: limit - len(ELLIPSIS)] + ELLIPSIS


def _sanitize_resource(block: ResourceBlock, limit: int) -> ResourceBlock:
    res = block.resource
    uri = res.uri or block.uri
    name = res.name or block.name
    title = res.title or block.title
    description = res.description or block.description
    mime_type = res.mime_type or block.mime_type
    size = res.size or block.size
    text_value = res.text or block.text
    text = truncate_text(str(text_value), limit) if text_value else None
    return ResourceBlock(
        uri=uri,
        name=name,
        title=title,
        description=description,
        mime_type=mime_type,
        size=size,
        resource=EmbeddedResource(
            uri=uri,
            name=name,
            title=title,
            description=description,
            mime_type=mime_type,
            size=size,
            text=text,
        ),
    )


def _sanitize_link(block: ResourceLinkBlock) -> ResourceLinkBlock:
    return ResourceLinkBlock(
        uri=block.uri,
        name=block.name,
        title=block.title,
        description=block.description,
        mime_type=block.mime_type,
        size=block.size,
    )


def sanitize_blocks(
    blocks: Iterable[ContentBlock], config: PersistenceConfig | None = None
) -> list[ContentBlock]:
    """Storage-safe copies of ``blocks``, at most ``config.max_blocks`` of them.

    Empty text blocks are dropped and blobs never survive.
    """
    config = config or PersistenceConfig()
    sanitized: list[ContentBlock] = []
    for block in blocks:
        match block:
            case TextBlock():
                text = truncate_text(block.text, config.max_text_chars) if block.text else ""
                if text:
                    sanitized.append(TextBlock(text=text))
            case ResourceBlock():
                sanitized.append(_sanitize_resource(block, config.max_resource_chars))
            case ResourceLinkBlock():
                sanitized.append(_sanitize_link(block))
            case ImageBlock():
                sanitized.append(TextBlock(text=IMAGE_PLACEHOLDER))
            case AudioBlock():
                sanitized.append(TextBlock(text=AUDIO_PLACEHOLDER))
    return sanitized[: config.max_blocks]


def sanitize_raw_input(raw_input: str | None, config: PersistenceConfig | None = None) -> str | None:
    """Bound tool input text; structured inputs keep only the descriptive keys."""
    if not raw_input:
        return None
    config = config or PersistenceConfig()
    parsed = _parse_json_object(raw_input)
    if parsed is not None:
        subset = {key: parsed[key] for key in RAW_INPUT_KEYS if key in parsed}
        return truncate_text(json.dumps(subset, indent=2), config.max_tool_input_chars)
    return truncate_text(raw_input, config.max_tool_input_chars)


def _parse_json_object(value: str) -> dict[str, Any] | None:
    trimmed = value.strip()
    if not trimmed.startswith("{"):
        return None
    try:
        parsed = json.loads(trimmed)
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None


def _resource_label(block: ResourceBlock | ResourceLinkBlock) -> str:
    label = block.title or block.name
    if not label and isinstance(block, ResourceBlock):
        label = block.resource.title or block.resource.name
    if not label:
        label = block.uri
    if not label and isinstance(block, ResourceBlock):
        label = block.resource.uri
    return label or "resource"


def build_persisted_content(
    blocks: Iterable[ContentBlock], config: PersistenceConfig | None = None
) -> str:
    """Plain-text rendering of sanitized blocks stored alongside the structured item.

    Falls back to an ``[attachment] <label>`` line when no block carries text.
    """
    config = config or PersistenceConfig()
    blocks = list(blocks)
    parts: list[str] = []
    for block in blocks:
        if isinstance(block, TextBlock) and block.text:
            parts.append(block.text)
        elif isinstance(block, ResourceBlock) and block.resource.text:
            parts.append(block.resource.text)
    text = "\n\n".join(parts).strip()
    if text:
        return truncate_text(text, config.max_message_chars)

    for block in blocks:
        if isinstance(block, (ResourceBlock, ResourceLinkBlock)):
            return truncate_text(f"[attachment] {_resource_label(block)}", config.max_message_chars)
    return ""
