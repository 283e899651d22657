"""Streaming-merge of inbound message updates into the feed.

The feed is append-only. The only in-place mutation is growing the last
message while it is still streaming, and finalizing messages when the prompt
ends.
"""

from __future__ import annotations

import uuid
from collections.abc import Sequence
from dataclasses import dataclass, replace

from acpsessions.feed.items import (
    FeedItem,
    MessageItem,
    MessageKind,
    PlanItem,
    Role,
)
from acpsessions.types.content import ContentBlock, TextBlock
from acpsessions.types.events import SessionUpdateKind

DEFAULT_STOP_REASON = "end_turn"

Feed = tuple[FeedItem, ...]


def new_feed_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


@dataclass(frozen=True, slots=True)
class AppendResult:
    feed: Feed
    item_id: str
    created: bool


def role_for_update(kind: SessionUpdateKind) -> tuple[Role, MessageKind | None]:
    """Map a message update kind to (role, sub-kind)."""
    if kind.is_thought:
        return Role.SYSTEM, MessageKind.THOUGHT
    if kind in (SessionUpdateKind.AGENT_MESSAGE_CHUNK, SessionUpdateKind.AGENT_MESSAGE):
        return Role.ASSISTANT, None
    return Role.USER, None


def merge_blocks(
    base: Sequence[ContentBlock], incoming: Sequence[ContentBlock]
) -> tuple[ContentBlock, ...]:
    """Append blocks, concatenating adjacent text."""
    merged = list(base)
    for block in incoming:
        last = merged[-1] if merged else None
        if isinstance(block, TextBlock) and isinstance(last, TextBlock):
            merged[-1] = last.model_copy(update={"text": last.text + block.text})
        else:
            merged.append(block)
    return tuple(merged)


def append_message(
    feed: Feed,
    role: Role,
    blocks: Sequence[ContentBlock],
    *,
    streaming: bool,
    message_kind: MessageKind | None = None,
    item_id: str | None = None,
) -> AppendResult:
    """Merge into the trailing streaming message or append a new one.

    Blocks merge into the last feed item only when it is a message with the
    same role and sub-kind that is still streaming.
    """
    last = feed[-1] if feed else None
    if (
        isinstance(last, MessageItem)
        and last.streaming
        and last.role is role
        and last.message_kind is message_kind
    ):
        merged = replace(last, blocks=merge_blocks(last.blocks, blocks))
        return AppendResult(feed=(*feed[:-1], merged), item_id=last.id, created=False)

    item = MessageItem(
        id=item_id or new_feed_id("msg"),
        role=role,
        blocks=tuple(blocks),
        streaming=streaming,
        message_kind=message_kind,
    )
    return AppendResult(feed=(*feed, item), item_id=item.id, created=True)


def finalize_messages(
    feed: Feed,
    *,
    last_assistant_id: str | None = None,
    duration_ms: int | None = None,
) -> tuple[Feed, list[str]]:
    """Mark every streaming message final and stamp the run duration.

    Returns:
        (feed, ids of messages that were finalized)
    """
    finalized: list[str] = []
    items: list[FeedItem] = []
    for item in feed:
        if isinstance(item, MessageItem):
            if item.streaming:
                item = replace(item, streaming=False)
                finalized.append(item.id)
            if duration_ms is not None and item.id == last_assistant_id:
                item = replace(item, run_duration_ms=duration_ms)
        items.append(item)
    return tuple(items), finalized


def stop_reason_message(stop_reason: str | None, item_id: str | None = None) -> MessageItem | None:
    """System message surfacing a non-default stop reason, if any."""
    reason = (stop_reason or "").strip()
    if not reason or reason == DEFAULT_STOP_REASON:
        return None
    return MessageItem(
        id=item_id or new_feed_id("stop"),
        role=Role.SYSTEM,
        blocks=(TextBlock(text=f"Stopped: {reason}"),),
        streaming=False,
        message_kind=MessageKind.SYSTEM,
    )


def ensure_plan_item(feed: Feed, item_id: str | None = None) -> Feed:
    """Append the plan marker unless the feed already has one."""
    if any(isinstance(item, PlanItem) for item in feed):
        return feed
    return (*feed, PlanItem(id=item_id or new_feed_id("plan")))


def without_items(feed: Feed, ids: set[str]) -> Feed:
    return tuple(item for item in feed if item.id not in ids)
