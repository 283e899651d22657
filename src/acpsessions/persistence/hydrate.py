"""Rebuild in-memory feed state from stored envelopes.

Rows are parsed, unreadable ones are dropped, and the rest are replayed in
sequence order so the hydrated feed matches the order it had while live.
"""

from __future__ import annotations

import json
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from functools import cmp_to_key
from typing import Any

from acpsessions.errors import ProtocolParseAnomaly
from acpsessions.feed.items import FeedItem, MessageItem, PlanItem, ToolCall, ToolItem
from acpsessions.feed.tool_calls import ToolCallTracker
from acpsessions.logging import TRACE, get_logger
from acpsessions.persistence.envelope import (
    MessageEnvelope,
    PlanEnvelope,
    StoredMessage,
    ToolEnvelope,
    parse_envelope,
)
from acpsessions.persistence.snapshots import (
    message_from_record,
    terminal_buffers,
    tool_from_record,
)
from acpsessions.types.content import PlanEntry

log = get_logger("persistence")

Envelope = MessageEnvelope | ToolEnvelope | PlanEnvelope


@dataclass(frozen=True, slots=True)
class FeedMeta:
    """Ordering metadata fixed the first time a feed item is referenced."""

    sequence: int
    created_at: str


@dataclass
class HydratedState:
    feed: tuple[FeedItem, ...] = ()
    tool_calls: dict[str, ToolCall] = field(default_factory=dict)
    terminals: dict[str, str] = field(default_factory=dict)
    plan: tuple[PlanEntry, ...] | None = None
    saved_message_ids: set[str] = field(default_factory=set)
    saved_tool_call_ids: set[str] = field(default_factory=set)
    feed_meta: dict[str, FeedMeta] = field(default_factory=dict)
    next_sequence: int = 0

    @property
    def has_messages(self) -> bool:
        return any(isinstance(item, MessageItem) for item in self.feed)


def plan_hash(entries: Iterable[PlanEntry]) -> str:
    """Stable fingerprint used to skip persisting an unchanged plan."""
    return json.dumps([entry.to_wire() for entry in entries], sort_keys=True)


def coerce_row(row: StoredMessage | dict[str, Any]) -> StoredMessage | None:
    if isinstance(row, StoredMessage):
        return row
    try:
        return StoredMessage.model_validate(row)
    except ValueError as e:
        log.log(TRACE, "Skipping unreadable history row: %s", e)
        return None


def _timestamp(row: StoredMessage, envelope: Envelope) -> float:
    raw = row.timestamp or envelope.created_at
    if not raw:
        return 0.0
    try:
        return datetime.fromisoformat(raw.replace("Z", "+00:00")).timestamp()
    except ValueError:
        return 0.0


def _compare(a: tuple[StoredMessage, Envelope], b: tuple[StoredMessage, Envelope]) -> int:
    a_row, a_env = a
    b_row, b_env = b
    if a_env.sequence is not None and b_env.sequence is not None and a_env.sequence != b_env.sequence:
        return a_env.sequence - b_env.sequence
    a_time, b_time = _timestamp(a_row, a_env), _timestamp(b_row, b_env)
    if a_time != b_time:
        return -1 if a_time < b_time else 1
    a_id, b_id = a_env.feed_id or a_row.id, b_env.feed_id or b_row.id
    return (a_id > b_id) - (a_id < b_id)


def order_envelopes(
    rows: Iterable[StoredMessage | dict[str, Any]],
) -> list[tuple[StoredMessage, Envelope]]:
    """Parse rows and sort them into replay order, dropping unreadable ones."""
    parsed: list[tuple[StoredMessage, Envelope]] = []
    for raw in rows:
        row = coerce_row(raw)
        if row is None:
            continue
        try:
            parsed.append((row, parse_envelope(row)))
        except ProtocolParseAnomaly as e:
            log.log(TRACE, "Skipping history record: %s", e)
    parsed.sort(key=cmp_to_key(_compare))
    return parsed


def hydrate_history(
    rows: Iterable[StoredMessage | dict[str, Any]],
    tracker: ToolCallTracker | None = None,
    *,
    now: str | None = None,
) -> HydratedState:
    """Replay stored rows into a fresh feed.

    Later records for the same tool call replace the record but keep the
    call's original feed position. The most recent non-empty plan wins.
    """
    tracker = tracker or ToolCallTracker()
    state = HydratedState()
    feed: list[FeedItem] = []
    feed_ids: set[str] = set()

    for row, envelope in order_envelopes(rows):
        feed_id = envelope.feed_id or row.id
        created_at = envelope.created_at or row.timestamp or now or ""
        sequence = envelope.sequence if envelope.sequence is not None else state.next_sequence
        state.next_sequence = max(state.next_sequence, sequence + 1)
        state.feed_meta[feed_id] = FeedMeta(sequence, created_at)

        match envelope:
            case MessageEnvelope():
                item = message_from_record(feed_id, envelope.item, row.content, row.sender)
                if item is None or feed_id in feed_ids:
                    continue
                feed.append(item)
                feed_ids.add(feed_id)
                state.saved_message_ids.add(feed_id)
            case ToolEnvelope():
                record = envelope.item
                tool_call_id = record.tool_call_id
                state.tool_calls[tool_call_id] = tool_from_record(record, tracker)
                state.terminals.update(terminal_buffers(record))
                if not any(isinstance(entry, ToolItem) and entry.tool_call_id == tool_call_id for entry in feed):
                    feed.append(ToolItem(id=feed_id, tool_call_id=tool_call_id))
                    feed_ids.add(feed_id)
                state.saved_tool_call_ids.add(tool_call_id)
            case PlanEnvelope():
                if not envelope.item.entries:
                    continue
                state.plan = tuple(envelope.item.entries)
                if not any(isinstance(entry, PlanItem) for entry in feed):
                    feed.append(PlanItem(id=feed_id))
                    feed_ids.add(feed_id)

    state.feed = tuple(feed)
    return state
