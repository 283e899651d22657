"""Accumulation of multi-part tool call events into single records.

A tool call arrives as one ``tool_call`` event followed by any number of
``tool_call_update`` events. Scalar fields are overridden by later events,
content entries are only ever appended, and the status only moves forward.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, replace
from typing import Any

from acpsessions.config.schema import DiffConfig
from acpsessions.feed.diff import DiffPreview, build_diff_preview
from acpsessions.feed.items import (
    ContentEntry,
    DiffEntry,
    FeedItem,
    TerminalEntry,
    ToolCall,
    ToolCallContent,
    ToolCallStatus,
    ToolItem,
    ToolLocation,
)
from acpsessions.logging import VERBOSE, get_logger
from acpsessions.types.content import parse_content_block

log = get_logger("tools")

ToolCallMap = dict[str, ToolCall]


def tool_feed_id(tool_call_id: str) -> str:
    return f"tool-{tool_call_id}"


def normalize_raw_value(value: Any) -> str | None:
    """Render raw tool input/output as display text."""
    if value is None:
        return None
    if isinstance(value, str):
        return value
    try:
        return json.dumps(value, indent=2)
    except (TypeError, ValueError):
        return str(value)


def parse_status(value: Any) -> ToolCallStatus | None:
    if isinstance(value, ToolCallStatus):
        return value
    try:
        return ToolCallStatus(value)
    except ValueError:
        return None


def advance_status(
    current: ToolCallStatus | None, incoming: ToolCallStatus | None
) -> ToolCallStatus | None:
    """Apply an incoming status without ever moving backwards."""
    if incoming is None:
        return current
    if current is None:
        return incoming
    if current.is_terminal or incoming.rank < current.rank:
        return current
    return incoming


def parse_locations(value: Any) -> tuple[ToolLocation, ...] | None:
    if not isinstance(value, list):
        return None
    locations: list[ToolLocation] = []
    for loc in value:
        if isinstance(loc, dict) and loc.get("path"):
            line = loc.get("line")
            locations.append(ToolLocation(str(loc["path"]), line if isinstance(line, int) else None))
    return tuple(locations)


@dataclass(frozen=True, slots=True)
class TrackResult:
    tool_calls: ToolCallMap
    feed: tuple[FeedItem, ...]
    tool_call_id: str | None
    created: bool = False


class ToolCallTracker:
    """Merges tool call events and builds diff previews for embedded edits."""

    def __init__(self, diff_config: DiffConfig | None = None) -> None:
        self._diff = diff_config or DiffConfig()

    def build_preview(self, old_text: str, new_text: str, path: str | None = None) -> DiffPreview:
        return build_diff_preview(
            old_text,
            new_text,
            path=path,
            context_lines=self._diff.context_lines,
            max_preview_lines=self._diff.max_preview_lines,
            max_source_lines=self._diff.max_source_lines,
        )

    def parse_content_entry(self, raw: Any) -> ToolCallContent | None:
        """Parse one wire (or stored) tool call content entry."""
        if not isinstance(raw, Mapping):
            return None
        entry_type = raw.get("type")
        if entry_type == "content":
            block = parse_content_block(raw.get("content"))
            return ContentEntry(block) if block is not None else None
        if entry_type == "terminal":
            terminal_id = raw.get("terminalId") or raw.get("terminal_id")
            return TerminalEntry(str(terminal_id)) if terminal_id else None
        if entry_type == "diff":
            path = raw.get("path")
            preview_data = raw.get("preview")
            if isinstance(preview_data, Mapping):
                preview = DiffPreview.from_dict(dict(preview_data))
                return DiffEntry(preview=preview, path=path)
            old_text = raw.get("oldText", raw.get("original"))
            new_text = raw.get("newText", raw.get("updated"))
            old_text = "" if old_text is None else str(old_text)
            new_text = "" if new_text is None else str(new_text)
            return DiffEntry(
                preview=self.build_preview(old_text, new_text, path),
                path=path,
                old_text=old_text,
                new_text=new_text,
            )
        # Bare content blocks show up from some backends
        block = parse_content_block(dict(raw))
        return ContentEntry(block) if block is not None else None

    def parse_content(self, value: Any) -> tuple[ToolCallContent, ...]:
        if value is None:
            return ()
        items: Iterable[Any] = value if isinstance(value, list) else [value]
        entries = (self.parse_content_entry(item) for item in items)
        return tuple(entry for entry in entries if entry is not None)

    def merge(self, existing: ToolCall | None, payload: Mapping[str, Any]) -> ToolCall:
        """Merge one creation/update payload into the existing record."""
        tool_call_id = str(payload["toolCallId"])
        base = existing or ToolCall(tool_call_id=tool_call_id)

        changes: dict[str, Any] = {}
        if "title" in payload and payload["title"] is not None:
            changes["title"] = str(payload["title"])
        if "kind" in payload and payload["kind"] is not None:
            changes["kind"] = str(payload["kind"])

        incoming_status = parse_status(payload.get("status"))
        status = advance_status(base.status, incoming_status)
        if incoming_status is not None and status is not incoming_status:
            log.log(
                VERBOSE,
                "Ignoring backwards status %s -> %s for tool call %s",
                base.status,
                incoming_status,
                tool_call_id,
            )
        changes["status"] = status

        locations = parse_locations(payload.get("locations"))
        if locations is not None:
            changes["locations"] = locations

        added = self.parse_content(payload.get("content"))
        if added:
            changes["content"] = base.content + added

        raw_input = payload.get("rawInput", payload.get("input"))
        if raw_input is not None:
            changes["raw_input"] = normalize_raw_value(raw_input)
        raw_output = payload.get("rawOutput", payload.get("output"))
        if raw_output is not None:
            changes["raw_output"] = normalize_raw_value(raw_output)

        return replace(base, **changes)

    def apply(
        self,
        tool_calls: ToolCallMap,
        feed: tuple[FeedItem, ...],
        update: Mapping[str, Any],
    ) -> TrackResult:
        """Apply a ``tool_call`` / ``tool_call_update`` session update.

        The first event for an id appends a feed entry; later ones only
        update the record.
        """
        payload = update.get("toolCall") or update
        tool_call_id = payload.get("toolCallId") if isinstance(payload, Mapping) else None
        if not tool_call_id:
            return TrackResult(tool_calls, feed, None)
        tool_call_id = str(tool_call_id)

        merged = self.merge(tool_calls.get(tool_call_id), payload)
        next_calls = {**tool_calls, tool_call_id: merged}

        if any(isinstance(item, ToolItem) and item.tool_call_id == tool_call_id for item in feed):
            return TrackResult(next_calls, feed, tool_call_id)

        item = ToolItem(id=tool_feed_id(tool_call_id), tool_call_id=tool_call_id)
        return TrackResult(next_calls, (*feed, item), tool_call_id, created=True)

    def from_payload(self, payload: Any) -> ToolCall | None:
        """Standalone record for a tool call embedded in another event."""
        if not isinstance(payload, Mapping) or not payload.get("toolCallId"):
            return None
        return self.merge(None, payload)


def cancel_unfinished(tool_calls: ToolCallMap) -> ToolCallMap:
    """Force every non-terminal tool call to ``cancelled``."""
    return {
        tool_call_id: call
        if call.is_terminal
        else replace(call, status=ToolCallStatus.CANCELLED)
        for tool_call_id, call in tool_calls.items()
    }


def finished_unsaved(tool_calls: ToolCallMap, saved_ids: set[str]) -> list[ToolCall]:
    """Tool calls that reached a terminal status and have not been persisted."""
    return [
        call
        for tool_call_id, call in tool_calls.items()
        if call.is_terminal and tool_call_id not in saved_ids
    ]
