"""Conversion between live feed values and their stored records."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any, assert_never

from acpsessions.config.schema import PersistenceConfig
from acpsessions.feed.items import (
    ContentEntry,
    DiffEntry,
    MessageItem,
    Role,
    TerminalEntry,
    ToolCall,
)
from acpsessions.feed.terminal import get_tail_lines
from acpsessions.feed.tool_calls import ToolCallTracker
from acpsessions.persistence.envelope import (
    MessageRecord,
    PlanRecord,
    TerminalPreview,
    ToolRecord,
)
from acpsessions.persistence.sanitize import sanitize_blocks, sanitize_raw_input
from acpsessions.types.content import ContentBlock, PlanEntry, TextBlock, parse_content_blocks


def message_record(item: MessageItem, blocks: Sequence[ContentBlock]) -> MessageRecord | None:
    """Record for a finalized message from its sanitized ``blocks``, or None when nothing survives."""
    if not blocks:
        return None
    return MessageRecord(
        role=item.role,
        blocks=[block.to_wire() for block in blocks],
        message_kind=item.message_kind,
        run_duration_ms=item.run_duration_ms,
    )


def tool_record(
    call: ToolCall,
    terminals: Mapping[str, str],
    config: PersistenceConfig,
    tracker: ToolCallTracker,
) -> ToolRecord:
    """Bounded snapshot of a finished tool call.

    Diffs keep only their preview, content blocks are sanitized, and each
    referenced sub-terminal contributes the tail of its buffer.
    """
    diffs: list[dict[str, Any]] = []
    blocks = []
    terminal_ids: list[str] = []
    for entry in call.content:
        match entry:
            case DiffEntry():
                preview = entry.preview
                if not preview.lines and (entry.old_text or entry.new_text):
                    preview = tracker.build_preview(entry.old_text or "", entry.new_text or "", entry.path)
                diff: dict[str, Any] = {"type": "diff", "preview": preview.to_dict()}
                if entry.path is not None:
                    diff["path"] = entry.path
                diffs.append(diff)
            case ContentEntry():
                blocks.append(entry.content)
            case TerminalEntry():
                if entry.terminal_id not in terminal_ids:
                    terminal_ids.append(entry.terminal_id)
            case _:
                assert_never(entry)

    content = diffs + [
        {"type": "content", "content": block.to_wire()} for block in sanitize_blocks(blocks, config)
    ]
    content += [{"type": "terminal", "terminalId": terminal_id} for terminal_id in terminal_ids]

    previews = []
    for terminal_id in terminal_ids:
        lines, truncated = get_tail_lines(terminals.get(terminal_id, ""), config.max_terminal_lines)
        previews.append(TerminalPreview(terminal_id=terminal_id, lines=lines, truncated=truncated))

    return ToolRecord(
        tool_call_id=call.tool_call_id,
        title=call.title,
        kind=call.kind,
        status=call.status.value if call.status is not None else None,
        locations=[
            {"path": loc.path, **({"line": loc.line} if loc.line is not None else {})}
            for loc in call.locations
        ]
        or None,
        content=content,
        raw_input=sanitize_raw_input(call.raw_input, config),
        terminal_preview=previews or None,
    )


def plan_record(entries: tuple[PlanEntry, ...]) -> PlanRecord:
    return PlanRecord(entries=list(entries))


def message_from_record(
    feed_id: str, record: MessageRecord, content: str, sender: str
) -> MessageItem | None:
    """Rebuild a stored message; the row's plain content stands in for missing blocks."""
    blocks = parse_content_blocks(record.blocks)
    if not blocks and content:
        blocks = [TextBlock(text=content)]
    if not blocks:
        return None
    role = record.role or (Role.USER if sender == "user" else Role.ASSISTANT)
    return MessageItem(
        id=feed_id,
        role=role,
        blocks=tuple(blocks),
        streaming=False,
        message_kind=record.message_kind,
        run_duration_ms=record.run_duration_ms,
    )


def tool_from_record(record: ToolRecord, tracker: ToolCallTracker) -> ToolCall:
    return tracker.merge(None, record.to_wire())


def terminal_buffers(record: ToolRecord) -> dict[str, str]:
    return {preview.terminal_id: "\n".join(preview.lines) for preview in record.terminal_preview or ()}
