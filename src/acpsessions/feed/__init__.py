"""Feed reconstruction: messages, tool calls, plans, permissions and diff previews."""

from acpsessions.feed.diff import DiffLine, DiffPreview, build_diff_preview
from acpsessions.feed.items import (
    ContentEntry,
    DiffEntry,
    FeedItem,
    MessageItem,
    MessageKind,
    PermissionItem,
    PermissionOption,
    PermissionOutcome,
    PermissionRequest,
    PlanItem,
    Role,
    TerminalEntry,
    ToolCall,
    ToolCallContent,
    ToolCallStatus,
    ToolItem,
    ToolLocation,
)
from acpsessions.feed.permissions import PermissionNegotiator
from acpsessions.feed.tool_calls import ToolCallTracker

__all__ = [
    "ContentEntry",
    "DiffEntry",
    "DiffLine",
    "DiffPreview",
    "FeedItem",
    "MessageItem",
    "MessageKind",
    "PermissionItem",
    "PermissionNegotiator",
    "PermissionOption",
    "PermissionOutcome",
    "PermissionRequest",
    "PlanItem",
    "Role",
    "TerminalEntry",
    "ToolCall",
    "ToolCallContent",
    "ToolCallStatus",
    "ToolCallTracker",
    "ToolItem",
    "ToolLocation",
    "build_diff_preview",
]
