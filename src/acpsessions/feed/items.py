"""Feed, tool call and permission value types.

All of these are immutable; the session store replaces them wholesale when
they change.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Literal

from acpsessions.feed.diff import DiffPreview
from acpsessions.types.content import ContentBlock
from acpsessions.types.events import RequestId


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class MessageKind(str, Enum):
    THOUGHT = "thought"
    SYSTEM = "system"


class ToolCallStatus(str, Enum):
    """Tool call lifecycle. Terminal states are final."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (ToolCallStatus.COMPLETED, ToolCallStatus.FAILED, ToolCallStatus.CANCELLED)

    @property
    def rank(self) -> int:
        if self.is_terminal:
            return 2
        return 1 if self is ToolCallStatus.IN_PROGRESS else 0


# -----------------------------------------------------------------------------
# Feed items
# -----------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class MessageItem:
    id: str
    role: Role
    blocks: tuple[ContentBlock, ...]
    streaming: bool = False
    message_kind: MessageKind | None = None
    run_duration_ms: int | None = None
    type: Literal["message"] = "message"


@dataclass(frozen=True, slots=True)
class ToolItem:
    id: str
    tool_call_id: str
    type: Literal["tool"] = "tool"


@dataclass(frozen=True, slots=True)
class PlanItem:
    """Position of the current plan in the feed; entries live on the session state."""

    id: str
    type: Literal["plan"] = "plan"


@dataclass(frozen=True, slots=True)
class PermissionItem:
    id: str
    request_id: RequestId
    type: Literal["permission"] = "permission"


FeedItem = MessageItem | ToolItem | PlanItem | PermissionItem


# -----------------------------------------------------------------------------
# Tool calls
# -----------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ContentEntry:
    """Tool output carried as a regular content block."""

    content: ContentBlock
    type: Literal["content"] = "content"


@dataclass(frozen=True, slots=True)
class DiffEntry:
    """Proposed file edit with its computed preview."""

    preview: DiffPreview
    path: str | None = None
    old_text: str | None = None
    new_text: str | None = None
    type: Literal["diff"] = "diff"


@dataclass(frozen=True, slots=True)
class TerminalEntry:
    """Reference to a live sub-terminal."""

    terminal_id: str
    type: Literal["terminal"] = "terminal"


ToolCallContent = ContentEntry | DiffEntry | TerminalEntry


@dataclass(frozen=True, slots=True)
class ToolLocation:
    path: str
    line: int | None = None


@dataclass(frozen=True, slots=True)
class ToolCall:
    tool_call_id: str
    title: str | None = None
    kind: str | None = None
    status: ToolCallStatus | None = None
    locations: tuple[ToolLocation, ...] = ()
    content: tuple[ToolCallContent, ...] = ()
    raw_input: str | None = None
    raw_output: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status is not None and self.status.is_terminal

    @property
    def label(self) -> str:
        return self.title or self.kind or "Tool call"


# -----------------------------------------------------------------------------
# Permissions
# -----------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class PermissionOption:
    id: str
    label: str
    kind: str | None = None


@dataclass(frozen=True, slots=True)
class PermissionRequest:
    request_id: RequestId
    tool_call: ToolCall | None = None
    options: tuple[PermissionOption, ...] = ()


@dataclass(frozen=True, slots=True)
class PermissionOutcome:
    """Answer to a permission request: a selected option, or cancellation."""

    outcome: Literal["selected", "cancelled"]
    option_id: str | None = None

    @classmethod
    def selected(cls, option_id: str) -> PermissionOutcome:
        return cls("selected", option_id)

    @classmethod
    def cancelled(cls) -> PermissionOutcome:
        return cls("cancelled")

    def to_wire(self) -> dict[str, Any]:
        if self.outcome == "selected":
            return {"outcome": "selected", "optionId": self.option_id}
        return {"outcome": "cancelled"}
