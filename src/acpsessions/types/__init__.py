"""Protocol types: content blocks, plan entries and inbound transport events."""

from acpsessions.types.content import (
    AcpModel,
    AudioBlock,
    ContentBlock,
    EmbeddedResource,
    ImageBlock,
    PlanEntry,
    ResourceBlock,
    ResourceLinkBlock,
    TextBlock,
    is_blank_prompt,
    parse_content_block,
    parse_content_blocks,
    parse_plan_entries,
)
from acpsessions.types.events import (
    InboundEvent,
    PermissionParams,
    PermissionRequestEvent,
    PromptEndEvent,
    RequestId,
    SessionErrorEvent,
    SessionExitEvent,
    SessionKey,
    SessionStartedEvent,
    SessionUpdateEvent,
    SessionUpdateKind,
    TerminalExitEvent,
    TerminalOutputEvent,
    TransportEvent,
    parse_event,
    session_update_kind,
)

__all__ = [
    "AcpModel",
    "AudioBlock",
    "ContentBlock",
    "EmbeddedResource",
    "ImageBlock",
    "InboundEvent",
    "PermissionParams",
    "PermissionRequestEvent",
    "PlanEntry",
    "PromptEndEvent",
    "RequestId",
    "ResourceBlock",
    "ResourceLinkBlock",
    "SessionErrorEvent",
    "SessionExitEvent",
    "SessionKey",
    "SessionStartedEvent",
    "SessionUpdateEvent",
    "SessionUpdateKind",
    "TerminalExitEvent",
    "TerminalOutputEvent",
    "TextBlock",
    "TransportEvent",
    "is_blank_prompt",
    "parse_content_block",
    "parse_content_blocks",
    "parse_event",
    "parse_plan_entries",
    "session_update_kind",
]
