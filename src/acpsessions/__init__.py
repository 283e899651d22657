"""acpsessions: client-side manager for streaming ACP agent sessions."""

__version__ = "0.1.0"

# Public API
from acpsessions.config import Config, get_config, load_config
from acpsessions.errors import (
    EmptyPrompt,
    PromptDispatchFailure,
    ProtocolParseAnomaly,
    SessionError,
    SessionNotReady,
    SessionStartFailure,
    SessionTerminated,
    TransportCallFailure,
)
from acpsessions.feed import (
    DiffPreview,
    FeedItem,
    MessageItem,
    PermissionOutcome,
    ToolCall,
    ToolCallStatus,
    build_diff_preview,
)
from acpsessions.persistence import (
    InMemoryMessageStore,
    MessageStore,
    PersistenceAdapter,
    YamlMessageStore,
    hydrate_history,
)
from acpsessions.recording import EventPlayer, EventRecorder, replay_events
from acpsessions.session import (
    DetachedTransport,
    OperationResult,
    SessionState,
    SessionStatus,
    SessionStore,
    SessionTransport,
)
from acpsessions.types import SessionKey

__all__ = [
    # Main entry points
    "SessionStore",
    "SessionKey",
    "SessionState",
    "SessionStatus",
    "SessionTransport",
    "DetachedTransport",
    "OperationResult",
    # Feed
    "FeedItem",
    "MessageItem",
    "ToolCall",
    "ToolCallStatus",
    "PermissionOutcome",
    "DiffPreview",
    "build_diff_preview",
    # Persistence
    "PersistenceAdapter",
    "MessageStore",
    "InMemoryMessageStore",
    "YamlMessageStore",
    "hydrate_history",
    # Recording
    "EventRecorder",
    "EventPlayer",
    "replay_events",
    # Errors
    "SessionError",
    "SessionStartFailure",
    "PromptDispatchFailure",
    "ProtocolParseAnomaly",
    "TransportCallFailure",
    "SessionTerminated",
    "SessionNotReady",
    "EmptyPrompt",
    # Config
    "Config",
    "load_config",
    "get_config",
]
