"""Durable history: sanitization, versioned envelopes, hydration and message stores."""

from acpsessions.persistence.adapter import PersistenceAdapter, PersistenceMeta
from acpsessions.persistence.envelope import (
    ENVELOPE_VERSION,
    MessageEnvelope,
    PlanEnvelope,
    StoredMessage,
    ToolEnvelope,
    parse_envelope,
)
from acpsessions.persistence.hydrate import FeedMeta, HydratedState, hydrate_history
from acpsessions.persistence.sanitize import (
    build_persisted_content,
    sanitize_blocks,
    sanitize_raw_input,
    truncate_text,
)
from acpsessions.persistence.storage import (
    InMemoryMessageStore,
    MessageStore,
    YamlMessageStore,
    conversation_id_for,
    load_conversation_file,
)

__all__ = [
    "ENVELOPE_VERSION",
    "FeedMeta",
    "HydratedState",
    "InMemoryMessageStore",
    "MessageEnvelope",
    "MessageStore",
    "PersistenceAdapter",
    "PersistenceMeta",
    "PlanEnvelope",
    "StoredMessage",
    "ToolEnvelope",
    "YamlMessageStore",
    "build_persisted_content",
    "conversation_id_for",
    "hydrate_history",
    "load_conversation_file",
    "parse_envelope",
    "sanitize_blocks",
    "sanitize_raw_input",
    "truncate_text",
]
