"""Per-session state value and its lifecycle."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from acpsessions.feed.items import FeedItem, PermissionRequest, ToolCall
from acpsessions.types.content import PlanEntry
from acpsessions.types.events import RequestId, SessionKey

# -----------------------------------------------------------------------------
# Lifecycle
# -----------------------------------------------------------------------------


class SessionStatus(Enum):
    """Lifecycle of one backend session."""

    IDLE = "idle"
    STARTING = "starting"
    READY = "ready"
    ERROR = "error"
    EXITED = "exited"


# ERROR and EXITED only leave through IDLE, which restart() passes through.
ALLOWED_TRANSITIONS: dict[SessionStatus, frozenset[SessionStatus]] = {
    SessionStatus.IDLE: frozenset({SessionStatus.STARTING, SessionStatus.READY, SessionStatus.ERROR}),
    SessionStatus.STARTING: frozenset(
        {SessionStatus.READY, SessionStatus.ERROR, SessionStatus.EXITED, SessionStatus.IDLE}
    ),
    SessionStatus.READY: frozenset({SessionStatus.EXITED, SessionStatus.ERROR, SessionStatus.IDLE}),
    SessionStatus.ERROR: frozenset({SessionStatus.IDLE}),
    SessionStatus.EXITED: frozenset({SessionStatus.IDLE, SessionStatus.ERROR}),
}


def can_transition(current: SessionStatus, target: SessionStatus) -> bool:
    return current is target or target in ALLOWED_TRANSITIONS[current]


# -----------------------------------------------------------------------------
# State
# -----------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class PromptCapabilities:
    """Content kinds the backend accepts in prompts."""

    image: bool = False
    audio: bool = False
    embedded_context: bool = False


@dataclass(frozen=True, slots=True)
class SessionState:
    """Snapshot of one session.

    Never mutated: the store replaces it wholesale, so observers can compare
    snapshots by identity. The mapping fields are likewise replaced, never
    updated in place.
    """

    task_id: str
    provider_id: str
    session_id: str | None = None
    status: SessionStatus = SessionStatus.IDLE
    session_error: str | None = None
    is_running: bool = False
    run_started_at: float | None = None  # Clock seconds
    run_elapsed_ms: int = 0
    prompt_caps: PromptCapabilities = field(default_factory=PromptCapabilities)
    config_options: tuple[dict[str, Any], ...] = ()
    models: tuple[dict[str, Any], ...] = ()
    current_model_id: str | None = None
    current_mode_id: str | None = None
    feed: tuple[FeedItem, ...] = ()
    tool_calls: dict[str, ToolCall] = field(default_factory=dict)
    permissions: dict[RequestId, PermissionRequest] = field(default_factory=dict)
    terminals: dict[str, str] = field(default_factory=dict)
    plan: tuple[PlanEntry, ...] | None = None
    history_ready: bool = False
    history_has_messages: bool = False

    @property
    def key(self) -> SessionKey:
        return SessionKey(self.task_id, self.provider_id)

    @property
    def starting(self) -> bool:
        return self.status is SessionStatus.STARTING

    @property
    def ready(self) -> bool:
        return self.status is SessionStatus.READY and self.session_id is not None
