"""Inbound transport event types.

Every event is delivered with the unit-of-work (task) id and the backend
(provider) id it belongs to, and is discriminated by its ``type`` field.
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Literal, NamedTuple

from pydantic import Field, TypeAdapter, ValidationError

from acpsessions.logging import TRACE, get_logger
from acpsessions.types.content import AcpModel

log = get_logger("types")

RequestId = int | str


class SessionKey(NamedTuple):
    """Identifies one conversation: a unit of work talking to one backend."""

    task_id: str
    provider_id: str

    def __str__(self) -> str:
        return f"{self.task_id}:{self.provider_id}"


class SessionUpdateKind(str, Enum):
    """Values of ``update.sessionUpdate`` understood by the feed."""

    AGENT_MESSAGE_CHUNK = "agent_message_chunk"
    USER_MESSAGE_CHUNK = "user_message_chunk"
    THOUGHT_MESSAGE_CHUNK = "thought_message_chunk"
    AGENT_MESSAGE = "agent_message"
    USER_MESSAGE = "user_message"
    THOUGHT_MESSAGE = "thought_message"
    PLAN = "plan"
    TOOL_CALL = "tool_call"
    TOOL_CALL_UPDATE = "tool_call_update"
    CONFIG_OPTION_UPDATE = "config_option_update"
    CONFIG_OPTIONS_UPDATE = "config_options_update"
    MODEL_UPDATE = "model_update"
    CURRENT_MODE_UPDATE = "current_mode_update"

    @property
    def is_message(self) -> bool:
        return self in _MESSAGE_KINDS

    @property
    def is_chunk(self) -> bool:
        return self.value.endswith("_chunk")

    @property
    def is_thought(self) -> bool:
        return self.value.startswith("thought")


_MESSAGE_KINDS = frozenset(
    {
        SessionUpdateKind.AGENT_MESSAGE_CHUNK,
        SessionUpdateKind.USER_MESSAGE_CHUNK,
        SessionUpdateKind.THOUGHT_MESSAGE_CHUNK,
        SessionUpdateKind.AGENT_MESSAGE,
        SessionUpdateKind.USER_MESSAGE,
        SessionUpdateKind.THOUGHT_MESSAGE,
    }
)


def session_update_kind(update: dict[str, Any]) -> SessionUpdateKind | None:
    """Resolve the kind of a session update, accepting ``type``/``kind`` fallbacks."""
    raw = update.get("sessionUpdate") or update.get("type") or update.get("kind")
    if not raw:
        return None
    try:
        return SessionUpdateKind(raw)
    except ValueError:
        return None


class TransportEvent(AcpModel):
    """Fields common to every inbound event."""

    task_id: str = Field(alias="taskId")
    provider_id: str = Field(alias="providerId")

    @property
    def key(self) -> SessionKey:
        return SessionKey(self.task_id, self.provider_id)


class SessionStartedEvent(TransportEvent):
    type: Literal["session_started"] = "session_started"
    session_id: str | None = Field(default=None, alias="sessionId")
    agent_capabilities: dict[str, Any] | None = Field(default=None, alias="agentCapabilities")


class SessionErrorEvent(TransportEvent):
    type: Literal["session_error"] = "session_error"
    error: str | None = None


class SessionExitEvent(TransportEvent):
    type: Literal["session_exit"] = "session_exit"
    code: int | None = None


class PromptEndEvent(TransportEvent):
    type: Literal["prompt_end"] = "prompt_end"
    stop_reason: str | None = Field(default=None, alias="stopReason")


class TerminalOutputEvent(TransportEvent):
    type: Literal["terminal_output"] = "terminal_output"
    terminal_id: str | None = Field(default=None, alias="terminalId")
    chunk: str = ""


class TerminalExitEvent(TransportEvent):
    type: Literal["terminal_exit"] = "terminal_exit"
    terminal_id: str | None = Field(default=None, alias="terminalId")
    exit_code: int | None = Field(default=None, alias="exitCode")


class SessionUpdateEvent(TransportEvent):
    type: Literal["session_update"] = "session_update"
    update: dict[str, Any] | None = None


class PermissionParams(AcpModel):
    tool_call: dict[str, Any] | None = Field(default=None, alias="toolCall")
    options: list[dict[str, Any]] = Field(default_factory=list)


class PermissionRequestEvent(TransportEvent):
    type: Literal["permission_request"] = "permission_request"
    request_id: RequestId | None = Field(default=None, alias="requestId")
    params: PermissionParams = Field(default_factory=PermissionParams)


InboundEvent = Annotated[
    SessionStartedEvent
    | SessionErrorEvent
    | SessionExitEvent
    | PromptEndEvent
    | TerminalOutputEvent
    | TerminalExitEvent
    | SessionUpdateEvent
    | PermissionRequestEvent,
    Field(discriminator="type"),
]

_event_adapter: TypeAdapter[InboundEvent] = TypeAdapter(InboundEvent)


def parse_event(payload: Any) -> InboundEvent | None:
    """Parse a raw transport payload; returns None for unknown or malformed events."""
    if isinstance(payload, TransportEvent):
        return payload  # type: ignore[return-value]
    if not isinstance(payload, dict):
        return None
    try:
        return _event_adapter.validate_python(payload)
    except ValidationError as e:
        log.log(TRACE, "Ignoring transport event %r: %s", payload.get("type"), e)
        return None
