"""Versioned envelope stored in the metadata of each durable message.

Stored shape::

    {"acp": {"version": 1, "type": "message" | "tool" | "plan",
             "feedId": ..., "sequence": ..., "createdAt": ...,
             "providerId": ..., "sessionId": ..., "taskId": ...,
             "item": {...}}}
"""

from __future__ import annotations

import json
from typing import Annotated, Any, Literal

from pydantic import Field, TypeAdapter, ValidationError

from acpsessions.errors import ProtocolParseAnomaly
from acpsessions.feed.items import MessageKind, Role
from acpsessions.types.content import AcpModel, PlanEntry

ENVELOPE_VERSION = 1
METADATA_KEY = "acp"


class MessageRecord(AcpModel):
    role: Role | None = None
    blocks: list[dict[str, Any]] = Field(default_factory=list)
    message_kind: MessageKind | None = Field(default=None, alias="messageKind")
    run_duration_ms: int | None = Field(default=None, alias="runDurationMs")


class TerminalPreview(AcpModel):
    terminal_id: str = Field(alias="terminalId")
    lines: list[str] = Field(default_factory=list)
    truncated: bool = False


class ToolRecord(AcpModel):
    tool_call_id: str = Field(alias="toolCallId")
    title: str | None = None
    kind: str | None = None
    status: str | None = None
    locations: list[dict[str, Any]] | None = None
    content: list[dict[str, Any]] = Field(default_factory=list)
    raw_input: str | None = Field(default=None, alias="rawInput")
    terminal_preview: list[TerminalPreview] | None = Field(default=None, alias="terminalPreview")


class PlanRecord(AcpModel):
    entries: list[PlanEntry] = Field(default_factory=list)


class _EnvelopeBase(AcpModel):
    version: int
    feed_id: str | None = Field(default=None, alias="feedId")
    sequence: int | None = None
    created_at: str | None = Field(default=None, alias="createdAt")
    provider_id: str | None = Field(default=None, alias="providerId")
    session_id: str | None = Field(default=None, alias="sessionId")
    task_id: str | None = Field(default=None, alias="taskId")


class MessageEnvelope(_EnvelopeBase):
    type: Literal["message"] = "message"
    item: MessageRecord = Field(default_factory=MessageRecord)


class ToolEnvelope(_EnvelopeBase):
    type: Literal["tool"] = "tool"
    item: ToolRecord


class PlanEnvelope(_EnvelopeBase):
    type: Literal["plan"] = "plan"
    item: PlanRecord = Field(default_factory=PlanRecord)


PersistedEnvelope = Annotated[
    MessageEnvelope | ToolEnvelope | PlanEnvelope,
    Field(discriminator="type"),
]

_envelope_adapter: TypeAdapter[PersistedEnvelope] = TypeAdapter(PersistedEnvelope)


class StoredMessage(AcpModel):
    """One row of the durable message store."""

    id: str
    conversation_id: str = Field(alias="conversationId")
    content: str = ""
    sender: str = "agent"
    metadata: dict[str, Any] | str | None = None
    timestamp: str | None = None


def envelope_metadata(envelope: MessageEnvelope | ToolEnvelope | PlanEnvelope) -> dict[str, Any]:
    """Metadata payload wrapping ``envelope`` for the message store."""
    return {METADATA_KEY: envelope.to_wire()}


def parse_envelope(row: StoredMessage) -> MessageEnvelope | ToolEnvelope | PlanEnvelope:
    """Extract and validate the envelope of a stored row.

    Raises:
        ProtocolParseAnomaly: metadata is missing or unreadable, or carries an
            unrecognized schema version.
    """
    metadata = row.metadata
    if not metadata:
        raise ProtocolParseAnomaly(f"Row {row.id} has no metadata")
    if isinstance(metadata, str):
        try:
            metadata = json.loads(metadata)
        except json.JSONDecodeError as e:
            raise ProtocolParseAnomaly(f"Row {row.id} metadata is not JSON: {e}") from e
    if not isinstance(metadata, dict):
        raise ProtocolParseAnomaly(f"Row {row.id} metadata is not an object")

    raw = metadata.get(METADATA_KEY)
    if not isinstance(raw, dict):
        raise ProtocolParseAnomaly(f"Row {row.id} has no {METADATA_KEY!r} envelope")
    if raw.get("version") != ENVELOPE_VERSION:
        raise ProtocolParseAnomaly(
            f"Row {row.id} has unsupported envelope version {raw.get('version')!r}"
        )
    try:
        return _envelope_adapter.validate_python(raw)
    except ValidationError as e:
        raise ProtocolParseAnomaly(f"Row {row.id} envelope is invalid: {e}") from e
