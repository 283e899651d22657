"""Shared test utilities for acpsessions tests."""

from __future__ import annotations

from typing import Any

from acpsessions.types import SessionKey

KEY = SessionKey("task-1", "claude")


class FakeClock:
    """Manually advanced clock in seconds."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def event(event_type: str, key: SessionKey = KEY, **fields: Any) -> dict[str, Any]:
    """Inbound transport event payload for ``key``.

    Args:
        event_type: Value of the ``type`` discriminator
        key: Session the event belongs to
        **fields: Remaining wire (camelCase) fields

    Returns:
        Event dict as the transport would deliver it
    """
    return {"type": event_type, "taskId": key.task_id, "providerId": key.provider_id, **fields}


def update(kind: str, key: SessionKey = KEY, **fields: Any) -> dict[str, Any]:
    """``session_update`` event carrying one update of ``kind``."""
    return event("session_update", key, update={"sessionUpdate": kind, **fields})


def text(value: str) -> dict[str, str]:
    return {"type": "text", "text": value}


def tool_call(tool_call_id: str, key: SessionKey = KEY, **fields: Any) -> dict[str, Any]:
    return update("tool_call", key, toolCallId=tool_call_id, **fields)


def tool_update(tool_call_id: str, key: SessionKey = KEY, **fields: Any) -> dict[str, Any]:
    return update("tool_call_update", key, toolCallId=tool_call_id, **fields)
