"""Contracts between the session store and its collaborators.

The transport that spawns backends and carries calls to them lives outside
this package; the store only sees the protocol below.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from acpsessions.errors import SessionError
from acpsessions.types.events import RequestId

# -----------------------------------------------------------------------------
# Transport
# -----------------------------------------------------------------------------


@runtime_checkable
class SessionTransport(Protocol):
    """Outbound calls to a backend.

    Each call either raises or returns a mapping with a ``success`` flag,
    plus call-specific fields (``sessionId``, ``stopReason``, ``error``).
    """

    async def start_session(self, task_id: str, provider_id: str, cwd: str) -> Mapping[str, Any]:
        ...

    async def send_prompt(self, session_id: str, prompt: list[dict[str, Any]]) -> Mapping[str, Any]:
        ...

    async def cancel(self, session_id: str) -> Mapping[str, Any] | None:
        ...

    async def dispose(self, session_id: str) -> Mapping[str, Any] | None:
        ...

    async def respond_permission(
        self, session_id: str, request_id: RequestId, outcome: dict[str, Any]
    ) -> Mapping[str, Any] | None:
        ...

    async def set_model(self, session_id: str, model_id: str) -> Mapping[str, Any]:
        ...

    async def set_config_option(self, session_id: str, config_id: str, value: Any) -> Mapping[str, Any]:
        ...

    async def set_mode(self, session_id: str, mode_id: str) -> Mapping[str, Any]:
        ...


class DetachedTransport:
    """Transport with no backend behind it; every call fails.

    Used when replaying recorded events, where only inbound traffic matters.
    """

    error = "No backend attached"

    async def _fail(self, *args: Any, **kwargs: Any) -> Mapping[str, Any]:
        return {"success": False, "error": self.error}

    start_session = _fail
    send_prompt = _fail
    cancel = _fail
    dispose = _fail
    respond_permission = _fail
    set_model = _fail
    set_config_option = _fail
    set_mode = _fail


# -----------------------------------------------------------------------------
# Results
# -----------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class OperationResult:
    """Outcome of a store operation.

    ``failure`` carries the taxonomy error when ``success`` is False; the
    error is never raised to the caller.
    """

    success: bool
    value: Any = None
    error: str | None = None
    failure: SessionError | None = None

    @classmethod
    def ok(cls, value: Any = None) -> OperationResult:
        return cls(True, value=value)

    @classmethod
    def fail(cls, failure: SessionError) -> OperationResult:
        return cls(False, error=failure.message, failure=failure)


def response_succeeded(response: Any) -> bool:
    return isinstance(response, Mapping) and bool(response.get("success"))


def response_error(response: Any) -> str | None:
    if isinstance(response, Mapping) and response.get("error"):
        return str(response["error"])
    return None
