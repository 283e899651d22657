"""Error taxonomy for session management.

None of these escape the public SessionStore operations: they are carried
inside an OperationResult so callers can tell what failed without the
host process ever seeing an exception.
"""

from __future__ import annotations


class SessionError(Exception):
    """Base class for session-level failures."""

    default_message = "ACP session error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)

    @property
    def message(self) -> str:
        return str(self)


class SessionStartFailure(SessionError):
    """Transport rejected or errored while starting a session."""

    default_message = "Failed to start ACP session."


class PromptDispatchFailure(SessionError):
    """Sending a prompt failed after the optimistic echo."""

    default_message = "Failed to send prompt."


class ProtocolParseAnomaly(SessionError):
    """A durable record failed envelope parsing or has an unknown schema version."""

    default_message = "Unreadable history record"


class TransportCallFailure(SessionError):
    """A cancel/dispose/permission/model/config/mode call failed."""

    default_message = "Transport call failed"


class SessionTerminated(SessionError):
    """The backend ended the session."""

    default_message = "ACP session ended."


class SessionNotReady(SessionError):
    """The operation needs a started session."""

    default_message = "Session not ready"


class EmptyPrompt(SessionError):
    """The prompt had no content."""

    default_message = "Empty prompt"
