"""Session state, transport contract and the session store."""

from acpsessions.session.protocols import DetachedTransport, OperationResult, SessionTransport
from acpsessions.session.state import PromptCapabilities, SessionState, SessionStatus
from acpsessions.session.store import SessionStore

__all__ = [
    "DetachedTransport",
    "OperationResult",
    "PromptCapabilities",
    "SessionState",
    "SessionStatus",
    "SessionStore",
    "SessionTransport",
]
