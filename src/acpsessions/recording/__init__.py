"""Recording and replay of inbound transport events."""

from acpsessions.recording.player import EventPlayer, RecordedEvent, replay_events
from acpsessions.recording.recorder import EventRecorder

__all__ = [
    "EventPlayer",
    "EventRecorder",
    "RecordedEvent",
    "replay_events",
]
