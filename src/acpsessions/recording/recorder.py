"""Recording of inbound transport events to JSONL."""

from __future__ import annotations

import json
import time
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import IO, Any

from acpsessions.logging import TRACE, get_logger
from acpsessions.types.events import TransportEvent

log = get_logger("recording")


class EventRecorder:
    """Records inbound transport events in JSONL format.

    Format:
        {"ts": 1706000000.123, "event": {...}}

    Where:
        - ts: Unix timestamp with millisecond precision
        - event: The event payload with wire (camelCase) field names
    """

    def __init__(self, output: Path | IO[str], clock: Callable[[], float] = time.time) -> None:
        """Initialize recorder.

        Args:
            output: Path to output file (appended to) or file-like object
            clock: Source of the ``ts`` field
        """
        self._output: IO[str]
        self._owns_file = False
        self._clock = clock
        self.count = 0

        if isinstance(output, Path):
            output.parent.mkdir(parents=True, exist_ok=True)
            self._output = open(output, "a", encoding="utf-8")
            self._owns_file = True
        else:
            self._output = output

    def record(self, event: Mapping[str, Any] | TransportEvent) -> None:
        """Append one event."""
        payload = event.to_wire() if isinstance(event, TransportEvent) else dict(event)
        line = {"ts": round(self._clock(), 3), "event": payload}
        self._output.write(json.dumps(line, separators=(",", ":"), default=str) + "\n")
        self._output.flush()
        self.count += 1
        log.log(TRACE, "Recorded %s event", payload.get("type"))

    def close(self) -> None:
        """Close the recorder."""
        if self._owns_file:
            self._output.close()

    def __enter__(self) -> EventRecorder:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()
