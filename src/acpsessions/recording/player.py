"""Replay of recorded transport events."""

from __future__ import annotations

import json
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path
from typing import IO, TYPE_CHECKING, Any

from acpsessions.logging import TRACE, get_logger

if TYPE_CHECKING:
    from acpsessions.session.store import SessionStore

log = get_logger("recording")


@dataclass
class RecordedEvent:
    """An inbound event read back from a recording."""

    timestamp: float
    event: dict[str, Any]

    @property
    def type(self) -> str | None:
        return self.event.get("type")


class EventPlayer:
    """Reads recorded events from JSONL.

    Usage:
        with EventPlayer(Path("events.jsonl")) as player:
            for record in player:
                print(record.type)
    """

    def __init__(self, source: Path | IO[str]) -> None:
        self._source: IO[str]
        self._owns_file = False

        if isinstance(source, Path):
            self._source = open(source, encoding="utf-8")
            self._owns_file = True
        else:
            self._source = source

    def __iter__(self) -> Iterator[RecordedEvent]:
        for number, line in enumerate(self._source, start=1):
            line = line.strip()
            if not line:
                continue

            try:
                data = json.loads(line)
            except json.JSONDecodeError:
                log.log(TRACE, "Skipping unreadable line %d", number)
                continue
            event = data.get("event") if isinstance(data, dict) else None
            if not isinstance(event, dict):
                log.log(TRACE, "Skipping line %d without an event", number)
                continue
            yield RecordedEvent(timestamp=float(data.get("ts", 0)), event=event)

    def events(self) -> list[RecordedEvent]:
        """Load all events into memory."""
        return list(self)

    def filter_type(self, event_type: str) -> Iterator[RecordedEvent]:
        for record in self:
            if record.type == event_type:
                yield record

    def close(self) -> None:
        if self._owns_file:
            self._source.close()

    def __enter__(self) -> EventPlayer:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()


def replay_events(store: SessionStore, player: EventPlayer) -> int:
    """Feed every recorded event into ``store``. Returns how many were replayed."""
    count = 0
    for record in player:
        store.handle_event(record.event)
        count += 1
    return count
