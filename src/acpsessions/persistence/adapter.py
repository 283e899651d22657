"""Persistence Adapter: durable, idempotent recording of finished feed items.

Ordering metadata (sequence, createdAt) is fixed the first time a feed id is
referenced, not when it is written, so a retried or delayed write still
lands in its original position on hydration.

Writes are queued and flushed by a background task when an event loop is
running; callers without a loop (or tests) drive ``flush()`` themselves.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone

from acpsessions.config.schema import PersistenceConfig
from acpsessions.feed.items import FeedItem, MessageItem, Role, ToolCall
from acpsessions.feed.reconstructor import new_feed_id
from acpsessions.feed.tool_calls import ToolCallTracker, finished_unsaved, tool_feed_id
from acpsessions.logging import VERBOSE, get_logger
from acpsessions.persistence.envelope import (
    ENVELOPE_VERSION,
    MessageEnvelope,
    PlanEnvelope,
    StoredMessage,
    ToolEnvelope,
    envelope_metadata,
)
from acpsessions.persistence.hydrate import FeedMeta, HydratedState, hydrate_history, plan_hash
from acpsessions.persistence.sanitize import build_persisted_content, sanitize_blocks
from acpsessions.persistence.snapshots import message_record, plan_record, tool_record
from acpsessions.persistence.storage import MessageStore, conversation_id_for
from acpsessions.types.content import PlanEntry
from acpsessions.types.events import SessionKey

log = get_logger("persistence")

PLAN_CONTENT = "Plan updated"


@dataclass
class PersistenceMeta:
    """Per-session bookkeeping for what has been recorded."""

    hydrating: bool = False
    hydrated: bool = False
    saved_message_ids: set[str] = field(default_factory=set)
    saved_tool_call_ids: set[str] = field(default_factory=set)
    feed_meta: dict[str, FeedMeta] = field(default_factory=dict)
    sequence: int = 0
    last_plan_hash: str | None = None


@dataclass
class PendingWrite:
    message: StoredMessage
    task_id: str
    attempts: int = 0


class PersistenceAdapter:
    """Sanitizes, wraps and writes feed items; hydrates them back."""

    def __init__(
        self,
        store: MessageStore | None,
        config: PersistenceConfig | None = None,
        tracker: ToolCallTracker | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.config = config or PersistenceConfig()
        self.tracker = tracker or ToolCallTracker()
        self._clock = clock
        self._meta: dict[SessionKey, PersistenceMeta] = {}
        self._queue: list[PendingWrite] = []
        self._conversations_ready: set[str] = set()
        self._flush_task: asyncio.Task[None] | None = None
        self._flush_lock: asyncio.Lock | None = None

    @property
    def enabled(self) -> bool:
        return self.store is not None and self.config.enabled

    @property
    def pending_writes(self) -> int:
        return len(self._queue)

    def meta(self, key: SessionKey) -> PersistenceMeta:
        meta = self._meta.get(key)
        if meta is None:
            meta = self._meta[key] = PersistenceMeta()
        return meta

    def _timestamp(self) -> str:
        return datetime.fromtimestamp(self._clock(), timezone.utc).isoformat()

    def ensure_feed_meta(self, key: SessionKey, feed_id: str) -> FeedMeta:
        """Sequence and creation time of a feed id, assigned on first reference."""
        meta = self.meta(key)
        existing = meta.feed_meta.get(feed_id)
        if existing is not None:
            return existing
        assigned = FeedMeta(sequence=meta.sequence, created_at=self._timestamp())
        meta.sequence += 1
        meta.feed_meta[feed_id] = assigned
        return assigned

    # --- Recording ---

    def _accepting(self, key: SessionKey) -> bool:
        return self.enabled and not self.meta(key).hydrating

    def _enqueue(
        self,
        key: SessionKey,
        envelope: MessageEnvelope | ToolEnvelope | PlanEnvelope,
        *,
        message_id: str,
        content: str,
        sender: str,
    ) -> None:
        message = StoredMessage(
            id=message_id,
            conversation_id=conversation_id_for(key.task_id),
            content=content,
            sender=sender,
            metadata=envelope_metadata(envelope),
            timestamp=envelope.created_at,
        )
        self._queue.append(PendingWrite(message=message, task_id=key.task_id))
        self._schedule_flush()

    def _envelope_fields(self, key: SessionKey, session_id: str | None, feed_id: str) -> dict:
        feed_meta = self.ensure_feed_meta(key, feed_id)
        return {
            "version": ENVELOPE_VERSION,
            "feed_id": feed_id,
            "sequence": feed_meta.sequence,
            "created_at": feed_meta.created_at,
            "provider_id": key.provider_id,
            "session_id": session_id,
            "task_id": key.task_id,
        }

    def persist_messages(
        self, key: SessionKey, session_id: str | None, feed: Iterable[FeedItem]
    ) -> list[str]:
        """Queue every finalized, not yet saved message. Returns the queued feed ids."""
        if not self._accepting(key):
            return []
        meta = self.meta(key)
        queued: list[str] = []
        for item in feed:
            if not isinstance(item, MessageItem) or item.streaming:
                continue
            if item.id in meta.saved_message_ids:
                continue
            blocks = sanitize_blocks(item.blocks, self.config)
            record = message_record(item, blocks)
            if record is None:
                continue
            envelope = MessageEnvelope(
                **self._envelope_fields(key, session_id, item.id),
                item=record,
            )
            self._enqueue(
                key,
                envelope,
                message_id=f"acp-{item.id}",
                content=build_persisted_content(blocks, self.config),
                sender="user" if item.role is Role.USER else "agent",
            )
            meta.saved_message_ids.add(item.id)
            queued.append(item.id)
        return queued

    def persist_tool_calls(
        self,
        key: SessionKey,
        session_id: str | None,
        tool_calls: Mapping[str, ToolCall],
        terminals: Mapping[str, str],
    ) -> list[str]:
        """Queue tool calls that just reached a terminal status. Returns their ids."""
        if not self._accepting(key):
            return []
        meta = self.meta(key)
        queued: list[str] = []
        for call in finished_unsaved(dict(tool_calls), meta.saved_tool_call_ids):
            feed_id = tool_feed_id(call.tool_call_id)
            envelope = ToolEnvelope(
                **self._envelope_fields(key, session_id, feed_id),
                item=tool_record(call, terminals, self.config, self.tracker),
            )
            self._enqueue(
                key,
                envelope,
                message_id=f"acp-tool-{call.tool_call_id}",
                content=call.label,
                sender="agent",
            )
            meta.saved_tool_call_ids.add(call.tool_call_id)
            queued.append(call.tool_call_id)
        return queued

    def maybe_persist_plan(
        self, key: SessionKey, session_id: str | None, entries: tuple[PlanEntry, ...]
    ) -> bool:
        """Queue a plan snapshot unless it is empty or unchanged since the last one."""
        if not entries or not self._accepting(key):
            return False
        meta = self.meta(key)
        fingerprint = plan_hash(entries)
        if meta.last_plan_hash == fingerprint:
            return False
        meta.last_plan_hash = fingerprint
        feed_id = new_feed_id("plan")
        envelope = PlanEnvelope(
            **self._envelope_fields(key, session_id, feed_id),
            item=plan_record(entries),
        )
        self._enqueue(key, envelope, message_id=f"acp-{feed_id}", content=PLAN_CONTENT, sender="agent")
        return True

    # --- Writing ---

    def _schedule_flush(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return  # No loop; flush() drains the queue later
        if self._flush_task is None or self._flush_task.done():
            self._flush_task = loop.create_task(self.flush())

    async def _ensure_conversation(self, task_id: str, conversation_id: str) -> None:
        if conversation_id in self._conversations_ready or self.store is None:
            return
        await self.store.save_conversation(conversation_id, task_id, self.config.conversation_title)
        self._conversations_ready.add(conversation_id)

    async def flush(self) -> int:
        """Write every queued record. Returns how many were stored.

        A failed write is retried with its original envelope until it has
        failed ``max_write_attempts`` times, then dropped with a warning.
        """
        if self.store is None:
            self._queue.clear()
            return 0
        if self._flush_lock is None:
            self._flush_lock = asyncio.Lock()

        written = 0
        async with self._flush_lock:
            while self._queue:
                batch, self._queue = self._queue, []
                retry: list[PendingWrite] = []
                for write in batch:
                    message = write.message
                    try:
                        await self._ensure_conversation(write.task_id, message.conversation_id)
                        if await self.store.save_message(message):
                            written += 1
                        else:
                            log.log(VERBOSE, "Message %s already stored", message.id)
                    except Exception as e:
                        write.attempts += 1
                        if write.attempts < self.config.max_write_attempts:
                            log.warning("Failed to persist %s (attempt %d): %s", message.id, write.attempts, e)
                            retry.append(write)
                        else:
                            log.warning("Giving up on %s after %d attempts: %s", message.id, write.attempts, e)
                self._queue = retry + self._queue
        return written

    async def aclose(self) -> None:
        """Drain pending writes and stop the background flush."""
        task, self._flush_task = self._flush_task, None
        if task is not None and not task.done():
            await task
        await self.flush()

    # --- Hydration ---

    async def hydrate(self, key: SessionKey) -> HydratedState | None:
        """Load and replay stored history for a session.

        Returns None when hydration is already running or has already
        completed for ``key``, or when there is no store. Errors from the
        store propagate; the session is still marked hydrated.
        """
        meta = self.meta(key)
        if meta.hydrating or meta.hydrated:
            return None
        if self.store is None:
            meta.hydrated = True
            return None

        meta.hydrating = True
        try:
            conversation_id = conversation_id_for(key.task_id)
            await self._ensure_conversation(key.task_id, conversation_id)
            rows = await self.store.get_messages(conversation_id)
            state = hydrate_history(rows, self.tracker, now=self._timestamp())
            meta.saved_message_ids |= state.saved_message_ids
            meta.saved_tool_call_ids |= state.saved_tool_call_ids
            for feed_id, feed_meta in state.feed_meta.items():
                meta.feed_meta.setdefault(feed_id, feed_meta)
            meta.sequence = max(meta.sequence, state.next_sequence)
            if state.plan:
                meta.last_plan_hash = plan_hash(state.plan)
            return state
        finally:
            meta.hydrating = False
            meta.hydrated = True
