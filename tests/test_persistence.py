"""Tests for the persistence adapter, envelopes and hydration.

Tests coverage for:
- src/acpsessions/persistence/adapter.py
- src/acpsessions/persistence/envelope.py
- src/acpsessions/persistence/hydrate.py
- src/acpsessions/persistence/snapshots.py
"""

from __future__ import annotations

import asyncio
import itertools
import json
from typing import Any
from unittest.mock import AsyncMock

import pytest

from acpsessions.config import PersistenceConfig
from acpsessions.errors import ProtocolParseAnomaly
from acpsessions.feed.items import (
    DiffEntry,
    MessageItem,
    MessageKind,
    PlanItem,
    Role,
    TerminalEntry,
    ToolCall,
    ToolCallStatus,
    ToolItem,
)
from acpsessions.feed.tool_calls import ToolCallTracker
from acpsessions.persistence import (
    InMemoryMessageStore,
    MessageEnvelope,
    PersistenceAdapter,
    StoredMessage,
    hydrate_history,
    parse_envelope,
)
from acpsessions.persistence.sanitize import IMAGE_PLACEHOLDER
from acpsessions.persistence.storage import conversation_id_for
from acpsessions.types.content import EmbeddedResource, ImageBlock, PlanEntry, ResourceBlock, TextBlock
from tests.utils import KEY, FakeClock

CONVERSATION = conversation_id_for(KEY.task_id)


def message(item_id: str, value: str, role: Role = Role.ASSISTANT, streaming: bool = False) -> MessageItem:
    return MessageItem(id=item_id, role=role, blocks=(TextBlock(text=value),), streaming=streaming)


def row(
    feed_id: str,
    sequence: int | None,
    *,
    kind: str = "message",
    created_at: str = "2024-05-01T10:00:00+00:00",
    item: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Raw stored row as a message store returns it."""
    if item is None:
        item = {"role": "assistant", "blocks": [{"type": "text", "text": feed_id}]}
    envelope: dict[str, Any] = {
        "version": 1,
        "type": kind,
        "feedId": feed_id,
        "createdAt": created_at,
        "item": item,
    }
    if sequence is not None:
        envelope["sequence"] = sequence
    return {
        "id": f"acp-{feed_id}",
        "conversationId": CONVERSATION,
        "content": feed_id,
        "sender": "agent",
        "metadata": {"acp": envelope},
    }


@pytest.fixture
def message_store() -> InMemoryMessageStore:
    return InMemoryMessageStore()


@pytest.fixture
def adapter(message_store: InMemoryMessageStore) -> PersistenceAdapter:
    return PersistenceAdapter(message_store, clock=FakeClock())


# =============================================================================
# Envelopes
# =============================================================================


class TestParseEnvelope:
    """Test envelope validation."""

    def stored(self, metadata: Any) -> StoredMessage:
        return StoredMessage(id="r1", conversation_id=CONVERSATION, metadata=metadata)

    def test_valid_message_envelope(self) -> None:
        envelope = parse_envelope(StoredMessage.model_validate(row("msg-1", 0)))

        assert isinstance(envelope, MessageEnvelope)
        assert envelope.feed_id == "msg-1"
        assert envelope.item.role is Role.ASSISTANT

    def test_json_string_metadata(self) -> None:
        """Test that metadata stored as a JSON string is accepted."""
        metadata = json.dumps(row("msg-1", 3)["metadata"])

        assert parse_envelope(self.stored(metadata)).sequence == 3

    @pytest.mark.parametrize(
        "metadata",
        [
            None,
            "not json",
            "[1, 2]",
            {"other": {}},
            {"acp": {"version": 2, "type": "message"}},
            {"acp": {"version": 1, "type": "unknown"}},
            {"acp": {"version": 1, "type": "tool", "item": {}}},
        ],
    )
    def test_unreadable_metadata_raises(self, metadata: Any) -> None:
        """Test that every kind of bad envelope is a ProtocolParseAnomaly."""
        with pytest.raises(ProtocolParseAnomaly):
            parse_envelope(self.stored(metadata))


# =============================================================================
# Recording
# =============================================================================


class TestPersistMessages:
    """Test recording of finalized messages."""

    @pytest.mark.asyncio
    async def test_finalized_message_is_written(
        self, adapter: PersistenceAdapter, message_store: InMemoryMessageStore
    ) -> None:
        """Test the stored row carries the envelope, plain content and sender."""
        queued = adapter.persist_messages(KEY, "sess-1", [message("msg-1", "Hello", role=Role.USER)])
        await adapter.flush()

        assert queued == ["msg-1"]
        (stored,) = await message_store.get_messages(CONVERSATION)
        assert stored.id == "acp-msg-1"
        assert stored.content == "Hello"
        assert stored.sender == "user"
        envelope = parse_envelope(stored)
        assert envelope.session_id == "sess-1"
        assert envelope.provider_id == KEY.provider_id
        assert envelope.task_id == KEY.task_id
        assert envelope.item.blocks == [{"type": "text", "text": "Hello"}]

    def test_streaming_messages_are_skipped(self, adapter: PersistenceAdapter) -> None:
        assert adapter.persist_messages(KEY, None, [message("msg-1", "Hel", streaming=True)]) == []

    def test_each_message_written_once(self, adapter: PersistenceAdapter) -> None:
        """Test that saved feed ids are never queued again."""
        feed = [message("msg-1", "a")]

        adapter.persist_messages(KEY, None, feed)
        again = adapter.persist_messages(KEY, None, [*feed, message("msg-2", "b")])

        assert again == ["msg-2"]
        assert adapter.pending_writes == 2

    def test_message_without_storable_content_is_skipped(self, adapter: PersistenceAdapter) -> None:
        empty = MessageItem(id="msg-1", role=Role.ASSISTANT, blocks=(TextBlock(text=""),))

        assert adapter.persist_messages(KEY, None, [empty]) == []

    def test_image_is_stored_as_placeholder(self, adapter: PersistenceAdapter) -> None:
        item = MessageItem(id="msg-1", role=Role.USER, blocks=(ImageBlock(data="AAAA"),))

        adapter.persist_messages(KEY, None, [item])

        assert "AAAA" not in json.dumps(adapter._queue[0].message.to_wire())

    @pytest.mark.asyncio
    async def test_stored_content_respects_block_ceilings(
        self, adapter: PersistenceAdapter, message_store: InMemoryMessageStore
    ) -> None:
        """Test the plain content string is built from the bounded blocks."""
        resource = ResourceBlock(resource=EmbeddedResource(uri="file:///big.txt", text="r" * 5000))
        feed = [
            MessageItem(id="m1", role=Role.USER, blocks=(resource,)),
            MessageItem(id="m2", role=Role.USER, blocks=(ImageBlock(data="AAAA"),)),
            message("m3", "t" * 9000),
        ]

        adapter.persist_messages(KEY, None, feed)
        await adapter.flush()

        rows = {row.id: row.content for row in await message_store.get_messages(CONVERSATION)}
        assert len(rows["acp-m1"]) <= adapter.config.max_resource_chars
        assert rows["acp-m2"] == IMAGE_PLACEHOLDER
        assert len(rows["acp-m3"]) == adapter.config.max_text_chars

    def test_disabled_persistence_records_nothing(self, message_store: InMemoryMessageStore) -> None:
        adapter = PersistenceAdapter(message_store, PersistenceConfig(enabled=False))

        assert adapter.enabled is False
        assert adapter.persist_messages(KEY, None, [message("msg-1", "a")]) == []

    def test_no_store_records_nothing(self) -> None:
        assert PersistenceAdapter(None).persist_messages(KEY, None, [message("msg-1", "a")]) == []


class TestOrderingMetadata:
    """Test that feed order survives out-of-order writes."""

    @pytest.mark.asyncio
    async def test_sequence_fixed_at_first_reference(
        self, adapter: PersistenceAdapter, message_store: InMemoryMessageStore
    ) -> None:
        """Test a message referenced first but written last still hydrates first."""
        adapter.ensure_feed_meta(KEY, "msg-first")
        adapter.ensure_feed_meta(KEY, "msg-second")

        adapter.persist_messages(KEY, None, [message("msg-second", "2")])
        adapter.persist_messages(KEY, None, [message("msg-first", "1")])
        await adapter.flush()

        rows = await message_store.get_messages(CONVERSATION)
        assert [stored.id for stored in rows] == ["acp-msg-second", "acp-msg-first"]
        state = hydrate_history(rows)
        assert [item.id for item in state.feed] == ["msg-first", "msg-second"]

    def test_feed_meta_is_stable(self, adapter: PersistenceAdapter) -> None:
        first = adapter.ensure_feed_meta(KEY, "a")

        assert adapter.ensure_feed_meta(KEY, "a") is first
        assert adapter.ensure_feed_meta(KEY, "b").sequence == first.sequence + 1


class TestPersistToolCalls:
    """Test recording of finished tool calls."""

    def test_only_terminal_tool_calls_are_written(self, adapter: PersistenceAdapter) -> None:
        calls = {
            "a": ToolCall("a", status=ToolCallStatus.IN_PROGRESS),
            "b": ToolCall("b", status=ToolCallStatus.COMPLETED),
        }

        assert adapter.persist_tool_calls(KEY, None, calls, {}) == ["b"]
        assert adapter.persist_tool_calls(KEY, None, calls, {}) == []

    @pytest.mark.asyncio
    async def test_tool_snapshot_is_bounded(
        self, message_store: InMemoryMessageStore
    ) -> None:
        """Test diffs keep only their preview and terminals only their tail."""
        config = PersistenceConfig(max_terminal_lines=2)
        adapter = PersistenceAdapter(message_store, config)
        tracker = ToolCallTracker()
        call = tracker.merge(
            None,
            {
                "toolCallId": "t1",
                "title": "Edit",
                "status": "completed",
                "rawInput": {"path": "a.txt", "content": "x" * 500},
                "content": [
                    {"type": "diff", "path": "a.txt", "oldText": "a\nb", "newText": "a\nc"},
                    {"type": "terminal", "terminalId": "term-1"},
                    {"type": "terminal", "terminalId": "term-1"},
                ],
            },
        )

        adapter.persist_tool_calls(KEY, "sess-1", {"t1": call}, {"term-1": "one\ntwo\nthree"})
        await adapter.flush()

        (stored,) = await message_store.get_messages(CONVERSATION)
        assert stored.id == "acp-tool-t1"
        assert stored.content == "Edit"
        record = parse_envelope(stored).item
        diff = record.content[0]
        assert diff["type"] == "diff"
        assert "oldText" not in diff and "newText" not in diff
        assert diff["preview"]["additions"] == 1
        assert [entry for entry in record.content if entry["type"] == "terminal"] == [
            {"type": "terminal", "terminalId": "term-1"}
        ]
        (preview,) = record.terminal_preview
        assert preview.lines == ["two", "three"]
        assert preview.truncated is True
        assert json.loads(record.raw_input) == {"path": "a.txt"}

    def test_tool_hydrates_with_terminal_buffer(self, adapter: PersistenceAdapter) -> None:
        """Test a stored tool call comes back with its content and terminal tail."""
        call = ToolCall(
            "t1",
            title="Run",
            status=ToolCallStatus.FAILED,
            content=(TerminalEntry("term-1"),),
        )
        adapter.persist_tool_calls(KEY, None, {"t1": call}, {"term-1": "boom"})
        rows = [write.message for write in adapter._queue]

        state = hydrate_history(rows)

        assert state.feed == (ToolItem(id="tool-t1", tool_call_id="t1"),)
        assert state.tool_calls["t1"].status is ToolCallStatus.FAILED
        assert state.tool_calls["t1"].content == (TerminalEntry("term-1"),)
        assert state.terminals == {"term-1": "boom"}
        assert state.saved_tool_call_ids == {"t1"}


class TestPersistPlan:
    """Test plan snapshots."""

    def test_empty_plan_not_written(self, adapter: PersistenceAdapter) -> None:
        assert adapter.maybe_persist_plan(KEY, None, ()) is False

    def test_unchanged_plan_not_written_twice(self, adapter: PersistenceAdapter) -> None:
        entries = (PlanEntry(content="step 1", status="pending"),)

        assert adapter.maybe_persist_plan(KEY, None, entries) is True
        assert adapter.maybe_persist_plan(KEY, None, entries) is False
        assert adapter.maybe_persist_plan(KEY, None, (PlanEntry(content="step 1", status="completed"),)) is True

    def test_plan_snapshots_get_fresh_ids(self, adapter: PersistenceAdapter) -> None:
        adapter.maybe_persist_plan(KEY, None, (PlanEntry(content="a"),))
        adapter.maybe_persist_plan(KEY, None, (PlanEntry(content="b"),))

        ids = [write.message.id for write in adapter._queue]
        assert len(set(ids)) == 2
        assert all(message_id.startswith("acp-plan-") for message_id in ids)


# =============================================================================
# Writing
# =============================================================================


class TestFlush:
    """Test write retries."""

    @pytest.mark.asyncio
    async def test_failed_write_is_retried_with_same_envelope(self) -> None:
        """Test that a transient store failure does not lose the record."""
        store = AsyncMock()
        store.save_message.side_effect = [OSError("disk busy"), True]
        adapter = PersistenceAdapter(store)
        adapter.persist_messages(KEY, None, [message("msg-1", "a")])

        written = await adapter.flush()

        assert written == 1
        assert adapter.pending_writes == 0
        first, second = (call.args[0] for call in store.save_message.await_args_list)
        assert first == second
        store.save_conversation.assert_awaited_with(CONVERSATION, KEY.task_id, "ACP Chat")

    @pytest.mark.asyncio
    async def test_write_dropped_after_max_attempts(self) -> None:
        store = AsyncMock()
        store.save_message.side_effect = OSError("read-only")
        adapter = PersistenceAdapter(store, PersistenceConfig(max_write_attempts=2))
        adapter.persist_messages(KEY, None, [message("msg-1", "a")])

        assert await adapter.flush() == 0
        assert store.save_message.await_count == 2
        assert adapter.pending_writes == 0

    @pytest.mark.asyncio
    async def test_duplicate_insert_is_not_counted(
        self, adapter: PersistenceAdapter, message_store: InMemoryMessageStore
    ) -> None:
        """Test that an insert-or-ignore collision is not an error."""
        adapter.persist_messages(KEY, None, [message("msg-1", "a")])
        await adapter.flush()
        second = PersistenceAdapter(message_store)
        second.persist_messages(KEY, None, [message("msg-1", "a")])

        assert await second.flush() == 0
        assert len(await message_store.get_messages(CONVERSATION)) == 1

    @pytest.mark.asyncio
    async def test_background_flush(
        self, adapter: PersistenceAdapter, message_store: InMemoryMessageStore
    ) -> None:
        """Test that writes queued inside a running loop drain on their own."""
        adapter.persist_messages(KEY, None, [message("msg-1", "a")])

        await adapter.aclose()

        assert len(await message_store.get_messages(CONVERSATION)) == 1


# =============================================================================
# Hydration
# =============================================================================


class TestHydrateHistory:
    """Test replay of stored rows into a feed."""

    def test_rows_replayed_in_sequence_order(self) -> None:
        rows = [row("msg-c", 2), row("msg-a", 0), row("msg-b", 1)]

        state = hydrate_history(rows)

        assert [item.id for item in state.feed] == ["msg-a", "msg-b", "msg-c"]
        assert state.next_sequence == 3
        assert state.saved_message_ids == {"msg-a", "msg-b", "msg-c"}
        assert state.has_messages is True

    def test_order_is_independent_of_row_order(self) -> None:
        """Test that every arrival order of the same rows hydrates identically."""
        rows = [
            row("msg-a", 0),
            row("tool-t1", 1, kind="tool", item={"toolCallId": "t1", "status": "completed"}),
            row("plan-1", 2, kind="plan", item={"entries": [{"content": "step"}]}),
            row("msg-b", 3),
        ]
        expected = ["msg-a", "tool-t1", "plan-1", "msg-b"]

        for permutation in itertools.permutations(rows):
            state = hydrate_history(list(permutation))
            assert [item.id for item in state.feed] == expected

    def test_timestamp_then_id_break_ties(self) -> None:
        """Test rows without a sequence fall back to time, then feed id."""
        rows = [
            row("msg-z", None, created_at="2024-05-01T10:00:00+00:00"),
            row("msg-late", None, created_at="2024-05-01T11:00:00Z"),
            row("msg-y", None, created_at="2024-05-01T10:00:00+00:00"),
        ]

        state = hydrate_history(rows)

        assert [item.id for item in state.feed] == ["msg-y", "msg-z", "msg-late"]

    def test_unreadable_rows_are_skipped(self) -> None:
        rows = [
            {"id": "legacy", "conversationId": CONVERSATION, "content": "plain chat", "metadata": None},
            {"nonsense": True},
            row("msg-a", 0),
        ]

        state = hydrate_history(rows)

        assert [item.id for item in state.feed] == ["msg-a"]

    def test_row_content_fills_in_missing_blocks(self) -> None:
        """Test a message stored without blocks falls back to its plain content."""
        stored = row("msg-a", 0, item={"messageKind": "thought", "runDurationMs": 40})
        stored["sender"] = "user"

        (item,) = hydrate_history([stored]).feed

        assert item.role is Role.USER
        assert item.blocks == (TextBlock(text="msg-a"),)
        assert item.message_kind is MessageKind.THOUGHT
        assert item.run_duration_ms == 40
        assert item.streaming is False

    def test_latest_tool_record_wins_at_first_position(self) -> None:
        rows = [
            row("tool-t1", 0, kind="tool", item={"toolCallId": "t1", "status": "in_progress"}),
            row("msg-a", 1),
            row("tool-t1-again", 2, kind="tool", item={"toolCallId": "t1", "status": "completed"}),
        ]

        state = hydrate_history(rows)

        assert [item.id for item in state.feed] == ["tool-t1", "msg-a"]
        assert state.tool_calls["t1"].status is ToolCallStatus.COMPLETED

    def test_latest_plan_wins_at_first_plan_position(self) -> None:
        """Test the plan marker sits where the first non-empty plan was recorded."""
        rows = [
            row("plan-empty", 0, kind="plan", item={"entries": []}),
            row("plan-1", 1, kind="plan", item={"entries": [{"content": "old"}]}),
            row("msg-a", 2),
            row("plan-2", 3, kind="plan", item={"entries": [{"content": "new"}]}),
        ]

        state = hydrate_history(rows)

        assert state.feed == (PlanItem(id="plan-1"), state.feed[1])
        assert state.plan == (PlanEntry(content="new"),)

    def test_diff_preview_survives_hydration(self) -> None:
        rows = [
            row(
                "tool-t1",
                0,
                kind="tool",
                item={
                    "toolCallId": "t1",
                    "status": "completed",
                    "content": [
                        {"type": "diff", "path": "a", "preview": {"lines": [{"type": "add", "text": "x"}], "additions": 1}}
                    ],
                },
            )
        ]

        (entry,) = hydrate_history(rows).tool_calls["t1"].content

        assert isinstance(entry, DiffEntry)
        assert entry.preview.additions == 1


class TestAdapterHydrate:
    """Test adapter-level hydration bookkeeping."""

    @pytest.mark.asyncio
    async def test_hydrate_runs_once(
        self, adapter: PersistenceAdapter, message_store: InMemoryMessageStore
    ) -> None:
        for stored in (row("msg-a", 0), row("msg-b", 1)):
            await message_store.save_message(StoredMessage.model_validate(stored))

        first = await adapter.hydrate(KEY)
        second = await adapter.hydrate(KEY)

        assert [item.id for item in first.feed] == ["msg-a", "msg-b"]
        assert second is None

    @pytest.mark.asyncio
    async def test_hydrated_items_are_not_rewritten(
        self, adapter: PersistenceAdapter, message_store: InMemoryMessageStore
    ) -> None:
        """Test that replayed history counts as already saved."""
        await message_store.save_message(StoredMessage.model_validate(row("msg-a", 4)))

        state = await adapter.hydrate(KEY)

        assert adapter.persist_messages(KEY, None, state.feed) == []
        assert adapter.ensure_feed_meta(KEY, "msg-new").sequence == 5

    @pytest.mark.asyncio
    async def test_no_writes_while_hydrating(self) -> None:
        """Test that concurrent hydration is refused and recording is paused."""
        gate = asyncio.Event()
        store = AsyncMock()

        async def get_messages(conversation_id: str) -> list[StoredMessage]:
            await gate.wait()
            return []

        store.get_messages.side_effect = get_messages
        adapter = PersistenceAdapter(store)

        task = asyncio.create_task(adapter.hydrate(KEY))
        await asyncio.sleep(0)
        assert adapter.meta(KEY).hydrating is True
        assert await adapter.hydrate(KEY) is None
        assert adapter.persist_messages(KEY, None, [message("msg-1", "a")]) == []

        gate.set()
        assert await task is not None
        assert adapter.meta(KEY).hydrated is True
        assert adapter.persist_messages(KEY, None, [message("msg-1", "a")]) == ["msg-1"]

    @pytest.mark.asyncio
    async def test_store_error_still_marks_hydrated(self) -> None:
        store = AsyncMock()
        store.get_messages.side_effect = OSError("gone")
        adapter = PersistenceAdapter(store)

        with pytest.raises(OSError):
            await adapter.hydrate(KEY)

        meta = adapter.meta(KEY)
        assert meta.hydrating is False
        assert meta.hydrated is True
