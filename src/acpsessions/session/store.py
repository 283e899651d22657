"""Session Store: registry of per-(task, backend) session state.

Inbound transport events are routed to the session they belong to and folded
into its state; outbound operations call the transport and record the
outcome. Every mutation replaces the SessionState value and then notifies
that session's listeners synchronously.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass, field, replace
from typing import Any

from acpsessions.config.schema import Config
from acpsessions.errors import (
    EmptyPrompt,
    PromptDispatchFailure,
    SessionError,
    SessionNotReady,
    SessionStartFailure,
    SessionTerminated,
    TransportCallFailure,
)
from acpsessions.feed.items import (
    MessageKind,
    PermissionOutcome,
    Role,
)
from acpsessions.feed.permissions import PermissionNegotiator, permission_feed_id
from acpsessions.feed.reconstructor import (
    append_message,
    ensure_plan_item,
    finalize_messages,
    new_feed_id,
    role_for_update,
    stop_reason_message,
)
from acpsessions.feed.terminal import truncate_to_tail_lines
from acpsessions.feed.tool_calls import ToolCallTracker, cancel_unfinished, tool_feed_id
from acpsessions.logging import VERBOSE, SessionLogAdapter, session_logger
from acpsessions.persistence.adapter import PersistenceAdapter
from acpsessions.session.options import (
    extract_config_options,
    extract_current_mode_id,
    extract_current_model_id,
    extract_models_from_payload,
    option_matches_config_id,
    prompt_caps_from_capabilities,
)
from acpsessions.session.protocols import (
    OperationResult,
    SessionTransport,
    response_error,
    response_succeeded,
)
from acpsessions.session.state import SessionState, SessionStatus, can_transition
from acpsessions.types.content import (
    ContentBlock,
    is_blank_prompt,
    parse_content_blocks,
    parse_plan_entries,
)
from acpsessions.types.events import (
    InboundEvent,
    PermissionRequestEvent,
    PromptEndEvent,
    RequestId,
    SessionErrorEvent,
    SessionExitEvent,
    SessionKey,
    SessionStartedEvent,
    SessionUpdateEvent,
    SessionUpdateKind,
    TerminalExitEvent,
    TerminalOutputEvent,
    parse_event,
    session_update_kind,
)


Listener = Callable[[], None]

_CONFIG_ONLY_UPDATES = frozenset(
    {
        SessionUpdateKind.CONFIG_OPTION_UPDATE,
        SessionUpdateKind.CONFIG_OPTIONS_UPDATE,
        SessionUpdateKind.MODEL_UPDATE,
    }
)


@dataclass
class _SessionRecord:
    key: SessionKey
    state: SessionState
    listeners: list[Listener] = field(default_factory=list)
    last_assistant_message_id: str | None = None
    log: SessionLogAdapter = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.log = session_logger("store", self.key)


class SessionStore:
    """Owns every session's state and the operations that change it.

    One store is created per process and handed to whatever needs it.
    Sessions are created lazily on first reference and are independent of
    each other.
    """

    def __init__(
        self,
        transport: SessionTransport,
        *,
        persistence: PersistenceAdapter | None = None,
        config: Config | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config or Config()
        self._transport = transport
        self._clock = clock
        self._tracker = ToolCallTracker(self.config.diff)
        self._negotiator = PermissionNegotiator(self._tracker)
        self._persistence = persistence or PersistenceAdapter(
            None, self.config.persistence, self._tracker, clock
        )
        self._records: dict[SessionKey, _SessionRecord] = {}

    @property
    def persistence(self) -> PersistenceAdapter:
        return self._persistence

    def keys(self) -> list[SessionKey]:
        return list(self._records)

    # -------------------------------------------------------------------------
    # State plumbing
    # -------------------------------------------------------------------------

    def _record(self, key: SessionKey) -> _SessionRecord:
        key = SessionKey(*key)
        record = self._records.get(key)
        if record is None:
            record = _SessionRecord(key, SessionState(task_id=key.task_id, provider_id=key.provider_id))
            self._records[key] = record
        return record

    def _update(self, record: _SessionRecord, **changes: Any) -> SessionState:
        prev = record.state
        status = changes.get("status")
        if status is not None and not can_transition(prev.status, status):
            record.log.log(VERBOSE, "Ignoring status change %s -> %s", prev.status.value, status.value)
            del changes["status"]
        if all(getattr(prev, name) is value or getattr(prev, name) == value for name, value in changes.items()):
            return prev
        record.state = replace(prev, **changes)
        self._emit(record)
        return record.state

    def _emit(self, record: _SessionRecord) -> None:
        for listener in list(record.listeners):
            try:
                listener()
            except Exception:
                record.log.exception("Session listener failed")

    def _touch_feed_id(self, record: _SessionRecord, feed_id: str) -> None:
        self._persistence.ensure_feed_meta(record.key, feed_id)

    def _persist(self, record: _SessionRecord) -> None:
        state = record.state
        self._persistence.persist_messages(record.key, state.session_id, state.feed)
        self._persistence.persist_tool_calls(
            record.key, state.session_id, state.tool_calls, state.terminals
        )

    def subscribe(self, key: SessionKey, listener: Listener) -> Callable[[], None]:
        """Register a change listener; returns a function that removes it."""
        record = self._record(key)
        record.listeners.append(listener)

        def unsubscribe() -> None:
            if listener in record.listeners:
                record.listeners.remove(listener)

        return unsubscribe

    def get_snapshot(self, key: SessionKey) -> SessionState:
        """Current state; the same object until the session next changes."""
        return self._record(key).state

    # -------------------------------------------------------------------------
    # Inbound events
    # -------------------------------------------------------------------------

    def handle_event(self, payload: Mapping[str, Any] | InboundEvent) -> None:
        """Fold one inbound transport event into its session."""
        event = parse_event(payload)
        if event is None:
            return
        record = self._record(event.key)
        try:
            self._dispatch(record, event)
        except Exception:
            record.log.exception("Failed to handle %s event", event.type)

    def _dispatch(self, record: _SessionRecord, event: InboundEvent) -> None:
        match event:
            case SessionStartedEvent():
                self._on_session_started(record, event)
            case SessionErrorEvent():
                self._update(
                    record,
                    session_error=event.error or SessionError.default_message,
                    status=SessionStatus.ERROR,
                    is_running=False,
                    run_started_at=None,
                )
            case SessionExitEvent():
                self._on_session_exit(record)
            case PromptEndEvent():
                self._on_prompt_end(record, event)
            case TerminalOutputEvent():
                self._on_terminal_output(record, event)
            case TerminalExitEvent():
                record.log.log(VERBOSE, "Terminal %s exited with %s", event.terminal_id, event.exit_code)
            case SessionUpdateEvent():
                if event.update:
                    self._on_session_update(record, event.update)
            case PermissionRequestEvent():
                self._on_permission_request(record, event)

    def _on_session_started(self, record: _SessionRecord, event: SessionStartedEvent) -> None:
        changes: dict[str, Any] = {
            "session_error": None,
            "status": SessionStatus.READY,
            "session_id": event.session_id or record.state.session_id,
        }
        caps = prompt_caps_from_capabilities(event.agent_capabilities)
        if caps is not None:
            changes["prompt_caps"] = caps
        self._update(record, **changes)
        self._apply_config_updates(record, event.model_dump(by_alias=True))

    def _on_session_exit(self, record: _SessionRecord) -> None:
        state = record.state
        cleared = self._negotiator.clear(state.feed)
        self._update(
            record,
            is_running=False,
            run_started_at=None,
            session_id=None,
            status=SessionStatus.EXITED,
            session_error=state.session_error or SessionTerminated().message,
            tool_calls=cancel_unfinished(state.tool_calls),
            permissions=cleared.permissions,
            feed=cleared.feed,
        )
        self._persist(record)

    def _on_prompt_end(self, record: _SessionRecord, event: PromptEndEvent) -> None:
        state = record.state
        if state.run_started_at is not None:
            duration_ms = int(round((self._clock() - state.run_started_at) * 1000))
        else:
            duration_ms = state.run_elapsed_ms
        feed, _ = finalize_messages(
            state.feed,
            last_assistant_id=record.last_assistant_message_id,
            duration_ms=duration_ms,
        )
        record.last_assistant_message_id = None

        stop = stop_reason_message(event.stop_reason)
        if stop is not None:
            self._touch_feed_id(record, stop.id)
            feed = (*feed, stop)

        self._update(
            record,
            is_running=False,
            run_started_at=None,
            run_elapsed_ms=duration_ms,
            feed=feed,
        )
        self._persist(record)

    def _on_terminal_output(self, record: _SessionRecord, event: TerminalOutputEvent) -> None:
        if not event.terminal_id or not event.chunk:
            return
        terminals = record.state.terminals
        buffer = truncate_to_tail_lines(
            terminals.get(event.terminal_id, "") + event.chunk,
            self.config.terminal.live_lines,
            self.config.terminal.slack_lines,
        )
        self._update(
            record,
            session_error=None,
            terminals={**terminals, event.terminal_id: buffer},
        )

    def _on_session_update(self, record: _SessionRecord, update: dict[str, Any]) -> None:
        kind = session_update_kind(update)
        if kind is None:
            return
        self._apply_config_updates(record, update)
        if kind in _CONFIG_ONLY_UPDATES:
            return

        if kind is SessionUpdateKind.CURRENT_MODE_UPDATE:
            mode_id = extract_current_mode_id(update)
            if mode_id:
                self._update(record, current_mode_id=mode_id)
            return

        if kind.is_message:
            self._update(record, session_error=None)
            role, message_kind = role_for_update(kind)
            blocks = parse_content_blocks(update.get("content"))
            self._append_message(record, role, blocks, streaming=kind.is_chunk, message_kind=message_kind)
            return

        if kind is SessionUpdateKind.PLAN:
            self._on_plan(record, update)
            return

        if kind in (SessionUpdateKind.TOOL_CALL, SessionUpdateKind.TOOL_CALL_UPDATE):
            self._update(record, session_error=None)
            state = record.state
            result = self._tracker.apply(state.tool_calls, state.feed, update)
            if result.tool_call_id is None:
                return
            if result.created:
                self._touch_feed_id(record, tool_feed_id(result.tool_call_id))
            self._update(record, tool_calls=result.tool_calls, feed=result.feed)
            self._persist(record)

    def _on_plan(self, record: _SessionRecord, update: Mapping[str, Any]) -> None:
        entries = parse_plan_entries(update.get("entries"))
        state = record.state
        plan_id = new_feed_id("plan")
        feed = ensure_plan_item(state.feed, plan_id)
        if feed is not state.feed:
            self._touch_feed_id(record, plan_id)
        self._update(record, session_error=None, plan=entries, feed=feed)
        self._persistence.maybe_persist_plan(record.key, record.state.session_id, entries)

    def _on_permission_request(self, record: _SessionRecord, event: PermissionRequestEvent) -> None:
        request = self._negotiator.request_from_event(event)
        if request is None:
            return
        state = record.state
        change = self._negotiator.add(state.permissions, state.feed, request)
        if change.feed is not state.feed:
            self._touch_feed_id(record, permission_feed_id(request.request_id))
        self._update(record, permissions=change.permissions, feed=change.feed)

    def _append_message(
        self,
        record: _SessionRecord,
        role: Role,
        blocks: list[ContentBlock],
        *,
        streaming: bool,
        message_kind: MessageKind | None = None,
    ) -> None:
        if not blocks:
            return
        result = append_message(
            record.state.feed, role, blocks, streaming=streaming, message_kind=message_kind
        )
        if result.created:
            self._touch_feed_id(record, result.item_id)
        if role is Role.ASSISTANT and message_kind is not MessageKind.THOUGHT:
            record.last_assistant_message_id = result.item_id
        self._update(record, feed=result.feed)
        if not streaming:
            self._persist(record)

    def _apply_config_updates(self, record: _SessionRecord, payload: Mapping[str, Any]) -> None:
        options = extract_config_options(payload)
        models = extract_models_from_payload(payload)
        current = extract_current_model_id(payload)
        if not options and not models and current is None:
            return
        state = record.state
        self._update(
            record,
            config_options=options or state.config_options,
            models=models or state.models,
            current_model_id=current if current is not None else state.current_model_id,
        )

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    async def ensure_session(self, key: SessionKey, cwd: str = ".") -> OperationResult:
        """Start the backend session unless it is already starting or ready.

        A session in ``error`` or ``exited`` is not restarted here; use
        ``restart``.
        """
        record = self._record(key)
        state = record.state
        if state.status in (SessionStatus.STARTING, SessionStatus.READY):
            return OperationResult.ok(state.session_id)
        if state.status in (SessionStatus.ERROR, SessionStatus.EXITED):
            return OperationResult.fail(
                SessionStartFailure(f"Session is {state.status.value}; restart it to continue.")
            )

        self._update(record, status=SessionStatus.STARTING, session_error=None)
        try:
            response = await self._transport.start_session(record.key.task_id, record.key.provider_id, cwd)
        except Exception as e:
            record.log.warning("Failed to start session: %s", e)
            failure = SessionStartFailure(str(e) or None)
            self._update(record, status=SessionStatus.ERROR, session_error=failure.message)
            return OperationResult.fail(failure)

        session_id = response.get("sessionId") if isinstance(response, Mapping) else None
        if not response_succeeded(response) or not session_id:
            failure = SessionStartFailure(response_error(response))
            self._update(record, status=SessionStatus.ERROR, session_error=failure.message)
            return OperationResult.fail(failure)

        changes: dict[str, Any] = {"session_id": str(session_id), "status": SessionStatus.READY}
        caps = prompt_caps_from_capabilities(response.get("agentCapabilities"))
        if caps is not None:
            changes["prompt_caps"] = caps
        self._update(record, **changes)
        self._apply_config_updates(record, response)
        return OperationResult.ok(str(session_id))

    async def send_prompt(
        self,
        key: SessionKey,
        display_blocks: Iterable[ContentBlock | dict[str, Any]],
        wire_blocks: list[dict[str, Any]] | None = None,
    ) -> OperationResult:
        """Echo the prompt into the feed and send it.

        ``wire_blocks`` is what the backend receives; it defaults to the
        display blocks. On failure the echoed message stays in the feed.
        """
        record = self._record(key)
        blocks = parse_content_blocks(list(display_blocks))
        if is_blank_prompt(blocks):
            return OperationResult.fail(EmptyPrompt())
        session_id = record.state.session_id
        if not session_id:
            return OperationResult.fail(SessionNotReady())

        prompt = wire_blocks if wire_blocks is not None else [block.to_wire() for block in blocks]
        self._append_message(record, Role.USER, blocks, streaming=False)
        record.last_assistant_message_id = None
        self._update(record, is_running=True, run_started_at=self._clock(), run_elapsed_ms=0)

        error: str | None = None
        try:
            response = await self._transport.send_prompt(session_id, list(prompt))
        except Exception as e:
            record.log.warning("Failed to send prompt: %s", e)
            response, error = None, str(e) or None

        if not response_succeeded(response):
            failure = PromptDispatchFailure(error or response_error(response))
            self._update(
                record,
                session_error=failure.message,
                is_running=False,
                run_started_at=None,
                run_elapsed_ms=0,
            )
            return OperationResult.fail(failure)
        return OperationResult.ok(response.get("stopReason"))

    async def cancel(self, key: SessionKey) -> OperationResult:
        """Stop the current run locally and ask the backend to stop.

        Unfinished tool calls become ``cancelled`` and pending permission
        requests are answered as cancelled, whatever the transport does.
        """
        record = self._record(key)
        session_id = record.state.session_id
        if not session_id:
            return OperationResult.fail(SessionNotReady())

        failure: SessionError | None = None
        try:
            await self._transport.cancel(session_id)
        except Exception as e:
            record.log.warning("Cancel failed: %s", e)
            failure = TransportCallFailure(str(e) or None)

        self._update(
            record,
            is_running=False,
            run_started_at=None,
            tool_calls=cancel_unfinished(record.state.tool_calls),
        )
        self._persist(record)

        pending = list(record.state.permissions)
        if pending:
            outcome = PermissionOutcome.cancelled().to_wire()
            results = await asyncio.gather(
                *(self._transport.respond_permission(session_id, rid, outcome) for rid in pending),
                return_exceptions=True,
            )
            for request_id, result in zip(pending, results):
                if isinstance(result, Exception):
                    record.log.warning("Cancelling permission %s failed: %s", request_id, result)
                    failure = failure or TransportCallFailure(str(result) or None)
            state = record.state
            permissions, feed = state.permissions, state.feed
            for request_id in pending:
                change = self._negotiator.remove(permissions, feed, request_id)
                permissions, feed = change.permissions, change.feed
            self._update(record, permissions=permissions, feed=feed)

        return OperationResult.fail(failure) if failure else OperationResult.ok()

    async def dispose(self, key: SessionKey) -> OperationResult:
        """Release the backend session and return to ``idle``. The feed is kept."""
        record = self._record(key)
        session_id = record.state.session_id
        failure: SessionError | None = None
        if session_id:
            try:
                await self._transport.dispose(session_id)
            except Exception as e:
                record.log.warning("Dispose failed: %s", e)
                failure = TransportCallFailure(str(e) or None)
        self._update(
            record,
            session_id=None,
            status=SessionStatus.IDLE,
            is_running=False,
            run_started_at=None,
        )
        return OperationResult.fail(failure) if failure else OperationResult.ok()

    async def restart(self, key: SessionKey, cwd: str = ".") -> OperationResult:
        await self.dispose(key)
        return await self.ensure_session(key, cwd)

    async def dispose_sessions_for_task(self, task_id: str) -> list[OperationResult]:
        """Dispose every session belonging to one unit of work."""
        keys = [key for key in self._records if key.task_id == task_id]
        return list(await asyncio.gather(*(self.dispose(key) for key in keys)))

    async def respond_permission(
        self, key: SessionKey, request_id: RequestId, outcome: PermissionOutcome
    ) -> OperationResult:
        """Answer a permission request; it stays pending if the answer cannot be delivered."""
        record = self._record(key)
        session_id = record.state.session_id
        if not session_id:
            return OperationResult.fail(SessionNotReady())
        try:
            response = await self._transport.respond_permission(session_id, request_id, outcome.to_wire())
        except Exception as e:
            record.log.warning("Permission response failed: %s", e)
            return OperationResult.fail(TransportCallFailure(str(e) or None))
        if isinstance(response, Mapping) and response.get("success") is False:
            return OperationResult.fail(TransportCallFailure(response_error(response)))

        state = record.state
        change = self._negotiator.remove(state.permissions, state.feed, request_id)
        self._update(record, permissions=change.permissions, feed=change.feed)
        return OperationResult.ok()

    async def _call(self, record: _SessionRecord, name: str, call: Awaitable[Any]) -> OperationResult:
        try:
            response = await call
        except Exception as e:
            record.log.warning("%s failed: %s", name, e)
            return OperationResult.fail(TransportCallFailure(str(e) or None))
        if not response_succeeded(response):
            record.log.warning("%s rejected: %s", name, response_error(response))
            return OperationResult.fail(TransportCallFailure(response_error(response)))
        return OperationResult.ok(response)

    async def set_model(self, key: SessionKey, model_id: str, *, optimistic: bool = False) -> OperationResult:
        record = self._record(key)
        session_id = record.state.session_id
        if not session_id or not model_id:
            return OperationResult.fail(SessionNotReady())
        if optimistic:
            self._update(record, current_model_id=model_id)
        result = await self._call(record, "set_model", self._transport.set_model(session_id, model_id))
        if result.success and not optimistic:
            self._update(record, current_model_id=model_id)
        return result

    async def set_config_option(
        self, key: SessionKey, config_id: str, value: Any, *, optimistic: bool = False
    ) -> OperationResult:
        record = self._record(key)
        session_id = record.state.session_id
        if not session_id or not config_id:
            return OperationResult.fail(SessionNotReady())
        if optimistic:
            self._set_option_value(record, config_id, value)
        result = await self._call(
            record,
            "set_config_option",
            self._transport.set_config_option(session_id, config_id, value),
        )
        if result.success and not optimistic:
            self._set_option_value(record, config_id, value)
        return result

    def _set_option_value(self, record: _SessionRecord, config_id: str, value: Any) -> None:
        options = tuple(
            {**option, "value": value, "currentValue": value}
            if option_matches_config_id(option, config_id)
            else option
            for option in record.state.config_options
        )
        self._update(record, config_options=options)

    async def set_mode(self, key: SessionKey, mode_id: str, *, optimistic: bool = False) -> OperationResult:
        record = self._record(key)
        session_id = record.state.session_id
        if not session_id or not mode_id:
            return OperationResult.fail(SessionNotReady())
        if optimistic:
            self._update(record, current_mode_id=mode_id)
        result = await self._call(record, "set_mode", self._transport.set_mode(session_id, mode_id))
        if result.success and not optimistic:
            self._update(record, current_mode_id=mode_id)
        return result

    def clear_session_error(self, key: SessionKey) -> None:
        record = self._record(key)
        if record.state.session_error:
            self._update(record, session_error=None)

    # -------------------------------------------------------------------------
    # History
    # -------------------------------------------------------------------------

    async def hydrate_history(self, key: SessionKey) -> bool:
        """Load the session's stored history into its feed.

        Runs once per session: returns False without doing anything when
        hydration is already running or has completed. ``history_ready`` is
        set at the end even if loading failed.
        """
        record = self._record(key)
        if record.state.history_ready or self._persistence.meta(record.key).hydrating:
            return False
        self._update(record, history_ready=False, history_has_messages=False)

        hydrated = None
        try:
            hydrated = await self._persistence.hydrate(record.key)
        except Exception as e:
            record.log.warning("Failed to hydrate history: %s", e)

        changes: dict[str, Any] = {"history_ready": True}
        if hydrated is not None:
            state = record.state
            known = {item.id for item in hydrated.feed}
            changes.update(
                feed=hydrated.feed + tuple(item for item in state.feed if item.id not in known),
                tool_calls={**hydrated.tool_calls, **state.tool_calls},
                terminals={**hydrated.terminals, **state.terminals},
                plan=state.plan or hydrated.plan,
                history_has_messages=hydrated.has_messages,
            )
        self._update(record, **changes)
        # Items finalized while writes were held
        self._persist(record)
        return True

    async def aclose(self) -> None:
        """Flush outstanding history writes."""
        await self._persistence.aclose()

