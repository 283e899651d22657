"""Command-line inspector for stored histories, recorded events and diffs."""

from __future__ import annotations

import argparse
from collections.abc import Sequence
from pathlib import Path

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from acpsessions import __version__
from acpsessions.config import Config, LoggingConfig, load_config, resolve_storage_dir
from acpsessions.feed.diff import DiffPreview, build_diff_preview
from acpsessions.feed.items import FeedItem, MessageItem, PermissionItem, PlanItem, ToolCall, ToolItem
from acpsessions.feed.tool_calls import ToolCallTracker
from acpsessions.logging import setup_logging
from acpsessions.persistence.hydrate import hydrate_history
from acpsessions.persistence.storage import YamlMessageStore, conversation_id_for, load_conversation_file
from acpsessions.recording.player import EventPlayer, replay_events
from acpsessions.session.protocols import DetachedTransport
from acpsessions.session.store import SessionStore
from acpsessions.types.content import PlanEntry, ResourceBlock, ResourceLinkBlock, TextBlock

SUMMARY_CHARS = 120

_DIFF_STYLES = {"add": ("+", "green"), "del": ("-", "red"), "context": (" ", "dim")}


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="acpsessions",
        description="Inspect ACP session histories, recorded events and diff previews",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase log verbosity (can be repeated)",
    )
    parser.add_argument(
        "--root",
        default=".",
        help="Project root used to find .acps/config.yaml and the conversation store",
    )

    subparsers = parser.add_subparsers(dest="mode", help="Command")

    history_parser = subparsers.add_parser(
        "history",
        help="Hydrate a stored conversation and print its feed",
    )
    history_parser.add_argument(
        "target",
        nargs="?",
        help="Conversation YAML file or task id (lists conversations when omitted)",
    )

    replay_parser = subparsers.add_parser(
        "replay",
        help="Replay recorded transport events and print the resulting feeds",
    )
    replay_parser.add_argument("events", type=Path, help="JSONL file written by EventRecorder")

    diff_parser = subparsers.add_parser(
        "diff",
        help="Print a bounded diff preview between two files",
    )
    diff_parser.add_argument("old", type=Path)
    diff_parser.add_argument("new", type=Path)
    diff_parser.add_argument("--context", type=int, help="Context lines around each change")
    diff_parser.add_argument("--max-lines", type=int, help="Maximum preview lines")

    return parser


# -----------------------------------------------------------------------------
# Rendering
# -----------------------------------------------------------------------------


def _clip(text: str) -> str:
    text = " ".join(text.split())
    return escape(text if len(text) <= SUMMARY_CHARS else text[: SUMMARY_CHARS - 3] + "...")


def summarize_message(item: MessageItem) -> str:
    parts: list[str] = []
    for block in item.blocks:
        if isinstance(block, TextBlock):
            parts.append(block.text)
        elif isinstance(block, (ResourceBlock, ResourceLinkBlock)):
            parts.append(f"[{block.type}] {block.title or block.name or block.uri or ''}".rstrip())
        else:
            parts.append(f"[{block.type}]")
    return _clip(" ".join(parts))


def render_feed(
    console: Console,
    title: str,
    feed: Sequence[FeedItem],
    tool_calls: dict[str, ToolCall],
    plan: Sequence[PlanEntry] | None,
) -> None:
    table = Table(title=escape(title))
    table.add_column("#", justify="right", style="dim")
    table.add_column("Type", style="bold")
    table.add_column("Who / Status")
    table.add_column("Content")

    for index, item in enumerate(feed, start=1):
        match item:
            case MessageItem():
                who = item.role.value
                if item.message_kind is not None:
                    who += f" ({item.message_kind.value})"
                summary = summarize_message(item)
                if item.run_duration_ms is not None:
                    summary += f" [dim]({item.run_duration_ms} ms)[/dim]"
                table.add_row(str(index), "message", who, summary)
            case ToolItem():
                call = tool_calls.get(item.tool_call_id)
                status = call.status.value if call and call.status else "-"
                table.add_row(str(index), "tool", status, _clip(call.label if call else item.tool_call_id))
            case PlanItem():
                steps = ", ".join(entry.content or "?" for entry in plan or ())
                table.add_row(str(index), "plan", f"{len(plan or ())} steps", _clip(steps))
            case PermissionItem():
                table.add_row(str(index), "permission", "pending", str(item.request_id))

    console.print(table)


def render_diff(console: Console, preview: DiffPreview) -> None:
    header = (
        f"[bold]{preview.path or 'diff'}[/bold]  "
        f"[green]+{preview.additions}[/green] [red]-{preview.deletions}[/red]"
    )
    if preview.truncated:
        header += "  [dim](truncated)[/dim]"
    console.print(header)
    for line in preview.lines:
        prefix, style = _DIFF_STYLES.get(line.kind, ("?", ""))
        console.print(f"{prefix} {line.text}", style=style, markup=False, highlight=False)


# -----------------------------------------------------------------------------
# Commands
# -----------------------------------------------------------------------------


def _storage(config: Config, root: str) -> YamlMessageStore:
    return YamlMessageStore(resolve_storage_dir(config.storage.directory, root))


def cmd_history(console: Console, config: Config, root: str, target: str | None) -> int:
    store = _storage(config, root)
    if target is None:
        conversations = store.list_conversations()
        if not conversations:
            console.print(f"[dim]No conversations in {store.directory}[/dim]")
            return 0
        for conversation_id in conversations:
            console.print(conversation_id)
        return 0

    path = Path(target)
    if not path.exists():
        path = store.path_for(conversation_id_for(target))
    conversation = load_conversation_file(path)
    if conversation is None:
        console.print(f"[red]No readable conversation at {path}[/red]")
        return 1

    state = hydrate_history(conversation.messages, ToolCallTracker(config.diff))
    render_feed(console, conversation.title, state.feed, state.tool_calls, state.plan)
    console.print(
        f"[dim]{len(conversation.messages)} records, {len(state.feed)} feed items, "
        f"next sequence {state.next_sequence}[/dim]"
    )
    return 0


def cmd_replay(console: Console, config: Config, events: Path) -> int:
    if not events.exists():
        console.print(f"[red]No such file: {events}[/red]")
        return 1
    store = SessionStore(DetachedTransport(), config=config)
    with EventPlayer(events) as player:
        count = replay_events(store, player)
    console.print(f"[dim]Replayed {count} events[/dim]")
    for key in store.keys():
        state = store.get_snapshot(key)
        title = f"{key} ({state.status.value})"
        render_feed(console, title, state.feed, state.tool_calls, state.plan)
        if state.session_error:
            console.print(f"[yellow]{escape(state.session_error)}[/yellow]")
    return 0


def cmd_diff(
    console: Console, config: Config, old: Path, new: Path, context: int | None, max_lines: int | None
) -> int:
    for path in (old, new):
        if not path.exists():
            console.print(f"[red]No such file: {path}[/red]")
            return 1
    preview = build_diff_preview(
        old.read_text(encoding="utf-8"),
        new.read_text(encoding="utf-8"),
        path=str(new),
        context_lines=context if context is not None else config.diff.context_lines,
        max_preview_lines=max_lines if max_lines is not None else config.diff.max_preview_lines,
        max_source_lines=config.diff.max_source_lines,
    )
    render_diff(console, preview)
    return 0


def run_cli(args: Sequence[str], console: Console | None = None) -> int:
    """Run the CLI with the given arguments."""
    parser = create_parser()
    parsed = parser.parse_args(args)

    if parsed.mode is None:
        parser.print_help()
        return 1

    console = console or Console()
    config = load_config(session_root=parsed.root)
    if parsed.verbose:
        setup_logging(LoggingConfig(verbose=min(parsed.verbose + 1, 4), file=config.logging.file))
    else:
        setup_logging(config.logging)

    if parsed.mode == "history":
        return cmd_history(console, config, parsed.root, parsed.target)
    elif parsed.mode == "replay":
        return cmd_replay(console, config, parsed.events)
    elif parsed.mode == "diff":
        return cmd_diff(console, config, parsed.old, parsed.new, parsed.context, parsed.max_lines)
    else:
        parser.print_help()
        return 1
