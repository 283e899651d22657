"""Durable message stores.

The session manager only needs an append/query store keyed by conversation
id. Two implementations ship here:

- ``InMemoryMessageStore``: process-local, used in tests and replays.
- ``YamlMessageStore``: one YAML file per conversation in
  ``$PROJECT/.acps/conversations/<conversation-id>.yaml``.

Conversation files contain:
- conversation_id: Store key (``conv-<task-id>-acp``)
- task_id: Unit of work the conversation belongs to
- title: Human-readable title
- created_at / updated_at: ISO timestamps
- messages: Stored rows, each with an opaque ``metadata`` payload
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

import yaml

from acpsessions.logging import get_logger
from acpsessions.persistence.envelope import StoredMessage

log = get_logger("storage")


def conversation_id_for(task_id: str) -> str:
    return f"conv-{task_id}-acp"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@runtime_checkable
class MessageStore(Protocol):
    """Append/query store used for conversation history."""

    async def save_conversation(self, conversation_id: str, task_id: str, title: str) -> None:
        """Create the conversation if it does not exist yet."""
        ...

    async def save_message(self, message: StoredMessage) -> bool:
        """Insert a row; returns False when a row with the same id already exists."""
        ...

    async def get_messages(self, conversation_id: str) -> list[StoredMessage]:
        ...


@dataclass
class Conversation:
    conversation_id: str
    task_id: str
    title: str
    created_at: str = field(default_factory=_now)
    updated_at: str = field(default_factory=_now)
    messages: list[StoredMessage] = field(default_factory=list)

    def insert(self, message: StoredMessage) -> bool:
        if any(existing.id == message.id for existing in self.messages):
            return False
        if message.timestamp is None:
            message = message.model_copy(update={"timestamp": _now()})
        self.messages.append(message)
        self.updated_at = _now()
        return True

    def to_dict(self) -> dict[str, Any]:
        return {
            "conversation_id": self.conversation_id,
            "task_id": self.task_id,
            "title": self.title,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "messages": [
                message.model_dump(mode="json", by_alias=True, exclude_none=True)
                for message in self.messages
            ],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Conversation:
        messages: list[StoredMessage] = []
        for raw in data.get("messages") or []:
            try:
                messages.append(StoredMessage.model_validate(raw))
            except ValueError as e:
                log.warning("Skipping unreadable stored message: %s", e)
        return cls(
            conversation_id=data["conversation_id"],
            task_id=data.get("task_id", ""),
            title=data.get("title", "Untitled"),
            created_at=data.get("created_at") or _now(),
            updated_at=data.get("updated_at") or _now(),
            messages=messages,
        )


class InMemoryMessageStore:
    """Message store kept in a dict."""

    def __init__(self) -> None:
        self._conversations: dict[str, Conversation] = {}

    async def save_conversation(self, conversation_id: str, task_id: str, title: str) -> None:
        self._conversations.setdefault(conversation_id, Conversation(conversation_id, task_id, title))

    async def save_message(self, message: StoredMessage) -> bool:
        conversation = self._conversations.get(message.conversation_id)
        if conversation is None:
            conversation = Conversation(message.conversation_id, "", "Untitled")
            self._conversations[message.conversation_id] = conversation
        return conversation.insert(message)

    async def get_messages(self, conversation_id: str) -> list[StoredMessage]:
        conversation = self._conversations.get(conversation_id)
        return list(conversation.messages) if conversation else []


class YamlMessageStore:
    """Message store writing one YAML file per conversation.

    File access runs in a worker thread; updates are serialized so each
    read-modify-write of a conversation file sees the previous one.
    """

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)
        self._lock = asyncio.Lock()

    def path_for(self, conversation_id: str) -> Path:
        return self.directory / f"{conversation_id}.yaml"

    def _load(self, conversation_id: str) -> Conversation | None:
        path = self.path_for(conversation_id)
        if not path.exists():
            return None
        return load_conversation_file(path)

    def _write(self, conversation: Conversation) -> Path:
        """Write a conversation file.

        Performs atomic write by writing to a temp file first.
        """
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self.path_for(conversation.conversation_id)
        temp_path = self.directory / f"{conversation.conversation_id}.yaml.tmp"

        try:
            with open(temp_path, "w", encoding="utf-8") as f:
                yaml.safe_dump(
                    conversation.to_dict(), f, default_flow_style=False, allow_unicode=True, sort_keys=False
                )

            # On Windows, need to remove existing file before rename
            if path.exists():
                path.unlink()
            temp_path.rename(path)

            log.debug("Saved conversation %s to %s", conversation.conversation_id, path)
            return path
        except Exception as e:
            if temp_path.exists():
                temp_path.unlink()
            raise OSError(f"Failed to save conversation: {e}") from e

    def _create_conversation(self, conversation_id: str, task_id: str, title: str) -> None:
        if self._load(conversation_id) is None:
            self._write(Conversation(conversation_id, task_id, title))

    def _insert_message(self, message: StoredMessage) -> bool:
        conversation = self._load(message.conversation_id) or Conversation(
            message.conversation_id, "", "Untitled"
        )
        if not conversation.insert(message):
            return False
        self._write(conversation)
        return True

    async def save_conversation(self, conversation_id: str, task_id: str, title: str) -> None:
        async with self._lock:
            await asyncio.to_thread(self._create_conversation, conversation_id, task_id, title)

    async def save_message(self, message: StoredMessage) -> bool:
        async with self._lock:
            return await asyncio.to_thread(self._insert_message, message)

    async def get_messages(self, conversation_id: str) -> list[StoredMessage]:
        async with self._lock:
            conversation = await asyncio.to_thread(self._load, conversation_id)
        return list(conversation.messages) if conversation else []

    def list_conversations(self) -> list[str]:
        """Conversation ids with a file in the store, newest first."""
        if not self.directory.exists():
            return []
        paths = [p for p in self.directory.glob("*.yaml") if not p.name.endswith(".yaml.tmp")]
        paths.sort(key=lambda p: p.stat().st_mtime, reverse=True)
        return [p.stem for p in paths]


def load_conversation_file(path: str | Path) -> Conversation | None:
    """Load a conversation file, or None if it is missing or invalid."""
    path = Path(path)
    if not path.exists():
        return None
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
        return Conversation.from_dict(data)
    except (OSError, yaml.YAMLError, KeyError, TypeError) as e:
        log.warning("Failed to load conversation from %s: %s", path, e)
        return None
