"""Configuration schema dataclasses for acpsessions.

Defines the structure of configuration at all levels (system, user, project).
All fields have defaults so partial configs merge together.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str | None = None  # e.g. "INFO", "TRACE"
    verbose: int | None = None  # 0..4, overrides level
    file: str | None = None


@dataclass
class PersistenceConfig:
    """Bounds applied to feed items before they reach durable storage.

    Example config.yaml:
        persistence:
          max_text_chars: 4000
          max_terminal_lines: 120
    """

    enabled: bool = True
    max_blocks: int = 40  # Content blocks kept per message / tool call
    max_text_chars: int = 4000  # Per text block
    max_resource_chars: int = 1200  # Inline resource text excerpt
    max_message_chars: int = 12000  # Derived message content string
    max_tool_input_chars: int = 4000
    max_terminal_lines: int = 120  # Tail window captured with a tool call
    max_write_attempts: int = 3
    conversation_title: str = "ACP Chat"


@dataclass
class DiffConfig:
    """Diff preview bounds.

    Full alignment runs while the two inputs together hold at most
    ``2 * max_source_lines`` lines; larger inputs use the prefix/suffix
    heuristic.
    """

    context_lines: int = 3
    max_preview_lines: int = 80
    max_source_lines: int = 400


@dataclass
class TerminalConfig:
    """Live sub-terminal buffer bounds."""

    live_lines: int = 60
    slack_lines: int = 10  # Trim only once the buffer exceeds live_lines + slack_lines


@dataclass
class StorageConfig:
    """Durable message store location."""

    directory: str | None = None  # Default: <cwd>/.acps/conversations


@dataclass
class Config:
    """Root configuration object."""

    logging: LoggingConfig = field(default_factory=LoggingConfig)
    persistence: PersistenceConfig = field(default_factory=PersistenceConfig)
    diff: DiffConfig = field(default_factory=DiffConfig)
    terminal: TerminalConfig = field(default_factory=TerminalConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)

    # Extension point for future config sections
    extra: dict[str, Any] = field(default_factory=dict)
