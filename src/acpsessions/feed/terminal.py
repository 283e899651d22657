"""Tail windows over sub-terminal output."""

from __future__ import annotations

from acpsessions.feed.diff import split_lines


def get_tail_lines(text: str, max_lines: int) -> tuple[list[str], bool]:
    """Last ``max_lines`` lines of ``text`` and whether anything was cut."""
    lines = split_lines(text)
    if len(lines) <= max_lines:
        return lines, False
    return lines[len(lines) - max_lines :], True


def truncate_to_tail_lines(text: str, max_lines: int, slack: int = 10) -> str:
    """Keep a live buffer bounded.

    The buffer may grow to ``max_lines + slack`` lines before it is cut back
    to ``max_lines``, so appending small chunks does not re-split every time.
    """
    lines = split_lines(text)
    if len(lines) <= max_lines + slack:
        return text
    return "\n".join(lines[len(lines) - max_lines :])
