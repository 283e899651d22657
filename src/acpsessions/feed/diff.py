"""Line-level diff previews for file edits proposed by tool calls.

Small inputs are aligned with Myers' O((N+M)D) shortest-edit-script
algorithm. Inputs holding more than ``2 * max_source_lines`` lines fall back
to a common prefix/suffix scan that treats the middle as removed-then-added.
Either way the result is trimmed to at most ``max_preview_lines`` lines.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

from acpsessions.logging import TRACE, get_logger

log = get_logger("diff")

DIFF_CONTEXT_LINES = 3
MAX_DIFF_PREVIEW_LINES = 80
MAX_DIFF_SOURCE_LINES = 400

ELISION_MARKER = "..."

LineKind = Literal["context", "add", "del"]


@dataclass(frozen=True, slots=True)
class DiffLine:
    """One line of a diff preview."""

    kind: LineKind
    text: str

    def to_dict(self) -> dict[str, str]:
        return {"type": self.kind, "text": self.text}


@dataclass(frozen=True, slots=True)
class DiffPreview:
    """Bounded, human-reviewable diff between two texts."""

    lines: tuple[DiffLine, ...] = ()
    additions: int = 0
    deletions: int = 0
    truncated: bool = False
    path: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "lines": [line.to_dict() for line in self.lines],
            "additions": self.additions,
            "deletions": self.deletions,
            "truncated": self.truncated,
        }
        if self.path is not None:
            data["path"] = self.path
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DiffPreview:
        """Rebuild a preview from its stored form, skipping malformed lines."""
        lines: list[DiffLine] = []
        for raw in data.get("lines") or []:
            if not isinstance(raw, dict):
                continue
            kind = raw.get("type")
            if kind not in ("context", "add", "del"):
                continue
            lines.append(DiffLine(kind, str(raw.get("text", ""))))
        return cls(
            lines=tuple(lines),
            additions=int(data.get("additions") or 0),
            deletions=int(data.get("deletions") or 0),
            truncated=bool(data.get("truncated", False)),
            path=data.get("path"),
        )


@dataclass(slots=True)
class _Range:
    start: int
    end: int  # inclusive

    def __len__(self) -> int:
        return self.end - self.start + 1


def split_lines(text: str) -> list[str]:
    """Split text into lines, normalizing CRLF."""
    return text.replace("\r\n", "\n").split("\n")


def common_prefix_length(a: list[str], b: list[str]) -> int:
    limit = min(len(a), len(b))
    i = 0
    while i < limit and a[i] == b[i]:
        i += 1
    return i


def common_suffix_length(a: list[str], b: list[str], prefix: int) -> int:
    """Length of the common trailing run, not overlapping ``prefix``."""
    limit = min(len(a), len(b)) - prefix
    i = 0
    while i < limit and a[len(a) - 1 - i] == b[len(b) - 1 - i]:
        i += 1
    return i


def estimate_line_changes(old_lines: list[str], new_lines: list[str]) -> tuple[int, int]:
    """(additions, deletions) under the prefix/suffix heuristic."""
    prefix = common_prefix_length(old_lines, new_lines)
    suffix = common_suffix_length(old_lines, new_lines, prefix)
    added = max(0, len(new_lines) - prefix - suffix)
    removed = max(0, len(old_lines) - prefix - suffix)
    return added, removed


def myers_diff(old_lines: list[str], new_lines: list[str]) -> list[DiffLine]:
    """Minimal edit script between two line sequences, in original order."""
    n, m = len(old_lines), len(new_lines)
    max_d = n + m
    offset = max_d + 1
    v = [0] * (2 * max_d + 3)
    trace: list[list[int]] = []

    for d in range(max_d + 1):
        trace.append(v.copy())
        for k in range(-d, d + 1, 2):
            if k == -d or (k != d and v[offset + k - 1] < v[offset + k + 1]):
                x = v[offset + k + 1]
            else:
                x = v[offset + k - 1] + 1
            y = x - k
            while x < n and y < m and old_lines[x] == new_lines[y]:
                x += 1
                y += 1
            v[offset + k] = x
            if x >= n and y >= m:
                return _backtrack(old_lines, new_lines, trace, offset)
    return []


def _backtrack(
    old_lines: list[str], new_lines: list[str], trace: list[list[int]], offset: int
) -> list[DiffLine]:
    # trace[d] holds the furthest-reaching x per diagonal after round d - 1
    x, y = len(old_lines), len(new_lines)
    reversed_lines: list[DiffLine] = []
    for d in range(len(trace) - 1, -1, -1):
        v = trace[d]
        k = x - y
        if k == -d or (k != d and v[offset + k - 1] < v[offset + k + 1]):
            prev_k = k + 1
        else:
            prev_k = k - 1
        prev_x = v[offset + prev_k]
        prev_y = prev_x - prev_k
        while x > prev_x and y > prev_y:
            reversed_lines.append(DiffLine("context", old_lines[x - 1]))
            x -= 1
            y -= 1
        if d == 0:
            break
        if x == prev_x:
            reversed_lines.append(DiffLine("add", new_lines[y - 1]))
        else:
            reversed_lines.append(DiffLine("del", old_lines[x - 1]))
        x, y = prev_x, prev_y
    reversed_lines.reverse()
    return reversed_lines


def fallback_diff(old_lines: list[str], new_lines: list[str], context: int) -> list[DiffLine]:
    """Prefix/suffix diff: everything between the common runs is replaced."""
    prefix = common_prefix_length(old_lines, new_lines)
    suffix = common_suffix_length(old_lines, new_lines, prefix)
    old_end = len(old_lines) - suffix
    new_end = len(new_lines) - suffix

    lines = [DiffLine("context", text) for text in old_lines[max(0, prefix - context) : prefix]]
    lines.extend(DiffLine("del", text) for text in old_lines[prefix:old_end])
    lines.extend(DiffLine("add", text) for text in new_lines[prefix:new_end])
    lines.extend(DiffLine("context", text) for text in old_lines[old_end : old_end + context])
    return lines


def _change_ranges(lines: list[DiffLine], context: int) -> list[_Range]:
    ranges: list[_Range] = []
    for idx, line in enumerate(lines):
        if line.kind == "context":
            continue
        start = max(0, idx - context)
        end = min(len(lines) - 1, idx + context)
        if ranges and start <= ranges[-1].end + 1:
            ranges[-1].end = max(ranges[-1].end, end)
        else:
            ranges.append(_Range(start, end))
    return ranges


def trim_diff_lines(
    lines: list[DiffLine], max_lines: int, context: int
) -> tuple[list[DiffLine], bool]:
    """Bound a diff to ``max_lines`` lines.

    Change regions are padded with ``context`` lines and merged where they
    touch. If the padded regions (plus one elision marker between each) still
    do not fit, only the head of the first region and the tail of the last
    region are kept, each at most half the budget.

    Returns:
        (lines, truncated)
    """
    if len(lines) <= max_lines:
        return lines, False

    ranges = _change_ranges(lines, context)
    if not ranges or max_lines < 3:
        return lines[:max_lines], True

    total = sum(len(r) for r in ranges) + len(ranges) - 1
    marker = DiffLine("context", ELISION_MARKER)
    if total <= max_lines:
        output: list[DiffLine] = []
        for idx, r in enumerate(ranges):
            if idx:
                output.append(marker)
            output.extend(lines[r.start : r.end + 1])
        return output, sum(len(r) for r in ranges) < len(lines)

    half = max(1, (max_lines - 1) // 2)
    first, last = ranges[0], ranges[-1]
    head = lines[first.start : first.end + 1][:half]
    tail = lines[last.start : last.end + 1][-half:]
    return [*head, marker, *tail], True


def build_diff_preview(
    old_text: str,
    new_text: str,
    *,
    path: str | None = None,
    context_lines: int = DIFF_CONTEXT_LINES,
    max_preview_lines: int = MAX_DIFF_PREVIEW_LINES,
    max_source_lines: int = MAX_DIFF_SOURCE_LINES,
) -> DiffPreview:
    """Compute a bounded diff preview between two texts."""
    old_lines = split_lines(old_text)
    new_lines = split_lines(new_text)

    if len(old_lines) + len(new_lines) > max_source_lines * 2:
        log.log(
            TRACE,
            "Diff input too large for alignment (%d + %d lines), using prefix/suffix",
            len(old_lines),
            len(new_lines),
        )
        diff_lines = fallback_diff(old_lines, new_lines, context_lines)
        additions, deletions = estimate_line_changes(old_lines, new_lines)
    else:
        diff_lines = myers_diff(old_lines, new_lines)
        additions = sum(1 for line in diff_lines if line.kind == "add")
        deletions = sum(1 for line in diff_lines if line.kind == "del")

    trimmed, truncated = trim_diff_lines(diff_lines, max_preview_lines, context_lines)
    return DiffPreview(
        lines=tuple(trimmed),
        additions=additions,
        deletions=deletions,
        truncated=truncated,
        path=path,
    )
