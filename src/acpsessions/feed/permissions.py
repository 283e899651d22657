"""Pending permission requests awaiting a human decision."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from acpsessions.feed.items import (
    FeedItem,
    PermissionItem,
    PermissionOption,
    PermissionRequest,
)
from acpsessions.feed.tool_calls import ToolCallTracker
from acpsessions.types.events import PermissionRequestEvent, RequestId

PermissionMap = dict[RequestId, PermissionRequest]


def permission_feed_id(request_id: RequestId) -> str:
    return f"perm-{request_id}"


def parse_option(raw: Mapping[str, Any]) -> PermissionOption:
    """Normalize a candidate option, accepting the field spellings backends use."""
    option_id = raw.get("optionId", raw.get("id", ""))
    label = raw.get("name") or raw.get("label") or raw.get("title") or raw.get("optionId") or "Allow"
    kind = raw.get("kind")
    return PermissionOption(
        id=str(option_id if option_id is not None else ""),
        label=str(label),
        kind=str(kind) if kind is not None else None,
    )


@dataclass(frozen=True, slots=True)
class PermissionChange:
    permissions: PermissionMap
    feed: tuple[FeedItem, ...]


class PermissionNegotiator:
    """Adds and retires pending requests, keeping one feed entry per request id."""

    def __init__(self, tracker: ToolCallTracker) -> None:
        self._tracker = tracker

    def request_from_event(self, event: PermissionRequestEvent) -> PermissionRequest | None:
        if event.request_id is None or event.request_id == "":
            return None
        return PermissionRequest(
            request_id=event.request_id,
            tool_call=self._tracker.from_payload(event.params.tool_call),
            options=tuple(parse_option(opt) for opt in event.params.options),
        )

    def add(
        self,
        permissions: PermissionMap,
        feed: tuple[FeedItem, ...],
        request: PermissionRequest,
    ) -> PermissionChange:
        """Register a pending request; a repeated id replaces the request in place."""
        next_permissions = {**permissions, request.request_id: request}
        feed_id = permission_feed_id(request.request_id)
        if any(item.id == feed_id for item in feed):
            return PermissionChange(next_permissions, feed)
        item = PermissionItem(id=feed_id, request_id=request.request_id)
        return PermissionChange(next_permissions, (*feed, item))

    def remove(
        self,
        permissions: PermissionMap,
        feed: tuple[FeedItem, ...],
        request_id: RequestId,
    ) -> PermissionChange:
        next_permissions = {k: v for k, v in permissions.items() if k != request_id}
        next_feed = tuple(
            item
            for item in feed
            if not (isinstance(item, PermissionItem) and item.request_id == request_id)
        )
        return PermissionChange(next_permissions, next_feed)

    def clear(self, feed: tuple[FeedItem, ...]) -> PermissionChange:
        """Drop every pending request and its feed entry."""
        return PermissionChange(
            {}, tuple(item for item in feed if not isinstance(item, PermissionItem))
        )
