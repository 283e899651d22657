"""Content block and plan entry types shared by the feed and persistence layers."""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from acpsessions.logging import TRACE, get_logger

log = get_logger("types")


class AcpModel(BaseModel):
    """Base model for ACP types: camelCase aliases, extra keys preserved, immutable."""

    model_config = ConfigDict(populate_by_name=True, extra="allow", frozen=True)

    def to_wire(self) -> dict[str, Any]:
        """Dump using wire (camelCase) names, dropping unset optionals."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class TextBlock(AcpModel):
    """Text content block."""

    type: Literal["text"] = "text"
    text: str = ""


class ImageBlock(AcpModel):
    """Inline or linked image."""

    type: Literal["image"] = "image"
    data: str | None = None
    mime_type: str | None = Field(default=None, alias="mimeType")
    uri: str | None = None


class AudioBlock(AcpModel):
    """Inline audio."""

    type: Literal["audio"] = "audio"
    data: str | None = None
    mime_type: str | None = Field(default=None, alias="mimeType")


class EmbeddedResource(AcpModel):
    """Resource body carried inside a ``resource`` block."""

    uri: str | None = None
    mime_type: str | None = Field(default=None, alias="mimeType")
    text: str | None = None
    blob: str | None = None
    name: str | None = None
    title: str | None = None
    description: str | None = None
    size: int | None = None


class ResourceBlock(AcpModel):
    """Embedded resource (inline text or blob).

    Some backends put descriptive metadata on the block itself rather than
    on the nested resource, so both places are read.
    """

    type: Literal["resource"] = "resource"
    resource: EmbeddedResource = Field(default_factory=EmbeddedResource)
    uri: str | None = None
    name: str | None = None
    title: str | None = None
    description: str | None = None
    mime_type: str | None = Field(default=None, alias="mimeType")
    size: int | None = None
    text: str | None = None


class ResourceLinkBlock(AcpModel):
    """Link to a resource with descriptive metadata only."""

    type: Literal["resource_link"] = "resource_link"
    uri: str | None = None
    name: str | None = None
    title: str | None = None
    description: str | None = None
    mime_type: str | None = Field(default=None, alias="mimeType")
    size: int | None = None


ContentBlock = Annotated[
    TextBlock | ImageBlock | AudioBlock | ResourceBlock | ResourceLinkBlock,
    Field(discriminator="type"),
]

_content_adapter: TypeAdapter[ContentBlock] = TypeAdapter(ContentBlock)


def parse_content_block(data: Any) -> ContentBlock | None:
    """Parse one wire content block, returning None for unknown or malformed blocks."""
    if isinstance(data, (TextBlock, ImageBlock, AudioBlock, ResourceBlock, ResourceLinkBlock)):
        return data
    if not isinstance(data, dict):
        return None
    try:
        return _content_adapter.validate_python(data)
    except ValidationError as e:
        log.log(TRACE, "Dropping content block of type %r: %s", data.get("type"), e)
        return None


def parse_content_blocks(value: Any) -> list[ContentBlock]:
    """Parse a single block or a list of blocks, skipping anything unparseable."""
    if value is None:
        return []
    items = value if isinstance(value, (list, tuple)) else [value]
    blocks: list[ContentBlock] = []
    for item in items:
        block = parse_content_block(item)
        if block is not None:
            blocks.append(block)
    return blocks


def is_blank_prompt(blocks: list[ContentBlock]) -> bool:
    """True when a prompt has no blocks, or only whitespace text blocks."""
    for block in blocks:
        if not isinstance(block, TextBlock) or block.text.strip():
            return False
    return True


class PlanEntry(AcpModel):
    """Entry in an execution plan."""

    content: str | None = None
    priority: str | None = None
    status: str | None = None


def parse_plan_entries(value: Any) -> tuple[PlanEntry, ...]:
    if not isinstance(value, list):
        return ()
    entries: list[PlanEntry] = []
    for item in value:
        if isinstance(item, PlanEntry):
            entries.append(item)
        elif isinstance(item, dict):
            try:
                entries.append(PlanEntry.model_validate(item))
            except ValidationError:
                log.log(TRACE, "Dropping malformed plan entry: %r", item)
    return tuple(entries)
