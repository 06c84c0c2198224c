"""
Normalized tool-call results.

Endpoint responses are converted into a closed set of content blocks so the
report formatter can handle every kind explicitly.
"""

from typing import Annotated, Any, List, Literal, Optional, Union

from mcp.types import CallToolResult, ImageContent, TextContent
from pydantic import BaseModel, Field
from rich.pretty import pretty_repr


class TextBlock(BaseModel):
    kind: Literal["text"] = "text"
    text: str

    model_config = {"frozen": True}


class ImageBlock(BaseModel):
    """An image; only its media type and encoded size are kept."""

    kind: Literal["image"] = "image"
    mime_type: str
    binary_length: int

    model_config = {"frozen": True}


class UnknownBlock(BaseModel):
    """Any content kind the client does not render natively."""

    kind: Literal["unknown"] = "unknown"
    content_type: Optional[str] = None
    raw_description: str

    model_config = {"frozen": True}


ContentBlock = Annotated[
    Union[TextBlock, ImageBlock, UnknownBlock],
    Field(discriminator="kind"),
]


def content_block_from_mcp(item: Any) -> ContentBlock:
    """
    Convert one SDK content item into a ContentBlock. Never raises for
    unrecognized items.
    """
    if isinstance(item, TextContent):
        return TextBlock(text=item.text)

    if isinstance(item, ImageContent):
        # Length of the base64 payload as received; the image is never decoded
        return ImageBlock(mime_type=item.mimeType, binary_length=len(item.data))

    if isinstance(item, BaseModel):
        raw = item.model_dump(by_alias=True, exclude_none=True)
    else:
        raw = item

    content_type = raw.get("type") if isinstance(raw, dict) else None
    return UnknownBlock(
        content_type=str(content_type) if content_type is not None else type(item).__name__,
        raw_description=pretty_repr(raw, max_string=200),
    )


class CallResult(BaseModel):
    """
    The outcome of one tool call, as returned by the owning endpoint.
    """

    tool_name: str
    server_name: Optional[str] = None
    is_error: bool = False
    content: List[ContentBlock] = Field(default_factory=list)

    model_config = {"frozen": True}

    @classmethod
    def from_mcp(
        cls,
        result: CallToolResult,
        tool_name: str,
        server_name: Optional[str] = None,
    ) -> "CallResult":
        return cls(
            tool_name=tool_name,
            server_name=server_name,
            is_error=bool(result.isError),
            content=[content_block_from_mcp(item) for item in (result.content or [])],
        )
