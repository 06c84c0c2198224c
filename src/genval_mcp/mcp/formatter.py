"""
Render a CallResult as a deterministic multi-line text report.
"""

from typing import List, assert_never

from genval_mcp.mcp.content import (
    CallResult,
    ContentBlock,
    ImageBlock,
    TextBlock,
    UnknownBlock,
)

DEFAULT_INDENT = "    "
NO_CONTENT_LINE = "  (no content returned)"


def _indent_lines(text: str, prefix: str) -> List[str]:
    lines = text.splitlines()
    if not lines:
        return [prefix]
    return [f"{prefix}{line}" for line in lines]


def format_header(result: CallResult) -> str:
    return f'Tool "{result.tool_name}" result (IsError: {str(result.is_error).lower()})'


def format_block(index: int, block: ContentBlock, indent: str = DEFAULT_INDENT) -> List[str]:
    """
    Render one content block: a raw debug line, then a kind-specific body.
    """
    lines = [f"Content[{index}]: {block!r}"]

    if isinstance(block, TextBlock):
        lines.extend(_indent_lines(block.text, indent))
    elif isinstance(block, ImageBlock):
        lines.append(
            f"{indent}mimeType: {block.mime_type}, data length: {block.binary_length} bytes"
        )
    elif isinstance(block, UnknownBlock):
        lines.append(f"{indent}unrecognized content ({block.content_type}):")
        lines.extend(_indent_lines(block.raw_description, indent * 2))
    else:
        assert_never(block)

    return lines


def format_call_result(result: CallResult, indent: str = DEFAULT_INDENT) -> str:
    """
    Render the full report for a tool call.

    The first line names the tool and its error flag; an empty result adds
    a single "no content returned" line. Every block is reported, including
    kinds the client does not understand.
    """
    lines = [format_header(result)]

    if not result.content:
        lines.append(NO_CONTENT_LINE)
        return "\n".join(lines)

    for index, block in enumerate(result.content, start=1):
        lines.extend(format_block(index, block, indent))

    return "\n".join(lines)
