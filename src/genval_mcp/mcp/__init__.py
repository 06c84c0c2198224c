"""
Endpoint connectivity for the genval MCP client.

This module provides the components for connecting to tool-serving endpoints,
managing their lifecycle, and routing tool calls to the endpoint that owns them.
"""

from .client_session import EndpointClientSession, NotificationSink
from .connection_manager import ConnectionManager, EndpointConnection, build_transport
from .content import CallResult, ContentBlock, ImageBlock, TextBlock, UnknownBlock
from .endpoint_registry import EndpointRecord, EndpointRegistry, ToolDescriptor
from .formatter import format_call_result
from .notifications import (
    NotificationChannel,
    NotificationPayload,
    decode_notification,
    log_notification,
)
from .orchestrator import Orchestrator

__all__ = [
    "EndpointClientSession",
    "NotificationSink",
    "ConnectionManager",
    "EndpointConnection",
    "build_transport",
    "CallResult",
    "ContentBlock",
    "ImageBlock",
    "TextBlock",
    "UnknownBlock",
    "EndpointRecord",
    "EndpointRegistry",
    "ToolDescriptor",
    "format_call_result",
    "NotificationChannel",
    "NotificationPayload",
    "decode_notification",
    "log_notification",
    "Orchestrator",
]
