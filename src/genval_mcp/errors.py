"""
Exceptions raised by the genval MCP client.

Per-endpoint failures during start and handshake are absorbed by the
orchestrator (the endpoint is dropped); everything else propagates.
"""

from typing import Optional


class GenvalMCPError(Exception):
    """Base class for all client errors."""


class ConstructionError(GenvalMCPError):
    """A session could not be built from its endpoint configuration."""

    def __init__(self, server_name: str, message: str):
        self.server_name = server_name
        super().__init__(f"{server_name}: {message}")


class EndpointFailure(GenvalMCPError):
    """An endpoint failed one lifecycle stage and was dropped."""

    stage = "lifecycle"

    def __init__(self, server_name: str, message: str):
        self.server_name = server_name
        super().__init__(f"{server_name}: {self.stage} failed: {message}")


class StartFailure(EndpointFailure):
    stage = "start"


class HandshakeFailure(EndpointFailure):
    stage = "initialize"


class NoServersRunningError(GenvalMCPError):
    """Every configured endpoint was dropped before the given stage completed."""

    def __init__(self, stage: str):
        self.stage = stage
        super().__init__(f"no servers running after {stage}")


class DiscoveryFailure(GenvalMCPError):
    """Listing tools failed on a surviving endpoint."""

    def __init__(self, server_name: str, message: str):
        self.server_name = server_name
        super().__init__(f"{server_name}: failed to list tools: {message}")


class RoutingError(GenvalMCPError):
    """A tool identifier could not be resolved to an owning endpoint."""

    def __init__(self, tool_identifier: str, message: str):
        self.tool_identifier = tool_identifier
        super().__init__(f"cannot route '{tool_identifier}': {message}")


class TransportError(GenvalMCPError):
    """The owning endpoint failed to execute a tool call."""

    def __init__(self, tool_name: str, server_name: Optional[str], message: str):
        self.tool_name = tool_name
        self.server_name = server_name
        super().__init__(
            f"failed to call tool '{tool_name}' on server '{server_name}': {message}"
        )


class DecodeError(GenvalMCPError):
    """A pushed notification payload could not be decoded."""
