"""
genval MCP - a client that orchestrates tool calls across several MCP endpoints.
"""

__version__ = "1.0.0"

# Endpoint connectivity
from genval_mcp.mcp.orchestrator import Orchestrator
from genval_mcp.mcp.content import CallResult
from genval_mcp.mcp.formatter import format_call_result

# Application
from genval_mcp.app import GenvalApp

# Configuration
from genval_mcp.config import load_config, Settings

# Errors
from genval_mcp.errors import (
    GenvalMCPError,
    ConstructionError,
    StartFailure,
    HandshakeFailure,
    NoServersRunningError,
    DiscoveryFailure,
    RoutingError,
    TransportError,
    DecodeError,
)

__all__ = [
    "Orchestrator",
    "CallResult",
    "format_call_result",
    "GenvalApp",
    "load_config",
    "Settings",
    "GenvalMCPError",
    "ConstructionError",
    "StartFailure",
    "HandshakeFailure",
    "NoServersRunningError",
    "DiscoveryFailure",
    "RoutingError",
    "TransportError",
    "DecodeError",
]
