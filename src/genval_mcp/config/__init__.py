"""
Configuration management for the genval MCP client.
"""

from .settings import (
    Settings,
    MCPSettings,
    EndpointSettings,
    ClientSettings,
    ReportSettings,
    LoggingSettings,
    load_config,
)

__all__ = [
    "Settings",
    "MCPSettings",
    "EndpointSettings",
    "ClientSettings",
    "ReportSettings",
    "LoggingSettings",
    "load_config",
]
