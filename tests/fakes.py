"""
In-memory stand-ins for endpoint transports and sessions.
"""

from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional, Sequence

import anyio
import mcp.types as types

from genval_mcp.config import Settings
from genval_mcp.errors import ConstructionError
from genval_mcp.mcp.orchestrator import Orchestrator


class FakeEndpoint:
    """Scripted behavior of one endpoint."""

    def __init__(
        self,
        name: str,
        tools: Sequence[str] = (),
        fail_construct: bool = False,
        fail_start: bool = False,
        hang_start: bool = False,
        start_delay: float = 0,
        start_error: Optional[BaseException] = None,
        fail_initialize: bool = False,
        fail_list: bool = False,
        fail_close: bool = False,
        call_error: Optional[Exception] = None,
        call_hang: bool = False,
        call_content: Optional[List[Any]] = None,
        is_error: bool = False,
    ):
        self.name = name
        self.tools = list(tools)
        self.fail_construct = fail_construct
        self.fail_start = fail_start
        self.hang_start = hang_start
        self.start_delay = start_delay
        self.start_error = start_error
        self.fail_initialize = fail_initialize
        self.fail_list = fail_list
        self.fail_close = fail_close
        self.call_error = call_error
        self.call_hang = call_hang
        self.call_content = call_content
        self.is_error = is_error

        self.session: Optional["FakeSession"] = None
        self.calls: List[tuple] = []
        self.closed = False


class FakeSession:
    def __init__(self, endpoint: FakeEndpoint, write_stream=None, read_timeout=None, **kwargs):
        self.endpoint = endpoint
        self.read_timeout = read_timeout
        self.server_name: Optional[str] = None
        self.notification_sink = None
        endpoint.session = self

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self.endpoint.closed = True
        if self.endpoint.fail_close:
            raise RuntimeError("close failed")
        return None

    async def initialize(self) -> types.InitializeResult:
        if self.endpoint.fail_initialize:
            raise RuntimeError("handshake rejected")
        return types.InitializeResult(
            protocolVersion="2025-03-26",
            capabilities=types.ServerCapabilities(),
            serverInfo=types.Implementation(name=self.endpoint.name, version="1.0.0"),
        )

    async def list_tools(self) -> types.ListToolsResult:
        if self.endpoint.fail_list:
            raise RuntimeError("tools/list failed")
        return types.ListToolsResult(
            tools=[
                types.Tool(
                    name=tool,
                    description=f"{tool} on {self.endpoint.name}",
                    inputSchema={"type": "object", "properties": {}},
                )
                for tool in self.endpoint.tools
            ]
        )

    async def call_tool(self, name: str, arguments: Optional[Dict[str, Any]] = None):
        self.endpoint.calls.append((name, arguments))
        if self.endpoint.call_hang:
            await anyio.sleep_forever()
        if self.endpoint.call_error is not None:
            raise self.endpoint.call_error

        content = self.endpoint.call_content
        if content is None:
            content = [types.TextContent(type="text", text=f"{name} done on {self.endpoint.name}")]
        return types.CallToolResult(content=content, isError=self.endpoint.is_error)

    def push(self, notification: Any) -> None:
        self.notification_sink(self.server_name, notification)


class FakeFleet:
    """A set of fake endpoints wired into an Orchestrator."""

    def __init__(self, *endpoints: FakeEndpoint):
        self.endpoints: Dict[str, FakeEndpoint] = {e.name: e for e in endpoints}

    def __getitem__(self, name: str) -> FakeEndpoint:
        return self.endpoints[name]

    def transport_builder(self, server_name, config):
        endpoint = self.endpoints[server_name]
        if endpoint.fail_construct:
            raise ConstructionError(server_name, "cannot build transport")

        @asynccontextmanager
        async def transport():
            if endpoint.hang_start:
                await anyio.sleep_forever()
            if endpoint.start_delay:
                await anyio.sleep(endpoint.start_delay)
            if endpoint.start_error is not None:
                raise endpoint.start_error
            if endpoint.fail_start:
                raise ConnectionError("connection refused")
            yield endpoint, None

        return transport

    def session_factory(self, read_stream, write_stream, read_timeout=None):
        return FakeSession(read_stream, write_stream, read_timeout)

    def settings(self, timeout: float = 90.0, **overrides: Dict[str, Any]) -> Settings:
        servers = {}
        for name in self.endpoints:
            servers[name] = {"url": f"http://localhost:8080/{name}/sse", **overrides.get(name, {})}
        return Settings.model_validate(
            {
                "mcp": {"servers": servers},
                "client": {"timeout_seconds": timeout, "close_timeout_seconds": 1},
            }
        )

    def orchestrator(self, settings: Optional[Settings] = None, **kwargs) -> Orchestrator:
        return Orchestrator(
            settings or self.settings(),
            client_session_factory=self.session_factory,
            transport_builder=self.transport_builder,
            **kwargs,
        )
