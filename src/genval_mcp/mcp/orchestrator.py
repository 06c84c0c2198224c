"""
Orchestration of multiple tool-serving endpoints.

The orchestrator drives every configured endpoint through a fixed lifecycle
(connect, start, initialize, discover), routes tool calls to the endpoint
that owns them and shuts everything down again.
"""

import functools
import json
import math
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple

import anyio
from mcp.types import CallToolResult, ListToolsResult

from genval_mcp.config import Settings
from genval_mcp.errors import (
    DiscoveryFailure,
    HandshakeFailure,
    NoServersRunningError,
    RoutingError,
    TransportError,
)
from genval_mcp.mcp.client_session import EndpointClientSession, client_info
from genval_mcp.mcp.connection_manager import (
    ClientSessionFactory,
    ConnectionManager,
    EndpointConnection,
    TransportBuilder,
    build_transport,
    describe_error,
)
from genval_mcp.mcp.content import CallResult
from genval_mcp.mcp.endpoint_registry import (
    EndpointRecord,
    EndpointRegistry,
    ToolDescriptor,
)
from genval_mcp.mcp.formatter import format_call_result
from genval_mcp.mcp.notifications import (
    NotificationChannel,
    NotificationHandler,
    log_notification,
)
from genval_mcp.utils.logging import get_logger

SEP = "."


class Orchestrator:
    """
    Coordinates endpoint sessions and the tool routing table.

    Start and handshake failures drop the affected endpoint and processing
    continues with the rest; discovery and dispatch failures are raised to
    the caller.

    Example:
        async with Orchestrator(settings) as orchestrator:
            await orchestrator.setup()
            result = await orchestrator.call_tool("default.pull_image", {"image": "redis:latest"})
    """

    def __init__(
        self,
        settings: Settings,
        client_session_factory: Optional[ClientSessionFactory] = None,
        transport_builder: TransportBuilder = build_transport,
        notification_handler: Optional[NotificationHandler] = None,
        name: Optional[str] = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            settings: Validated configuration.
            client_session_factory: Builds a session from transport streams.
                Defaults to EndpointClientSession carrying the configured client identity.
            transport_builder: Validates an endpoint and returns its transport factory.
            notification_handler: Called with (server_name, notification) for every
                pushed notification. Defaults to logging it.
            name: Name used in the logger namespace.
        """
        self.settings = settings
        self.client_session_factory = client_session_factory or functools.partial(
            EndpointClientSession,
            client_info=client_info(settings.client.name, settings.client.version),
        )
        self.transport_builder = transport_builder
        self.notification_handler = notification_handler or log_notification
        self.logger = get_logger(f"{__name__}.{name}" if name else __name__)

        self.registry = EndpointRegistry()
        self._routing_table: Dict[str, str] = {}
        self.connection_manager = ConnectionManager(
            close_timeout_seconds=settings.client.close_timeout_seconds
        )
        self.notifications = NotificationChannel(settings.client.notification_buffer_size)
        self.deadline: float = math.inf
        self._entered = False
        self._closed = False

    async def __aenter__(self):
        await self.connection_manager.__aenter__()
        self._entered = True
        self._closed = False
        self.deadline = anyio.current_time() + self.settings.client.timeout_seconds
        self.notifications.open()
        self.connection_manager.start_soon(self.notifications.pump, self.notification_handler)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        try:
            await self.close()
        finally:
            self._entered = False
            # Every endpoint task has finished by now; a body exception is
            # re-raised by the caller's `async with`, not by the task group.
            await self.connection_manager.__aexit__(None, None, None)

    @property
    def routing_table(self) -> Mapping[str, str]:
        """Tool name to owning endpoint name. Read-only view."""
        return MappingProxyType(self._routing_table)

    @property
    def endpoints(self) -> List[str]:
        return self.registry.names()

    def _require_entered(self) -> None:
        if not self._entered:
            raise RuntimeError(
                "Orchestrator must be used inside an async context (i.e. 'async with')."
            )

    async def setup(self) -> None:
        """
        Run the full startup lifecycle: connect, start, initialize, discover.
        """
        await self.connect_all()
        await self.start_all()
        await self.initialize_all()
        await self.discover_all()

    async def connect_all(self) -> None:
        """
        Build one connection per configured endpoint.

        Raises:
            ConstructionError: If any endpoint's transport cannot be built.
        """
        self._require_entered()
        for server_name, config in self.settings.mcp.servers.items():
            if server_name in self.registry:
                continue

            transport_factory = self.transport_builder(server_name, config)
            connection = EndpointConnection(
                server_name=server_name,
                server_config=config,
                transport_context_factory=transport_factory,
                client_session_factory=self.client_session_factory,
            )
            connection.set_notification_sink(self.notifications.publish)
            self.registry.add(EndpointRecord(server_name, config, connection))
            self.logger.debug(
                f"{server_name}: Found server configuration=",
                data=config.model_dump(exclude_none=True),
            )

    async def start_all(self) -> None:
        """
        Start every endpoint. Endpoints that fail to start are removed.

        Raises:
            NoServersRunningError: If no endpoint started.
        """
        self._require_entered()
        failures = await self.connection_manager.start_all(
            (record.connection for record in self.registry.records()),
            deadline=self.deadline,
        )

        for server_name, failure in failures.items():
            self.logger.warning(f"{server_name}: Dropping endpoint: {failure}")
            record = self.registry.remove(server_name)
            if record is not None:
                await self.connection_manager.shutdown(record.connection)

        if not len(self.registry):
            raise NoServersRunningError("start")

        self.logger.info(f"Started {len(self.registry)} endpoint(s): {', '.join(self.endpoints)}")

    async def initialize_all(self) -> None:
        """
        Send the handshake to every started endpoint. Endpoints that fail are removed.

        Raises:
            NoServersRunningError: If no endpoint completed the handshake.
        """
        self._require_entered()
        results: Dict[str, Any] = {}
        failures: Dict[str, HandshakeFailure] = {}

        async def handshake(record: EndpointRecord) -> None:
            try:
                with anyio.fail_at(self.deadline):
                    self.logger.info(f"{record.name}: Initializing server...")
                    results[record.name] = await record.session.initialize()
            except Exception as e:
                failure = HandshakeFailure(record.name, describe_error(e))
                failure.__cause__ = e
                failures[record.name] = failure

        async with anyio.create_task_group() as tg:
            for record in self.registry.records():
                tg.start_soon(handshake, record)

        # Join phase: the registry is only mutated here
        for server_name, init_result in results.items():
            record = self.registry.get(server_name)
            record.init_result = init_result
            self.logger.info(f"{server_name}: Initialized.")

        for server_name, failure in failures.items():
            self.logger.warning(f"{server_name}: Dropping endpoint: {failure}")
            record = self.registry.remove(server_name)
            await self.connection_manager.shutdown(record.connection)
            self._forget_routes(server_name)

        if not len(self.registry):
            raise NoServersRunningError("initialize")

    async def discover_all(self) -> None:
        """
        List the tools of every endpoint and rebuild the routing table.

        Endpoints are processed in registration order; when two endpoints
        expose the same tool name, the later one owns the route.

        Raises:
            DiscoveryFailure: If any endpoint fails to list its tools.
        """
        self._require_entered()
        catalogs: List[Tuple[EndpointRecord, List[ToolDescriptor]]] = []

        for record in self.registry.records():
            try:
                with anyio.fail_at(self.deadline):
                    result: ListToolsResult = await record.session.list_tools()
            except Exception as e:
                raise DiscoveryFailure(record.name, describe_error(e)) from e

            catalogs.append(
                (record, [ToolDescriptor.from_mcp(tool) for tool in result.tools or []])
            )

        routing_table: Dict[str, str] = {}
        for record, tools in catalogs:
            record.tool_catalog = tools
            for tool in tools:
                previous = routing_table.get(tool.name)
                if previous is not None and previous != record.name:
                    self.logger.debug(
                        f"Tool '{tool.name}' exposed by '{previous}' and '{record.name}'; "
                        f"routing to '{record.name}'."
                    )
                routing_table[tool.name] = record.name

            self.logger.debug(
                "Server tools loaded",
                data={"server_name": record.name, "tools_count": len(tools)},
            )

        self._routing_table = routing_table

    def _forget_routes(self, server_name: str) -> None:
        self._routing_table = {
            tool: owner for tool, owner in self._routing_table.items() if owner != server_name
        }

    def list_tools(self) -> List[Tuple[str, ToolDescriptor]]:
        """
        Every discovered tool with the alias of the endpoint that reported it.
        """
        return [
            (record.name, tool)
            for record in self.registry.records()
            for tool in record.tool_catalog
        ]

    def tools_as_json(self, indent: Optional[int] = 2) -> str:
        """
        Serialize the per-endpoint tool catalogs, e.g. for prompt construction.
        """
        catalog = {
            record.name: [
                tool.model_dump(by_alias=True) for tool in record.tool_catalog
            ]
            for record in self.registry.records()
        }
        return json.dumps(catalog, indent=indent)

    def resolve(self, tool_identifier: str) -> Tuple[str, str]:
        """
        Resolve "<alias>.<tool>" to (tool name, owning endpoint name).

        Only the second segment is looked up; the alias is not checked
        against the owning endpoint.

        Raises:
            RoutingError: If the identifier has no delimiter or the tool is unknown.
        """
        parts = tool_identifier.split(SEP)
        if len(parts) < 2:
            raise RoutingError(
                tool_identifier, f"expected '<alias>{SEP}<tool>'"
            )

        tool_name = parts[1]
        server_name = self._routing_table.get(tool_name)
        if server_name is None or server_name not in self.registry:
            raise RoutingError(tool_identifier, f"no endpoint provides tool '{tool_name}'")

        return tool_name, server_name

    async def call_tool(
        self, tool_identifier: str, arguments: Optional[Dict[str, Any]] = None
    ) -> CallResult:
        """
        Call a tool on the endpoint that owns it.

        Args:
            tool_identifier: "<alias>.<tool>".
            arguments: Passed to the endpoint unmodified.

        Returns:
            The normalized result.

        Raises:
            RoutingError: If no endpoint owns the tool.
            TransportError: If the endpoint failed the call or the deadline passed.
        """
        tool_name, server_name = self.resolve(tool_identifier)
        record = self.registry.get(server_name)

        self.logger.info(
            "Requesting tool call",
            data={"tool_name": tool_name, "server_name": server_name},
        )

        try:
            with anyio.fail_at(self.deadline):
                result: CallToolResult = await record.session.call_tool(
                    tool_name, arguments=arguments
                )
        except TimeoutError as e:
            raise TransportError(tool_name, server_name, "deadline exceeded") from e
        except Exception as e:
            raise TransportError(tool_name, server_name, describe_error(e)) from e

        return CallResult.from_mcp(result, tool_name=tool_name, server_name=server_name)

    async def call_tool_report(
        self, tool_identifier: str, arguments: Optional[Dict[str, Any]] = None
    ) -> str:
        """
        Call a tool and render the result as a text report.
        """
        result = await self.call_tool(tool_identifier, arguments)
        return format_call_result(result, indent=self.settings.report.indent)

    async def close(self) -> Dict[str, BaseException]:
        """
        Close every remaining endpoint concurrently.

        Returns:
            The close errors by endpoint name; they are logged, never raised.
        """
        if self._closed or not self._entered:
            return {}
        self._closed = True

        self.logger.info("Shutting down all endpoint connections...")
        errors = await self.connection_manager.shutdown_all(
            record.connection for record in self.registry.records()
        )
        for server_name, error in errors.items():
            self.logger.error(f"{server_name}: Failed to close cleanly: {describe_error(error)}")

        await self.notifications.aclose()
        self.registry.clear()
        self._routing_table = {}
        return errors
