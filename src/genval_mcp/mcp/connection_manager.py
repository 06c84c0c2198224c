"""
Manages the lifecycle of multiple endpoint connections.
"""

import math
import shutil
from contextlib import AbstractAsyncContextManager
from datetime import timedelta
from typing import (
    Any,
    Callable,
    Dict,
    Iterable,
    Optional,
    Tuple,
)
from urllib.parse import urlparse

import anyio
from anyio import CancelScope, Event, create_task_group
from anyio.abc import TaskGroup

from mcp import ClientSession
from mcp.client.stdio import StdioServerParameters, get_default_environment
from mcp.client.sse import sse_client

from genval_mcp.config import EndpointSettings
from genval_mcp.errors import ConstructionError, StartFailure
from genval_mcp.utils.logging import get_logger
from genval_mcp.utils.stdio import stdio_client_with_logged_stderr

logger = get_logger(__name__)

TransportContextFactory = Callable[[], AbstractAsyncContextManager[Tuple[Any, Any]]]
TransportBuilder = Callable[[str, EndpointSettings], TransportContextFactory]
ClientSessionFactory = Callable[[Any, Any, Optional[timedelta]], ClientSession]


def build_transport(server_name: str, config: EndpointSettings) -> TransportContextFactory:
    """
    Validate an endpoint configuration and return a factory for its transport context.

    Raises:
        ConstructionError: If the transport cannot be built locally.
    """
    if config.transport == "sse":
        parsed = urlparse(config.url or "")
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ConstructionError(
                server_name, f"invalid SSE url '{config.url}', expected http(s)://host/..."
            )
        url = config.url

        def sse_transport():
            return sse_client(url)

        return sse_transport

    if config.transport == "stdio":
        if not config.command or shutil.which(config.command) is None:
            raise ConstructionError(
                server_name, f"command '{config.command}' not found"
            )
        server_params = StdioServerParameters(
            command=config.command,
            args=list(config.args),
            env={**get_default_environment(), **(config.env or {})},
        )

        def stdio_transport():
            return stdio_client_with_logged_stderr(server_params, server_name)

        return stdio_transport

    raise ConstructionError(server_name, f"unsupported transport: {config.transport}")


def root_cause(exc: BaseException) -> BaseException:
    """
    The first leaf of an exception group, or the exception itself.

    Transports run their own task groups, so their failures arrive wrapped.
    """
    while isinstance(exc, BaseExceptionGroup) and exc.exceptions:
        exc = exc.exceptions[0]
    return exc


def describe_error(exc: BaseException) -> str:
    leaf = root_cause(exc)
    return str(leaf) or type(leaf).__name__


class EndpointConnection:
    """
    Represents a long-lived connection to one endpoint.

    Includes:
    - The ClientSession to the endpoint
    - The transport context (stdio/sse) it runs over
    - Lifecycle signals and the errors recorded at start and close
    """

    def __init__(
        self,
        server_name: str,
        server_config: EndpointSettings,
        transport_context_factory: TransportContextFactory,
        client_session_factory: ClientSessionFactory,
    ):
        self.server_name = server_name
        self.server_config = server_config
        self.session: ClientSession | None = None
        self.started = False
        self.start_error: BaseException | None = None
        self.close_error: BaseException | None = None
        self._client_session_factory = client_session_factory
        self._transport_context_factory = transport_context_factory
        self._notification_sink = None
        self._cancel_scope: CancelScope | None = None
        self._aborted = False
        self.launched_at: float | None = None

        # Events are created on launch, inside the event loop
        self._started_event: Event | None = None
        self._shutdown_event: Event | None = None
        self._closed_event: Event | None = None

    @property
    def launched(self) -> bool:
        return self._started_event is not None

    @property
    def closed(self) -> bool:
        return self._closed_event is not None and self._closed_event.is_set()

    def set_notification_sink(self, sink) -> None:
        self._notification_sink = sink

    def _prepare(self) -> None:
        self._started_event = Event()
        self._shutdown_event = Event()
        self._closed_event = Event()
        self.launched_at = anyio.current_time()

    def request_shutdown(self) -> None:
        """
        Signal the lifecycle task to leave the session and transport contexts.
        """
        if self._shutdown_event is not None:
            self._shutdown_event.set()

    def abort(self) -> None:
        """
        Cancel the lifecycle task outright, e.g. when start or close overruns.
        """
        self._aborted = True
        if self._cancel_scope is not None:
            self._cancel_scope.cancel()

    async def wait_for_started(self) -> None:
        await self._started_event.wait()

    async def wait_for_shutdown_request(self) -> None:
        await self._shutdown_event.wait()

    async def wait_for_closed(self) -> None:
        await self._closed_event.wait()

    def create_session(self, read_stream, send_stream) -> ClientSession:
        """
        Create a new session instance for this connection.
        """
        read_timeout = (
            timedelta(seconds=self.server_config.read_timeout_seconds)
            if self.server_config.read_timeout_seconds
            else None
        )

        session = self._client_session_factory(read_stream, send_stream, read_timeout)

        if hasattr(session, "server_name"):
            session.server_name = self.server_name
        if hasattr(session, "notification_sink"):
            session.notification_sink = self._notification_sink

        self.session = session
        return session


async def _endpoint_lifecycle_task(conn: EndpointConnection) -> None:
    """
    Manage the lifecycle of a single endpoint connection.
    Runs inside the ConnectionManager's shared TaskGroup so the transport
    context is entered and exited on the same task.
    """
    server_name = conn.server_name
    with CancelScope() as scope:
        conn._cancel_scope = scope
        if conn._aborted:
            scope.cancel()
        try:
            async with conn._transport_context_factory() as (read_stream, write_stream):
                conn.create_session(read_stream, write_stream)

                async with conn.session:
                    conn.started = True
                    conn._started_event.set()
                    logger.info(
                        f"{server_name}: Connected using {conn.server_config.transport} transport."
                    )

                    await conn.wait_for_shutdown_request()
                    logger.debug(f"{server_name}: Closing session.")
        except Exception as exc:
            if conn.started:
                conn.close_error = exc
                logger.error(f"{server_name}: Error while closing connection: {describe_error(exc)}")
            else:
                conn.start_error = exc
                logger.debug(f"{server_name}: Failed to start: {describe_error(exc)}", exc_info=True)
        finally:
            conn._started_event.set()
            conn._closed_event.set()

    if scope.cancelled_caught:
        logger.debug(f"{server_name}: Lifecycle task cancelled.")


class ConnectionManager:
    """
    Manages the lifecycle of multiple endpoint connections.
    """

    def __init__(self, close_timeout_seconds: float = 5.0):
        self.close_timeout_seconds = close_timeout_seconds
        self.connections: Dict[str, EndpointConnection] = {}
        self._tg: TaskGroup | None = None

    async def __aenter__(self):
        # One task group holds every endpoint lifecycle task
        self._tg = create_task_group()
        await self._tg.__aenter__()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        logger.debug("ConnectionManager: shutting down all endpoint tasks...")
        for conn in self.connections.values():
            conn.request_shutdown()
        self.connections.clear()

        tg, self._tg = self._tg, None
        if tg is not None:
            return await tg.__aexit__(exc_type, exc_val, exc_tb)
        return None

    def _require_task_group(self) -> TaskGroup:
        if not self._tg:
            raise RuntimeError(
                "ConnectionManager must be used inside an async context (i.e. 'async with' or after __aenter__)."
            )
        return self._tg

    def start_soon(self, func, *args) -> None:
        """Run an auxiliary task alongside the endpoint lifecycle tasks."""
        self._require_task_group().start_soon(func, *args)

    def launch(self, conn: EndpointConnection) -> None:
        """
        Schedule the lifecycle task of a connection. Returns immediately.
        """
        tg = self._require_task_group()
        if conn.launched:
            return
        conn._prepare()
        self.connections[conn.server_name] = conn
        tg.start_soon(_endpoint_lifecycle_task, conn, name=f"endpoint:{conn.server_name}")

    async def start_all(
        self,
        connections: Iterable[EndpointConnection],
        deadline: float = math.inf,
    ) -> Dict[str, StartFailure]:
        """
        Launch every connection, then wait for each to come up.

        A connection that has not started by the shared deadline, or by its own
        start timeout, is aborted.

        Returns:
            The start failure of each connection that did not come up, by name.
        """
        connections = list(connections)
        for conn in connections:
            self.launch(conn)

        failures: Dict[str, StartFailure] = {}
        for conn in connections:
            conn_deadline = deadline
            if conn.server_config.start_timeout_seconds is not None:
                # Measured from launch, not from when the join reaches this connection
                conn_deadline = min(
                    deadline,
                    conn.launched_at + conn.server_config.start_timeout_seconds,
                )

            with anyio.move_on_at(conn_deadline):
                await conn.wait_for_started()

            if conn.started:
                continue

            if conn.start_error is not None:
                failure = StartFailure(conn.server_name, describe_error(conn.start_error))
                failure.__cause__ = conn.start_error
            else:
                conn.abort()
                failure = StartFailure(conn.server_name, "timed out waiting for the transport")
            failures[conn.server_name] = failure

        return failures

    async def shutdown(self, conn: EndpointConnection) -> BaseException | None:
        """
        Close one connection and wait for its lifecycle task to finish.

        Returns:
            The error raised while closing, if any. Never raises it.
        """
        if not conn.launched or conn.closed:
            return conn.close_error

        conn.request_shutdown()
        with CancelScope(shield=True):
            with anyio.move_on_after(self.close_timeout_seconds):
                await conn.wait_for_closed()

        if not conn.closed:
            conn.abort()
            conn.close_error = TimeoutError(
                f"close did not finish within {self.close_timeout_seconds}s"
            )
            logger.error(f"{conn.server_name}: {conn.close_error}")

        return conn.close_error

    async def shutdown_all(
        self, connections: Iterable[EndpointConnection]
    ) -> Dict[str, BaseException]:
        """
        Close every connection concurrently. One failure does not stop the others.

        Returns:
            The close errors by connection name.
        """
        errors: Dict[str, BaseException] = {}

        async def _shutdown_one(conn: EndpointConnection) -> None:
            error = await self.shutdown(conn)
            if error is not None:
                errors[conn.server_name] = error

        with CancelScope(shield=True):
            async with create_task_group() as tg:
                for conn in connections:
                    tg.start_soon(_shutdown_one, conn)

        return errors
