"""Tests for transports, endpoint connections and the client session."""

import shutil
import sys
from pathlib import Path

import anyio
import mcp.types as types
import pytest
from mcp.client.stdio import StdioServerParameters

from genval_mcp.config import EndpointSettings, Settings
from genval_mcp.errors import ConstructionError, NoServersRunningError
from genval_mcp.mcp.client_session import EndpointClientSession, client_info
from genval_mcp.mcp.connection_manager import (
    ConnectionManager,
    EndpointConnection,
    build_transport,
    root_cause,
)
from genval_mcp.mcp.endpoint_registry import EndpointRecord, EndpointRegistry
from genval_mcp.mcp.notifications import decode_notification
from genval_mcp.mcp.orchestrator import Orchestrator
from genval_mcp.utils import stdio
from tests.fakes import FakeEndpoint, FakeFleet

DEVOPS_SERVER = Path(__file__).resolve().parents[1] / "examples" / "devops_server.py"


class TestBuildTransport:
    def test_sse_endpoint(self):
        factory = build_transport("default", EndpointSettings(url="http://localhost:1234/sse"))

        assert callable(factory)

    @pytest.mark.parametrize("url", ["localhost:1234/sse", "ftp://localhost/sse", "http://"])
    def test_malformed_url_is_a_construction_error(self, url):
        with pytest.raises(ConstructionError) as exc_info:
            build_transport("default", EndpointSettings(url=url))

        assert exc_info.value.server_name == "default"

    def test_stdio_endpoint(self):
        factory = build_transport(
            "cluster", EndpointSettings(command=sys.executable, args=["server.py"])
        )

        assert callable(factory)

    def test_missing_command_is_a_construction_error(self):
        with pytest.raises(ConstructionError):
            build_transport(
                "cluster", EndpointSettings(command="genval-no-such-binary-on-path")
            )


def _connection(fleet: FakeFleet, name: str, **settings) -> EndpointConnection:
    config = EndpointSettings(url=f"http://localhost:8080/{name}/sse", **settings)
    return EndpointConnection(
        server_name=name,
        server_config=config,
        transport_context_factory=fleet.transport_builder(name, config),
        client_session_factory=fleet.session_factory,
    )


class TestConnectionManager:
    @pytest.mark.asyncio
    async def test_start_all_reports_failures_by_name(self):
        fleet = FakeFleet(FakeEndpoint("up"), FakeEndpoint("down", fail_start=True))

        async with ConnectionManager(close_timeout_seconds=1) as manager:
            up = _connection(fleet, "up")
            down = _connection(fleet, "down")

            failures = await manager.start_all([up, down])

            assert list(failures) == ["down"]
            assert failures["down"].stage == "start"
            assert isinstance(failures["down"].__cause__, ConnectionError)
            assert up.started
            assert up.session is fleet["up"].session

    @pytest.mark.asyncio
    async def test_start_timeout_aborts_connection(self):
        fleet = FakeFleet(FakeEndpoint("slow", hang_start=True))

        async with ConnectionManager(close_timeout_seconds=1) as manager:
            slow = _connection(fleet, "slow", start_timeout_seconds=0.1)

            failures = await manager.start_all([slow])
            await manager.shutdown(slow)

            assert "timed out" in str(failures["slow"])
            assert slow.closed

    @pytest.mark.asyncio
    async def test_start_failure_names_the_underlying_error(self):
        wrapped = ExceptionGroup(
            "unhandled errors in a TaskGroup",
            [ExceptionGroup("inner", [ConnectionError("All connection attempts failed")])],
        )
        fleet = FakeFleet(FakeEndpoint("down", start_error=wrapped))

        async with ConnectionManager(close_timeout_seconds=1) as manager:
            failures = await manager.start_all([_connection(fleet, "down")])

        message = str(failures["down"])
        assert "All connection attempts failed" in message
        assert "TaskGroup" not in message
        assert failures["down"].__cause__ is wrapped

    def test_root_cause_of_plain_exception_is_itself(self):
        error = RuntimeError("boom")

        assert root_cause(error) is error

    @pytest.mark.asyncio
    async def test_start_timeout_counts_from_launch(self):
        fleet = FakeFleet(
            FakeEndpoint("slow", start_delay=0.5),
            FakeEndpoint("hung", hang_start=True),
        )

        async with ConnectionManager(close_timeout_seconds=1) as manager:
            slow = _connection(fleet, "slow")
            hung = _connection(fleet, "hung", start_timeout_seconds=0.5)

            began = anyio.current_time()
            failures = await manager.start_all([slow, hung])
            elapsed = anyio.current_time() - began

            assert slow.started
            assert list(failures) == ["hung"]
            # Both waits overlap; sequential timeouts would take about 1s
            assert elapsed < 0.9

    @pytest.mark.asyncio
    async def test_shutdown_returns_close_error(self):
        fleet = FakeFleet(FakeEndpoint("flaky", fail_close=True))

        async with ConnectionManager(close_timeout_seconds=1) as manager:
            flaky = _connection(fleet, "flaky")
            await manager.start_all([flaky])

            error = await manager.shutdown(flaky)

            assert isinstance(error, RuntimeError)
            assert fleet["flaky"].closed
            # Already closed: the recorded error is returned again
            assert await manager.shutdown(flaky) is error

    @pytest.mark.asyncio
    async def test_shutdown_of_unlaunched_connection_is_a_no_op(self):
        fleet = FakeFleet(FakeEndpoint("idle"))

        async with ConnectionManager() as manager:
            assert await manager.shutdown(_connection(fleet, "idle")) is None

    @pytest.mark.asyncio
    async def test_launch_requires_async_context(self):
        fleet = FakeFleet(FakeEndpoint("a"))

        with pytest.raises(RuntimeError):
            ConnectionManager().launch(_connection(fleet, "a"))

    @pytest.mark.asyncio
    async def test_read_timeout_is_passed_to_the_session(self):
        fleet = FakeFleet(FakeEndpoint("a"))

        async with ConnectionManager(close_timeout_seconds=1) as manager:
            conn = _connection(fleet, "a", read_timeout_seconds=7)
            await manager.start_all([conn])

            assert conn.session.read_timeout.total_seconds() == 7


class TestEndpointRegistry:
    def test_keeps_insertion_order_and_rejects_duplicates(self):
        fleet = FakeFleet(FakeEndpoint("b"), FakeEndpoint("a"))
        registry = EndpointRegistry()
        for name in ("b", "a"):
            conn = _connection(fleet, name)
            registry.add(EndpointRecord(name, conn.server_config, conn))

        assert registry.names() == ["b", "a"]
        with pytest.raises(ValueError):
            registry.add(registry.get("a"))

        registry.remove("b")
        assert list(registry) == ["a"]
        assert registry.remove("b") is None


class TestEndpointClientSession:
    @pytest.mark.asyncio
    async def test_notifications_are_forwarded_to_the_sink(self):
        client_send, client_receive = anyio.create_memory_object_stream(1)
        server_send, server_receive = anyio.create_memory_object_stream(1)
        received = []

        session = EndpointClientSession(
            client_receive,
            server_send,
            client_info=client_info("genval mcp client", "1.0.0"),
        )
        session.server_name = "cluster"
        session.notification_sink = lambda server_name, n: received.append((server_name, n))

        notification = types.ServerNotification(
            types.LoggingMessageNotification(
                method="notifications/message",
                params=types.LoggingMessageNotificationParams(
                    level="info", data={"name": "get_pods", "output": {}}
                ),
            )
        )
        await session._received_notification(notification)

        assert received == [("cluster", notification)]

        for stream in (client_send, client_receive, server_send, server_receive):
            await stream.aclose()


def _stdio_settings(**servers) -> Settings:
    return Settings.model_validate(
        {
            "mcp": {"servers": servers},
            "client": {"timeout_seconds": 60, "close_timeout_seconds": 10},
        }
    )


class TestStdioEndpoint:
    """Runs examples/devops_server.py as a real subprocess endpoint."""

    @pytest.mark.asyncio
    async def test_handshake_and_discovery(self):
        settings = _stdio_settings(
            cluster={"command": sys.executable, "args": [str(DEVOPS_SERVER)]}
        )

        async with Orchestrator(settings) as orchestrator:
            await orchestrator.setup()

            assert orchestrator.endpoints == ["cluster"]
            assert dict(orchestrator.routing_table) == {
                "pull_image": "cluster",
                "get_pods": "cluster",
                "git_init": "cluster",
                "create_table": "cluster",
            }
            init_result = orchestrator.registry.get("cluster").init_result
            assert init_result.serverInfo.name == "devops-server"

            errors = await orchestrator.close()

        assert errors == {}

    @pytest.mark.asyncio
    @pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")
    async def test_call_and_notification(self, tmp_path):
        notifications = []
        delivered = anyio.Event()

        def handler(server_name, notification):
            notifications.append((server_name, decode_notification(notification)))
            delivered.set()

        settings = _stdio_settings(
            cluster={"command": sys.executable, "args": [str(DEVOPS_SERVER)]}
        )
        repo = tmp_path / "repo"

        async with Orchestrator(settings, notification_handler=handler) as orchestrator:
            await orchestrator.setup()
            report = await orchestrator.call_tool_report("x.git_init", {"directory": str(repo)})

            with anyio.fail_after(10):
                await delivered.wait()

        lines = report.splitlines()
        assert lines[0] == 'Tool "git_init" result (IsError: false)'
        assert lines[1].startswith("Content[1]: ")
        assert all(line.startswith("    ") for line in lines[2:])
        assert (repo / ".git").is_dir()

        server_name, payload = notifications[0]
        assert server_name == "cluster"
        assert payload.name == "git_init"
        assert payload.output == {"directory": str(repo)}

    @pytest.mark.asyncio
    async def test_process_that_exits_immediately_is_dropped(self, caplog):
        settings = _stdio_settings(
            broken={"command": sys.executable, "args": ["-c", "import sys; sys.exit(0)"]}
        )

        with pytest.raises(NoServersRunningError) as exc_info:
            async with Orchestrator(settings) as orchestrator:
                await orchestrator.setup()

        assert exc_info.value.stage in ("start", "initialize")
        assert "broken: Dropping endpoint" in caplog.text

    @pytest.mark.asyncio
    async def test_spawn_failure_is_raised(self):
        server = StdioServerParameters(command="/nonexistent/genval-endpoint")

        with pytest.raises(OSError):
            async with stdio.stdio_client_with_logged_stderr(server, "ghost"):
                pass

    @pytest.mark.asyncio
    async def test_process_ignoring_stdin_close_is_terminated(self, monkeypatch):
        monkeypatch.setattr(stdio, "EXIT_GRACE_SECONDS", 0.2)
        server = StdioServerParameters(
            command=sys.executable, args=["-c", "import time; time.sleep(60)"]
        )

        with anyio.fail_after(10):
            async with stdio.stdio_client_with_logged_stderr(server, "sleeper") as (
                read_stream,
                write_stream,
            ):
                assert read_stream is not None
                assert write_stream is not None
