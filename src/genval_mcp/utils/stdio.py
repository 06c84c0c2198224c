"""
Subprocess transport for stdio endpoints.

Same wire behavior as the SDK's stdio client (newline-delimited JSON-RPC on
stdin/stdout), except that the child's stderr is read line by line and
forwarded to the logger under the endpoint's name.
"""

import re
import subprocess
from contextlib import asynccontextmanager
from typing import Optional

import anyio
import anyio.lowlevel
from anyio.abc import Process
from anyio.streams.memory import MemoryObjectSendStream
from anyio.streams.text import TextReceiveStream
from mcp.client.stdio import StdioServerParameters, get_default_environment
from mcp.shared.message import SessionMessage
import mcp.types as types

from genval_mcp.utils.logging import get_logger

logger = get_logger(__name__)

# Seconds a child gets to exit on its own once stdin is closed
EXIT_GRACE_SECONDS = 2.0

_LEVEL_TAG = re.compile(r"^\s*\[(DEBUG|INFO|WARN|WARNING|ERROR)\]\s*")
_TAG_LEVELS = {
    "DEBUG": "debug",
    "INFO": "info",
    "WARN": "warning",
    "WARNING": "warning",
    "ERROR": "error",
}


def log_stderr_line(server_name: str, line: str) -> None:
    """
    Log one stderr line from an endpoint process.

    A leading ``[LEVEL]`` tag picks the level; untagged lines mentioning
    "Error" are errors, everything else is debug output.
    """
    if not line.strip():
        return

    match = _LEVEL_TAG.match(line)
    if match:
        level = _TAG_LEVELS[match.group(1)]
        line = line[match.end():]
    elif "Error" in line:
        level = "error"
    else:
        level = "debug"

    getattr(logger, level)(f"{server_name} stderr: {line}")


async def _forward_stdout(
    process: Process,
    server: StdioServerParameters,
    sink: MemoryObjectSendStream,
) -> None:
    buffer = ""
    async with sink:
        async for chunk in TextReceiveStream(
            process.stdout,
            encoding=server.encoding,
            errors=server.encoding_error_handler,
        ):
            *lines, buffer = (buffer + chunk).split("\n")
            for line in lines:
                if not line.strip():
                    continue
                try:
                    message = types.JSONRPCMessage.model_validate_json(line)
                except Exception as exc:
                    # The session reports undecodable messages itself
                    await sink.send(exc)
                    continue
                await sink.send(SessionMessage(message))


async def _forward_stderr(process: Process, server: StdioServerParameters, server_name: str) -> None:
    buffer = ""
    async for chunk in TextReceiveStream(
        process.stderr,
        encoding=server.encoding,
        errors=server.encoding_error_handler,
    ):
        *lines, buffer = (buffer + chunk).split("\n")
        for line in lines:
            log_stderr_line(server_name, line)
    log_stderr_line(server_name, buffer)


async def _forward_stdin(process: Process, server: StdioServerParameters, source) -> None:
    async with source:
        async for session_message in source:
            payload = session_message.message.model_dump_json(by_alias=True, exclude_none=True)
            await process.stdin.send(
                (payload + "\n").encode(
                    encoding=server.encoding,
                    errors=server.encoding_error_handler,
                )
            )


async def _guarded(name: str, forward, *args) -> None:
    try:
        await forward(*args)
    except (anyio.ClosedResourceError, anyio.BrokenResourceError, anyio.EndOfStream):
        logger.debug(f"{name}: stream closed")
    finally:
        await anyio.lowlevel.checkpoint()


@asynccontextmanager
async def stdio_client_with_logged_stderr(
    server: StdioServerParameters, server_name: Optional[str] = None
):
    """
    Spawn the endpoint command and connect to it over its standard streams.

    Args:
        server: Command, arguments and environment of the endpoint process.
        server_name: Name used to prefix forwarded stderr lines.

    Yields:
        A (read_stream, write_stream) pair for a ClientSession.
    """
    server_name = server_name or server.command
    read_stream_writer, read_stream = anyio.create_memory_object_stream(0)
    write_stream, write_stream_reader = anyio.create_memory_object_stream(0)

    try:
        process = await anyio.open_process(
            [server.command, *server.args],
            env=server.env if server.env is not None else get_default_environment(),
            stderr=subprocess.PIPE,
            cwd=server.cwd,
        )
    except OSError as e:
        logger.error(f"{server_name}: Failed to spawn '{server.command}': {e}")
        await read_stream_writer.aclose()
        await write_stream_reader.aclose()
        raise

    logger.debug(f"{server_name}: Spawned '{server.command}' (pid {process.pid})")

    async with anyio.create_task_group() as tg, process:
        tg.start_soon(_guarded, f"{server_name} stdout", _forward_stdout, process, server, read_stream_writer)
        tg.start_soon(_guarded, f"{server_name} stdin", _forward_stdin, process, server, write_stream_reader)
        tg.start_soon(_guarded, f"{server_name} stderr", _forward_stderr, process, server, server_name)
        try:
            yield read_stream, write_stream
        finally:
            await process.stdin.aclose()
            with anyio.move_on_after(EXIT_GRACE_SECONDS):
                await process.wait()
            if process.returncode is None:
                logger.debug(f"{server_name}: Process did not exit, terminating.")
                process.terminate()
            tg.cancel_scope.cancel()
            await read_stream.aclose()
            await write_stream.aclose()
