"""
Logging for the genval MCP client.

All loggers handed out by get_logger share one set of handlers: a rich
console handler on stderr and, optionally, a plain file handler.
configure_logging swaps those handlers on every logger already created.
"""

import logging
from typing import Dict, List, Optional, Union

from rich.console import Console
from rich.logging import RichHandler

# Libraries that log every HTTP request or JSON-RPC message at INFO
CHATTY_LIBRARIES = ("httpx", "httpcore", "mcp", "sse_starlette")

FILE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

_console = Console(stderr=True)
_loggers: Dict[str, logging.Logger] = {}
_level = logging.INFO
_handlers: List[logging.Handler] = [RichHandler(console=_console, rich_tracebacks=True)]


def resolve_level(level: Union[int, str]) -> int:
    """Turn "info", "DEBUG" or a numeric level into a numeric level."""
    if isinstance(level, int):
        return level

    resolved = logging.getLevelName(level.strip().upper())
    if not isinstance(resolved, int):
        raise ValueError(f"Unknown log level: {level}")
    return resolved


def _attach(logger: logging.Logger) -> None:
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
    for handler in _handlers:
        logger.addHandler(handler)
    logger.setLevel(_level)


def configure_logging(
    level: Union[int, str] = logging.INFO,
    add_file_handler: Optional[str] = None,
    console: bool = True,
) -> None:
    """
    Configure the logging system.

    Args:
        level: Level for genval loggers, numeric or by name.
        add_file_handler: If provided, also log to this file.
        console: Whether to log to the rich console on stderr.
    """
    global _level, _handlers

    _level = resolve_level(level)
    _handlers = []

    if console:
        _handlers.append(RichHandler(console=_console, rich_tracebacks=True))

    if add_file_handler:
        file_handler = logging.FileHandler(add_file_handler)
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
        _handlers.append(file_handler)

    for logger in _loggers.values():
        _attach(logger)

    # Transport chatter only shows up when debugging
    library_level = logging.DEBUG if _level <= logging.DEBUG else logging.WARNING
    for name in CHATTY_LIBRARIES:
        logging.getLogger(name).setLevel(library_level)


class PatchedLogger(logging.Logger):
    """
    Logger whose methods accept a ``data`` keyword, appended to the message.

    Example:
        logger.debug("send_request: request=", data=request.model_dump())
    """

    def _log(self, level, msg, args, exc_info=None, extra=None, stack_info=False,
             stacklevel=1, data=None, **kwargs):
        if data is not None:
            if args:
                args = args + (data,)
            else:
                msg = f"{msg} {data}"

        super()._log(level, msg, args, exc_info, extra, stack_info, stacklevel + 1)


logging.setLoggerClass(PatchedLogger)


def get_logger(name: str) -> logging.Logger:
    """
    Get the logger for ``name``, wired to the shared handlers.
    """
    logger = _loggers.get(name)
    if logger is None:
        logger = logging.getLogger(name)
        _attach(logger)
        _loggers[name] = logger
    return logger
