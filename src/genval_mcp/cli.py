"""
Command line entry point: list the tools of every endpoint or call one tool.
"""

import argparse
import asyncio
import json
import sys
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from genval_mcp.app import GenvalApp
from genval_mcp.config import Settings, load_config
from genval_mcp.errors import GenvalMCPError
from genval_mcp.utils.logging import configure_logging, get_logger

logger = get_logger("genval.cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="genval-mcp",
        description="Discover and call tools across several MCP endpoints.",
    )
    parser.add_argument("--config", help="Path to the configuration file (YAML or JSON)")
    parser.add_argument("--log-level", help="Override the configured log level")
    parser.add_argument(
        "--timeout",
        type=float,
        help="Overall time budget in seconds for the whole command",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    list_parser = subparsers.add_parser("list", help="List the tools of every endpoint")
    list_parser.add_argument(
        "--json",
        action="store_true",
        help="Print the full per-endpoint tool catalog as JSON",
    )

    call_parser = subparsers.add_parser("call", help="Call one tool")
    call_parser.add_argument("tool", help="Tool identifier, '<alias>.<tool>'")
    call_parser.add_argument(
        "--args",
        default="{}",
        help="Arguments as a JSON object (default: {})",
    )

    return parser


def parse_arguments(raw: str) -> Dict[str, Any]:
    """
    Parse the --args JSON. Only objects are accepted.
    """
    arguments = json.loads(raw)
    if not isinstance(arguments, dict):
        raise ValueError("--args must be a JSON object")
    return arguments


def apply_overrides(settings: Settings, args: argparse.Namespace) -> Settings:
    updates = {}
    if args.timeout is not None:
        updates["client"] = settings.client.model_copy(update={"timeout_seconds": args.timeout})
    if args.log_level:
        updates["logging"] = settings.logging.model_copy(update={"level": args.log_level})
    return settings.model_copy(update=updates) if updates else settings


async def run_command(args: argparse.Namespace, settings: Settings, out=None) -> None:
    out = out or sys.stdout
    arguments = parse_arguments(args.args) if args.command == "call" else None

    async with GenvalApp(settings=settings).run() as app:
        orchestrator = app.orchestrator

        if args.command == "list":
            if args.json:
                print(orchestrator.tools_as_json(), file=out)
            else:
                print("Available Tools:", file=out)
                for server_name, tool in orchestrator.list_tools():
                    print(f" - {server_name}.{tool.name}: {tool.description}", file=out)
        else:
            report = await orchestrator.call_tool_report(args.tool, arguments)
            print(report, file=out)


def main(argv: Optional[List[str]] = None) -> int:
    """
    Run the CLI.

    Returns:
        0 on success, 1 on any fatal condition.
    """
    args = build_parser().parse_args(argv)

    try:
        settings = apply_overrides(load_config(args.config), args)
    except (ValidationError, ValueError, OSError) as e:
        configure_logging()
        logger.critical(f"Invalid configuration: {e}", exc_info=False)
        return 1

    try:
        asyncio.run(run_command(args, settings))
    except GenvalMCPError as e:
        logger.critical(f"Error: {e}", exc_info=False)
        return 1
    except ValueError as e:
        logger.critical(f"Invalid arguments: {e}", exc_info=False)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
