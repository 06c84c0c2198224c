"""
Settings models for the genval MCP client.
"""

import os
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

DEFAULT_CONFIG_NAME = "genval_mcp.config.yaml"
ENV_PREFIX = "GENVAL_"

# Paths to check for .env files, in order of precedence
ENV_PATHS = [
    Path.cwd() / ".env",
    Path.cwd() / ".secrets.env",
    Path.home() / ".genval_mcp" / ".env",
]


class EndpointSettings(BaseModel):
    """
    Settings for one tool-serving endpoint.

    Exactly one of ``url`` (event-streaming transport) or ``command``
    (subprocess transport) must be set.
    """

    name: Optional[str] = None
    transport: Optional[Literal["sse", "stdio"]] = None
    url: Optional[str] = None
    command: Optional[str] = None
    args: List[str] = Field(default_factory=list)
    env: Optional[Dict[str, str]] = None
    read_timeout_seconds: Optional[float] = None
    start_timeout_seconds: Optional[float] = None

    model_config = {"frozen": True}

    @model_validator(mode="before")
    @classmethod
    def _derive_transport(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data

        has_url = bool(data.get("url"))
        has_command = bool(data.get("command"))
        if has_url == has_command:
            raise ValueError(
                "exactly one of 'url' (sse) or 'command' (stdio) must be set"
            )

        derived = "sse" if has_url else "stdio"
        transport = data.get("transport")
        if transport is not None and transport != derived:
            raise ValueError(
                f"transport '{transport}' does not match the configured "
                f"{'url' if has_url else 'command'}"
            )
        return {**data, "transport": derived}


class MCPSettings(BaseModel):
    """Settings for the configured endpoints, keyed by alias."""

    servers: Dict[str, EndpointSettings] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _fill_names(self) -> "MCPSettings":
        for alias, server in list(self.servers.items()):
            if server.name != alias:
                self.servers[alias] = server.model_copy(update={"name": alias})
        return self


class ClientSettings(BaseModel):
    """Identity and time budget of the client."""

    name: str = "genval mcp client"
    version: str = "1.0.0"
    timeout_seconds: float = 90.0
    close_timeout_seconds: float = 5.0
    notification_buffer_size: int = 64


class ReportSettings(BaseModel):
    """Settings for rendered tool-call reports."""

    indent: str = "    "


class LoggingSettings(BaseModel):
    """Settings for logging configuration."""

    level: str = "info"
    file_path: Optional[str] = None
    console: bool = True


class Settings(BaseModel):
    """Root settings object for the genval MCP client."""

    mcp: MCPSettings = Field(default_factory=MCPSettings)
    client: ClientSettings = Field(default_factory=ClientSettings)
    report: ReportSettings = Field(default_factory=ReportSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    model_config = {"extra": "allow"}


def load_config(config_path: Optional[str] = None) -> Settings:
    """
    Load and validate the configuration from a YAML (or JSON) file.

    Args:
        config_path: Path to the configuration file.
            If None, look for 'genval_mcp.config.yaml' in the current directory.

    Returns:
        Settings: Validated configuration object.

    Raises:
        pydantic.ValidationError: If the merged configuration is invalid.
    """
    if config_path is None:
        config_path = os.path.join(os.getcwd(), DEFAULT_CONFIG_NAME)

    config_data: Dict[str, Any] = {}

    if os.path.exists(config_path):
        with open(config_path, "r") as f:
            config_data = yaml.safe_load(f) or {}

    # Load secrets if they exist
    secrets_path = Path(config_path).with_suffix(".secrets.yaml")
    if secrets_path.exists():
        with open(secrets_path, "r") as f:
            secrets_data = yaml.safe_load(f) or {}

        _merge_dicts(config_data, secrets_data)

    _normalize_servers(config_data)

    load_env_files()

    # Environment variables override file settings
    env_config = _load_from_env()
    if env_config:
        _merge_dicts(config_data, env_config)

    _expand_server_env(config_data)

    return Settings.model_validate(config_data)


def load_env_files() -> Optional[Path]:
    """
    Load the first .env file found in ENV_PATHS into the process environment.

    Returns:
        The path that was loaded, or None.
    """
    for env_path in ENV_PATHS:
        if env_path.exists():
            load_dotenv(dotenv_path=env_path)
            return env_path
    return None


def _normalize_servers(config: Dict[str, Any]) -> None:
    """Map the common ``mcpServers`` layout onto ``mcp.servers``."""
    servers = config.pop("mcpServers", None)
    if not servers:
        return

    mcp_section = config.setdefault("mcp", {})
    existing = mcp_section.setdefault("servers", {})
    _merge_dicts(existing, servers)


def _expand_server_env(config: Dict[str, Any]) -> None:
    """Expand ${VAR} references in endpoint urls, args and env values."""
    servers = config.get("mcp", {}).get("servers", {}) or {}
    for server in servers.values():
        if not isinstance(server, dict):
            continue
        if isinstance(server.get("url"), str):
            server["url"] = os.path.expandvars(server["url"])
        if isinstance(server.get("args"), list):
            server["args"] = [
                os.path.expandvars(arg) if isinstance(arg, str) else arg
                for arg in server["args"]
            ]
        if isinstance(server.get("env"), dict):
            server["env"] = {
                key: os.path.expandvars(str(value))
                for key, value in server["env"].items()
            }


def _load_from_env() -> Dict[str, Any]:
    """
    Load configuration from environment variables.

    GENVAL_CLIENT__TIMEOUT_SECONDS=30 becomes {"client": {"timeout_seconds": "30"}}.

    Returns:
        Dict with configuration loaded from environment variables.
    """
    config: Dict[str, Any] = {}

    _set_nested_dict(config, ["logging", "level"], os.environ.get("LOG_LEVEL"))
    _set_nested_dict(config, ["logging", "file_path"], os.environ.get("LOG_FILE"))

    for key, value in os.environ.items():
        if key.startswith(ENV_PREFIX):
            path = [part for part in key[len(ENV_PREFIX):].lower().split("__") if part]
            if path:
                _set_nested_dict(config, path, value)

    return config


def _set_nested_dict(d: Dict[str, Any], path: List[str], value: Any) -> None:
    """
    Set a value in a nested dictionary based on a path.

    Args:
        d: Dictionary to set value in.
        path: List of keys defining the path.
        value: Value to set.
    """
    if value is None:
        return

    if len(path) == 1:
        d[path[0]] = value
        return

    if not isinstance(d.get(path[0]), dict):
        d[path[0]] = {}

    _set_nested_dict(d[path[0]], path[1:], value)


def _merge_dicts(target: Dict, source: Dict) -> None:
    """
    Recursively merge source dictionary into target dictionary.
    Values in source will override values in target.

    Args:
        target: Target dictionary to merge into.
        source: Source dictionary with values to merge.
    """
    for key, value in source.items():
        if key in target and isinstance(target[key], dict) and isinstance(value, dict):
            _merge_dicts(target[key], value)
        else:
            target[key] = value
