"""
Registry of the endpoints the orchestrator is currently talking to.
"""

from typing import Any, Dict, Iterator, List, Optional

from mcp import ClientSession
from mcp.types import Tool
from pydantic import BaseModel, Field

from genval_mcp.config import EndpointSettings
from genval_mcp.mcp.connection_manager import EndpointConnection


class ToolDescriptor(BaseModel):
    """
    One tool exposed by an endpoint, as reported during discovery.
    """

    name: str
    description: str = ""
    input_schema: Dict[str, Any] = Field(default_factory=dict, alias="inputSchema")

    model_config = {"frozen": True, "populate_by_name": True}

    @classmethod
    def from_mcp(cls, tool: Tool) -> "ToolDescriptor":
        return cls(
            name=tool.name,
            description=tool.description or "",
            input_schema=tool.inputSchema or {},
        )


class EndpointRecord:
    """
    Everything the orchestrator knows about one endpoint.
    """

    def __init__(self, name: str, settings: EndpointSettings, connection: EndpointConnection):
        self.name = name
        self.settings = settings
        self.connection = connection
        self.tool_catalog: List[ToolDescriptor] = []
        self.init_result: Optional[Any] = None

    @property
    def session(self) -> ClientSession | None:
        return self.connection.session

    def __repr__(self) -> str:
        return (
            f"EndpointRecord(name={self.name!r}, transport={self.settings.transport!r}, "
            f"tools={len(self.tool_catalog)})"
        )


class EndpointRegistry:
    """
    Insertion-ordered mapping of endpoint alias to EndpointRecord.

    Entries are only ever removed after construction: an endpoint that fails
    start or handshake is dropped entirely rather than disabled.
    """

    def __init__(self):
        self._records: Dict[str, EndpointRecord] = {}

    def add(self, record: EndpointRecord) -> None:
        if record.name in self._records:
            raise ValueError(f"Endpoint '{record.name}' is already registered.")
        self._records[record.name] = record

    def remove(self, name: str) -> Optional[EndpointRecord]:
        return self._records.pop(name, None)

    def get(self, name: str) -> Optional[EndpointRecord]:
        return self._records.get(name)

    def names(self) -> List[str]:
        return list(self._records)

    def records(self) -> List[EndpointRecord]:
        return list(self._records.values())

    def clear(self) -> None:
        self._records.clear()

    def __contains__(self, name: object) -> bool:
        return name in self._records

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._records))
