"""Tools discovered on MCP servers and the catalogue the agent loop picks from."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class McpTool:
    """Tool definition as advertised by a server's tools/list."""

    name: str
    description: str | None = None
    input_schema: dict[str, Any] | None = None
    server_url: str | None = None

    @classmethod
    def from_wire(cls, raw: dict[str, Any], server_url: str | None = None) -> McpTool | None:
        """Parse one tools/list entry; entries without a name are skipped."""
        name = raw.get("name")
        if not isinstance(name, str) or not name:
            return None
        description = raw.get("description")
        schema = raw.get("inputSchema")
        return cls(
            name=name,
            description=description if isinstance(description, str) else None,
            input_schema=schema if isinstance(schema, dict) else None,
            server_url=server_url,
        )


@dataclass
class ToolCatalog:
    """Tools from every configured server, indexed by name. First server wins on a clash."""

    tools: list[McpTool] = field(default_factory=list)
    _by_name: dict[str, McpTool] = field(default_factory=dict, repr=False)

    def add(self, tool: McpTool) -> None:
        if tool.name in self._by_name:
            logger.warning(
                "Tool %s on %s shadowed by the one on %s",
                tool.name,
                tool.server_url,
                self._by_name[tool.name].server_url,
            )
            return
        self._by_name[tool.name] = tool
        self.tools.append(tool)

    def extend(self, tools: list[McpTool]) -> None:
        for tool in tools:
            self.add(tool)

    def resolve(self, name: str) -> McpTool | None:
        return self._by_name.get(name)

    @property
    def names(self) -> list[str]:
        return [t.name for t in self.tools]

    def __len__(self) -> int:
        return len(self.tools)
