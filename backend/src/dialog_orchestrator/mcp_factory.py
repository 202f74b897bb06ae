"""Picks the MCP transport for a configured server address."""

from __future__ import annotations

import logging
import shlex

from .config import MCP_REQUEST_TIMEOUT
from .mcp_client import BaseMcpClient, McpClient
from .stdio_client import StdioMcpClient

logger = logging.getLogger(__name__)

STDIO_PREFIXES = ("stdio://", "stdio:")


def is_stdio_url(server_url: str) -> bool:
    return server_url.startswith(STDIO_PREFIXES)


def parse_stdio_command(server_url: str) -> list[str]:
    """Command line of a stdio:// or stdio: address, split shell-style."""
    for prefix in STDIO_PREFIXES:
        if server_url.startswith(prefix):
            command = server_url[len(prefix):]
            break
    else:
        raise ValueError(f"Not a stdio MCP address: {server_url!r}")
    try:
        return shlex.split(command)
    except ValueError:
        # unbalanced quotes
        return command.split()


def create_mcp_client(server_url: str, timeout: float = MCP_REQUEST_TIMEOUT) -> BaseMcpClient:
    """
    stdio://cmd args and stdio:cmd args run a local server process; anything
    else is treated as a streamable HTTP endpoint.
    """
    if is_stdio_url(server_url):
        command = parse_stdio_command(server_url)
        logger.debug("Using stdio transport for %s", command)
        return StdioMcpClient(command, timeout=timeout, server_url=server_url)
    return McpClient(server_url, timeout=timeout)
