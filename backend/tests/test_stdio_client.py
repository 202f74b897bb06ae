"""Tests for the stdio MCP client against a small server script run with the current interpreter."""
from __future__ import annotations

import shlex
import sys
import tempfile
import textwrap
import unittest
from pathlib import Path

from src.dialog_orchestrator.errors import Err, ErrorCode, Ok
from src.dialog_orchestrator.mcp_client import McpClient
from src.dialog_orchestrator.mcp_factory import create_mcp_client, is_stdio_url, parse_stdio_command
from src.dialog_orchestrator.stdio_client import StdioMcpClient

ECHO_SERVER = textwrap.dedent(
    """
    import json
    import sys

    print("echo server starting", flush=True)
    sys.stderr.write("ready\\n")
    sys.stderr.flush()

    def send(payload):
        sys.stdout.write(json.dumps(payload) + "\\n")
        sys.stdout.flush()

    for line in sys.stdin:
        line = line.strip()
        if not line:
            continue
        message = json.loads(line)
        if "id" not in message:
            continue
        method = message["method"]
        if method == "initialize":
            send({"jsonrpc": "2.0", "method": "notifications/message", "params": {"data": "hello"}})
            result = {"protocolVersion": "2025-03-26", "capabilities": {"tools": {}}, "serverInfo": {"name": "echo"}}
        elif method == "tools/list":
            result = {"tools": [{"name": "echo", "description": "Echo text", "inputSchema": {"type": "object"}}]}
        elif method == "tools/call" and message["params"]["name"] == "echo":
            text = message["params"]["arguments"].get("text", "")
            result = {"content": [{"type": "text", "text": text}]}
        else:
            error = {"code": -32602, "message": "Unknown tool: " + message["params"]["name"]}
            send({"jsonrpc": "2.0", "id": message["id"], "error": error})
            continue
        send({"jsonrpc": "2.0", "id": message["id"], "result": result})
    """
)

EXITING_SERVER = "import sys\nsys.exit(3)\n"


class StdioTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def server_url(self, source: str, name: str = "server.py") -> str:
        script = Path(self._tmp.name) / name
        script.write_text(source, encoding="utf-8")
        return "stdio://" + shlex.join([sys.executable, str(script)])


class TestStdioMcpClient(StdioTestCase):
    async def test_list_and_call_tools(self) -> None:
        url = self.server_url(ECHO_SERVER)
        async with create_mcp_client(url, timeout=10.0) as client:
            self.assertIsInstance(client, StdioMcpClient)
            tools = await client.list_tools()
            result = await client.call_tool("echo", {"text": "ping"})

        self.assertIsInstance(tools, Ok)
        self.assertEqual([t.name for t in tools.value], ["echo"])
        self.assertEqual(tools.value[0].server_url, url)
        self.assertEqual(result, Ok("ping"))

    async def test_rpc_error_is_tool_protocol_failure(self) -> None:
        async with create_mcp_client(self.server_url(ECHO_SERVER), timeout=10.0) as client:
            result = await client.call_tool("missing", {})
        self.assertIsInstance(result, Err)
        self.assertEqual(result.error.code, ErrorCode.TOOL_PROTOCOL_FAILURE)
        self.assertIn("MCP Error (-32602): Unknown tool: missing", result.error.message)

    async def test_close_stops_the_process(self) -> None:
        client = create_mcp_client(self.server_url(ECHO_SERVER), timeout=10.0)
        self.assertIsInstance(await client.initialize(), Ok)
        process = client._process
        self.assertTrue(client.is_running)

        await client.aclose()
        self.assertIsNotNone(process.returncode)
        self.assertFalse(client.is_running)
        self.assertFalse(client.is_initialized)

    async def test_missing_executable(self) -> None:
        client = StdioMcpClient([str(Path(self._tmp.name) / "no-such-server")], timeout=5.0)
        async with client:
            result = await client.initialize()
        self.assertIsInstance(result, Err)
        self.assertEqual(result.error.code, ErrorCode.TOOL_PROTOCOL_FAILURE)
        self.assertIn("Cannot start MCP server", result.error.message)

    async def test_server_exiting_early(self) -> None:
        async with create_mcp_client(self.server_url(EXITING_SERVER), timeout=10.0) as client:
            result = await client.list_tools()
        self.assertIsInstance(result, Err)
        self.assertEqual(result.error.code, ErrorCode.TOOL_PROTOCOL_FAILURE)

    async def test_empty_command(self) -> None:
        async with create_mcp_client("stdio://   ") as client:
            result = await client.initialize()
        self.assertIsInstance(result, Err)
        self.assertIn("No command", result.error.message)


class TestClientFactory(unittest.IsolatedAsyncioTestCase):
    def test_parse_stdio_command(self) -> None:
        self.assertEqual(parse_stdio_command("stdio://npx -y @acme/server"), ["npx", "-y", "@acme/server"])
        self.assertEqual(parse_stdio_command("stdio:python 'my server.py'"), ["python", "my server.py"])
        with self.assertRaises(ValueError):
            parse_stdio_command("http://localhost/mcp")

    def test_is_stdio_url(self) -> None:
        self.assertTrue(is_stdio_url("stdio://server"))
        self.assertTrue(is_stdio_url("stdio:server"))
        self.assertFalse(is_stdio_url("https://tools.test/mcp"))

    async def test_http_urls_get_http_client(self) -> None:
        client = create_mcp_client("https://tools.test/mcp", timeout=3.0)
        try:
            self.assertIsInstance(client, McpClient)
            self.assertEqual(client.server_url, "https://tools.test/mcp")
        finally:
            await client.aclose()


if __name__ == "__main__":
    unittest.main()
