"""Unit tests for the MCP client against an in-process httpx.MockTransport server."""
from __future__ import annotations

import json
import unittest

import httpx

from src.dialog_orchestrator.errors import Err, ErrorCode, Ok
from src.dialog_orchestrator.mcp_client import McpClient, McpRpcError, McpSessionExpiredError

from stubs import FakeMcpServer

SERVER_URL = "http://mcp.test/mcp"


def _client(server) -> McpClient:
    return McpClient(SERVER_URL, timeout=5.0, transport=httpx.MockTransport(server))


class TestMcpClient(unittest.IsolatedAsyncioTestCase):
    async def test_initialize_handshake(self) -> None:
        server = FakeMcpServer()
        async with _client(server) as client:
            result = await client.initialize()
            self.assertIsInstance(result, Ok)
            self.assertTrue(client.is_initialized)

        init, notification = server.requests
        self.assertEqual(init["method"], "initialize")
        self.assertEqual(init["params"]["protocolVersion"], "2025-03-26")
        self.assertEqual(init["params"]["capabilities"], {})
        self.assertIn("name", init["params"]["clientInfo"])
        self.assertEqual(notification["method"], "notifications/initialized")
        self.assertNotIn("id", notification)

    async def test_initialize_is_idempotent(self) -> None:
        server = FakeMcpServer()
        async with _client(server) as client:
            await client.initialize()
            await client.initialize()
        self.assertEqual(server.initialize_count, 1)

    async def test_list_tools_initializes_and_skips_nameless(self) -> None:
        server = FakeMcpServer()
        async with _client(server) as client:
            result = await client.list_tools()
        self.assertIsInstance(result, Ok)
        self.assertEqual([t.name for t in result.value], ["echo", "fails"])
        self.assertEqual(result.value[0].server_url, SERVER_URL)
        self.assertEqual([r["method"] for r in server.requests], ["initialize", "notifications/initialized", "tools/list"])

    async def test_session_id_echoed_after_capture(self) -> None:
        server = FakeMcpServer()
        async with _client(server) as client:
            await client.list_tools()
            self.assertEqual(client.session_id, "sess-1-1")
        self.assertEqual(server.headers_seen, [None, "sess-1-1", "sess-1-1"])

    async def test_request_ids_increase(self) -> None:
        server = FakeMcpServer()
        async with _client(server) as client:
            await client.list_tools()
            await client.call_tool("echo", {"text": "x"})
        ids = [r["id"] for r in server.requests if "id" in r]
        self.assertEqual(ids, sorted(ids))
        self.assertEqual(len(set(ids)), len(ids))

    async def test_call_tool_extracts_text(self) -> None:
        async with _client(FakeMcpServer()) as client:
            result = await client.call_tool("echo", {"text": "hello"})
        self.assertEqual(result, Ok("hello"))

    async def test_sse_responses(self) -> None:
        async with _client(FakeMcpServer(sse=True)) as client:
            tools = await client.list_tools()
            echoed = await client.call_tool("echo", {"text": "over sse"})
        self.assertEqual([t.name for t in tools.value], ["echo", "fails"])
        self.assertEqual(echoed.value, "over sse")

    async def test_rpc_error(self) -> None:
        async with _client(FakeMcpServer()) as client:
            result = await client.call_tool("missing", {})
        self.assertIsInstance(result, Err)
        self.assertEqual(result.error.code, ErrorCode.TOOL_PROTOCOL_FAILURE)
        self.assertIsInstance(result.error.cause, McpRpcError)
        self.assertEqual(result.error.cause.code, -32602)
        self.assertIn("MCP Error (-32602)", result.error.message)

    async def test_tool_reported_error(self) -> None:
        async with _client(FakeMcpServer()) as client:
            result = await client.call_tool("fails", {})
        self.assertIsInstance(result, Err)
        self.assertIn("bad input", result.error.message)

    async def test_http_error(self) -> None:
        transport = httpx.MockTransport(lambda request: httpx.Response(500, text="kaput"))
        async with McpClient(SERVER_URL, transport=transport) as client:
            result = await client.list_tools()
        self.assertIsInstance(result, Err)
        self.assertIn("HTTP 500", result.error.message)

    async def test_connection_error(self) -> None:
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        async with McpClient(SERVER_URL, transport=httpx.MockTransport(refuse)) as client:
            result = await client.list_tools()
        self.assertEqual(result.error.code, ErrorCode.TOOL_PROTOCOL_FAILURE)

    async def test_missing_result_is_error(self) -> None:
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"jsonrpc": "2.0", "id": 1}))
        async with McpClient(SERVER_URL, transport=transport) as client:
            result = await client.initialize()
        self.assertIsInstance(result, Err)

    async def test_expired_session_reinitializes_on_next_call(self) -> None:
        server = FakeMcpServer()
        async with _client(server) as client:
            await client.list_tools()
            server.expire_next = True

            failed = await client.call_tool("echo", {"text": "lost"})
            self.assertIsInstance(failed, Err)
            self.assertIsInstance(failed.error.cause, McpSessionExpiredError)
            self.assertFalse(client.is_initialized)
            self.assertIsNone(client.session_id)

            retried = await client.call_tool("echo", {"text": "again"})
            self.assertEqual(retried, Ok("again"))
            self.assertEqual(client.session_id, "sess-1-2")
        self.assertEqual(server.initialize_count, 2)
        methods = [r["method"] for r in server.requests]
        self.assertEqual(methods[-3:], ["initialize", "notifications/initialized", "tools/call"])


class TestTextExtraction(unittest.TestCase):
    def test_shapes(self) -> None:
        extract = McpClient.extract_tool_text
        self.assertEqual(extract({"content": "plain"}), "plain")
        self.assertEqual(extract({"content": [{"type": "text", "text": "first"}, {"text": "second"}]}), "first")
        self.assertEqual(extract({"content": {"text": "obj"}}), "obj")
        self.assertEqual(json.loads(extract({"value": 3})), {"value": 3})

    def test_last_data_line_wins(self) -> None:
        body = "event: message\ndata: {\"a\": 1}\n\nevent: message\ndata: {\"a\": 2}\n"
        self.assertEqual(json.loads(McpClient.parse_sse_payload(body)), {"a": 2})


if __name__ == "__main__":
    unittest.main()
