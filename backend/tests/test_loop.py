"""Unit tests for the tool-calling agent loop (scripted backend, fake MCP servers)."""
from __future__ import annotations

import unittest

import httpx

from src.dialog_orchestrator.errors import Err, ErrorCode, Ok
from src.dialog_orchestrator.loop import ITERATION_LIMIT_FALLBACK, ToolCallingOrchestrator, validate_tool_request
from src.dialog_orchestrator.mcp_client import McpClient
from src.dialog_orchestrator.models import ToolChatRequest
from src.llm_core.models import TokenUsage

from stubs import FakeMcpServer, StubBackend, mcp_client_factory, selector_for

URL_A = "http://tools-a.test/mcp"
URL_B = "http://tools-b.test/mcp"


def _orchestrator(backend: StubBackend, servers: dict[str, FakeMcpServer]) -> ToolCallingOrchestrator:
    return ToolCallingOrchestrator(
        backend_selector=selector_for(backend),
        client_factory=mcp_client_factory(servers),
    )


class TestValidation(unittest.TestCase):
    def test_requires_servers(self) -> None:
        error = validate_tool_request(ToolChatRequest(message="hi", vendor="stub"))
        self.assertEqual(error.code, ErrorCode.INVALID_REQUEST)

    def test_requires_message(self) -> None:
        error = validate_tool_request(ToolChatRequest(message="", vendor="stub", mcp_server_urls=[URL_A]))
        self.assertEqual(error.code, ErrorCode.EMPTY_MESSAGE)

    def test_requires_positive_budget(self) -> None:
        request = ToolChatRequest(message="hi", vendor="stub", mcp_server_urls=[URL_A], max_tool_iterations=0)
        self.assertEqual(validate_tool_request(request).code, ErrorCode.INVALID_REQUEST)


class TestToolLoop(unittest.IsolatedAsyncioTestCase):
    async def test_echo_then_final(self) -> None:
        backend = StubBackend(
            ['{"tool": "echo", "args": {"text": "hi"}}', '{"final": "hi"}'],
            usage=TokenUsage(prompt_tokens=3, completion_tokens=2, total_tokens=5),
        )
        server = FakeMcpServer()
        result = await _orchestrator(backend, {URL_A: server}).run(
            ToolChatRequest(message="Echo hi", vendor="stub", mcp_server_urls=[URL_A])
        )

        self.assertIsInstance(result, Ok)
        chat = result.value
        self.assertEqual(chat.content, "hi")
        self.assertEqual(chat.total_tool_iterations, 2)
        self.assertFalse(chat.degraded)
        self.assertEqual(len(chat.tool_calls), 1)
        call = chat.tool_calls[0]
        self.assertEqual((call.tool_name, call.arguments, call.result, call.success, call.server_url),
                         ("echo", {"text": "hi"}, "hi", True, URL_A))
        self.assertEqual(chat.usage, TokenUsage(prompt_tokens=6, completion_tokens=4, total_tokens=10, cost=0.0))
        self.assertEqual(server.calls, [("echo", {"text": "hi"})])

    async def test_conversation_sent_to_model(self) -> None:
        backend = StubBackend(['{"tool": "echo", "args": {"text": "hi"}}', '{"final": "done"}'])
        await _orchestrator(backend, {URL_A: FakeMcpServer()}).run(
            ToolChatRequest(message="Echo hi", vendor="stub", mcp_server_urls=[URL_A], system_prompt="Be brief.")
        )

        first = backend.calls[0]["messages"]
        self.assertEqual([m.role for m in first], ["system", "user"])
        self.assertTrue(first[0].content.startswith("Be brief."))
        self.assertIn("1) echo: Echo text", first[0].content)

        second = backend.calls[1]["messages"]
        self.assertEqual([m.role for m in second], ["system", "user", "assistant", "user"])
        self.assertIn("Result of tool echo:\nhi", second[3].content)
        self.assertIn('{"final": "<answer>"}', second[3].content)

    async def test_tools_from_several_servers(self) -> None:
        backend = StubBackend(
            ['{"tool": "echo", "args": {"text": "a"}}', '{"tool": "upper", "args": {"text": "b"}}', '{"final": "ok"}']
        )
        servers = {URL_A: FakeMcpServer(tools=("echo",)), URL_B: FakeMcpServer(tools=("upper",))}
        result = await _orchestrator(backend, servers).run(
            ToolChatRequest(message="go", vendor="stub", mcp_server_urls=[URL_A, URL_B])
        )
        self.assertEqual([(c.tool_name, c.server_url, c.result) for c in result.value.tool_calls],
                         [("echo", URL_A, "a"), ("upper", URL_B, "B")])

    async def test_unknown_tool_is_reported_back(self) -> None:
        backend = StubBackend(['{"tool": "teleport", "args": {}}', "I cannot do that."])
        result = await _orchestrator(backend, {URL_A: FakeMcpServer()}).run(
            ToolChatRequest(message="go", vendor="stub", mcp_server_urls=[URL_A])
        )
        chat = result.value
        self.assertEqual(chat.content, "I cannot do that.")
        self.assertFalse(chat.tool_calls[0].success)
        self.assertIsNone(chat.tool_calls[0].server_url)
        feedback = backend.calls[1]["messages"][-1].content
        self.assertIn("Error calling tool teleport", feedback)
        self.assertIn("echo", feedback)

    async def test_failing_tool_is_recorded(self) -> None:
        backend = StubBackend(['{"tool": "fails", "args": {}}', '{"final": "gave up"}'])
        result = await _orchestrator(backend, {URL_A: FakeMcpServer()}).run(
            ToolChatRequest(message="go", vendor="stub", mcp_server_urls=[URL_A])
        )
        call = result.value.tool_calls[0]
        self.assertFalse(call.success)
        self.assertEqual(call.server_url, URL_A)
        self.assertIn("bad input", call.result)

    async def test_plain_text_reply_is_final(self) -> None:
        backend = StubBackend(["Just text."])
        result = await _orchestrator(backend, {URL_A: FakeMcpServer()}).run(
            ToolChatRequest(message="go", vendor="stub", mcp_server_urls=[URL_A])
        )
        self.assertEqual(result.value.content, "Just text.")
        self.assertEqual(result.value.total_tool_iterations, 1)

    async def test_iteration_budget(self) -> None:
        replies = ['{"tool": "echo", "args": {"text": "again"}}'] * 3
        backend = StubBackend(list(replies))
        result = await _orchestrator(backend, {URL_A: FakeMcpServer()}).run(
            ToolChatRequest(message="loop", vendor="stub", mcp_server_urls=[URL_A], max_tool_iterations=3)
        )
        chat = result.value
        self.assertTrue(chat.degraded)
        self.assertEqual(chat.total_tool_iterations, 3)
        self.assertEqual(len(backend.calls), 3)
        self.assertEqual(len(chat.tool_calls), 3)
        self.assertEqual(chat.content, replies[-1])
        self.assertNotEqual(chat.content, ITERATION_LIMIT_FALLBACK)

    async def test_no_tools_anywhere_fails(self) -> None:
        backend = StubBackend([])
        result = await _orchestrator(backend, {URL_A: FakeMcpServer(tools=())}).run(
            ToolChatRequest(message="go", vendor="stub", mcp_server_urls=[URL_A])
        )
        self.assertIsInstance(result, Err)
        self.assertEqual(result.error.code, ErrorCode.TOOL_PROTOCOL_FAILURE)
        self.assertEqual(backend.calls, [])

    async def test_partial_server_failure_is_tolerated(self) -> None:
        backend = StubBackend(['{"final": "fine"}'])
        healthy = mcp_client_factory({URL_A: FakeMcpServer()})

        def factory(url: str) -> McpClient:
            if url == URL_B:
                return McpClient(url, transport=httpx.MockTransport(lambda request: httpx.Response(503, text="down")))
            return healthy(url)

        orchestrator = ToolCallingOrchestrator(backend_selector=selector_for(backend), client_factory=factory)
        with self.assertLogs("src.dialog_orchestrator.loop", level="WARNING"):
            result = await orchestrator.run(
                ToolChatRequest(message="go", vendor="stub", mcp_server_urls=[URL_A, URL_B])
            )
        self.assertEqual(result.value.content, "fine")

    async def test_backend_failure(self) -> None:
        backend = StubBackend([TimeoutError("slow")])
        result = await _orchestrator(backend, {URL_A: FakeMcpServer()}).run(
            ToolChatRequest(message="go", vendor="stub", mcp_server_urls=[URL_A])
        )
        self.assertEqual(result.error.code, ErrorCode.BACKEND_FAILURE)


if __name__ == "__main__":
    unittest.main()
