"""MCP client over HTTP: JSON-RPC 2.0 requests, JSON or SSE replies, session header continuity."""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from typing import Any

import httpx

from .config import MCP_REQUEST_TIMEOUT
from .errors import DialogError, Err, Ok, Result
from .tools import McpTool

logger = logging.getLogger(__name__)


class McpError(Exception):
    """Base class for MCP client failures."""


class McpRpcError(McpError):
    """The server answered with a JSON-RPC error object."""

    def __init__(self, code: int | None, message: str) -> None:
        super().__init__(f"MCP Error ({code}): {message}")
        self.code = code
        self.rpc_message = message


class McpHttpError(McpError):
    def __init__(self, status_code: int, body: str) -> None:
        super().__init__(f"HTTP {status_code}: {body[:500]}")
        self.status_code = status_code
        self.body = body


class McpSessionExpiredError(McpHttpError):
    """404 for a request made under a session id; the next call starts a new session."""


class McpTransportError(McpError):
    """Timeout, connection failure or an undecodable reply."""


class McpToolError(McpError):
    """The tool ran and reported isError; the message is its output."""


class BaseMcpClient(ABC):
    """
    Handshake and tool operations shared by every MCP transport.

    Every public method initializes the connection on first use and returns a
    Result whose error is a TOOL_PROTOCOL_FAILURE DialogError. Subclasses only
    move JSON-RPC messages: _request returns the result field, _notify fires
    and forgets.
    """

    MCP_PROTOCOL_VERSION = "2025-03-26"
    CLIENT_INFO = {"name": "dialog-orchestrator", "version": "1.0.0"}

    def __init__(self, server_url: str, timeout: float = MCP_REQUEST_TIMEOUT) -> None:
        self.server_url = server_url
        self._timeout = timeout
        self._request_id = 0
        self._initialized = False

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    async def __aenter__(self) -> BaseMcpClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    @abstractmethod
    async def aclose(self) -> None:
        ...

    @abstractmethod
    async def _request(self, method: str, params: dict[str, Any] | None = None) -> Any:
        ...

    @abstractmethod
    async def _notify(self, method: str) -> None:
        ...

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def initialize(self) -> Result[None, DialogError]:
        try:
            await self._ensure_initialized()
        except McpError as exc:
            return Err(self._failure("initialize", exc))
        return Ok(None)

    async def list_tools(self) -> Result[list[McpTool], DialogError]:
        try:
            await self._ensure_initialized()
            result = await self._request("tools/list")
        except McpError as exc:
            return Err(self._failure("tools/list", exc))

        raw_tools = result.get("tools") if isinstance(result, dict) else None
        tools = []
        for raw in raw_tools or []:
            if isinstance(raw, dict):
                tool = McpTool.from_wire(raw, server_url=self.server_url)
                if tool is not None:
                    tools.append(tool)
        logger.info("Discovered %d tool(s) on %s", len(tools), self.server_url)
        return Ok(tools)

    async def call_tool(self, name: str, arguments: dict[str, Any] | None = None) -> Result[str, DialogError]:
        try:
            await self._ensure_initialized()
            result = await self._request("tools/call", {"name": name, "arguments": arguments or {}})
            text = self.extract_tool_text(result)
            if isinstance(result, dict) and result.get("isError") is True:
                raise McpToolError(text)
        except McpError as exc:
            return Err(self._failure(f"tools/call {name}", exc))
        return Ok(text)

    # ------------------------------------------------------------------
    # Protocol internals
    # ------------------------------------------------------------------

    def _failure(self, operation: str, exc: McpError) -> DialogError:
        logger.warning("MCP %s on %s failed: %s", operation, self.server_url, exc)
        return DialogError.tool_protocol_failure(str(exc), exc)

    def _next_request_id(self) -> int:
        self._request_id += 1
        return self._request_id

    def _build_jsonrpc_request(self, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        request: dict[str, Any] = {
            "jsonrpc": "2.0",
            "id": self._next_request_id(),
            "method": method,
        }
        if params is not None:
            request["params"] = params
        return request

    async def _ensure_initialized(self) -> None:
        if self._initialized:
            return
        await self._request(
            "initialize",
            {
                "protocolVersion": self.MCP_PROTOCOL_VERSION,
                "capabilities": {},
                "clientInfo": self.CLIENT_INFO,
            },
        )
        self._initialized = True
        await self._notify("notifications/initialized")
        logger.info("Initialized MCP session with %s", self.server_url)

    @staticmethod
    def _unwrap_response(data: Any) -> Any:
        """Result field of a decoded JSON-RPC response, or the matching McpError."""
        if not isinstance(data, dict):
            raise McpTransportError(f"Unexpected JSON-RPC response: {str(data)[:200]}")
        if data.get("error") is not None:
            error = data["error"] if isinstance(data["error"], dict) else {"message": str(data["error"])}
            raise McpRpcError(error.get("code"), error.get("message", "Unknown error"))
        if "result" not in data:
            raise McpTransportError("JSON-RPC response has neither result nor error")
        return data["result"]

    @staticmethod
    def extract_tool_text(result: Any) -> str:
        """Text of a tools/call result: content string, first item's text, or the whole result as JSON."""
        content = result.get("content") if isinstance(result, dict) else None
        if isinstance(content, str):
            return content
        if isinstance(content, list) and content:
            first = content[0]
            if isinstance(first, dict) and isinstance(first.get("text"), str):
                return first["text"]
        if isinstance(content, dict) and isinstance(content.get("text"), str):
            return content["text"]
        return json.dumps(result, ensure_ascii=False)


class McpClient(BaseMcpClient):
    """
    Client for one MCP server reachable at server_url over streamable HTTP.

    Usage:
        async with McpClient("http://localhost:8931/mcp") as client:
            tools = await client.list_tools()
            result = await client.call_tool("echo", {"text": "hi"})
    """

    SESSION_HEADER = "Mcp-Session-Id"

    def __init__(
        self,
        server_url: str,
        timeout: float = MCP_REQUEST_TIMEOUT,
        headers: dict[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(server_url, timeout)
        self._client = httpx.AsyncClient(
            headers={
                "Content-Type": "application/json",
                "Accept": "application/json, text/event-stream",
                **(headers or {}),
            },
            timeout=timeout,
            transport=transport,
        )
        self._session_id: str | None = None

    @property
    def session_id(self) -> str | None:
        return self._session_id

    async def __aenter__(self) -> McpClient:
        return self

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _post(self, payload: dict[str, Any]) -> httpx.Response:
        headers = {}
        if self._session_id:
            headers[self.SESSION_HEADER] = self._session_id
        logger.debug("MCP -> %s: %s", self.server_url, payload.get("method"))
        try:
            response = await self._client.post(self.server_url, json=payload, headers=headers)
        except httpx.TimeoutException as exc:
            raise McpTransportError(f"Request timed out after {self._timeout}s") from exc
        except httpx.RequestError as exc:
            raise McpTransportError(f"Connection error: {exc}") from exc

        if response.status_code == 404 and (self._session_id or self.SESSION_HEADER in response.headers):
            self._session_id = None
            self._initialized = False
            raise McpSessionExpiredError(response.status_code, response.text)

        received = response.headers.get(self.SESSION_HEADER)
        if received and self._session_id is None:
            self._session_id = received

        if not response.is_success:
            raise McpHttpError(response.status_code, response.text)
        return response

    async def _request(self, method: str, params: dict[str, Any] | None = None) -> Any:
        """Send a JSON-RPC request and return its result field."""
        response = await self._post(self._build_jsonrpc_request(method, params))
        return self._unwrap_response(self._decode_body(response))

    async def _notify(self, method: str) -> None:
        """Fire a notification; failures are logged only."""
        try:
            response = await self._post({"jsonrpc": "2.0", "method": method})
        except McpError as exc:
            logger.warning("MCP notification %s to %s failed: %s", method, self.server_url, exc)
            return
        if response.status_code != 202:
            logger.debug("MCP notification %s answered with HTTP %d", method, response.status_code)

    @classmethod
    def _decode_body(cls, response: httpx.Response) -> Any:
        text = response.text
        if not text.strip():
            raise McpTransportError("Empty response body")
        content_type = response.headers.get("content-type", "")
        is_sse = "text/event-stream" in content_type or (
            "application/json" not in content_type
            and (text.lstrip().startswith("event:") or cls._has_data_lines(text))
        )
        try:
            if is_sse:
                return json.loads(cls.parse_sse_payload(text))
            return json.loads(text)
        except json.JSONDecodeError as exc:
            raise McpTransportError(f"Invalid JSON in response: {exc}") from exc

    @staticmethod
    def _has_data_lines(text: str) -> bool:
        return any(line.startswith("data:") for line in text.splitlines())

    @staticmethod
    def parse_sse_payload(text: str) -> str:
        """Payload of the last data: line of an SSE body."""
        payload = None
        for line in text.splitlines():
            line = line.strip()
            if line.startswith("data:"):
                candidate = line[5:].strip()
                if candidate:
                    payload = candidate
        if payload is None:
            raise McpTransportError(f"No data found in SSE response: {text[:200]}")
        return payload
