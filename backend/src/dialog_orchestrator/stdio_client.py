"""MCP client for a server run as a subprocess, speaking newline-delimited JSON-RPC over stdin/stdout."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import shlex
from typing import Any, Sequence

from .config import MCP_REQUEST_TIMEOUT
from .mcp_client import BaseMcpClient, McpError, McpTransportError

logger = logging.getLogger(__name__)

# Servers may print banners or logs on stdout before a reply
MAX_SKIPPED_LINES = 100
# Tool results can be far larger than asyncio's default 64 KiB line limit
STDIO_LINE_LIMIT = 16 * 1024 * 1024
TERMINATE_GRACE_SECONDS = 2.0


class StdioMcpClient(BaseMcpClient):
    """
    Spawns `command` on first use and talks to it over its standard streams.
    stderr of the server is forwarded to the log. Closing the client
    terminates the process, killing it if it does not exit in time.
    """

    def __init__(
        self,
        command: Sequence[str],
        timeout: float = MCP_REQUEST_TIMEOUT,
        env: dict[str, str] | None = None,
        cwd: str | None = None,
        server_url: str | None = None,
    ) -> None:
        super().__init__(server_url or f"stdio://{shlex.join(command)}", timeout)
        self.command = list(command)
        self._env = env
        self._cwd = cwd
        self._process: asyncio.subprocess.Process | None = None
        self._stderr_task: asyncio.Task | None = None
        self._io_lock = asyncio.Lock()

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process is not None else None

    @property
    def is_running(self) -> bool:
        return self._process is not None and self._process.returncode is None

    async def __aenter__(self) -> StdioMcpClient:
        return self

    async def aclose(self) -> None:
        process, self._process = self._process, None
        self._initialized = False
        if self._stderr_task is not None:
            self._stderr_task.cancel()
            try:
                await self._stderr_task
            except asyncio.CancelledError:
                pass
            self._stderr_task = None
        if process is None:
            return

        if process.stdin is not None and not process.stdin.is_closing():
            process.stdin.close()
        if process.returncode is None:
            try:
                process.terminate()
                await asyncio.wait_for(process.wait(), timeout=TERMINATE_GRACE_SECONDS)
            except ProcessLookupError:
                pass
            except asyncio.TimeoutError:
                logger.warning("MCP server %s ignored terminate, killing it", self.server_url)
                process.kill()
                await process.wait()
        logger.info("Stopped MCP server %s (exit code %s)", self.server_url, process.returncode)

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _start(self) -> asyncio.subprocess.Process:
        if self._process is not None:
            if self._process.returncode is None:
                return self._process
            raise McpTransportError(f"MCP server exited with code {self._process.returncode}")
        if not self.command:
            raise McpTransportError("No command given for the stdio MCP server")

        try:
            self._process = await asyncio.create_subprocess_exec(
                *self.command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env={**os.environ, **self._env} if self._env else None,
                cwd=self._cwd,
                limit=STDIO_LINE_LIMIT,
            )
        except OSError as exc:
            raise McpTransportError(f"Cannot start MCP server {shlex.join(self.command)}: {exc}") from exc

        self._stderr_task = asyncio.create_task(self._read_stderr(self._process))
        logger.info("Started MCP server %s (pid %d)", self.server_url, self._process.pid)
        return self._process

    async def _write(self, payload: dict[str, Any]) -> asyncio.subprocess.Process:
        process = await self._start()
        line = json.dumps(payload, ensure_ascii=False) + "\n"
        logger.debug("MCP -> %s: %s", self.server_url, payload.get("method"))
        try:
            process.stdin.write(line.encode("utf-8"))
            await process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as exc:
            raise McpTransportError("MCP server connection lost") from exc
        return process

    async def _request(self, method: str, params: dict[str, Any] | None = None) -> Any:
        """Send a JSON-RPC request and return its result field."""
        request = self._build_jsonrpc_request(method, params)
        async with self._io_lock:
            process = await self._write(request)
            try:
                data = await asyncio.wait_for(
                    self._read_response(process, request["id"]), timeout=self._timeout
                )
            except asyncio.TimeoutError:
                raise McpTransportError(f"Request timed out after {self._timeout}s") from None
        return self._unwrap_response(data)

    async def _notify(self, method: str) -> None:
        """Fire a notification; failures are logged only."""
        try:
            async with self._io_lock:
                await self._write({"jsonrpc": "2.0", "method": method})
        except McpError as exc:
            logger.warning("MCP notification %s to %s failed: %s", method, self.server_url, exc)

    async def _read_response(self, process: asyncio.subprocess.Process, request_id: int) -> dict[str, Any]:
        """
        Read stdout until the reply carrying request_id. Non-JSON lines,
        server notifications and replies to earlier, timed-out requests are
        skipped.
        """
        skipped = 0
        while skipped <= MAX_SKIPPED_LINES:
            try:
                raw = await process.stdout.readline()
            except ValueError as exc:
                raise McpTransportError(f"Reply line too long: {exc}") from exc
            if not raw:
                if process.returncode is not None:
                    raise McpTransportError(f"MCP server exited with code {process.returncode}")
                raise McpTransportError("MCP server closed its output")

            text = raw.decode("utf-8", errors="replace").strip()
            if not text:
                continue
            try:
                data = json.loads(text)
            except json.JSONDecodeError:
                logger.debug("Skipping non-JSON output of %s: %s", self.server_url, text[:200])
                skipped += 1
                continue
            if isinstance(data, dict) and data.get("id") == request_id and ("result" in data or "error" in data):
                return data
            logger.debug("Skipping unrelated message from %s: %s", self.server_url, text[:200])
            skipped += 1
        raise McpTransportError(f"No JSON-RPC reply after {MAX_SKIPPED_LINES} unrelated lines")

    async def _read_stderr(self, process: asyncio.subprocess.Process) -> None:
        while True:
            try:
                line = await process.stderr.readline()
            except ValueError:
                continue
            if not line:
                break
            logger.info("MCP stderr [%s]: %s", self.server_url, line.decode("utf-8", errors="replace").rstrip())
