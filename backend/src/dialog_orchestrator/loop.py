"""Main agent-tool loop: the model picks MCP tools until it gives a final answer."""

from __future__ import annotations

import logging
import time
from contextlib import AsyncExitStack
from typing import Callable

from src.llm_core.core import UnknownVendorError, get_backend
from src.llm_core.models import ROLE_ASSISTANT, ROLE_SYSTEM, ROLE_USER, Message, TokenUsage
from src.llm_core.providers import ChatBackend

from .config import DEFAULT_DISABLE_SEARCH, DEFAULT_MAX_TOKENS, DEFAULT_MODEL
from .errors import DialogError, Err, Ok, Result, validate_temperature
from .mcp_client import BaseMcpClient
from .mcp_factory import create_mcp_client
from .models import ToolCallInfo, ToolChatRequest, ToolChatResult
from .prompts import build_tools_system_prompt, tool_error_turn, tool_result_turn
from .reply_parser import FinalAnswer, ToolCall, parse_model_reply
from .tools import ToolCatalog

logger = logging.getLogger(__name__)

ITERATION_LIMIT_FALLBACK = "Tool iteration limit reached without a final answer."

ClientFactory = Callable[[str], BaseMcpClient]


def validate_tool_request(request: ToolChatRequest) -> DialogError | None:
    if not request.message or not request.message.strip():
        return DialogError.empty_message()
    if not request.mcp_server_urls:
        return DialogError.invalid_request("At least one MCP server URL is required")
    if request.max_tool_iterations < 1:
        return DialogError.invalid_request("max_tool_iterations must be at least 1")
    return validate_temperature(request.temperature)


async def discover_tools(clients: dict[str, BaseMcpClient]) -> Result[ToolCatalog, DialogError]:
    """List tools on every server. Partial failures are tolerated, an empty catalogue is not."""
    catalog = ToolCatalog()
    failures = []
    for url, client in clients.items():
        listed = await client.list_tools()
        if isinstance(listed, Err):
            failures.append(f"{url}: {listed.error.message}")
            continue
        catalog.extend(listed.value)

    if not len(catalog):
        detail = "; ".join(failures) if failures else "servers advertise no tools"
        return Err(DialogError.tool_protocol_failure(f"No MCP tools available ({detail})"))
    if failures:
        logger.warning("Some MCP servers could not be listed: %s", "; ".join(failures))
    return Ok(catalog)


class ToolCallingOrchestrator:
    """Bounded loop of model turns and MCP tool invocations, one tool at a time."""

    def __init__(
        self,
        backend_selector: Callable[[str], ChatBackend] = get_backend,
        client_factory: ClientFactory = create_mcp_client,
        default_max_tokens: int = DEFAULT_MAX_TOKENS,
    ) -> None:
        self._select_backend = backend_selector
        self._client_factory = client_factory
        self._default_max_tokens = default_max_tokens

    async def run(self, request: ToolChatRequest) -> Result[ToolChatResult, DialogError]:
        started = time.perf_counter()
        error = validate_tool_request(request)
        if error is not None:
            return Err(error)
        try:
            backend = self._select_backend(request.vendor)
        except UnknownVendorError as exc:
            return Err(DialogError.unknown_vendor(request.vendor, exc))

        async with AsyncExitStack() as stack:
            clients: dict[str, BaseMcpClient] = {}
            for url in dict.fromkeys(request.mcp_server_urls):
                clients[url] = await stack.enter_async_context(self._client_factory(url))

            discovered = await discover_tools(clients)
            if isinstance(discovered, Err):
                return discovered
            return await self._loop(request, backend, discovered.value, clients, started)

    async def _invoke(self, call: ToolCall, catalog: ToolCatalog, clients: dict[str, BaseMcpClient]) -> ToolCallInfo:
        tool = catalog.resolve(call.name)
        if tool is None or tool.server_url not in clients:
            logger.warning("Model requested unknown tool %s", call.name)
            return ToolCallInfo(
                tool_name=call.name,
                arguments=call.args,
                result=f"Unknown tool: {call.name}. Available tools: {', '.join(catalog.names)}",
                success=False,
            )

        logger.info("Calling tool %s on %s", call.name, tool.server_url)
        outcome = await clients[tool.server_url].call_tool(call.name, call.args)
        if isinstance(outcome, Err):
            return ToolCallInfo(
                tool_name=call.name,
                arguments=call.args,
                result=outcome.error.message,
                success=False,
                server_url=tool.server_url,
            )
        return ToolCallInfo(
            tool_name=call.name,
            arguments=call.args,
            result=outcome.value,
            success=True,
            server_url=tool.server_url,
        )

    async def _loop(
        self,
        request: ToolChatRequest,
        backend: ChatBackend,
        catalog: ToolCatalog,
        clients: dict[str, BaseMcpClient],
        started: float,
    ) -> Result[ToolChatResult, DialogError]:
        messages = [
            Message(
                role=ROLE_SYSTEM,
                content=build_tools_system_prompt(
                    catalog.tools,
                    base_prompt=request.system_prompt,
                    output_format=request.output_format,
                    output_schema=request.output_schema,
                ),
            ),
            Message(role=ROLE_USER, content=request.message),
        ]
        model = request.model or DEFAULT_MODEL or backend.default_model
        disable_search = DEFAULT_DISABLE_SEARCH if request.disable_search is None else request.disable_search
        usage: TokenUsage | None = None
        tool_calls: list[ToolCallInfo] = []
        last_reply: str | None = None
        reply_model = model

        for iteration in range(1, request.max_tool_iterations + 1):
            logger.info("Tool loop iteration %d/%d", iteration, request.max_tool_iterations)
            reply = await backend.send_message(
                messages,
                model=model,
                max_tokens=request.max_tokens or self._default_max_tokens,
                disable_search=disable_search,
                temperature=request.temperature,
            )
            if isinstance(reply, Err):
                return Err(DialogError.backend_failure(reply.error))

            completion = reply.value
            usage = TokenUsage.combine(usage, completion.usage)
            reply_model = completion.model
            last_reply = completion.content
            logger.debug("Model reply: %.500s", completion.content)

            parsed = parse_model_reply(completion.content)
            if isinstance(parsed, ToolCall):
                info = await self._invoke(parsed, catalog, clients)
                tool_calls.append(info)
                messages.append(Message(role=ROLE_ASSISTANT, content=completion.content))
                turn = tool_result_turn(info.tool_name, info.result) if info.success else tool_error_turn(info.tool_name, info.result)
                messages.append(Message(role=ROLE_USER, content=turn))
                continue

            content = parsed.text if isinstance(parsed, FinalAnswer) else completion.content
            return Ok(
                ToolChatResult(
                    content=content,
                    model=reply_model,
                    execution_time_ms=int((time.perf_counter() - started) * 1000),
                    usage=usage,
                    tool_calls=tool_calls,
                    total_tool_iterations=iteration,
                )
            )

        logger.warning("Tool loop hit the iteration limit (%d)", request.max_tool_iterations)
        return Ok(
            ToolChatResult(
                content=last_reply or ITERATION_LIMIT_FALLBACK,
                model=reply_model,
                execution_time_ms=int((time.perf_counter() - started) * 1000),
                usage=usage,
                tool_calls=tool_calls,
                total_tool_iterations=request.max_tool_iterations,
                degraded=True,
            )
        )
