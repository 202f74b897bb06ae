"""Chat router: multi-round dialog, fan-out and MCP tool loop endpoints."""

from __future__ import annotations

from functools import lru_cache
from typing import Any

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from src.dialog_orchestrator import (
    DialogError,
    DialogOrchestrator,
    DialogRequest,
    Err,
    JsonFileSessionStore,
    ModelTarget,
    MultiChatOrchestrator,
    MultiChatRequest,
    SessionStore,
    ToolCallingOrchestrator,
    ToolChatRequest,
)
from src.dialog_orchestrator.config import DEFAULT_MAX_TOOL_ITERATIONS, DEFAULT_VENDOR, MCP_SERVER_URLS
from src.dialog_orchestrator.loop import ClientFactory
from src.dialog_orchestrator.mcp_factory import create_mcp_client
from src.dialog_orchestrator.session_store import DEFAULT_SESSION_ID

router = APIRouter(tags=["chat"])


# ---------------------------------------------------------------------------
# Dependencies (overridable in tests via app.dependency_overrides)
# ---------------------------------------------------------------------------


@lru_cache
def get_session_store() -> SessionStore:
    return JsonFileSessionStore()


def get_dialog_orchestrator(store: SessionStore = Depends(get_session_store)) -> DialogOrchestrator:
    return DialogOrchestrator(store=store)


def get_mcp_client_factory() -> ClientFactory:
    return create_mcp_client


def get_tool_orchestrator(
    client_factory: ClientFactory = Depends(get_mcp_client_factory),
) -> ToolCallingOrchestrator:
    return ToolCallingOrchestrator(client_factory=client_factory)


def get_multi_chat_orchestrator() -> MultiChatOrchestrator:
    return MultiChatOrchestrator()


def error_response(error: DialogError) -> JSONResponse:
    return JSONResponse(status_code=400 if error.is_client_error else 502, content=error.to_dict())


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------


class UsageResponse(BaseModel):
    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    total_tokens: int | None = None
    cost: float | None = None


class ChatRequest(BaseModel):
    """Request body for POST /chat."""

    message: str = Field(..., description="User message")
    vendor: str = Field(DEFAULT_VENDOR, description="openai, perplexity, ollama or gemini")
    model: str | None = Field(None, description="Vendor model name; the vendor default when omitted")
    max_tokens: int | None = Field(None, ge=1)
    disable_search: bool | None = None
    system_prompt: str | None = None
    output_format: str | None = Field(None, description="e.g. 'json'")
    output_schema: str | None = None
    max_rounds: int | None = Field(None, description="More than 1 starts or continues a multi-round dialog")
    temperature: float | None = None
    compression_messages_threshold: int | None = Field(None, ge=1)
    compression_tokens_threshold: int | None = Field(None, ge=1)
    session_id: str | None = Field(None, description="Continue this exact session")


class ChatResponse(BaseModel):
    content: str
    model: str
    is_complete: bool
    round: int
    max_rounds: int
    execution_time_ms: int
    usage: UsageResponse | None = None
    total_characters_count: int = 0
    was_compressed: bool = False


class TargetModel(BaseModel):
    vendor: str
    model: str | None = None


class MultiChatRequestBody(BaseModel):
    message: str
    targets: list[TargetModel]
    max_tokens: int | None = Field(None, ge=1)
    disable_search: bool | None = None
    system_prompt: str | None = None
    output_format: str | None = None
    output_schema: str | None = None
    temperature: float | None = None


class ModelResultResponse(BaseModel):
    vendor: str
    model: str
    content: str | None = None
    execution_time_ms: int
    usage: UsageResponse | None = None
    success: bool
    error: str | None = None


class MultiChatResponse(BaseModel):
    results: list[ModelResultResponse]
    combined_content: str
    total_usage: UsageResponse | None = None
    total_execution_time_ms: int


class ToolChatRequestBody(BaseModel):
    message: str
    vendor: str = DEFAULT_VENDOR
    model: str | None = None
    mcp_server_urls: list[str] | None = Field(None, description="Defaults to MCP_SERVER_URLS")
    max_tokens: int | None = Field(None, ge=1)
    disable_search: bool | None = None
    system_prompt: str | None = None
    output_format: str | None = None
    output_schema: str | None = None
    temperature: float | None = None
    max_tool_iterations: int = DEFAULT_MAX_TOOL_ITERATIONS


class ToolCallResponse(BaseModel):
    tool_name: str
    arguments: dict[str, Any]
    result: str
    success: bool
    server_url: str | None = None


class ToolChatResponse(BaseModel):
    content: str
    model: str
    execution_time_ms: int
    usage: UsageResponse | None = None
    tool_calls: list[ToolCallResponse] = Field(default_factory=list)
    total_tool_iterations: int = 0
    degraded: bool = False


class McpToolResponse(BaseModel):
    name: str
    description: str | None = None
    input_schema: dict[str, Any] | None = None
    server_url: str | None = None


class McpCallToolRequest(BaseModel):
    server_url: str = Field(..., description="http(s):// endpoint or stdio://command args")
    tool_name: str
    arguments: dict[str, Any] = Field(default_factory=dict)


class McpCallToolResponse(BaseModel):
    tool_name: str
    result: str
    success: bool = True


def _usage(usage: Any) -> UsageResponse | None:
    return UsageResponse(**usage.model_dump()) if usage is not None else None


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.post("/chat", response_model=ChatResponse)
async def chat(request: ChatRequest, orchestrator: DialogOrchestrator = Depends(get_dialog_orchestrator)):
    """One user turn; stateless unless max_rounds > 1."""
    result = await orchestrator.send(DialogRequest(**request.model_dump()))
    if isinstance(result, Err):
        return error_response(result.error)
    value = result.value
    return ChatResponse(
        content=value.content,
        model=value.model,
        is_complete=value.is_complete,
        round=value.round,
        max_rounds=value.max_rounds,
        execution_time_ms=value.execution_time_ms,
        usage=_usage(value.usage),
        total_characters_count=value.total_characters_count,
        was_compressed=value.was_compressed,
    )


@router.post("/chat/multi", response_model=MultiChatResponse)
async def chat_multi(
    request: MultiChatRequestBody,
    orchestrator: MultiChatOrchestrator = Depends(get_multi_chat_orchestrator),
):
    body = request.model_dump(exclude={"targets"})
    targets = [ModelTarget(vendor=t.vendor, model=t.model) for t in request.targets]
    result = await orchestrator.send(MultiChatRequest(targets=targets, **body))
    if isinstance(result, Err):
        return error_response(result.error)
    value = result.value
    return MultiChatResponse(
        results=[
            ModelResultResponse(
                vendor=r.vendor,
                model=r.model,
                content=r.content,
                execution_time_ms=r.execution_time_ms,
                usage=_usage(r.usage),
                success=r.success,
                error=r.error,
            )
            for r in value.results
        ],
        combined_content=value.combined_content,
        total_usage=_usage(value.total_usage),
        total_execution_time_ms=value.total_execution_time_ms,
    )


@router.post("/chat/tools", response_model=ToolChatResponse)
async def chat_with_tools(
    request: ToolChatRequestBody,
    orchestrator: ToolCallingOrchestrator = Depends(get_tool_orchestrator),
):
    """Agent loop over the tools of the given (or configured) MCP servers."""
    body = request.model_dump(exclude={"mcp_server_urls"})
    urls = request.mcp_server_urls if request.mcp_server_urls is not None else list(MCP_SERVER_URLS)
    result = await orchestrator.run(ToolChatRequest(mcp_server_urls=urls, **body))
    if isinstance(result, Err):
        return error_response(result.error)
    value = result.value
    return ToolChatResponse(
        content=value.content,
        model=value.model,
        execution_time_ms=value.execution_time_ms,
        usage=_usage(value.usage),
        tool_calls=[ToolCallResponse(**vars(c)) for c in value.tool_calls],
        total_tool_iterations=value.total_tool_iterations,
        degraded=value.degraded,
    )


@router.get("/mcp/tools", response_model=list[McpToolResponse])
async def list_mcp_tools(
    server_url: str = Query(..., description="MCP endpoint URL or stdio://command"),
    client_factory: ClientFactory = Depends(get_mcp_client_factory),
):
    async with client_factory(server_url) as client:
        result = await client.list_tools()
    if isinstance(result, Err):
        return error_response(result.error)
    return [McpToolResponse(**vars(t)) for t in result.value]


@router.post("/mcp/tools/call", response_model=McpCallToolResponse)
async def call_mcp_tool(
    request: McpCallToolRequest,
    client_factory: ClientFactory = Depends(get_mcp_client_factory),
):
    """Run one tool directly, without a model in the loop."""
    if not request.tool_name.strip():
        return error_response(DialogError.invalid_request("Tool name must not be empty"))
    if not request.server_url.strip():
        return error_response(DialogError.invalid_request("MCP server URL must not be empty"))
    async with client_factory(request.server_url) as client:
        result = await client.call_tool(request.tool_name, request.arguments)
    if isinstance(result, Err):
        return error_response(result.error)
    return McpCallToolResponse(tool_name=request.tool_name, result=result.value)


@router.delete("/chat/session")
async def clear_session(
    session_id: str = Query(DEFAULT_SESSION_ID),
    store: SessionStore = Depends(get_session_store),
):
    try:
        cleared = store.clear_session(session_id)
    except ValueError as exc:
        return JSONResponse(status_code=400, content={"error": str(exc), "code": "INVALID_REQUEST"})
    return {"session_id": session_id, "cleared": cleared}
