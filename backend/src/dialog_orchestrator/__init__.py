"""Dialog orchestrator: multi-round dialogs, history compression and an MCP tool loop."""

from .context_summary import HistoryCompressor
from .dialog import DialogOrchestrator
from .errors import DialogError, Err, ErrorCode, Ok, Result
from .loop import ToolCallingOrchestrator
from .mcp_client import BaseMcpClient, McpClient
from .mcp_factory import create_mcp_client
from .models import (
    ChatResult,
    DialogRequest,
    DialogSession,
    ModelResult,
    ModelTarget,
    MultiChatRequest,
    MultiChatResult,
    ToolCallInfo,
    ToolChatRequest,
    ToolChatResult,
)
from .multi_chat import MultiChatOrchestrator
from .session_store import DEFAULT_SESSION_ID, JsonFileSessionStore, SessionStore
from .stdio_client import StdioMcpClient

__all__ = [
    "DialogOrchestrator",
    "ToolCallingOrchestrator",
    "MultiChatOrchestrator",
    "HistoryCompressor",
    "BaseMcpClient",
    "McpClient",
    "StdioMcpClient",
    "create_mcp_client",
    "SessionStore",
    "JsonFileSessionStore",
    "DEFAULT_SESSION_ID",
    "DialogError",
    "ErrorCode",
    "Ok",
    "Err",
    "Result",
    "ChatResult",
    "DialogRequest",
    "DialogSession",
    "ModelResult",
    "ModelTarget",
    "MultiChatRequest",
    "MultiChatResult",
    "ToolCallInfo",
    "ToolChatRequest",
    "ToolChatResult",
]
