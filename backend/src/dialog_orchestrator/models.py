"""Data models for dialog sessions, requests and results."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

from pydantic import BaseModel, Field, model_validator

from src.llm_core.models import ROLE_ASSISTANT, ROLE_SYSTEM, ROLE_USER, Message, TokenUsage

from .config import DEFAULT_MAX_TOOL_ITERATIONS

COMPRESSED_HISTORY_TAG = "[COMPRESSED_HISTORY]"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def is_summary_entry(message: Message) -> bool:
    return message.role == ROLE_SYSTEM and message.content.startswith(COMPRESSED_HISTORY_TAG)


def is_dialog_turn(message: Message) -> bool:
    """User or assistant message that is not a compressed-history entry."""
    return message.role in (ROLE_USER, ROLE_ASSISTANT) and not message.content.startswith(COMPRESSED_HISTORY_TAG)


def total_characters(messages: list[Message]) -> int:
    return sum(len(m.content) for m in messages)


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


class DialogSession(BaseModel):
    """Multi-round dialog state, stored as db/memory/sessions/{session_id}.json."""

    session_id: str
    system_prompt: str | None = None
    messages: list[Message] = Field(default_factory=list)
    current_round: int = Field(default=0, ge=0)
    max_rounds: int = Field(ge=1)
    model: str
    max_tokens: int
    disable_search: bool = True
    created_at: datetime = Field(default_factory=_utc_now)
    last_activity_at: datetime = Field(default_factory=_utc_now)
    initial_user_message: str
    is_complete: bool = False
    accumulated_total_tokens: int = Field(default=0, ge=0)

    @model_validator(mode="after")
    def _round_within_budget(self) -> DialogSession:
        if self.current_round > self.max_rounds:
            raise ValueError(f"current_round {self.current_round} exceeds max_rounds {self.max_rounds}")
        return self

    def add_user_message(self, content: str) -> None:
        self.messages.append(Message(role=ROLE_USER, content=content))

    def add_assistant_message(self, content: str) -> None:
        self.messages.append(Message(role=ROLE_ASSISTANT, content=content))

    def increment_round(self) -> None:
        if self.current_round >= self.max_rounds:
            raise ValueError("Cannot advance past max_rounds")
        self.current_round += 1

    def touch(self) -> None:
        self.last_activity_at = _utc_now()

    def mark_complete(self) -> None:
        self.is_complete = True

    def refresh_completion(self) -> None:
        if self.current_round >= self.max_rounds:
            self.is_complete = True

    def is_expired(self, ttl_seconds: float, now: datetime | None = None) -> bool:
        now = now or _utc_now()
        return now - self.last_activity_at > timedelta(seconds=ttl_seconds)

    def dialog_messages(self) -> list[Message]:
        return [m for m in self.messages if is_dialog_turn(m)]

    def summary_entries(self) -> list[Message]:
        return [m for m in self.messages if is_summary_entry(m)]


# ---------------------------------------------------------------------------
# Requests and results
# ---------------------------------------------------------------------------


@dataclass
class DialogRequest:
    """One user turn for the multi-round orchestrator."""

    message: str
    vendor: str
    model: str | None = None
    max_tokens: int | None = None
    disable_search: bool | None = None
    system_prompt: str | None = None
    output_format: str | None = None
    output_schema: str | None = None
    max_rounds: int | None = None
    temperature: float | None = None
    compression_messages_threshold: int | None = None
    compression_tokens_threshold: int | None = None
    # None selects the default session; an explicit id continues that exact session
    session_id: str | None = None


@dataclass
class ChatResult:
    content: str
    model: str
    is_complete: bool
    round: int
    max_rounds: int
    execution_time_ms: int
    usage: TokenUsage | None = None
    total_characters_count: int = 0
    was_compressed: bool = False


@dataclass
class ToolChatRequest:
    message: str
    vendor: str
    mcp_server_urls: list[str] = field(default_factory=list)
    model: str | None = None
    max_tokens: int | None = None
    disable_search: bool | None = None
    system_prompt: str | None = None
    output_format: str | None = None
    output_schema: str | None = None
    temperature: float | None = None
    max_tool_iterations: int = DEFAULT_MAX_TOOL_ITERATIONS


@dataclass
class ToolCallInfo:
    """One tool invocation made during the agent loop."""

    tool_name: str
    arguments: dict[str, Any]
    result: str
    success: bool
    server_url: str | None = None


@dataclass
class ToolChatResult:
    content: str
    model: str
    execution_time_ms: int
    usage: TokenUsage | None = None
    tool_calls: list[ToolCallInfo] = field(default_factory=list)
    total_tool_iterations: int = 0
    degraded: bool = False


@dataclass
class ModelTarget:
    vendor: str
    model: str | None = None


@dataclass
class ModelResult:
    """Outcome of one target in a fan-out request."""

    vendor: str
    model: str
    execution_time_ms: int
    success: bool
    content: str | None = None
    usage: TokenUsage | None = None
    error: str | None = None


@dataclass
class MultiChatRequest:
    message: str
    targets: list[ModelTarget]
    max_tokens: int | None = None
    disable_search: bool | None = None
    system_prompt: str | None = None
    output_format: str | None = None
    output_schema: str | None = None
    temperature: float | None = None


@dataclass
class MultiChatResult:
    results: list[ModelResult]
    combined_content: str
    total_usage: TokenUsage | None
    total_execution_time_ms: int


__all__ = [
    "COMPRESSED_HISTORY_TAG",
    "Message",
    "TokenUsage",
    "DialogSession",
    "DialogRequest",
    "ChatResult",
    "ToolChatRequest",
    "ToolCallInfo",
    "ToolChatResult",
    "ModelTarget",
    "ModelResult",
    "MultiChatRequest",
    "MultiChatResult",
    "is_dialog_turn",
    "is_summary_entry",
    "total_characters",
]
