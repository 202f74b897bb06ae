from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from pydantic import BaseModel, ConfigDict

ROLE_SYSTEM = "system"
ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"


class Message(BaseModel):
    """A single message in a conversation."""

    model_config = ConfigDict(frozen=True)

    role: Literal["system", "user", "assistant"]
    content: str = ""

    def to_chat_dict(self) -> dict[str, str]:
        """Format for LLM chat APIs."""
        return {"role": self.role, "content": self.content or ""}


class TokenUsage(BaseModel):
    """Token accounting reported by a backend. Every field is optional."""

    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    total_tokens: int | None = None
    cost: float | None = None

    @classmethod
    def combine(cls, first: TokenUsage | None, second: TokenUsage | None) -> TokenUsage | None:
        """Field-wise sum; an absent usage leaves the other one unchanged."""
        if first is None:
            return second
        if second is None:
            return first
        return cls(
            prompt_tokens=(first.prompt_tokens or 0) + (second.prompt_tokens or 0),
            completion_tokens=(first.completion_tokens or 0) + (second.completion_tokens or 0),
            total_tokens=(first.total_tokens or 0) + (second.total_tokens or 0),
            cost=(first.cost or 0.0) + (second.cost or 0.0),
        )


@dataclass(frozen=True)
class ChatCompletion:
    """Successful reply of a chat backend."""

    content: str
    model: str
    usage: TokenUsage | None = None


__all__ = [
    "ROLE_SYSTEM",
    "ROLE_USER",
    "ROLE_ASSISTANT",
    "Message",
    "TokenUsage",
    "ChatCompletion",
]
