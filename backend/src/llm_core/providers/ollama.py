"""Ollama chat backend."""

from __future__ import annotations

import os
from typing import Any

from ollama import AsyncClient

from ..models import ChatCompletion, Message, TokenUsage
from .base import ChatBackend


class OllamaProvider(ChatBackend):
    """Ollama-backed chat backend. Search is not a concept here, so disable_search is ignored."""

    vendor = "ollama"

    def __init__(self, default_model: str = "llama3.2", base_url: str | None = None, timeout: float = 90.0):
        super().__init__(default_model, timeout)
        self.base_url = base_url or os.getenv("OLLAMA_BASE_URL") or "http://localhost:11434"

    async def _complete(
        self,
        messages: list[Message],
        *,
        model: str,
        max_tokens: int,
        disable_search: bool,
        temperature: float | None,
    ) -> ChatCompletion:
        client = AsyncClient(host=self.base_url)
        options: dict[str, Any] = {"num_predict": max_tokens}
        if temperature is not None:
            options["temperature"] = temperature

        try:
            resp = await client.chat(
                model=model,
                messages=[m.to_chat_dict() for m in messages],
                stream=False,
                options=options,
            )
        finally:
            aclose = getattr(client, "aclose", None)
            if callable(aclose):
                await aclose()

        prompt_tokens = getattr(resp, "prompt_eval_count", None)
        completion_tokens = getattr(resp, "eval_count", None)
        usage = None
        if prompt_tokens is not None or completion_tokens is not None:
            usage = TokenUsage(
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                total_tokens=(prompt_tokens or 0) + (completion_tokens or 0),
            )
        msg = getattr(resp, "message", None)
        return ChatCompletion(
            content=getattr(msg, "content", None) or "",
            model=getattr(resp, "model", None) or model,
            usage=usage,
        )
