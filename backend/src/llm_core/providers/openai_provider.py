"""OpenAI-compatible chat backend. Also serves Perplexity through its base URL."""

from __future__ import annotations

import os
from typing import Any

from openai import AsyncOpenAI

from ..models import ChatCompletion, Message, TokenUsage
from .base import BackendError, ChatBackend

PERPLEXITY_BASE_URL = "https://api.perplexity.ai"


class OpenAIProvider(ChatBackend):
    """Chat Completions API backend."""

    vendor = "openai"
    supports_search = False

    def __init__(
        self,
        default_model: str = "gpt-4.1-nano",
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float = 90.0,
    ) -> None:
        super().__init__(default_model, timeout)
        self.api_key = api_key or os.getenv("OPENAI_API_KEY") or ""
        self.base_url = base_url or os.getenv("OPENAI_BASE_URL")
        self._client: AsyncOpenAI | None = None

    def _get_client(self) -> AsyncOpenAI:
        if not self._client:
            kwargs: dict[str, Any] = {"api_key": self.api_key, "timeout": self.timeout}
            if self.base_url:
                kwargs["base_url"] = self.base_url
            self._client = AsyncOpenAI(**kwargs)
        return self._client

    @staticmethod
    def _parse_usage(raw: Any) -> TokenUsage | None:
        if raw is None:
            return None
        cost = getattr(raw, "cost", None)
        if cost is not None and not isinstance(cost, (int, float)):
            cost = getattr(cost, "total_cost", None)
        return TokenUsage(
            prompt_tokens=getattr(raw, "prompt_tokens", None),
            completion_tokens=getattr(raw, "completion_tokens", None),
            total_tokens=getattr(raw, "total_tokens", None),
            cost=cost,
        )

    async def _complete(
        self,
        messages: list[Message],
        *,
        model: str,
        max_tokens: int,
        disable_search: bool,
        temperature: float | None,
    ) -> ChatCompletion:
        params: dict[str, Any] = {
            "model": model,
            "messages": [m.to_chat_dict() for m in messages],
            "max_tokens": max_tokens,
        }
        if temperature is not None:
            params["temperature"] = temperature
        if self.supports_search:
            params["extra_body"] = {"disable_search": disable_search}

        resp = await self._get_client().chat.completions.create(**params)
        if not resp.choices:
            raise BackendError(f"{self.vendor} returned no choices", vendor=self.vendor)

        content = resp.choices[0].message.content or ""
        return ChatCompletion(
            content=content,
            model=resp.model or model,
            usage=self._parse_usage(resp.usage),
        )


class PerplexityProvider(OpenAIProvider):
    """Perplexity speaks the OpenAI protocol and accepts a disable_search flag."""

    vendor = "perplexity"
    supports_search = True

    def __init__(
        self,
        default_model: str = "sonar",
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float = 90.0,
    ) -> None:
        super().__init__(
            default_model,
            api_key=api_key or os.getenv("PERPLEXITY_API_KEY") or "",
            base_url=base_url or os.getenv("PERPLEXITY_BASE_URL") or PERPLEXITY_BASE_URL,
            timeout=timeout,
        )
