"""Google Gemini chat backend using the google-genai SDK."""

from __future__ import annotations

import os
from typing import Any

from google import genai
from google.genai import types as genai_types

from ..models import ChatCompletion, Message, TokenUsage
from .base import ChatBackend


class GeminiProvider(ChatBackend):
    vendor = "gemini"

    def __init__(
        self,
        default_model: str = "gemini-2.5-flash",
        api_key: str | None = None,
        timeout: float = 90.0,
    ) -> None:
        super().__init__(default_model, timeout)
        self.api_key = api_key or os.getenv("GOOGLE_API_KEY") or os.getenv("GEMINI_API_KEY", "")
        self._client: genai.Client | None = None

    def _get_client(self) -> genai.Client:
        if not self._client:
            self._client = genai.Client(
                api_key=self.api_key,
                http_options={"api_version": "v1beta"},
            )
        return self._client

    @staticmethod
    def _to_gemini_contents(messages: list[Message]) -> tuple[list[genai_types.Content], str | None]:
        """Split messages into Gemini contents and a system instruction."""
        contents: list[genai_types.Content] = []
        system_parts: list[str] = []
        for m in messages:
            if m.role == "system":
                if m.content.strip():
                    system_parts.append(m.content.strip())
                continue
            if not m.content:
                continue
            role = "model" if m.role == "assistant" else "user"
            contents.append(genai_types.Content(role=role, parts=[genai_types.Part(text=m.content)]))
        return contents, "\n\n".join(system_parts) or None

    async def _complete(
        self,
        messages: list[Message],
        *,
        model: str,
        max_tokens: int,
        disable_search: bool,
        temperature: float | None,
    ) -> ChatCompletion:
        contents, system_instruction = self._to_gemini_contents(messages)
        config_args: dict[str, Any] = {"max_output_tokens": max_tokens}
        if temperature is not None:
            config_args["temperature"] = temperature
        if system_instruction:
            config_args["system_instruction"] = system_instruction
        if not disable_search:
            config_args["tools"] = [genai_types.Tool(google_search=genai_types.GoogleSearch())]

        resp = await self._get_client().aio.models.generate_content(
            model=model,
            contents=contents,
            config=genai_types.GenerateContentConfig(**config_args),
        )
        meta = getattr(resp, "usage_metadata", None)
        usage = None
        if meta is not None:
            usage = TokenUsage(
                prompt_tokens=getattr(meta, "prompt_token_count", None),
                completion_tokens=getattr(meta, "candidates_token_count", None),
                total_tokens=getattr(meta, "total_token_count", None),
            )
        return ChatCompletion(
            content=resp.text or "",
            model=getattr(resp, "model_version", None) or model,
            usage=usage,
        )
