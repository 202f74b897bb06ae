"""Send one message to several vendor/model targets at once and collect every outcome."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable

from src.llm_core.core import UnknownVendorError, get_backend
from src.llm_core.models import ROLE_SYSTEM, ROLE_USER, Message, TokenUsage
from src.llm_core.providers import ChatBackend

from .config import DEFAULT_DISABLE_SEARCH, DEFAULT_MAX_TOKENS
from .errors import DialogError, Err, Ok, Result, validate_temperature
from .models import ModelResult, ModelTarget, MultiChatRequest, MultiChatResult
from .prompts import build_output_format_prompt, join_system_parts

logger = logging.getLogger(__name__)

ALL_FAILED_MESSAGE = "All models failed to produce a response."
RESULT_SEPARATOR = "\n\n---\n\n"


def combine_contents(results: list[ModelResult]) -> str:
    parts = [
        f"**{r.vendor} ({r.model}):**\n{r.content}"
        for r in results
        if r.success and r.content is not None
    ]
    return RESULT_SEPARATOR.join(parts) if parts else ALL_FAILED_MESSAGE


def total_usage(results: list[ModelResult]) -> TokenUsage | None:
    """Sum of the successful usages; fields that add up to zero are left out."""
    combined: TokenUsage | None = None
    for r in results:
        if r.success:
            combined = TokenUsage.combine(combined, r.usage)
    if combined is None:
        return None
    return TokenUsage(
        prompt_tokens=combined.prompt_tokens or None,
        completion_tokens=combined.completion_tokens or None,
        total_tokens=combined.total_tokens or None,
        cost=combined.cost or None,
    )


class MultiChatOrchestrator:
    def __init__(
        self,
        backend_selector: Callable[[str], ChatBackend] = get_backend,
        default_max_tokens: int = DEFAULT_MAX_TOKENS,
    ) -> None:
        self._select_backend = backend_selector
        self._default_max_tokens = default_max_tokens

    async def send(self, request: MultiChatRequest) -> Result[MultiChatResult, DialogError]:
        started = time.perf_counter()
        if not request.message or not request.message.strip():
            return Err(DialogError.empty_message())
        if not request.targets:
            return Err(DialogError.invalid_request("At least one target model is required"))
        error = validate_temperature(request.temperature)
        if error is not None:
            return Err(error)

        messages = []
        system = join_system_parts(
            request.system_prompt,
            build_output_format_prompt(request.output_format, request.output_schema),
        )
        if system:
            messages.append(Message(role=ROLE_SYSTEM, content=system))
        messages.append(Message(role=ROLE_USER, content=request.message))

        results = await asyncio.gather(*(self._run_target(target, messages, request) for target in request.targets))
        results = list(results)
        logger.info(
            "Fan-out finished: %d/%d target(s) succeeded",
            sum(1 for r in results if r.success),
            len(results),
        )
        return Ok(
            MultiChatResult(
                results=results,
                combined_content=combine_contents(results),
                total_usage=total_usage(results),
                total_execution_time_ms=int((time.perf_counter() - started) * 1000),
            )
        )

    async def _run_target(self, target: ModelTarget, messages: list[Message], request: MultiChatRequest) -> ModelResult:
        started = time.perf_counter()
        try:
            backend = self._select_backend(target.vendor)
        except UnknownVendorError as exc:
            return ModelResult(
                vendor=target.vendor,
                model=target.model or "",
                execution_time_ms=0,
                success=False,
                error=str(exc),
            )

        model = target.model or backend.default_model
        reply = await backend.send_message(
            messages,
            model=model,
            max_tokens=request.max_tokens or self._default_max_tokens,
            disable_search=DEFAULT_DISABLE_SEARCH if request.disable_search is None else request.disable_search,
            temperature=request.temperature,
        )
        elapsed = int((time.perf_counter() - started) * 1000)
        if isinstance(reply, Err):
            return ModelResult(
                vendor=target.vendor,
                model=model,
                execution_time_ms=elapsed,
                success=False,
                error=str(reply.error),
            )
        return ModelResult(
            vendor=target.vendor,
            model=reply.value.model,
            execution_time_ms=elapsed,
            success=True,
            content=reply.value.content,
            usage=reply.value.usage,
        )
